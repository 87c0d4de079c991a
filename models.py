from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FieldType(str, Enum):
    """Webflow CMS field types the draft engine knows how to fill."""

    PLAIN_TEXT = "PlainText"
    RICH_TEXT = "RichText"
    TEXT_AREA = "TextArea"
    MARKDOWN = "Markdown"
    MULTI_LINE_PLAIN_TEXT = "MultiLinePlainText"
    LONG_TEXT = "LongText"
    SLUG = "Slug"
    NUMBER = "Number"
    DATE = "Date"
    SWITCH = "Switch"
    BOOLEAN = "Boolean"
    IMAGE = "Image"
    REFERENCE = "Reference"
    MULTI_REFERENCE = "MultiReference"


TEXT_FIELD_TYPES = frozenset(
    {
        FieldType.PLAIN_TEXT.value,
        FieldType.RICH_TEXT.value,
        FieldType.TEXT_AREA.value,
        FieldType.MARKDOWN.value,
        FieldType.MULTI_LINE_PLAIN_TEXT.value,
        FieldType.LONG_TEXT.value,
        FieldType.SLUG.value,
        FieldType.NUMBER.value,
        FieldType.DATE.value,
    }
)
LONG_TEXT_FIELD_TYPES = frozenset(
    {
        FieldType.RICH_TEXT.value,
        FieldType.TEXT_AREA.value,
        FieldType.MARKDOWN.value,
        FieldType.MULTI_LINE_PLAIN_TEXT.value,
        FieldType.LONG_TEXT.value,
    }
)
BOOLEAN_FIELD_TYPES = frozenset({FieldType.SWITCH.value, FieldType.BOOLEAN.value})
IMAGE_FIELD_TYPES = frozenset({FieldType.IMAGE.value})
REFERENCE_FIELD_TYPES = frozenset({FieldType.REFERENCE.value, FieldType.MULTI_REFERENCE.value})
MULTI_REFERENCE_FIELD_TYPES = frozenset({FieldType.MULTI_REFERENCE.value})

SUPPORTED_FIELD_TYPES = TEXT_FIELD_TYPES | BOOLEAN_FIELD_TYPES | IMAGE_FIELD_TYPES | REFERENCE_FIELD_TYPES

# Placeholder written into fields the engine could not resolve.
# Treated as empty by required-field validation and never submitted.
UNRESOLVED_VALUE = "unable to get data"

# slug -> value (str for text/image/reference, comma-joined ids for multi-reference, bool for switches)
DraftValues = dict[str, str | bool]
# slug -> id (Reference) or ordered ids (MultiReference)
ReferenceSelection = dict[str, str | list[str]]


def _as_text(value: Any) -> str:
    """Schema documents occasionally carry numbers where Webflow sends strings."""
    return "" if value is None else str(value)


class FieldDescriptor(BaseModel):
    """One field of a CMS collection schema, as fetched from Webflow."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    slug: str
    display_name: str = Field(default="", alias="displayName")
    # Kept as the raw Webflow string so unrecognized types survive untouched
    type: str = "unknown"
    required: bool = False
    localized: bool = False
    # Original schema document, probed for reference target collection ids
    document: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @field_validator("type", mode="before")
    @classmethod
    def default_unknown_type(cls, v: Any) -> str:
        return v if isinstance(v, str) and v else "unknown"

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "FieldDescriptor":
        slug = _as_text(doc.get("slug"))
        return cls(
            slug=slug,
            display_name=_as_text(doc.get("displayName")) or _as_text(doc.get("name")) or slug,
            type=doc.get("type"),
            required=doc.get("isRequired") is True or doc.get("required") is True,
            localized=bool(doc.get("localized")),
            document=doc,
        )

    @property
    def label(self) -> str:
        return self.display_name or self.slug or "Field"

    @property
    def is_boolean(self) -> bool:
        return self.type in BOOLEAN_FIELD_TYPES

    @property
    def is_image(self) -> bool:
        return self.type in IMAGE_FIELD_TYPES

    @property
    def is_reference(self) -> bool:
        return self.type in REFERENCE_FIELD_TYPES

    @property
    def is_multi_reference(self) -> bool:
        return self.type in MULTI_REFERENCE_FIELD_TYPES


class CollectionSchema(BaseModel):
    """A CMS collection and its ordered field list."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    display_name: str = Field(default="Collection", alias="displayName")
    slug: str = ""
    fields: list[FieldDescriptor] = []

    @classmethod
    def from_document(cls, data: Any, collection_id: str, display_name: str | None = None) -> "CollectionSchema":
        """Build a schema from a collection-details response.

        The response is sometimes wrapped as ``{"collection": {...}}``.
        """
        doc = data if isinstance(data, dict) else {}
        if isinstance(doc.get("collection"), dict):
            doc = doc["collection"]

        raw_fields = doc.get("fields")
        fields = [FieldDescriptor.from_document(f) for f in raw_fields if isinstance(f, dict)] if isinstance(raw_fields, list) else []

        return cls(
            id=_as_text(doc.get("id")) or collection_id,
            display_name=_as_text(doc.get("displayName")) or _as_text(doc.get("name")) or display_name or "Collection",
            slug=_as_text(doc.get("slug")),
            fields=fields,
        )

    @property
    def editable_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if is_editable(f)]

    @property
    def unsupported_required_fields(self) -> list[FieldDescriptor]:
        """Required fields the engine cannot fill; the user completes them in Webflow."""
        return [f for f in self.fields if f.required and not is_editable(f)]

    def field(self, slug: str) -> FieldDescriptor | None:
        for f in self.fields:
            if f.slug == slug:
                return f
        return None


class ReferenceCandidate(BaseModel):
    """An item of a referenced collection that a reference field may point at."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    display_name: str = Field(default="Untitled Item", alias="displayName")


def is_editable(field: FieldDescriptor) -> bool:
    if field.type not in SUPPORTED_FIELD_TYPES:
        return False
    if field.is_reference or field.is_image or field.is_boolean:
        return True
    return field.type in TEXT_FIELD_TYPES


def is_long_text(field_type: str) -> bool:
    return field_type in LONG_TEXT_FIELD_TYPES


def serialize_field_metadata(fields: list[FieldDescriptor]) -> list[dict[str, Any]]:
    """Field metadata sent alongside the keyword to the content generator."""
    return [
        {
            "slug": f.slug,
            "displayName": f.display_name,
            "type": f.type,
            "required": f.required,
        }
        for f in fields
    ]
