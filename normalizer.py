"""
Per-type coercion of model output into draft field values.

The model is asked for a flat JSON object keyed by field slug, but what comes
back is loosely typed: booleans as "yes", images as {"url": ...}, references
as {"_id": ...}, rich text as lists of paragraphs. Each editable field type has
one rule that turns whatever arrived into the canonical draft value.
"""

from typing import Any

import orjson

from models import DraftValues, FieldDescriptor, ReferenceCandidate, ReferenceSelection, is_editable

_TRUTHY_STRINGS = frozenset({"true", "1", "yes"})


def normalize_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    return False


def normalize_image(value: Any) -> str:
    """Image URL from a bare string or an {"url"/"src": ...} object, else ""."""
    if isinstance(value, str) and value.startswith("http"):
        return value
    if isinstance(value, dict):
        for key in ("url", "src"):
            if isinstance(value.get(key), str):
                return value[key]
    return ""


def normalize_reference(value: Any) -> str:
    """Item id from a bare string or an {"_id"/"id": ...} object, else ""."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("_id", "id"):
            if isinstance(value.get(key), str):
                return value[key]
    return ""


def _json_text(value: Any, indent: bool = False) -> str:
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(value, option=option).decode()


def value_to_editable_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(item if isinstance(item, str) else _json_text(item) for item in value)
    if isinstance(value, dict):
        return _json_text(value, indent=True)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def selection_to_value(selection: str | list[str] | None) -> str:
    """Canonical draft form of a reference selection (comma-joined for multi)."""
    if isinstance(selection, list):
        return ",".join(selection)
    return selection or ""


def normalize_draft_values(
    parsed: dict[str, Any],
    fields: list[FieldDescriptor],
    selection: ReferenceSelection | None = None,
    candidates: dict[str, list[ReferenceCandidate]] | None = None,
) -> DraftValues:
    """Map a parsed model response onto the editable fields of a schema.

    Reference fields fall back to the user's current selection, then to the
    first cached candidate. Selection state is only read here, never written.
    """
    selection = selection or {}
    candidates = candidates or {}
    values: DraftValues = {}

    for field in fields:
        if not field.slug or not is_editable(field):
            continue

        raw = parsed.get(field.slug)

        if field.is_boolean:
            values[field.slug] = normalize_boolean(raw)
        elif field.is_image:
            values[field.slug] = normalize_image(raw)
        elif field.is_reference:
            cached = candidates.get(field.slug) or []
            values[field.slug] = (
                normalize_reference(raw)
                or selection_to_value(selection.get(field.slug))
                or (cached[0].id if cached else "")
            )
        else:
            values[field.slug] = value_to_editable_string(raw)

    return values
