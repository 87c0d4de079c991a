"""
Draft reconciliation: model output -> schema-valid draft -> Webflow draft item.

Generation cycle:
  A) Ask the generator for a JSON object keyed by field slug
  B) Interpret the reply: whole-text JSON, JSON embedded in prose or a code
     fence, or (last resort) raw prose dropped into the body field
  C) Normalize each value for its field type
  D) Fill remaining gaps from the raw text (title, slug, summaries, alt text)
  E) Re-assert the user's reference picks over anything the model produced

Submission cycle: sanitize the draft into a create-item payload, check
required fields, and hand it to the proxy as a draft.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

import orjson

from config import DEFAULT_MODEL
from models import (
    UNRESOLVED_VALUE,
    CollectionSchema,
    DraftValues,
    FieldDescriptor,
    ReferenceCandidate,
    ReferenceSelection,
    is_editable,
    is_long_text,
    serialize_field_metadata,
)
from normalizer import normalize_boolean, normalize_draft_values, selection_to_value
from proxy_client import ProxyError
from references import ReferenceResolver
from session import ActionInProgress, DraftSession
from text_utils import (
    DEFAULT_TITLE,
    SUMMARY_WORD_LIMIT,
    capitalize_first,
    infer_image_alt,
    infer_title,
    sanitize_slug,
    sanitize_text,
    slugify,
    summarize_text,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_HINT = "\n\nTry switching to Gemini models or wait a few minutes before retrying."
PREVIEW_ITEM_LIMIT = 10

# Slugs Webflow blog templates treat as switches even when the schema is unknown
KNOWN_BOOLEAN_SLUGS = frozenset({"featured", "_archived", "_draft"})
# Short text slugs that reject punctuation beyond [\w\s\-.,!?]
SANITIZED_TEXT_SLUGS = frozenset({"name", "seo-title", "seo-meta-description"})
SUMMARY_SLUGS = frozenset({"post-summary", "seo-meta-description"})


@dataclass
class ActionResult:
    """Outcome of one user action, ready to show as a status line."""

    ok: bool
    message: str
    level: str = "info"  # info, success, warning, error
    data: Any = None


# =====================================================================
# Interpretation of model output
# =====================================================================

_CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*\n([\s\S]*?)```")


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse ``text`` as JSON; only an object counts as a field mapping."""
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_json_text(text: str) -> str:
    """Pull a JSON candidate out of prose: a fenced block, else first '{' .. last '}'."""
    if not isinstance(text, str):
        return ""

    fence = _CODE_FENCE_RE.search(text)
    if fence and fence.group(1).strip():
        return fence.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return ""


def interpret_ai_output(raw_text: str) -> tuple[dict[str, Any] | None, str]:
    """Returns (field mapping or None, mode) with mode in "json", "extracted", "raw"."""
    parsed = parse_json_object(raw_text)
    if parsed is not None:
        return parsed, "json"

    extracted = extract_json_text(raw_text)
    parsed = parse_json_object(extracted) if extracted else None
    if parsed is not None:
        return parsed, "extracted"

    return None, "raw"


def _raw_text_target(fields: list[FieldDescriptor]) -> FieldDescriptor | None:
    """Field that receives unparseable output: first long-text field, else first non-title field."""
    editable = [f for f in fields if f.slug and is_editable(f)]
    for f in editable:
        if is_long_text(f.type):
            return f
    for f in editable:
        if f.slug not in ("name", "slug") and not (f.is_boolean or f.is_image or f.is_reference):
            return f
    return editable[0] if editable else None


def build_draft_from_raw(raw_text: str, fields: list[FieldDescriptor], keyword: str = "") -> DraftValues:
    values: DraftValues = {}

    target = _raw_text_target(fields)
    if target is not None:
        values[target.slug] = raw_text

    has_name = any(f.slug == "name" and is_editable(f) for f in fields)
    if has_name and not values.get("name"):
        values["name"] = capitalize_first(keyword or infer_title(raw_text) or raw_text or DEFAULT_TITLE)

    return values


def _is_unset(value: Any) -> bool:
    return value is None or value == ""


def fill_gaps(
    values: DraftValues,
    raw_text: str,
    fields: list[FieldDescriptor],
    keyword: str = "",
    selection: ReferenceSelection | None = None,
    candidates: dict[str, list[ReferenceCandidate]] | None = None,
) -> list[str]:
    """Fill still-empty editable fields from the raw text. Returns the slugs filled."""
    selection = selection or {}
    candidates = candidates or {}
    filled: list[str] = []

    for field in fields:
        slug = field.slug
        if not slug or not is_editable(field):
            continue

        if field.is_image:
            current = values.get(slug)
            if not (isinstance(current, str) and current.startswith("http")):
                values[slug] = UNRESOLVED_VALUE
                filled.append(slug)
            continue

        if not _is_unset(values.get(slug)):
            continue

        if field.is_reference:
            cached = candidates.get(slug) or []
            values[slug] = (
                selection_to_value(selection.get(slug)) or (cached[0].id if cached else "") or UNRESOLVED_VALUE
            )
        elif slug == "name":
            values[slug] = infer_title(raw_text) or capitalize_first(keyword or DEFAULT_TITLE)
        elif slug == "slug":
            name = values.get("name")
            source = name if isinstance(name, str) and name else infer_title(raw_text) or keyword or "ai-draft"
            values[slug] = slugify(source)
        elif slug in SUMMARY_SLUGS:
            values[slug] = summarize_text(raw_text, SUMMARY_WORD_LIMIT) or UNRESOLVED_VALUE
        elif slug == "image-alt-tag":
            values[slug] = infer_image_alt(raw_text)
        else:
            values[slug] = UNRESOLVED_VALUE
        filled.append(slug)

    return filled


def reconcile_draft(
    raw_text: str,
    fields: list[FieldDescriptor],
    keyword: str = "",
    selection: ReferenceSelection | None = None,
    candidates: dict[str, list[ReferenceCandidate]] | None = None,
) -> tuple[DraftValues, str]:
    """Turn raw model output into draft values for ``fields``.

    Does not re-assert reference picks; the engine does that against live
    session state. Returns (values, interpretation mode).
    """
    parsed, mode = interpret_ai_output(raw_text)
    source_text = raw_text or keyword

    if parsed is not None:
        values = normalize_draft_values(parsed, fields, selection, candidates)
    else:
        values = build_draft_from_raw(source_text, fields, keyword)

    filled = fill_gaps(values, source_text, fields, keyword, selection, candidates)
    if filled:
        logger.info(f"  Gap-filled from raw text: {filled}")
    return values, mode


# =====================================================================
# Submission payload
# =====================================================================


def _split_ids(value: Any) -> list[str]:
    parts = value if isinstance(value, list) else str(value).split(",")
    return [p for p in (str(x).strip() for x in parts) if p]


def build_draft_payload(values: DraftValues, fields: list[FieldDescriptor], last_keyword: str = "") -> dict[str, Any]:
    """Sanitized create-item ``fieldData`` for the current draft values.

    Pure: building twice from unchanged values yields equal payloads.
    """
    by_slug = {f.slug: f for f in fields}
    fallback_title = capitalize_first(last_keyword) if last_keyword else DEFAULT_TITLE
    payload: dict[str, Any] = {}

    for slug, value in values.items():
        if isinstance(value, str):
            value = value.strip()
            if not value or value == UNRESOLVED_VALUE:
                continue
        elif value is None:
            continue
        elif isinstance(value, list):
            value = list(value)
        payload[slug] = value

    if not payload.get("name"):
        payload["name"] = fallback_title

    existing_slug = payload.get("slug")
    slug = slugify(str(existing_slug)) if existing_slug else slugify(str(payload["name"]))
    slug = sanitize_slug(slug)
    if slug:
        payload["slug"] = slug
    else:
        payload.pop("slug", None)

    for key in list(payload):
        value = payload[key]
        field = by_slug.get(key)

        if (field is not None and field.is_boolean) or key in KNOWN_BOOLEAN_SLUGS:
            payload[key] = normalize_boolean(value)
        elif field is not None and field.is_multi_reference:
            payload[key] = _split_ids(value)
        elif field is not None and field.is_reference:
            payload[key] = value if isinstance(value, str) else str(value)
        elif field is None and "category" in key and isinstance(value, str) and "," in value:
            payload[key] = _split_ids(value)
        elif field is None and (key == "author" or "reference" in key) and not isinstance(value, str):
            payload[key] = str(value)

        if key in SANITIZED_TEXT_SLUGS and isinstance(payload[key], str):
            payload[key] = sanitize_text(payload[key])
            if not payload[key]:
                del payload[key]

    if not payload.get("name"):
        payload["name"] = sanitize_text(fallback_title) or DEFAULT_TITLE

    return payload


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, list):
        return not value
    if isinstance(value, bool):
        return False
    return str(value).strip() in ("", UNRESOLVED_VALUE)


def find_missing_required_fields(payload: dict[str, Any], fields: list[FieldDescriptor]) -> list[str]:
    """Display names of editable required fields with no usable payload value."""
    return [f.label for f in fields if f.required and is_editable(f) and _is_blank(payload.get(f.slug))]


# =====================================================================
# Engine
# =====================================================================


class DraftReconciler:
    """Runs user actions against one draft session.

    Every public coroutine returns an ActionResult and never raises; each
    holds its own busy flag so a second click on the same action is refused.
    """

    def __init__(self, client: Any, session: DraftSession | None = None) -> None:
        self.client = client
        self.session = session or DraftSession()
        self.references = ReferenceResolver(self.session, client)

    # ------------------------------------------------------------------
    # Browsing
    # ------------------------------------------------------------------

    async def fetch_sites(self) -> ActionResult:
        try:
            with self.session.busy("sites"):
                sites = await self.client.list_sites()
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")
        except ProxyError as e:
            return ActionResult(False, str(e), "error")
        except Exception as e:
            logger.exception("Fetching sites crashed")
            return ActionResult(False, str(e) or type(e).__name__, "error")

        self.session.sites = sites
        if not sites:
            return ActionResult(True, "No sites found for this token.", "info", data=[])
        return ActionResult(True, f"Found {len(sites)} site(s).", "success", data=sites)

    async def fetch_collections(self, site_id: str) -> ActionResult:
        self.session.select_site(site_id)
        try:
            with self.session.busy("collections"):
                collections = await self.client.list_collections(site_id)
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")
        except ProxyError as e:
            return ActionResult(False, f"Error: {e}", "error")
        except Exception as e:
            logger.exception(f"Fetching collections of {site_id} crashed")
            return ActionResult(False, f"Error: {str(e) or type(e).__name__}", "error")

        self.session.collections = collections
        if not collections:
            return ActionResult(True, "No collections found for this site.", "info", data=[])
        return ActionResult(True, f"Found {len(collections)} collection(s).", "success", data=collections)

    async def load_collection(self, collection_id: str, display_name: str | None = None) -> ActionResult:
        """Fetch the schema, reset the session to it and prepare reference candidates."""
        try:
            with self.session.busy("fields"):
                details = await self.client.get_collection_details(collection_id)
                schema = CollectionSchema.from_document(details, collection_id, display_name)
                self.session.select_collection(schema)

                editable = schema.editable_fields
                await self.references.ensure_candidates(editable)
                self.references.initialize_selection(editable)
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")
        except ProxyError as e:
            return ActionResult(False, str(e), "error")
        except Exception as e:
            logger.exception(f"Loading collection {collection_id} crashed")
            return ActionResult(False, str(e) or type(e).__name__, "error")

        message = f"Loaded {len(schema.fields)} field(s), {len(schema.editable_fields)} editable by the generator."
        manual = schema.unsupported_required_fields
        if manual:
            names = ", ".join(f.label for f in manual)
            message += f" Heads up: these required fields must be completed manually after draft creation: {names}."
        return ActionResult(True, message, "warning" if manual else "success", data=schema)

    async def fetch_collection_items(self) -> ActionResult:
        """Preview of the first items already in the selected collection."""
        if self.session.collection is None:
            return ActionResult(False, "Select a collection to view its items.", "info")
        try:
            with self.session.busy("items"):
                items = await self.client.list_collection_items(self.session.collection.id)
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")
        except ProxyError as e:
            logger.warning(f"Collection items preview failed: {e}")
            return ActionResult(False, "Unable to load collection items.", "error")
        except Exception:
            logger.exception("Collection items preview crashed")
            return ActionResult(False, "Unable to load collection items.", "error")

        self.session.preview_items = items[:PREVIEW_ITEM_LIMIT]
        if not items:
            return ActionResult(True, "No items available.", "info", data=[])
        shown = len(self.session.preview_items)
        return ActionResult(True, f"Showing {shown} of {len(items)} item(s).", "success", data=self.session.preview_items)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, keyword: str, model: str = DEFAULT_MODEL) -> ActionResult:
        keyword = (keyword or "").strip()
        if not keyword:
            return ActionResult(False, "Please provide a keyword to guide the draft.", "warning")
        if self.session.collection is None:
            return ActionResult(False, "Please select a collection before generating a draft.", "error")

        try:
            with self.session.busy("generate"):
                self.session.last_keyword = keyword
                return await self._generate(keyword, model)
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")

    async def _generate(self, keyword: str, model: str) -> ActionResult:
        session = self.session
        fields = session.editable_fields
        logger.info(f"Generating draft for '{keyword}' with {model} ({len(fields)} editable fields)")

        try:
            content = await self.client.generate_content(keyword, model, serialize_field_metadata(session.fields))
            raw_text = content.strip() if isinstance(content, str) else ""
            session.raw_ai_content = raw_text

            values, mode = reconcile_draft(
                raw_text,
                fields,
                keyword,
                session.reference_selection,
                session.reference_candidates,
            )
        except ProxyError as e:
            return self._generation_failed(str(e))
        except Exception as e:
            logger.exception("Draft generation crashed")
            return self._generation_failed(str(e) or type(e).__name__)

        session.draft_values = values
        self.references.reassert_selections(fields)
        logger.info(f"  Interpreted model output as {mode}")

        if mode == "raw":
            return ActionResult(
                True,
                "AI response was not valid JSON. The raw text was placed in the draft; review it before pushing to Webflow.",
                "warning",
                data=dict(session.draft_values),
            )
        return ActionResult(True, "Draft ready. Review, tweak and push to Webflow.", "success", data=dict(session.draft_values))

    @staticmethod
    def _generation_failed(message: str) -> ActionResult:
        if "rate limit" in message or "Rate limit" in message:
            message += RATE_LIMIT_HINT
        logger.warning(f"Generation failed: {message}")
        return ActionResult(False, f"Generation failed: {message}", "error")

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def select_reference(self, slug: str, id_or_ids: str | list[str]) -> ActionResult:
        field = self.session.collection.field(slug) if self.session.collection else None
        if field is None or not field.is_reference:
            return ActionResult(False, f"'{slug}' is not a reference field of this collection.", "warning")
        if field.is_multi_reference and isinstance(id_or_ids, str):
            id_or_ids = _split_ids(id_or_ids)
        display = self.references.apply_selection(slug, id_or_ids)
        return ActionResult(True, f"{field.label}: {display or 'nothing selected'}", "info", data=display)

    def set_field_value(self, slug: str, value: Any) -> ActionResult:
        """Manual edit of one draft field."""
        field = self.session.collection.field(slug) if self.session.collection else None
        if field is None or not is_editable(field):
            return ActionResult(False, f"'{slug}' is not an editable field of this collection.", "warning")

        if field.is_boolean:
            value = normalize_boolean(value)
        elif not isinstance(value, str):
            value = "" if value is None else str(value)
        self.session.draft_values[slug] = value

        if field.is_reference:
            ids = _split_ids(value) if field.is_multi_reference else ([value] if value else [])
            self.session.reference_display[slug] = self.references.display_text(slug, ids)
        return ActionResult(True, f"Updated {field.label}.", "info")

    def clear(self) -> ActionResult:
        self.session.clear_draft()
        self.references.initialize_selection(self.session.editable_fields)
        return ActionResult(True, "Cleared the current draft.", "info")

    def reset_fields(self) -> ActionResult:
        self.session.reset_fields()
        return ActionResult(True, "Draft editor reset. Generate again to repopulate.", "info")

    def raw_output(self) -> str:
        if self.session.raw_ai_content:
            return self.session.raw_ai_content
        if self.session.draft_values:
            return orjson.dumps(self.session.draft_values, option=orjson.OPT_INDENT_2).decode()
        return "No AI output available yet."

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def build_payload(self) -> dict[str, Any]:
        return build_draft_payload(self.session.draft_values, self.session.fields, self.session.last_keyword)

    async def submit(self) -> ActionResult:
        collection = self.session.collection
        if collection is None:
            return ActionResult(False, "Please select a collection before creating a draft.", "error")

        try:
            with self.session.busy("submit"):
                payload = self.build_payload()
                missing = find_missing_required_fields(payload, self.session.fields)
                if missing:
                    return ActionResult(
                        False,
                        f"Fill in required fields before submitting: {', '.join(missing)}",
                        "warning",
                        data=missing,
                    )

                logger.info(f"Creating draft in {collection.id} with fields {sorted(payload)}")
                response = await self.client.create_draft_item(collection.id, payload)
        except ActionInProgress as e:
            return ActionResult(False, str(e), "warning")
        except ProxyError as e:
            logger.warning(f"Draft creation failed: {e}")
            return ActionResult(False, f"Draft creation failed: {e}", "error")
        except Exception as e:
            logger.exception("Draft creation crashed")
            return ActionResult(False, f"Draft creation failed: {str(e) or type(e).__name__}", "error")

        return ActionResult(True, "Draft created in Webflow. Review it inside your CMS drafts.", "success", data=response)
