"""
Reference field resolution.

Reference and MultiReference fields point at items of another collection.
For each such field we cache the candidate items of its target collection,
keep the user's explicit pick separate from whatever the model produced, and
make the pick win after every regeneration.
"""

import asyncio
import logging
from typing import Any

from models import FieldDescriptor, ReferenceCandidate, is_editable
from normalizer import selection_to_value
from session import DraftSession

logger = logging.getLogger(__name__)

# Schema properties that may hold a reference field's target collection id,
# in precedence order. Webflow has used several spellings over API versions.
REFERENCE_COLLECTION_ID_RULES: tuple[tuple[str, ...], ...] = (
    ("collectionId",),
    ("referenceCollectionId",),
    ("collection",),
    ("collectionIdSlug",),
    ("collectionSlug",),
    ("validations", "collectionId"),
    ("reference", "collectionId"),
)

ITEM_ID_RULES: tuple[tuple[str, ...], ...] = (
    ("_id",),
    ("id",),
)

ITEM_DISPLAY_NAME_RULES: tuple[tuple[str, ...], ...] = (
    ("name",),
    ("displayName",),
    ("title",),
    ("fieldData", "name"),
    ("fieldData", "displayName"),
    ("fieldData", "title"),
)


def first_present(doc: Any, rules: tuple[tuple[str, ...], ...]) -> Any:
    """Value at the first rule path that exists and is not None."""
    for path in rules:
        node = doc
        for key in path:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)
        if node is not None:
            return node
    return None


def target_collection_id(field: FieldDescriptor) -> str | None:
    value = first_present(field.document, REFERENCE_COLLECTION_ID_RULES)
    if value is None or value == "":
        return None
    return str(value)


def candidate_from_item(item: dict[str, Any]) -> ReferenceCandidate | None:
    item_id = first_present(item, ITEM_ID_RULES)
    if not item_id:
        return None
    name = first_present(item, ITEM_DISPLAY_NAME_RULES)
    return ReferenceCandidate(id=str(item_id), display_name=str(name) if name is not None else "Untitled Item")


def _reference_fields(fields: list[FieldDescriptor]) -> list[FieldDescriptor]:
    return [f for f in fields if f.slug and f.is_reference and is_editable(f)]


class ReferenceResolver:
    """Candidate caches and user picks for the session's reference fields."""

    def __init__(self, session: DraftSession, client: Any) -> None:
        self.session = session
        self.client = client

    def candidates(self, slug: str) -> list[ReferenceCandidate]:
        return self.session.reference_candidates.get(slug, [])

    async def ensure_candidates(self, fields: list[FieldDescriptor]) -> None:
        """Fetch candidates for every reference field not cached yet, concurrently.

        One failing fetch never cancels the others; its field is cached as empty.
        """
        pending: list[tuple[FieldDescriptor, str]] = []
        for f in _reference_fields(fields):
            if f.slug in self.session.reference_candidates:
                continue
            collection_id = target_collection_id(f)
            if not collection_id:
                logger.info(f"Reference field '{f.slug}' has no target collection, skipping")
                continue
            pending.append((f, collection_id))

        if not pending:
            return

        results = await asyncio.gather(
            *[self.client.list_reference_items(collection_id) for _, collection_id in pending],
            return_exceptions=True,
        )

        for (f, collection_id), result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Error fetching reference items for {f.slug} (collection {collection_id}): {result}",
                    exc_info=result,
                )
                self.session.reference_candidates[f.slug] = []
                continue

            items = [candidate_from_item(item) for item in result]
            self.session.reference_candidates[f.slug] = [c for c in items if c is not None]
            logger.info(f"  {f.slug}: {len(self.session.reference_candidates[f.slug])} reference candidates")

    def initialize_selection(self, fields: list[FieldDescriptor]) -> None:
        """Default every unpicked reference field with candidates to its first candidate."""
        for f in _reference_fields(fields):
            cached = self.candidates(f.slug)
            if not cached or self.session.reference_selection.get(f.slug):
                continue
            first_id = cached[0].id
            selection: str | list[str] = [first_id] if f.is_multi_reference else first_id
            self.session.reference_selection[f.slug] = selection
            self.session.draft_values[f.slug] = first_id
            self.session.reference_display[f.slug] = self.display_text(f.slug, [first_id])

    def apply_selection(self, slug: str, id_or_ids: str | list[str]) -> str:
        """Record an explicit user pick; returns the refreshed display text."""
        if isinstance(id_or_ids, list):
            ids = [i for i in (str(x).strip() for x in id_or_ids) if i]
            selection: str | list[str] = ids
        else:
            ids = [id_or_ids] if id_or_ids else []
            selection = id_or_ids

        self.session.reference_selection[slug] = selection
        self.session.draft_values[slug] = selection_to_value(selection)
        display = self.display_text(slug, ids)
        self.session.reference_display[slug] = display
        logger.info(f"Reference field {slug} updated to: {', '.join(ids)}")
        return display

    def reassert_selections(self, fields: list[FieldDescriptor]) -> None:
        """Force user picks back over whatever the last AI pass produced."""
        for f in _reference_fields(fields):
            selection = self.session.reference_selection.get(f.slug)
            value = selection_to_value(selection)
            if value:
                self.session.draft_values[f.slug] = value

    def display_text(self, slug: str, ids: list[str]) -> str:
        """Render each id as "Name (id)"; ids without a cached candidate show as themselves."""
        names = {c.id: c.display_name for c in self.candidates(slug)}
        return ", ".join(f"{names.get(i, i)} ({i})" for i in ids)
