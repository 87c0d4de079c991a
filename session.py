"""
In-memory draft session.

Holds everything one user has picked or generated so far: the selected site
and collection, the collection schema, reference candidate caches, the user's
reference picks, the draft values and the last raw model output. Nothing is
persisted; selecting a new collection starts over.
"""

import contextlib
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from models import CollectionSchema, DraftValues, FieldDescriptor, ReferenceCandidate, ReferenceSelection

logger = logging.getLogger(__name__)


class ActionInProgress(Exception):
    """Raised when an action is started while the same action is still running."""

    def __init__(self, action: str) -> None:
        super().__init__(f"'{action}' is already in progress. Wait for it to finish.")
        self.action = action


@dataclass
class DraftSession:
    site_id: str | None = None
    collection: CollectionSchema | None = None

    # Browsing results, kept for display only
    sites: list[dict[str, Any]] = field(default_factory=list)
    collections: list[dict[str, Any]] = field(default_factory=list)
    preview_items: list[dict[str, Any]] = field(default_factory=list)

    # Per collection selection
    reference_candidates: dict[str, list[ReferenceCandidate]] = field(default_factory=dict)
    reference_selection: ReferenceSelection = field(default_factory=dict)
    reference_display: dict[str, str] = field(default_factory=dict)
    draft_values: DraftValues = field(default_factory=dict)
    raw_ai_content: str = ""
    last_keyword: str = ""

    _busy: set[str] = field(default_factory=set, repr=False)

    @property
    def fields(self) -> list[FieldDescriptor]:
        return list(self.collection.fields) if self.collection else []

    @property
    def editable_fields(self) -> list[FieldDescriptor]:
        return self.collection.editable_fields if self.collection else []

    def select_site(self, site_id: str) -> None:
        self.site_id = site_id
        self.collections = []
        self._reset_collection(None)

    def select_collection(self, schema: CollectionSchema) -> None:
        logger.info(f"Selected collection {schema.id} ({len(schema.fields)} fields)")
        self._reset_collection(schema)

    def _reset_collection(self, schema: CollectionSchema | None) -> None:
        self.collection = schema
        self.preview_items = []
        self.reference_candidates = {}
        self.reference_selection = {}
        self.reference_display = {}
        self.draft_values = {}
        self.raw_ai_content = ""
        self.last_keyword = ""

    def clear_draft(self) -> None:
        """Drop the generated draft, the keyword and all reference picks."""
        self.draft_values = {}
        self.raw_ai_content = ""
        self.last_keyword = ""
        self.reference_selection = {}
        self.reference_display = {}

    def reset_fields(self) -> None:
        """Empty the draft editor but keep keyword and reference picks."""
        self.draft_values = {}
        self.raw_ai_content = ""

    def is_busy(self, action: str) -> bool:
        return action in self._busy

    @contextlib.contextmanager
    def busy(self, action: str) -> Iterator[None]:
        if action in self._busy:
            raise ActionInProgress(action)
        self._busy.add(action)
        try:
            yield
        finally:
            self._busy.discard(action)
