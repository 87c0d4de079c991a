"""
Shared fixtures: collection documents shaped like Webflow's, and an in-memory
stand-in for the draft proxy so engine tests never touch the network.
"""

import asyncio

import pytest

from models import CollectionSchema
from proxy_client import ProxyError

AUTHORS_COLLECTION = "authors-col"
CATEGORIES_COLLECTION = "categories-col"


def blog_collection_document() -> dict:
    return {
        "id": "blog-col",
        "displayName": "Blog Posts",
        "slug": "blog",
        "fields": [
            {"slug": "name", "displayName": "Name", "type": "PlainText", "isRequired": True},
            {"slug": "slug", "displayName": "Slug", "type": "PlainText", "isRequired": True},
            {"slug": "post-body", "displayName": "Post Body", "type": "RichText"},
            {"slug": "post-summary", "displayName": "Post Summary", "type": "PlainText"},
            {"slug": "main-image", "displayName": "Main Image", "type": "Image"},
            {"slug": "featured", "displayName": "Featured?", "type": "Switch"},
            {
                "slug": "author",
                "displayName": "Author",
                "type": "Reference",
                "validations": {"collectionId": AUTHORS_COLLECTION},
            },
            {
                "slug": "categories",
                "displayName": "Categories",
                "type": "MultiReference",
                "collectionId": CATEGORIES_COLLECTION,
            },
            {"slug": "gallery", "displayName": "Gallery", "type": "MultiImage", "isRequired": True},
        ],
    }


REFERENCE_ITEMS = {
    AUTHORS_COLLECTION: [
        {"id": "item-42", "fieldData": {"name": "Ada Lovelace"}},
        {"id": "item-99", "fieldData": {"name": "Bob Builder"}},
    ],
    CATEGORIES_COLLECTION: [
        {"_id": "cat-1", "name": "News"},
        {"_id": "cat-2", "name": "Tips"},
    ],
}


class FakeProxy:
    """Records every collaborator call and answers from canned data.

    ``content`` may be an exception instance, raised from generate_content.
    """

    def __init__(self, details=None, reference_items=None, content="", failing_collections=()):
        self.details = details if details is not None else blog_collection_document()
        self.reference_items = REFERENCE_ITEMS if reference_items is None else reference_items
        self.content = content
        self.failing_collections = set(failing_collections)
        self.calls: list[tuple] = []
        self.created: list[tuple[str, dict]] = []
        # reference fetches currently awaiting, and the peak seen
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_sites(self):
        self.calls.append(("list-sites",))
        return [{"id": "site-1", "displayName": "Coffee Blog"}]

    async def list_collections(self, site_id):
        self.calls.append(("list-collections", site_id))
        return [{"id": "blog-col", "displayName": "Blog Posts"}]

    async def get_collection_details(self, collection_id):
        self.calls.append(("collection-details", collection_id))
        return self.details

    async def list_reference_items(self, collection_id):
        self.calls.append(("list-reference-items", collection_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # yield so sibling fetches get a chance to start
            await asyncio.sleep(0)
            if collection_id in self.failing_collections:
                raise ProxyError("Resource not found", 404)
            return list(self.reference_items.get(collection_id, []))
        finally:
            self.in_flight -= 1

    async def list_collection_items(self, collection_id):
        self.calls.append(("list-collection-items", collection_id))
        return [{"id": f"post-{i}", "fieldData": {"name": f"Post {i}"}} for i in range(12)]

    async def generate_content(self, prompt, model, field_metadata):
        self.calls.append(("generate-blog", prompt, model, field_metadata))
        if isinstance(self.content, Exception):
            raise self.content
        return self.content

    async def create_draft_item(self, collection_id, fields):
        self.calls.append(("create-draft", collection_id, fields))
        self.created.append((collection_id, fields))
        return {"id": "new-item", "isDraft": True, "fieldData": fields}

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def blog_document():
    return blog_collection_document()


@pytest.fixture
def blog_schema(blog_document):
    return CollectionSchema.from_document(blog_document, "blog-col")


@pytest.fixture
def fake_proxy():
    return FakeProxy()
