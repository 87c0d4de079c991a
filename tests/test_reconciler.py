"""
Generation and submission cycles, driven against the in-memory FakeProxy.
"""

import asyncio

import orjson
import pytest

from conftest import FakeProxy
from models import UNRESOLVED_VALUE, FieldDescriptor
from proxy_client import ProxyError
from reconciler import (
    RATE_LIMIT_HINT,
    DraftReconciler,
    build_draft_payload,
    extract_json_text,
    find_missing_required_fields,
    interpret_ai_output,
    reconcile_draft,
)


def _fields(*specs):
    return [FieldDescriptor.from_document({"slug": slug, "type": t}) for slug, t in specs]


def _loaded_engine(proxy):
    engine = DraftReconciler(proxy)
    result = asyncio.run(engine.load_collection("blog-col"))
    assert result.ok
    return engine


GENERATED = {
    "name": "Best Coffee @ Home",
    "slug": "",
    "post-body": '<h1>Coffee</h1><p>Brew it well.</p><img src="https://images.pexels.com/1.jpeg" alt="Pour over">',
    "post-summary": "",
    "main-image": {"url": "https://images.pexels.com/photos/1/a.jpeg"},
    "featured": "yes",
    "author": "item-99",
    "categories": "cat-2",
}


# =====================================================================
# Interpretation
# =====================================================================


class TestInterpretation:
    def test_direct_json_needs_no_gap_filling(self):
        fields = _fields(("name", "PlainText"), ("slug", "PlainText"))
        values, mode = reconcile_draft('{"name":"Hello","slug":"hello"}', fields)
        assert mode == "json"
        assert values == {"name": "Hello", "slug": "hello"}

    def test_fenced_json_equals_unwrapped(self):
        fields = _fields(("name", "PlainText"), ("slug", "PlainText"), ("body", "RichText"))
        plain = '{"name": "Hello", "slug": "hello", "body": "<p>Hi</p>"}'
        fenced = f"Here you go:\n```json\n{plain}\n```\nEnjoy!"

        direct, _ = reconcile_draft(plain, fields)
        extracted, mode = reconcile_draft(fenced, fields)

        assert mode == "extracted"
        assert extracted == direct

    def test_json_embedded_in_prose(self):
        parsed, mode = interpret_ai_output('Sure! {"name": "Embedded"} Hope that helps.')
        assert mode == "extracted"
        assert parsed == {"name": "Embedded"}

    def test_arrays_fall_through_to_extraction(self):
        parsed, mode = interpret_ai_output('[{"name": "x"}]')
        assert parsed == {"name": "x"}
        assert mode == "extracted"
        assert interpret_ai_output("[1, 2, 3]") == (None, "raw")

    def test_extract_json_text_without_candidates(self):
        assert extract_json_text("no braces at all") == ""
        assert extract_json_text("} backwards {") == ""

    def test_raw_prose_goes_to_body(self):
        fields = _fields(("name", "PlainText"), ("body", "RichText"))
        values, mode = reconcile_draft("Just a sentence about bees.", fields)
        assert mode == "raw"
        assert values["body"] == "Just a sentence about bees."
        assert values["name"] == "Just a sentence about bees"

    def test_raw_prose_name_prefers_keyword(self):
        fields = _fields(("name", "PlainText"), ("body", "RichText"))
        values, _ = reconcile_draft("Just a sentence about bees.", fields, keyword="honey bees")
        assert values["name"] == "Honey bees"

    def test_raw_prose_without_long_text_field(self):
        fields = _fields(("name", "PlainText"), ("slug", "PlainText"), ("teaser", "PlainText"))
        values, _ = reconcile_draft("Bees are busy.", fields)
        assert values["teaser"] == "Bees are busy."
        assert values["slug"] == "bees-are-busy"


class TestGapFilling:
    def test_heuristics_fill_empty_fields(self):
        fields = _fields(
            ("name", "PlainText"),
            ("slug", "PlainText"),
            ("post-body", "RichText"),
            ("post-summary", "PlainText"),
            ("image-alt-tag", "PlainText"),
            ("main-image", "Image"),
            ("subtitle", "PlainText"),
        )
        body = "<h1>Cold Brew</h1><p>Steep coffee overnight.</p><img src='x.jpg' alt='Jar of cold brew'>"
        raw = orjson.dumps({"post-body": body, "main-image": "not a url"}).decode()

        values, _ = reconcile_draft(raw, fields, keyword="cold brew")

        assert values["name"] == "Cold Brew"
        assert values["slug"] == "cold-brew"
        assert values["post-summary"]
        assert values["image-alt-tag"] == "Jar of cold brew"
        assert values["main-image"] == UNRESOLVED_VALUE
        assert values["subtitle"] == UNRESOLVED_VALUE

    def test_false_switch_is_not_a_gap(self):
        fields = _fields(("name", "PlainText"), ("featured", "Switch"))
        values, _ = reconcile_draft('{"name": "A", "featured": "no"}', fields)
        assert values["featured"] is False

    def test_unresolvable_reference_gets_sentinel(self):
        fields = _fields(("name", "PlainText"), ("author", "Reference"))
        values, _ = reconcile_draft('{"name": "A"}', fields)
        assert values["author"] == UNRESOLVED_VALUE


# =====================================================================
# Generation cycle
# =====================================================================


class TestGenerate:
    def test_full_cycle(self):
        proxy = FakeProxy(content=orjson.dumps(GENERATED).decode())
        engine = _loaded_engine(proxy)

        result = asyncio.run(engine.generate("  coffee at home ", "gemini:gemini-2.5-flash"))

        assert result.ok
        assert result.level == "success"
        assert result.message == "Draft ready. Review, tweak and push to Webflow."
        values = engine.session.draft_values
        assert values["featured"] is True
        assert values["slug"] == "best-coffee-home"
        assert values["main-image"] == "https://images.pexels.com/photos/1/a.jpeg"
        assert engine.session.last_keyword == "coffee at home"

        _, prompt, model, metadata = proxy.calls[-1]
        assert (prompt, model) == ("coffee at home", "gemini:gemini-2.5-flash")
        assert {m["slug"] for m in metadata} >= {"name", "gallery"}

    def test_user_selection_survives_regeneration(self):
        proxy = FakeProxy(content='{"name": "Post", "author": "item-99", "categories": ["cat-2"]}')
        engine = _loaded_engine(proxy)
        engine.select_reference("author", "item-42")
        engine.select_reference("categories", "cat-1, cat-2")

        asyncio.run(engine.generate("bees"))
        asyncio.run(engine.generate("bees"))

        assert engine.session.draft_values["author"] == "item-42"
        assert engine.session.draft_values["categories"] == "cat-1,cat-2"
        assert engine.session.reference_selection["author"] == "item-42"

    def test_raw_output_warns(self):
        engine = _loaded_engine(FakeProxy(content="Just a sentence about bees."))
        result = asyncio.run(engine.generate("bees"))
        assert result.ok
        assert result.level == "warning"
        assert "not valid JSON" in result.message
        assert engine.session.draft_values["post-body"] == "Just a sentence about bees."
        assert engine.raw_output() == "Just a sentence about bees."

    def test_empty_keyword_is_rejected_without_a_call(self):
        proxy = FakeProxy(content="{}")
        engine = _loaded_engine(proxy)
        result = asyncio.run(engine.generate("   "))
        assert not result.ok
        assert result.message == "Please provide a keyword to guide the draft."
        assert "generate-blog" not in proxy.call_names()

    def test_rate_limit_failure_adds_hint(self):
        proxy = FakeProxy(content=ProxyError("Rate limit reached for gpt-4o-mini", 429))
        engine = _loaded_engine(proxy)

        result = asyncio.run(engine.generate("bees"))

        assert not result.ok
        assert result.level == "error"
        assert result.message.startswith("Generation failed: Rate limit reached")
        assert result.message.endswith(RATE_LIMIT_HINT)

    def test_other_failures_have_no_hint(self):
        engine = _loaded_engine(FakeProxy(content=ProxyError("Missing server-side Gemini API key.", 400)))
        result = asyncio.run(engine.generate("bees"))
        assert result.message == "Generation failed: Missing server-side Gemini API key."

    def test_second_generate_while_busy_is_refused(self):
        proxy = FakeProxy(content="{}")
        engine = _loaded_engine(proxy)

        with engine.session.busy("generate"):
            result = asyncio.run(engine.generate("bees"))

        assert not result.ok
        assert result.level == "warning"
        assert "already in progress" in result.message
        assert "generate-blog" not in proxy.call_names()
        assert not engine.session.is_busy("generate")

    def test_generate_needs_a_collection(self):
        result = asyncio.run(DraftReconciler(FakeProxy()).generate("bees"))
        assert not result.ok


# =====================================================================
# Submission cycle
# =====================================================================


class TestPayload:
    def test_payload_is_sanitized_and_typed(self, blog_schema):
        values = {
            "name": "  Best Coffee @ Home ",
            "slug": "",
            "post-summary": UNRESOLVED_VALUE,
            "featured": "true",
            "author": "item-42",
            "categories": "cat-1, cat-2,",
            "main-image": "   ",
        }
        payload = build_draft_payload(values, blog_schema.fields, "coffee")

        assert payload == {
            "name": "Best Coffee  Home",
            "slug": "best-coffee-home",
            "featured": True,
            "author": "item-42",
            "categories": ["cat-1", "cat-2"],
        }

    def test_name_falls_back_to_keyword(self, blog_schema):
        payload = build_draft_payload({}, blog_schema.fields, "cold brew")
        assert payload["name"] == "Cold brew"
        assert payload["slug"] == "cold-brew"
        assert build_draft_payload({}, blog_schema.fields)["name"] == "AI Draft"

    def test_existing_slug_is_normalized(self, blog_schema):
        payload = build_draft_payload({"name": "X", "slug": "My Custom_Slug!"}, blog_schema.fields)
        assert payload["slug"] == "my-custom-slug"

    def test_unknown_slugs_use_naming_heuristic(self):
        payload = build_draft_payload({"name": "X", "category": "a,b", "_draft": "1", "co-author": 5}, [])
        assert payload["category"] == ["a", "b"]
        assert payload["_draft"] is True
        assert payload["co-author"] == 5

    def test_building_is_idempotent_and_pure(self, blog_schema):
        values = {"name": "Hello", "categories": "cat-1,cat-2", "featured": "yes", "post-body": " <p>x</p> "}
        snapshot = dict(values)

        first = build_draft_payload(values, blog_schema.fields, "hello")
        second = build_draft_payload(values, blog_schema.fields, "hello")

        assert first == second
        assert values == snapshot

    def test_missing_required_fields(self, blog_schema):
        assert find_missing_required_fields({"name": "A"}, blog_schema.fields) == ["Slug"]
        assert find_missing_required_fields({"name": "A", "slug": UNRESOLVED_VALUE}, blog_schema.fields) == ["Slug"]
        assert find_missing_required_fields({"name": "A", "slug": "a"}, blog_schema.fields) == []


class TestSubmit:
    def test_missing_required_summary_aborts_without_a_call(self):
        document = {
            "id": "posts",
            "fields": [
                {"slug": "name", "displayName": "Name", "type": "PlainText", "isRequired": True},
                {"slug": "summary", "displayName": "Summary", "type": "PlainText", "isRequired": True},
            ],
        }
        proxy = FakeProxy(details=document)
        engine = DraftReconciler(proxy)
        asyncio.run(engine.load_collection("posts"))
        engine.set_field_value("name", "Hello")

        result = asyncio.run(engine.submit())

        assert not result.ok
        assert result.message == "Fill in required fields before submitting: Summary"
        assert result.data == ["Summary"]
        assert proxy.created == []

    def test_submit_creates_draft(self):
        proxy = FakeProxy(content=orjson.dumps(GENERATED).decode())
        engine = _loaded_engine(proxy)
        asyncio.run(engine.generate("coffee"))

        result = asyncio.run(engine.submit())

        assert result.ok
        assert result.message == "Draft created in Webflow. Review it inside your CMS drafts."
        collection_id, fields = proxy.created[0]
        assert collection_id == "blog-col"
        assert fields["author"] == "item-42"
        assert fields["categories"] == ["cat-1"]
        assert fields["featured"] is True
        assert "@" not in fields["name"]
        assert "gallery" not in fields

    def test_create_failure_is_reported(self):
        proxy = FakeProxy()

        async def reject(collection_id, fields):
            raise ProxyError("Validation Error: slug already in use", 409)

        proxy.create_draft_item = reject
        engine = _loaded_engine(proxy)
        engine.set_field_value("name", "Hello")

        result = asyncio.run(engine.submit())

        assert not result.ok
        assert result.message == "Draft creation failed: Validation Error: slug already in use"

    def test_submit_needs_a_collection(self):
        result = asyncio.run(DraftReconciler(FakeProxy()).submit())
        assert result.message == "Please select a collection before creating a draft."


# =====================================================================
# Browsing and editing
# =====================================================================


class TestSessionActions:
    def test_load_collection_reports_manual_fields(self):
        proxy = FakeProxy()
        engine = DraftReconciler(proxy)

        result = asyncio.run(engine.load_collection("blog-col"))

        assert result.ok
        assert result.level == "warning"
        assert "must be completed manually after draft creation: Gallery" in result.message
        assert engine.session.reference_selection["categories"] == ["cat-1"]

    def test_load_collection_failure(self):
        proxy = FakeProxy()

        async def missing(collection_id):
            raise ProxyError("Collection not found", 404)

        proxy.get_collection_details = missing
        result = asyncio.run(DraftReconciler(proxy).load_collection("nope"))
        assert not result.ok
        assert result.message == "Collection not found"

    def test_numeric_schema_values_do_not_break_loading(self):
        proxy = FakeProxy(details={"id": "c", "displayName": 2024, "fields": [{"slug": 5, "type": "Number"}]})
        engine = DraftReconciler(proxy)

        result = asyncio.run(engine.load_collection("c"))

        assert result.ok
        assert engine.session.collection.display_name == "2024"
        assert [f.slug for f in engine.session.fields] == ["5"]

    @pytest.mark.parametrize(
        "action, collaborator, flag",
        [
            ("fetch_sites", "list_sites", "sites"),
            ("fetch_collections", "list_collections", "collections"),
            ("load_collection", "get_collection_details", "fields"),
        ],
    )
    def test_unexpected_errors_become_error_results(self, action, collaborator, flag):
        proxy = FakeProxy()

        async def broken(*args):
            raise RuntimeError("malformed response")

        setattr(proxy, collaborator, broken)
        engine = DraftReconciler(proxy)
        args = () if action == "fetch_sites" else ("x",)

        result = asyncio.run(getattr(engine, action)(*args))

        assert not result.ok
        assert result.level == "error"
        assert "malformed response" in result.message
        assert not engine.session.is_busy(flag)

    def test_unexpected_preview_and_submit_errors_are_contained(self):
        proxy = FakeProxy()
        engine = _loaded_engine(proxy)
        engine.set_field_value("name", "Hello")

        async def broken(*args):
            raise TypeError("bad payload")

        proxy.list_collection_items = broken
        proxy.create_draft_item = broken

        preview = asyncio.run(engine.fetch_collection_items())
        assert (preview.ok, preview.level, preview.message) == (False, "error", "Unable to load collection items.")

        submitted = asyncio.run(engine.submit())
        assert (submitted.ok, submitted.level) == (False, "error")
        assert submitted.message == "Draft creation failed: bad payload"

    def test_sites_and_collections(self):
        engine = DraftReconciler(FakeProxy())
        assert asyncio.run(engine.fetch_sites()).ok
        result = asyncio.run(engine.fetch_collections("site-1"))
        assert result.ok
        assert engine.session.site_id == "site-1"
        assert engine.session.collections[0]["id"] == "blog-col"

    def test_collection_items_preview_is_capped(self):
        engine = _loaded_engine(FakeProxy())
        result = asyncio.run(engine.fetch_collection_items())
        assert result.message == "Showing 10 of 12 item(s)."
        assert len(engine.session.preview_items) == 10

    def test_set_field_value(self):
        engine = _loaded_engine(FakeProxy())
        assert engine.set_field_value("featured", "yes").ok
        assert engine.session.draft_values["featured"] is True

        engine.set_field_value("categories", "cat-2,cat-1")
        assert engine.session.reference_display["categories"] == "Tips (cat-2), News (cat-1)"

        assert not engine.set_field_value("gallery", "x").ok

    def test_select_reference_rejects_non_reference(self):
        engine = _loaded_engine(FakeProxy())
        assert not engine.select_reference("name", "item-42").ok

    def test_clear_restores_default_picks(self):
        engine = _loaded_engine(FakeProxy(content='{"name": "Post"}'))
        engine.select_reference("author", "item-99")
        asyncio.run(engine.generate("bees"))

        result = engine.clear()

        assert result.message == "Cleared the current draft."
        assert engine.session.raw_ai_content == ""
        assert engine.session.last_keyword == ""
        assert engine.session.reference_selection["author"] == "item-42"
        assert engine.session.draft_values == {"author": "item-42", "categories": "cat-1"}

    def test_reset_keeps_picks(self):
        engine = _loaded_engine(FakeProxy(content='{"name": "Post"}'))
        engine.select_reference("author", "item-99")
        asyncio.run(engine.generate("bees"))

        result = engine.reset_fields()

        assert result.message == "Draft editor reset. Generate again to repopulate."
        assert engine.session.draft_values == {}
        assert engine.session.reference_selection["author"] == "item-99"
        assert engine.session.last_keyword == "bees"
        assert engine.raw_output() == "No AI output available yet."

    @pytest.mark.parametrize("content", ['{"name": "Post"}', "plain words"])
    def test_raw_output_prefers_model_text(self, content):
        engine = _loaded_engine(FakeProxy(content=content))
        asyncio.run(engine.generate("bees"))
        assert engine.raw_output() == content
