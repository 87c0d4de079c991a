"""
Command-line driver for the draft flow.

Walks the same path a user would in the browser: sites -> collections ->
collection fields -> generate a draft -> push it to Webflow as a draft item.
Every step talks to the draft proxy (``serve``) over its POST /api channel.
"""

import argparse
import asyncio
import logging
import sys

import orjson
import uvicorn

from config import DEFAULT_MODEL, LOG_LEVEL, PROXY_URL
from models import is_editable
from proxy_client import ProxyClient
from reconciler import ActionResult, DraftReconciler

_LEVEL_MARKS = {"success": "[ok]", "info": "[..]", "warning": "[!!]", "error": "[xx]"}


def report(result: ActionResult) -> None:
    """Print an action's status line the way the UI would show it."""
    print(f"{_LEVEL_MARKS.get(result.level, '[..]')} {result.message}")


def slug_value_pair(text: str) -> tuple[str, str]:
    slug, sep, value = text.partition("=")
    if not sep or not slug.strip():
        raise argparse.ArgumentTypeError(f"expected slug=value, got '{text}'")
    return slug.strip(), value.strip()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_sites(engine: DraftReconciler, args: argparse.Namespace) -> bool:
    result = await engine.fetch_sites()
    report(result)
    for site in engine.session.sites:
        print(f"  {site.get('id', '')}  {site.get('displayName') or site.get('shortName') or 'Untitled Site'}")
    return result.ok


async def cmd_collections(engine: DraftReconciler, args: argparse.Namespace) -> bool:
    result = await engine.fetch_collections(args.site_id)
    report(result)
    for collection in engine.session.collections:
        name = collection.get("displayName") or collection.get("singularName") or "Untitled Collection"
        print(f"  {collection.get('id', '')}  {name}")
    return result.ok


async def cmd_fields(engine: DraftReconciler, args: argparse.Namespace) -> bool:
    result = await engine.load_collection(args.collection_id)
    report(result)
    if not result.ok:
        return False

    print(f"\n  {'Field':<28} {'Type':<18} {'Required':>8} {'Editable':>9}")
    print(f"  {'-' * 66}")
    for f in engine.session.fields:
        print(f"  {f.label:<28} {f.type:<18} {'yes' if f.required else '-':>8} {'yes' if is_editable(f) else '-':>9}")

    for slug, candidates in engine.session.reference_candidates.items():
        print(f"\n  {slug}: {len(candidates)} candidate(s)")
        for c in candidates[:10]:
            print(f"    {c.id}  {c.display_name}")
    return True


async def cmd_items(engine: DraftReconciler, args: argparse.Namespace) -> bool:
    result = await engine.load_collection(args.collection_id)
    if not result.ok:
        report(result)
        return False
    result = await engine.fetch_collection_items()
    report(result)
    for item in engine.session.preview_items:
        data = item.get("fieldData") or {}
        print(f"  {item.get('id', '')}  {data.get('name') or 'Untitled Item'}")
    return result.ok


async def cmd_draft(engine: DraftReconciler, args: argparse.Namespace) -> bool:
    result = await engine.load_collection(args.collection_id)
    report(result)
    if not result.ok:
        return False

    for slug, value in args.select:
        report(engine.select_reference(slug, value))

    result = await engine.generate(args.keyword, args.model)
    report(result)
    if not result.ok:
        return False

    for slug, value in args.set:
        report(engine.set_field_value(slug, value))

    if args.raw:
        print(engine.raw_output())

    payload = engine.build_payload()
    print(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())

    if not args.create:
        return True

    result = await engine.submit()
    report(result)
    return result.ok


COMMANDS = {
    "sites": cmd_sites,
    "collections": cmd_collections,
    "fields": cmd_fields,
    "items": cmd_items,
    "draft": cmd_draft,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate Webflow CMS drafts with OpenAI or Gemini.")
    parser.add_argument("--proxy-url", default=PROXY_URL, help="Draft proxy endpoint (default: %(default)s)")
    parser.add_argument("--token", default=None, help="Webflow API token; falls back to the proxy's own")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the draft proxy")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("sites", help="List sites the token can see")

    collections = sub.add_parser("collections", help="List a site's CMS collections")
    collections.add_argument("site_id")

    fields = sub.add_parser("fields", help="Show a collection's fields and reference candidates")
    fields.add_argument("collection_id")

    items = sub.add_parser("items", help="Preview existing items of a collection")
    items.add_argument("collection_id")

    draft = sub.add_parser("draft", help="Generate a draft and optionally create it in Webflow")
    draft.add_argument("collection_id")
    draft.add_argument("--keyword", "-k", required=True)
    draft.add_argument("--model", "-m", default=DEFAULT_MODEL, help="provider:model (default: %(default)s)")
    draft.add_argument("--select", action="append", default=[], type=slug_value_pair, metavar="SLUG=ID[,ID]",
                       help="Pick reference item(s) for a reference field")
    draft.add_argument("--set", action="append", default=[], type=slug_value_pair, metavar="SLUG=VALUE",
                       help="Override a generated field value")
    draft.add_argument("--raw", action="store_true", help="Also print the raw model output")
    draft.add_argument("--create", action="store_true", help="Create the draft item in Webflow")
    return parser


async def run(args: argparse.Namespace) -> bool:
    engine = DraftReconciler(ProxyClient(url=args.proxy_url, api_key=args.token))
    return await COMMANDS[args.command](engine, args)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        uvicorn.run("server:app", host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    return 0 if asyncio.run(run(args)) else 1


if __name__ == "__main__":
    sys.exit(main())
