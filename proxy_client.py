"""
Client for the draft proxy's single POST-only JSON channel.

Every collaborator call (Webflow browsing, content generation, draft
creation) is one POST with an ``action`` field. A non-2xx response carries a
``message`` that is surfaced to the user verbatim.
"""

import logging
from typing import Any

import httpx
import orjson

from config import HTTP_TIMEOUT_S, PROXY_URL

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """A collaborator call failed; ``str(err)`` is the user-facing message."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _list_from(data: Any, key: str) -> list[dict[str, Any]]:
    """``data[key]`` when present, the payload itself when it is already a list."""
    if isinstance(data, dict):
        data = data.get(key, data)
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    return []


class ProxyClient:
    def __init__(
        self,
        url: str = PROXY_URL,
        api_key: str | None = None,
        timeout: float = HTTP_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def call(self, action: str, **body: Any) -> Any:
        payload = {"action": action, **{k: v for k, v in body.items() if v is not None}}
        if self.api_key:
            payload["apiKey"] = self.api_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.url,
                    content=orjson.dumps(payload),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"Proxy unreachable for {action}: {e}")
            raise ProxyError(f"Unable to reach the draft proxy: {e}") from e

        data: Any = {}
        if resp.content:
            try:
                data = orjson.loads(resp.content)
            except orjson.JSONDecodeError:
                data = {"message": resp.text}

        if not resp.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, str) or not message:
                message = f"Request failed with status {resp.status_code}"
            raise ProxyError(message, resp.status_code)

        return data

    # ------------------------------------------------------------------
    # Collaborator operations
    # ------------------------------------------------------------------

    async def list_sites(self) -> list[dict[str, Any]]:
        return _list_from(await self.call("list-sites"), "sites")

    async def list_collections(self, site_id: str) -> list[dict[str, Any]]:
        return _list_from(await self.call("list-collections", siteId=site_id), "collections")

    async def get_collection_details(self, collection_id: str) -> dict[str, Any]:
        data = await self.call("collection-details", collectionId=collection_id)
        return data if isinstance(data, dict) else {}

    async def list_reference_items(self, collection_id: str) -> list[dict[str, Any]]:
        data = await self.call("list-reference-items", collectionId=collection_id)
        items = data.get("items") if isinstance(data, dict) else None
        return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []

    async def list_collection_items(self, collection_id: str) -> list[dict[str, Any]]:
        data = await self.call("list-collection-items", collectionId=collection_id)
        items = data.get("items") if isinstance(data, dict) else None
        return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []

    async def generate_content(self, prompt: str, model: str, field_metadata: list[dict[str, Any]]) -> str:
        data = await self.call("generate-blog", prompt=prompt, model=model, fields=field_metadata)
        content = data.get("content") if isinstance(data, dict) else None
        return content if isinstance(content, str) else ""

    async def create_draft_item(self, collection_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        data = await self.call("create-draft", targetCollectionId=collection_id, fields=fields)
        return data if isinstance(data, dict) else {}
