"""
Webflow Data API v2 calls used by the draft proxy.

Responses are returned as decoded JSON, untouched; the proxy forwards them to
the client as-is. A non-2xx reply raises WebflowAPIError with Webflow's own
message so the proxy can relay it with the same status code.
"""

import logging
from typing import Any

import httpx
import orjson

from config import WEBFLOW_API_BASE_URL

logger = logging.getLogger(__name__)


class WebflowAPIError(Exception):
    """Webflow answered with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "accept": "application/json",
        "Content-Type": "application/json",
    }


def _error_message(resp: httpx.Response) -> str:
    try:
        data = orjson.loads(resp.content)
    except orjson.JSONDecodeError:
        data = None
    message = data.get("message") if isinstance(data, dict) else None
    return message if isinstance(message, str) and message else "An API error occurred."


class WebflowClient:
    """Thin async wrapper around the endpoints the draft flow needs."""

    def __init__(self, http: httpx.AsyncClient, token: str, base_url: str = WEBFLOW_API_BASE_URL) -> None:
        self.http = http
        self.token = token
        self.base_url = base_url.rstrip("/")

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        content = orjson.dumps(payload) if payload is not None else None
        resp = await self.http.request(method, url, headers=_headers(self.token), content=content)

        if not resp.is_success:
            message = _error_message(resp)
            logger.warning(f"Webflow {method} {path} -> {resp.status_code}: {message}")
            raise WebflowAPIError(resp.status_code, message)

        if not resp.content:
            return {}
        return orjson.loads(resp.content)

    async def list_sites(self) -> Any:
        return await self._request("GET", "/sites")

    async def list_collections(self, site_id: str) -> Any:
        return await self._request("GET", f"/sites/{site_id}/collections")

    async def get_collection(self, collection_id: str) -> Any:
        return await self._request("GET", f"/collections/{collection_id}")

    async def list_items(self, collection_id: str) -> Any:
        return await self._request("GET", f"/collections/{collection_id}/items")

    async def create_draft_item(self, collection_id: str, field_data: dict[str, Any]) -> Any:
        """Create a staged item that stays a draft until published from Webflow."""
        logger.info(f"Creating draft item in {collection_id} ({len(field_data)} fields)")
        return await self._request(
            "POST",
            f"/collections/{collection_id}/items",
            {"fieldData": field_data, "isDraft": True},
        )
