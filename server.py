"""
FastAPI draft proxy.

One POST-only JSON endpoint, POST /api, dispatching on an ``action`` field:
- list-sites / list-collections / collection-details
- list-reference-items / list-collection-items
- generate-blog  -> OpenAI or Gemini, returns {"content": str}
- create-draft   -> Webflow create-item with isDraft=true

Every failure is a {"message": ...} body; the client shows it verbatim.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

import providers
from config import (
    CORS_ORIGINS,
    GEMINI_API_KEY,
    HTTP_TIMEOUT_S,
    OPENAI_API_KEY,
    SERVER_DEFAULT_MODEL,
    WEBFLOW_API_TOKEN,
)
from providers import ProviderError
from webflow import WebflowAPIError, WebflowClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------


class ProxyRequest(BaseModel):
    """Body of every proxy call. Only ``action`` selects behaviour."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str | None = None
    api_key: str | None = Field(default=None, alias="apiKey")
    site_id: str | None = Field(default=None, alias="siteId")
    collection_id: str | None = Field(default=None, alias="collectionId")
    target_collection_id: str | None = Field(default=None, alias="targetCollectionId")
    # Field metadata list for generate-blog, fieldData mapping for create-draft
    fields: Any = None
    prompt: str | None = None
    model: str = SERVER_DEFAULT_MODEL


class ProxyRequestError(ValueError):
    """The request itself is unusable (400)."""


def make_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=HTTP_TIMEOUT_S)


# ---------------------------------------------------------------------------
# Action handlers
# ---------------------------------------------------------------------------

ActionHandler = Callable[[ProxyRequest, WebflowClient, httpx.AsyncClient], Awaitable[Any]]


def _require(value: str | None, message: str) -> str:
    if not value:
        raise ProxyRequestError(message)
    return value


async def _list_sites(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    return await webflow.list_sites()


async def _list_collections(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    site_id = _require(req.site_id, "siteId is required to list collections.")
    return await webflow.list_collections(site_id)


async def _collection_details(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    collection_id = _require(req.collection_id, "collectionId is required to fetch details.")
    return await webflow.get_collection(collection_id)


async def _list_reference_items(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    collection_id = _require(req.collection_id, "collectionId is required to list reference items.")
    return await webflow.list_items(collection_id)


async def _list_collection_items(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    collection_id = _require(req.collection_id, "collectionId is required to list items.")
    return await webflow.list_items(collection_id)


async def _generate_blog(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    fields = req.fields if isinstance(req.fields, list) else []
    content = await providers.generate_content(
        http,
        req.prompt,
        fields,
        req.model,
        OPENAI_API_KEY,
        GEMINI_API_KEY,
    )
    return {"content": content}


async def _create_draft(req: ProxyRequest, webflow: WebflowClient, http: httpx.AsyncClient) -> Any:
    collection_id = _require(req.target_collection_id, "collectionId is required to create a draft.")
    field_data = req.fields if isinstance(req.fields, dict) else {}
    return await webflow.create_draft_item(collection_id, field_data)


ACTIONS: dict[str, ActionHandler] = {
    "list-sites": _list_sites,
    "list-collections": _list_collections,
    "collection-details": _collection_details,
    "list-reference-items": _list_reference_items,
    "list-collection-items": _list_collection_items,
    "generate-blog": _generate_blog,
    "create-draft": _create_draft,
}


def _message(status_code: int, message: str) -> ORJSONResponse:
    return ORJSONResponse({"message": message}, status_code=status_code)


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Webflow Draft Proxy",
    default_response_class=ORJSONResponse,
)

app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type"],
    max_age=86400,
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> ORJSONResponse:
    if exc.status_code == 405:
        return _message(405, "Invalid request method.")
    return _message(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    logger.warning(f"Rejected proxy request: {exc.errors()}")
    return _message(400, "Invalid request body.")


@app.exception_handler(WebflowAPIError)
async def webflow_error_handler(request: Request, exc: WebflowAPIError) -> ORJSONResponse:
    return _message(exc.status_code, exc.message)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError) -> ORJSONResponse:
    logger.warning(f"Generation failed: {exc.message}")
    return _message(exc.status_code, exc.message)


@app.exception_handler(ProxyRequestError)
async def proxy_request_error_handler(request: Request, exc: ProxyRequestError) -> ORJSONResponse:
    return _message(400, str(exc))


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@app.post("/api")
async def proxy(body: ProxyRequest):
    """Dispatch one action; errors become {"message"} bodies with a mapped status."""
    token = body.api_key or WEBFLOW_API_TOKEN
    if not token:
        return _message(400, "Access Token is missing.")

    handler = ACTIONS.get(body.action or "")
    if handler is None:
        return _message(400, "Unsupported action.")

    try:
        async with make_http_client() as http:
            return await handler(body, WebflowClient(http, token), http)
    except (WebflowAPIError, ProviderError, ProxyRequestError):
        # mapped by the exception handlers above
        raise
    except httpx.HTTPError as e:
        logger.warning(f"{body.action}: Webflow unreachable: {e}")
        return _message(500, "Network error: Unable to connect to Webflow API.")
    except Exception as e:
        logger.exception(f"{body.action} crashed")
        return _message(500, f"Unexpected error: {e}")
