"""
Content generation providers for the draft proxy.

Builds one prompt from the keyword and the collection's field metadata, then
sends it to OpenAI (Responses API, through the openai SDK) or Gemini
(generateContent, plain httpx) depending on a "provider:model" selection string.
"""

import asyncio
import logging
from typing import Any

import httpx
import openai
import orjson
from openai import AsyncOpenAI

from config import (
    GEMINI_API_BASE_URL,
    GEMINI_TIMEOUT_S,
    OPENAI_API_BASE_URL,
    RATE_LIMIT_BASE_DELAY_S,
    RATE_LIMIT_MAX_RETRIES,
    SERVER_DEFAULT_MODEL,
)

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

GEMINI_MODEL_ALIASES = {
    "gemini-2.5-flash-latest": "gemini-2.5-flash",
    "gemini-2.5-pro-latest": "gemini-2.5-pro",
    "gemini-1.5-flash-latest": "gemini-1.5-flash",
    "gemini-1.5-pro-latest": "gemini-1.5-pro",
    "gemini-pro-latest": "gemini-pro",
}

# Per-type instruction, keyed by the lowercased Webflow field type
FIELD_INSTRUCTIONS = {
    "plaintext": "Provide concise text.",
    "slug": 'Generate a lowercase, hyphen-separated URL slug based on the "name" field.',
    "richtext": (
        "Return rich, well-structured HTML. Include headings (h2, h3), paragraphs (p), lists (ul, ol), "
        "and embed at least one relevant, royalty-free image using an <img> tag with a direct HTTPS URL "
        "in the src attribute."
    ),
    "image": (
        "Return a direct HTTPS URL to a relevant, high-quality, royalty-free image from Pexels, Pixabay, "
        "or Wikimedia Commons. Ensure the URL is accessible and returns a valid image."
    ),
    "switch": "Return true or false.",
    "boolean": "Return true or false.",
    "reference": "Return a related item identifier as a string.",
    "number": "Return a numeric value.",
    "date": "Return an ISO 8601 date string.",
}
DEFAULT_INSTRUCTION = "Provide suitable content."

IMAGE_SOURCE_GUIDANCE = [
    "IMPORTANT FOR IMAGES: Use reliable, accessible free image sources. Prefer these sources in order:",
    "1. Pexels (https://images.pexels.com/photos/) - Use direct image URLs like: "
    "https://images.pexels.com/photos/1234567/pexels-photo-1234567.jpeg",
    "2. Pixabay (https://pixabay.com/photos/) - Use direct image URLs",
    "3. Wikimedia Commons (https://commons.wikimedia.org/) - Use direct image URLs",
    "4. Unsplash (https://images.unsplash.com/) - Only if other sources fail, use direct URLs like: "
    "https://images.unsplash.com/photo-1234567890-abcdef",
    "AVOID: Complex Unsplash URLs with parameters, broken links, or placeholder images.",
]


class ProviderError(Exception):
    """Generation failed; the message is relayed to the client as-is."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


# ---------------------------------------------------------------------------
# Model selection
# ---------------------------------------------------------------------------


def parse_model_selection(selection: str | None) -> tuple[str, str]:
    """Split "provider:model". No colon means an OpenAI model name."""
    selection = selection or SERVER_DEFAULT_MODEL
    if ":" not in selection:
        return DEFAULT_PROVIDER, selection
    provider, model = selection.split(":", 1)
    return provider or DEFAULT_PROVIDER, model or DEFAULT_OPENAI_MODEL


def resolve_gemini_model(model: str) -> str:
    return GEMINI_MODEL_ALIASES.get(model, model)


def is_rate_limit_message(message: str) -> bool:
    return "rate limit" in message or "Rate limit" in message


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def build_generation_prompt(keyword: str, fields: list[Any]) -> str:
    lines = [
        "You are an assistant that generates draft content for a Webflow CMS collection.",
        f"Use the keyword: {keyword}.",
        "Return only valid JSON with keys that exactly match the provided field slugs. "
        "Do not wrap the JSON in quotes or code fences.",
        "For each field, follow the instructions below:",
        "",
        *IMAGE_SOURCE_GUIDANCE,
        "",
    ]

    for field in fields:
        if not isinstance(field, dict):
            continue
        slug = field.get("slug") or "unknown"
        field_type = str(field.get("type") or "unknown").lower()
        required = "Required" if field.get("required") else "Optional"
        instruction = FIELD_INSTRUCTIONS.get(field_type, DEFAULT_INSTRUCTION)
        lines.append(f"- Slug: {slug} ({required}, type: {field_type}) - {instruction}")

    lines.append('Example JSON format: {"slug-name": "value"}')
    lines.append("Do not include any commentary or extra keys.")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


def make_openai_client(http: httpx.AsyncClient, api_key: str) -> AsyncOpenAI:
    """SDK client riding on the proxy's shared httpx client; retries are ours."""
    return AsyncOpenAI(api_key=api_key, base_url=OPENAI_API_BASE_URL, http_client=http, max_retries=0)


def _openai_error_message(e: openai.APIStatusError) -> str:
    body = e.body if isinstance(e.body, dict) else {}
    message = body.get("message")
    if isinstance(message, str) and message:
        return message
    if e.status_code == 429:
        return "OpenAI rate limit exceeded."
    return f"OpenAI request failed with status {e.status_code}"


async def generate_openai(http: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str:
    """Responses API call, retried with exponential backoff while rate limited."""
    client = make_openai_client(http, api_key)
    for attempt in range(RATE_LIMIT_MAX_RETRIES):
        try:
            response = await client.responses.create(model=model, input=prompt)
            return response.output_text or ""
        except openai.APIStatusError as e:
            message = _openai_error_message(e)
            rate_limited = isinstance(e, openai.RateLimitError) or is_rate_limit_message(message)
            if rate_limited and attempt < RATE_LIMIT_MAX_RETRIES - 1:
                delay = RATE_LIMIT_BASE_DELAY_S * 2**attempt
                logger.warning(f"OpenAI rate limited (attempt {attempt + 1}), retrying in {delay:.0f}s")
                await asyncio.sleep(delay)
                continue
            raise ProviderError(message, status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"OpenAI request failed: {e}", status_code=502) from e
    return ""


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


async def generate_gemini(http: httpx.AsyncClient, api_key: str, model: str, prompt: str) -> str:
    resolved = resolve_gemini_model(model)
    url = f"{GEMINI_API_BASE_URL.rstrip('/')}/v1beta/models/{resolved}:generateContent"
    body = {"contents": [{"parts": [{"text": prompt}]}]}

    try:
        resp = await http.post(
            url,
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            content=orjson.dumps(body),
            timeout=GEMINI_TIMEOUT_S,
        )
    except httpx.HTTPError as e:
        raise ProviderError(f"Gemini request failed: {e}") from e

    try:
        payload = orjson.loads(resp.content)
    except orjson.JSONDecodeError:
        payload = {}

    if isinstance(payload, dict) and payload.get("error"):
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else None
        raise ProviderError(f"Gemini API error: {message or 'Unknown Gemini API error.'}")
    if not resp.is_success:
        raise ProviderError(f"Gemini request failed: status {resp.status_code}")

    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = ""
    if not isinstance(text, str) or not text.strip():
        raise ProviderError("Gemini API returned an unexpected response.")
    return text


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def generate_content(
    http: httpx.AsyncClient,
    keyword: str | None,
    fields: list[Any],
    model_selection: str | None,
    openai_api_key: str | None,
    gemini_api_key: str | None,
) -> str:
    if not keyword or not keyword.strip():
        raise ProviderError("Prompt is required to generate blog content.")

    provider, model = parse_model_selection(model_selection)
    prompt = build_generation_prompt(keyword, fields)
    logger.info(f"Generating with {provider}:{model} ({len(fields)} fields)")

    if provider == "openai":
        if not openai_api_key:
            raise ProviderError("Missing server-side OpenAI API key.")
        return await generate_openai(http, openai_api_key, model, prompt)
    if provider == "gemini":
        if not gemini_api_key:
            raise ProviderError("Missing server-side Gemini API key.")
        return await generate_gemini(http, gemini_api_key, model, prompt)
    raise ProviderError("Unsupported AI provider selected.")
