"""
Text heuristics for filling draft fields from raw AI output.

Everything here is a pure function over plain strings. Inputs may be HTML
fragments (rich text from the model) or plain prose; tag lookups go through
BeautifulSoup, whitespace/tag stripping is regex based.
"""

import re

from bs4 import BeautifulSoup

DEFAULT_TITLE = "AI Draft"
DEFAULT_IMAGE_ALT = "Illustration related to the blog post."

SUMMARY_WORD_LIMIT = 30
ALT_WORD_LIMIT = 12
TITLE_MAX_CHARS = 120
SLUG_MAX_CHARS = 64

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]")
_SLUG_RE = re.compile(r"[^a-z0-9]+")
_SLUG_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9-]")
_DASH_RUN_RE = re.compile(r"-+")
# ASCII \w, matching what the CMS accepts in plain-text fields
_UNSAFE_TEXT_RE = re.compile(r"[^\w\s\-.,!?]", re.ASCII)


def strip_html(text: str) -> str:
    """Strip HTML tags and normalize whitespace."""
    text = _TAG_RE.sub(" ", text)
    return _WS_RE.sub(" ", text).strip()


def capitalize_first(text: str) -> str:
    if not text:
        return ""
    return text[0].upper() + text[1:]


def _soup(text: str) -> BeautifulSoup | None:
    # Plain prose never needs a parse (and bs4 warns on URL-looking input)
    if "<" not in text:
        return None
    return BeautifulSoup(text, "lxml")


def infer_title(raw_text: str) -> str:
    """Best-effort title: first <h1>, then first <h2>, then the first sentence."""
    if not raw_text:
        return ""

    soup = _soup(raw_text)
    if soup is not None:
        for tag in ("h1", "h2"):
            heading = soup.find(tag)
            if heading is not None:
                title = strip_html(heading.get_text(" "))
                if title:
                    return title

    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(strip_html(raw_text))]
    sentences = [s for s in sentences if s]
    if sentences:
        return capitalize_first(sentences[0][:TITLE_MAX_CHARS].strip())
    return ""


def summarize_text(raw_text: str, word_limit: int = SUMMARY_WORD_LIMIT) -> str:
    """First ``word_limit`` words of the tag-stripped text, with an ellipsis if cut."""
    words = strip_html(raw_text or "").split()
    if not words:
        return ""
    summary = " ".join(words[:word_limit])
    return f"{summary}…" if len(words) > word_limit else summary


def infer_image_alt(raw_text: str) -> str:
    """Alt text of the first <img> carrying one, else a short summary, else a stock sentence."""
    soup = _soup(raw_text or "")
    if soup is not None:
        for img in soup.find_all("img"):
            alt = img.get("alt")
            if isinstance(alt, str) and alt.strip():
                return alt.strip()

    return summarize_text(raw_text or "", ALT_WORD_LIMIT) or DEFAULT_IMAGE_ALT


def slugify(text: str) -> str:
    """Lowercase, dash-separated, at most 64 characters, no edge dashes."""
    slug = _SLUG_RE.sub("-", (text or "").lower().strip()).strip("-")
    return slug[:SLUG_MAX_CHARS].strip("-")


def sanitize_slug(value: str) -> str:
    """Replace anything outside [a-zA-Z0-9-] and collapse/strip dashes."""
    value = _SLUG_UNSAFE_RE.sub("-", value)
    return _DASH_RUN_RE.sub("-", value).strip("-")


def sanitize_text(value: str) -> str:
    """Drop characters the CMS rejects in short text fields (names, SEO titles)."""
    return _UNSAFE_TEXT_RE.sub("", value).strip()
