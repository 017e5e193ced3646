"""
Text helpers for retrieval and tool output: keyword extraction, snippets,
code-fence stripping, and budget truncation.
"""

import re

from lms_agent.core.config import MIN_KEYWORD_LENGTH, SNIPPET_FALLBACK_LENGTH, SNIPPET_RADIUS

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def extract_keywords(text: str, min_length: int = MIN_KEYWORD_LENGTH) -> list[str]:
    """
    Lower-case whitespace tokens of at least `min_length` characters, in order,
    without duplicates. No stemming, no punctuation stripping.
    """
    seen: set[str] = set()
    keywords: list[str] = []
    for token in (text or "").lower().split():
        if len(token) < min_length or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


def make_snippet(body: str, query: str, radius: int = SNIPPET_RADIUS) -> str:
    """
    Excerpt of `body` around the first case-insensitive occurrence of `query`,
    with "..." marking truncation on either side. Falls back to the opening
    characters when the query does not occur.
    """
    idx = body.lower().find(query.lower()) if query else -1
    if idx < 0:
        snippet = body[:SNIPPET_FALLBACK_LENGTH]
        return snippet + "..." if len(body) > SNIPPET_FALLBACK_LENGTH else snippet
    start = max(0, idx - radius)
    end = min(len(body), idx + len(query) + radius)
    snippet = body[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(body):
        snippet = snippet + "..."
    return snippet


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ``` / ```json fence from model output, if present."""
    out = (text or "").strip()
    if not out.startswith("```"):
        return out
    out = _FENCE_OPEN.sub("", out, count=1)
    out = _FENCE_CLOSE.sub("", out, count=1)
    return out.strip()


def truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)].rstrip() + "..."
