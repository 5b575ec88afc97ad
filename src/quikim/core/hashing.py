"""Content normalization and hashing for change detection.

Server-side HTML wrapping, whitespace reflow, and case changes are not
semantic edits, so every comparison goes through ``normalize_for_comparison``
before hashing.
"""

from __future__ import annotations

import hashlib
import re

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_OTHER_ENTITY_RE = re.compile(r"&[a-z]+;", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

EMPTY_HASH = hashlib.sha256(b"").hexdigest()


def strip_html_tags(text: str | None) -> str:
    """Remove HTML tags (and script/style bodies), replacing each with a space."""
    if not text or not isinstance(text, str):
        return ""
    text = _SCRIPT_RE.sub(" ", text)
    text = _STYLE_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    return _OTHER_ENTITY_RE.sub("", text)


def strip_wrapped_quotes(text: str | None) -> str:
    """Strip one layer of surrounding double quotes from double-encoded content."""
    if not text or not isinstance(text, str):
        return ""
    trimmed = text.strip()
    if len(trimmed) >= 2 and trimmed.startswith('"') and trimmed.endswith('"'):
        return trimmed[1:-1]
    return text


def collapse_whitespace(text: str | None) -> str:
    """Collapse whitespace runs to single spaces and trim both ends."""
    if not text or not isinstance(text, str):
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_for_comparison(text: str | None) -> str:
    """Strip tags, collapse whitespace, and lowercase."""
    if not text or not isinstance(text, str):
        return ""
    return collapse_whitespace(strip_html_tags(text)).lower()


def compute_content_hash(text: str | None) -> str:
    """Return the SHA-256 hex digest of the normalized text.

    Empty or missing content hashes to ``EMPTY_HASH`` rather than raising.
    """
    normalized = normalize_for_comparison(text)
    if not normalized:
        return EMPTY_HASH
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def has_content_changed(local: str | None, remote: str | None) -> bool:
    """Return ``True`` if the two contents differ after normalization."""
    return compute_content_hash(local) != compute_content_hash(remote)
