"""Read/write helpers for file attachments stored on a response.

Responses carry two attachment columns: ``file_urls`` (JSON list, current)
and ``file_url`` (single URL, legacy). Writers fill both; readers go through
``resolve_urls`` so old rows and new rows look the same.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Optional
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)

FOLDER_LABELS = (
    ("drive.google.com", "Google Drive Folder"),
    ("dropbox.com", "Dropbox Folder"),
)


def validate_file_urls(urls: Any) -> bool:
    """True for a non-empty list of non-blank strings."""
    if not isinstance(urls, list) or not urls:
        return False
    return all(isinstance(u, str) and u.strip() for u in urls)


def encode_file_urls(urls: list[str]) -> tuple[str, str]:
    """Return ``(file_urls_json, legacy_file_url)`` for storage."""
    return json.dumps(urls), urls[0]


def _parse_list(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparsable file_urls value %r, falling back to legacy field", raw[:80])
        return []
    if not isinstance(parsed, list):
        return []
    return [u for u in parsed if isinstance(u, str) and u.strip()]


def resolve_urls(response) -> list[str]:
    """Ordered attachment URLs of a response (or ``[]``).

    Prefers the JSON list; falls back to the legacy single URL when the
    list is missing, empty or unparsable.

    Args:
        response: Any object with ``file_urls`` / ``file_url`` attributes
            (ORM row or plain object); ``None`` yields ``[]``.

    Returns:
        list[str]: URLs in stored order, blank entries removed.
    """
    if response is None:
        return []
    urls = _parse_list(getattr(response, "file_urls", None))
    if urls:
        return urls
    legacy = getattr(response, "file_url", None)
    if legacy and legacy.strip():
        return [legacy]
    return []


def display_name(url: str, index: int) -> str:
    """Human label for an attachment URL; ``index`` is zero-based."""
    for host, label in FOLDER_LABELS:
        if host in url:
            return label
    try:
        parsed = urlparse(url)
    except ValueError:
        parsed = None
    if parsed is not None and parsed.scheme and parsed.netloc:
        try:
            filename = unquote(parsed.path.rsplit("/", 1)[-1], errors="strict")
        except UnicodeDecodeError:
            filename = ""
        if filename:
            return filename
    return f"Attachment {index + 1}"


def describe(response) -> list[dict]:
    return [{"url": u, "name": display_name(u, i)} for i, u in enumerate(resolve_urls(response))]
