"""Helpers for safely logging signed URLs and customer addresses."""

from __future__ import annotations

import re
from urllib.parse import urlparse


def redact_signed_url(url: str) -> str:
    """Return a signed URL with its query string (the signature) removed."""
    raw = (url or "").strip()
    if not raw:
        return "EMPTY_URL"
    try:
        parsed = urlparse(raw)
    except ValueError:
        return "INVALID_URL"
    path = parsed.path
    # Local-storage tokens live in the path
    if path.startswith("/storage/"):
        head = "/storage/upload/" if path.startswith("/storage/upload/") else "/storage/"
        path = f"{head}****"
    suffix = "?****" if parsed.query else ""
    if parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}{path}{suffix}"
    return f"{path}{suffix}"


def redact_email(address: str) -> str:
    """'jane.doe@example.com' -> 'j***@example.com'."""
    raw = (address or "").strip()
    if "@" not in raw:
        return "****" if raw else ""
    local, _, domain = raw.partition("@")
    return f"{local[:1]}***@{domain}"


_URL_RE = re.compile(r"https?://[^\s'\"<>]+")


def redact_urls_in_text(text: str) -> str:
    """Apply redact_signed_url to every http(s) URL found in free text."""
    if not text or "://" not in text:
        return text
    return _URL_RE.sub(lambda m: redact_signed_url(m.group(0)), text)
