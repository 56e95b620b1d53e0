"""
Filename utilities for safe, deterministic storage path generation.

All object keys are built here so that the draft and order namespaces stay
exclusive to their owner:

    tmp/<draftId>/[<itemId>/]<millis>-<safe name>      (pending uploads)
    orders/<orderNo>/order.json                        (order record)
    orders/<orderNo>/notification.json                 (notification audit)
    orders/<orderNo>/files/[<itemId>/]<millis>-<name>  (finalized files)
"""
import posixpath
import re
import time
from typing import Optional

from constants import DRAFTS_PREFIX, ORDERS_PREFIX, ORDER_RECORD_NAME, NOTIFICATION_RECORD_NAME

MAX_FILENAME_LENGTH = 120

_UNSAFE_CHARS = re.compile(r'[^a-z0-9._-]+')
_SAFE_SEGMENT = re.compile(r'^[A-Za-z0-9_-]{1,64}$')


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Lowercase, replace every run of characters outside [a-z0-9._-] with "-",
    and truncate to max_length.

    Directory components are dropped first, so "../../x.pdf" becomes "x.pdf".
    """
    if not name:
        return "file"

    s = str(name).replace("\\", "/")
    s = posixpath.basename(s).lower()
    s = _UNSAFE_CHARS.sub('-', s)

    # Hidden files / "." / ".." are not allowed as a basename
    s = s.lstrip('.')

    if len(s) > max_length:
        s = s[:max_length]

    return s if s.strip('-') else "file"


def is_safe_segment(value: Optional[str]) -> bool:
    """Draft ids, item ids and order numbers used as a single path segment."""
    return bool(value) and bool(_SAFE_SEGMENT.match(value))


def draft_prefix(draft_id: str) -> str:
    return f"{DRAFTS_PREFIX}/{draft_id}/"


def order_prefix(order_no: str) -> str:
    return f"{ORDERS_PREFIX}/{order_no}/"


def draft_upload_path(draft_id: str, filename: str, item_id: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    """
    Collision-resistant temp path. The millisecond stamp keeps two uploads of
    the same name (e.g. per-item "front.pdf") apart.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    safe = sanitize_filename(filename)
    if item_id:
        return f"{DRAFTS_PREFIX}/{draft_id}/{item_id}/{stamp}-{safe}"
    return f"{DRAFTS_PREFIX}/{draft_id}/{stamp}-{safe}"


def finalized_path(order_no: str, draft_path: str) -> str:
    """
    tmp/<draftId>/<itemId>/<name> -> orders/<orderNo>/files/<itemId>/<name>.

    Anything below the draft id is kept, so item folders and the upload
    stamp survive the move.
    """
    parts = draft_path.split("/", 2)
    rest = parts[2] if len(parts) == 3 else sanitize_filename(draft_path)
    return f"{ORDERS_PREFIX}/{order_no}/files/{rest}"


def order_direct_upload_path(order_no: str, filename: str, item_id: Optional[str] = None) -> str:
    """Upload straight into the order namespace (pre-allocated order number)."""
    folder = item_id or "files"
    return f"{ORDERS_PREFIX}/{order_no}/{folder}/{sanitize_filename(filename)}"


def order_record_path(order_no: str) -> str:
    return f"{ORDERS_PREFIX}/{order_no}/{ORDER_RECORD_NAME}"


def notification_record_path(order_no: str) -> str:
    return f"{ORDERS_PREFIX}/{order_no}/{NOTIFICATION_RECORD_NAME}"


def draft_id_from_path(path: str) -> Optional[str]:
    """'tmp/<draftId>/...' -> draftId, or None for paths outside the draft namespace."""
    parts = (path or "").split("/")
    if len(parts) >= 3 and parts[0] == DRAFTS_PREFIX and parts[1]:
        return parts[1]
    return None
