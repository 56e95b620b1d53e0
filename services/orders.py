"""
Order Record Service.

Order numbers and the durable JSON records kept under orders/<orderNo>/:

- order.json         the committed Order snapshot. Written once, never rewritten.
- notification.json  the latest notification outcome (sent / failed / skipped).

CANONICAL: This is the only module that reads or writes these keys.
"""
import json
import logging
import re
import secrets
from datetime import datetime
from typing import Optional

from constants import ORDER_NO_SUFFIX_ALPHABET, ORDER_NO_SUFFIX_LENGTH, ORDER_NO_MAX_ATTEMPTS
from errors import StorageFinalizeError
from models import Order
from services.notifications import NotificationResult
from utils.filenames import order_record_path, notification_record_path
from utils.storage import StorageBackendError
from utils.timestamps import date_stamp

logger = logging.getLogger(__name__)

ORDER_NO_PATTERN = re.compile(r'^[A-Z0-9]{1,12}-\d{8}-[A-Z0-9]{4}$')


def generate_order_no(prefix: str = "LIV", now: Optional[datetime] = None) -> str:
    """<PREFIX>-<YYYYMMDD>-<4 random chars>, e.g. LIV-20250114-7QX2."""
    suffix = "".join(secrets.choice(ORDER_NO_SUFFIX_ALPHABET) for _ in range(ORDER_NO_SUFFIX_LENGTH))
    return f"{prefix}-{date_stamp(now)}-{suffix}"


def is_valid_order_no(value: Optional[str]) -> bool:
    return bool(value) and bool(ORDER_NO_PATTERN.match(value))


def order_exists(storage, order_no: str) -> bool:
    try:
        return storage.exists(order_record_path(order_no))
    except StorageBackendError as e:
        raise StorageFinalizeError("Could not check existing orders.") from e


def allocate_order_no(
    storage,
    prefix: str = "LIV",
    *,
    now: Optional[datetime] = None,
    max_tries: int = ORDER_NO_MAX_ATTEMPTS,
    _candidate_fn=None  # For testing: allows injecting deterministic candidates
) -> str:
    """
    Generate an order number with no existing order record.

    The random suffix alone makes collisions unlikely; the existence check
    turns "unlikely" into "detected and regenerated". Two concurrent
    submissions drawing the same number in the same instant are still
    possible (no conditional write), which is accepted at this volume.
    """
    for attempt in range(max_tries):
        if _candidate_fn:
            candidate = _candidate_fn(attempt)
        else:
            candidate = generate_order_no(prefix, now)

        if not order_exists(storage, candidate):
            return candidate

        logger.warning(f"[Orders] Order number collision on {candidate} (attempt {attempt + 1}/{max_tries})")

    raise StorageFinalizeError(f"Could not allocate a unique order number after {max_tries} attempts.")


def _write_json(storage, key: str, payload: dict) -> None:
    body = json.dumps(payload, indent=2, sort_keys=True).encode("utf-8")
    storage.put_file(body, key, content_type="application/json")


def _read_json(storage, key: str) -> Optional[dict]:
    if not storage.exists(key):
        return None
    return json.loads(storage.get_file(key).read().decode("utf-8"))


def persist_order(storage, order: Order) -> bool:
    """
    Write orders/<orderNo>/order.json unless it already exists.

    Returns True when this call wrote the record, False when an earlier
    attempt already had (the stored record wins; it is never overwritten).
    """
    key = order_record_path(order.order_no)
    try:
        if storage.exists(key):
            logger.info(f"[Orders] Record for {order.order_no} already persisted; keeping it.")
            return False
        _write_json(storage, key, order.to_record())
    except StorageBackendError as e:
        logger.error(f"[Orders] Persisting {order.order_no} failed: {e}")
        raise StorageFinalizeError("Could not save the order record.") from e

    logger.info(f"[Orders] Persisted order {order.order_no} ({len(order.lines)} item(s), {len(order.files)} file(s))")
    return True


def load_order(storage, order_no: str) -> Optional[Order]:
    try:
        record = _read_json(storage, order_record_path(order_no))
    except StorageBackendError as e:
        raise StorageFinalizeError("Could not read the order record.") from e
    return Order.from_record(record) if record is not None else None


def record_notification(storage, order_no: str, result: NotificationResult) -> bool:
    """
    Store the notification outcome. Failures here are logged and reported
    as False; the order itself is already durable.
    """
    try:
        _write_json(storage, notification_record_path(order_no), result.to_dict())
        return True
    except StorageBackendError as e:
        logger.error(f"[Orders] Could not record notification status for {order_no}: {e}")
        return False


def load_notification(storage, order_no: str) -> Optional[NotificationResult]:
    try:
        record = _read_json(storage, notification_record_path(order_no))
    except StorageBackendError as e:
        logger.warning(f"[Orders] Could not read notification status for {order_no}: {e}")
        return None
    return NotificationResult.from_dict(record) if record is not None else None
