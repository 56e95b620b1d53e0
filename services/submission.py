"""
Submission Workflow.

The single write path that turns an OrderDraft into a durable, notified
Order:

1. validate        contact + every line item (pricing engine rules); no I/O
2. order number    allocate a fresh one, or reuse the caller's on retry
3. finalize files  through the active UploadCoordinator policy
4. persist         orders/<orderNo>/order.json (write-once)
5. sign links      read URLs for every finalized file
6. notify          email result recorded in orders/<orderNo>/notification.json
7. return          {ok, orderNo, uploaded, files}

Failures before step 4 leave no order behind. Failures after step 4 leave
the order retrievable by its number and are NOT rolled back; retrying with
the same orderNo resumes from the stored record, but only for the same buyer
(contact email) and draft. Submitting the same draft twice without an
orderNo creates two orders; the draft carries no idempotency key.
"""
import copy
import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from constants import DEFAULT_DOWNLOAD_URL_TTL, NOTIFICATION_FAILED
from errors import SigningError, ValidationError
from models import FileRef, Order, OrderLine
from services.catalog import Catalog, DEFAULT_CATALOG
from services.drafts import OrderDraft
from services.notifications import FileLink, NotificationDispatcher, NotificationResult
from services.orders import (
    allocate_order_no, is_valid_order_no, load_notification, load_order, persist_order,
    record_notification,
)
from services.pricing import quote
from services.uploads import UploadCoordinator
from utils.storage import StorageBackendError
from utils.timestamps import utc_now

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass(frozen=True)
class SubmissionResult:
    order: Order
    links: List[FileLink]
    notification: NotificationResult
    resumed: bool = False

    @property
    def order_no(self) -> str:
        return self.order.order_no

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "orderNo": self.order.order_no,
            "uploaded": len(self.order.files),
            "files": [link.to_dict() for link in self.links],
            "notification": self.notification.status,
        }


def validate_draft(draft: OrderDraft, catalog: Catalog):
    """Raise ValidationError for the first problem; return (breakdowns, totals) otherwise."""
    contact = draft.contact
    if not contact.name:
        raise ValidationError("Contact name is required.", code="missing_contact_name")
    if not contact.email:
        raise ValidationError("Contact email is required.", code="missing_contact_email")
    if not _EMAIL_RE.match(contact.email):
        raise ValidationError(f"Invalid contact email: {contact.email!r}", code="invalid_contact_email")
    if not draft.items:
        raise ValidationError("An order needs at least one line item.", code="empty_order")

    for item in draft.items:
        product = catalog.lookup(item.product_code)
        if len(item.attached_files) > product.max_files:
            raise ValidationError(
                f"{product.name} accepts at most {product.max_files} file(s) per line item.",
                code="too_many_files",
            )

    return quote(draft.items, catalog)


def _check_resumable(existing: Order, draft: OrderDraft) -> None:
    """
    A stored order is only resumed by the buyer who placed it: same contact
    email, and the same draft when the record carries one.
    """
    same_email = (existing.contact.email or "").strip().lower() == (draft.contact.email or "").strip().lower()
    same_draft = not existing.draft_id or existing.draft_id == draft.draft_id
    if not (same_email and same_draft):
        logger.warning(
            f"[Submission] Refusing to resume {existing.order_no}: draft does not match the stored order",
            extra={"order_no": existing.order_no, "draft_id": draft.draft_id},
        )
        raise ValidationError(
            f"Order number {existing.order_no} is already taken. Submit without an orderNo to place a new order.",
            code="order_no_taken",
        )


class SubmissionWorkflow:
    def __init__(
        self,
        storage,
        uploads: UploadCoordinator,
        dispatcher: NotificationDispatcher,
        *,
        bank: Optional[dict] = None,
        catalog: Catalog = None,
        order_no_prefix: str = "LIV",
        download_url_ttl: int = DEFAULT_DOWNLOAD_URL_TTL,
    ):
        self.storage = storage
        self.uploads = uploads
        self.dispatcher = dispatcher
        self.bank = dict(bank or {})
        self.catalog = catalog or DEFAULT_CATALOG
        self.order_no_prefix = order_no_prefix
        self.download_url_ttl = download_url_ttl

    def submit(self, draft: OrderDraft, order_no: Optional[str] = None) -> SubmissionResult:
        breakdowns, totals = validate_draft(draft, self.catalog)
        if order_no is not None and not is_valid_order_no(order_no):
            raise ValidationError(f"Invalid orderNo: {order_no!r}", code="invalid_order_no")
        if not order_no and self.uploads.policy == "direct" and draft.file_refs():
            raise ValidationError("orderNo is required when files were uploaded to the order.", code="missing_order_no")

        existing = None
        if order_no:
            existing = load_order(self.storage, order_no)
        else:
            order_no = allocate_order_no(self.storage, self.order_no_prefix)

        if existing is not None:
            _check_resumable(existing, draft)
            logger.info(f"[Submission] Resuming order {order_no} from its stored record", extra={"order_no": order_no})
            order = existing
        else:
            finalized = self.uploads.finalize(order_no, draft.file_refs(), draft_id=draft.draft_id)
            order = self._assemble(draft, order_no, breakdowns, totals, finalized)
            persist_order(self.storage, order)

        links = self._sign_links(order)
        notification = self._notify_once(order, links)

        logger.info(
            f"[Submission] Order {order_no} accepted: {len(order.lines)} item(s), "
            f"{len(order.files)} file(s), notification={notification.status}",
            extra={"order_no": order_no, "draft_id": draft.draft_id},
        )
        return SubmissionResult(order=order, links=links, notification=notification, resumed=existing is not None)

    def _assemble(self, draft, order_no, breakdowns, totals, finalized: List[FileRef]) -> Order:
        # finalize() preserves input order, so pair by position
        moved: Dict[str, FileRef] = {
            before.storage_path: after for before, after in zip(draft.file_refs(), finalized)
        }

        lines = []
        for item, breakdown in zip(draft.items, breakdowns):
            product = self.catalog.lookup(item.product_code)
            snapshot = copy.deepcopy(item)
            snapshot.attached_files = [moved[ref.storage_path] for ref in item.attached_files]
            lines.append(OrderLine(item=snapshot, product_name=product.name, price=breakdown))

        payment = dict(self.bank)
        payment["reference"] = order_no

        return Order(
            order_no=order_no,
            created_at=utc_now(),
            contact=replace(draft.contact),
            lines=lines,
            totals=totals,
            payment_instructions=payment,
            files=list(finalized),
            note=draft.note,
            draft_id=None if draft.generated_id else draft.draft_id,
        )

    def _sign_links(self, order: Order) -> List[FileLink]:
        if not order.files:
            return []
        paths = [ref.storage_path for ref in order.files]
        try:
            signed = self.storage.create_signed_urls(paths, self.download_url_ttl)
        except StorageBackendError as e:
            logger.error(f"[Submission] Signing download links for {order.order_no} failed: {e}")
            raise SigningError(
                f"Order {order.order_no} was saved but download links could not be created. "
                f"Retry with the same order number."
            ) from e

        urls = {entry["path"]: entry["signedUrl"] for entry in signed}
        return [
            FileLink(path=ref.storage_path, url=urls[ref.storage_path], item_id=ref.item_id, name=ref.original_name)
            for ref in order.files
        ]

    def _notify_once(self, order: Order, links: List[FileLink]) -> NotificationResult:
        previous = load_notification(self.storage, order.order_no)
        if previous is not None and previous.ok:
            logger.info(f"[Submission] Order email for {order.order_no} already sent; not re-sending")
            return previous

        try:
            result = self.dispatcher.notify(order, links)
        except Exception as e:
            # The order is durable; nothing in the email path may fail the submission
            logger.exception(f"[Submission] Unexpected notification error for {order.order_no}")
            result = NotificationResult(status=NOTIFICATION_FAILED, error=f"{type(e).__name__}: {e}")

        record_notification(self.storage, order.order_no, result)
        return result


def build_submission_workflow(settings, storage, uploads, dispatcher, catalog=None) -> SubmissionWorkflow:
    return SubmissionWorkflow(
        storage,
        uploads,
        dispatcher,
        bank=settings.bank.to_dict(),
        catalog=catalog,
        order_no_prefix=settings.order_no_prefix,
        download_url_ttl=settings.download_url_ttl,
    )
