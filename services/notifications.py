"""
Notification Dispatcher.

Formats the plain-text order email (items, totals, bank transfer block and
signed file links) and sends it through the configured EmailSender.

notify() never raises for delivery problems: the order is already durable
when it runs, so the outcome is returned as a NotificationResult that the
submission workflow records next to the order.
"""
import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from constants import NOTIFICATION_SENT, NOTIFICATION_FAILED, NOTIFICATION_SKIPPED
from errors import NotifyError
from models import Order
from services.email_senders import EmailMessage, EmailSender
from utils.redaction import redact_email
from utils.timestamps import utc_now, to_iso, parse_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileLink:
    path: str
    url: str
    item_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or posixpath.basename(self.path)

    def to_dict(self) -> dict:
        return {"path": self.path, "url": self.url}


@dataclass(frozen=True)
class NotificationResult:
    status: str
    recipients: List[str] = field(default_factory=list)
    message_id: Optional[str] = None
    error: Optional[str] = None
    attempted_at: datetime = field(default_factory=utc_now)

    @property
    def ok(self) -> bool:
        return self.status == NOTIFICATION_SENT

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "recipients": list(self.recipients),
            "messageId": self.message_id,
            "error": self.error,
            "attemptedAt": to_iso(self.attempted_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationResult":
        return cls(
            status=data["status"],
            recipients=list(data.get("recipients") or []),
            message_id=data.get("messageId"),
            error=data.get("error"),
            attempted_at=parse_iso(data.get("attemptedAt")) or utc_now(),
        )


def build_recipients(*addresses: Optional[str]) -> List[str]:
    """
    Flatten comma-separated address lists, drop empties and duplicates
    (case-insensitive), keep first-seen order.
    """
    seen = set()
    recipients = []
    for entry in addresses:
        for address in (entry or "").split(","):
            address = address.strip()
            if not address or address.lower() in seen:
                continue
            seen.add(address.lower())
            recipients.append(address)
    return recipients


def build_subject(order_no: str) -> str:
    return f"Order {order_no} — Bank Transfer & Uploads"


def _fmt_number(value) -> str:
    return f"{value:g}" if isinstance(value, float) else str(value)


def _fmt_money(amount: float, currency: str) -> str:
    return f"{currency} {amount:,.2f}"


def format_order_email(order: Order, links: Iterable[FileLink], currency: str = "USD") -> str:
    links = list(links)
    bank = order.payment_instructions
    contact = order.contact

    lines = [f"NEW ORDER: {order.order_no}", ""]

    lines.append("Customer:")
    lines.append(f"  {contact.name}")
    lines.append(f"  {contact.email}" + (f" / {contact.phone}" if contact.phone else ""))
    lines.append("")

    lines.append("Items:")
    for line in order.lines:
        item = line.item
        lines.append(
            f"• {line.product_name} — {_fmt_number(item.width)}{item.unit} × "
            f"{_fmt_number(item.height)}{item.unit} × {item.quantity}"
            f"  ({_fmt_money(line.price.line_total, currency)})"
        )
        extras = item.add_ons.enabled()
        if extras:
            lines.append(f"    add-ons: {', '.join(extras)}")
        for key, value in sorted(item.options.items()):
            lines.append(f"    {key}: {value}")
        item_links = [link for link in links if link.item_id == item.id]
        if item_links:
            for link in item_links:
                lines.append(f"    file: {link.display_name}: {link.url}")
        else:
            lines.append("    file: (no file)")
    lines.append("")

    totals = order.totals
    lines.append("Totals:")
    lines.append(f"  Subtotal: {_fmt_money(totals.subtotal, currency)}")
    lines.append(f"  Discounts: {_fmt_money(totals.discount, currency)}")
    lines.append(f"  Total: {_fmt_money(totals.total, currency)}")
    lines.append("")

    lines.append("Bank Transfer (share with customer):")
    lines.append(f"  Beneficiary: {bank.get('beneficiary', '')}")
    lines.append(f"  Bank: {bank.get('bankName', '')}")
    lines.append(f"  Account: {bank.get('account', '')}")
    lines.append(f"  IBAN: {bank.get('iban', '')}")
    lines.append(f"  SWIFT: {bank.get('swift', '')}")
    lines.append(f"  Currency: {bank.get('currency', currency)}")
    lines.append(f"  Reference: {order.order_no}")
    lines.append("")

    if order.note:
        lines.append("Note:")
        lines.append(f"  {order.note}")
        lines.append("")

    lines.append("Files:")
    if links:
        lines.extend(f"- {link.display_name}: {link.url}" for link in links)
    else:
        lines.append("(no files)")

    return "\n".join(lines) + "\n"


class NotificationDispatcher:
    def __init__(self, sender: EmailSender, from_address: str, operations_address: str = "", currency: str = "USD"):
        self.sender = sender
        self.from_address = from_address
        self.operations_address = operations_address
        self.currency = currency

    def notify(self, order: Order, links: Iterable[FileLink]) -> NotificationResult:
        """Send the order email once. Returns sent / failed / skipped; never raises NotifyError."""
        recipients = build_recipients(self.operations_address, order.contact.email)
        if not recipients:
            logger.warning(f"[Notifications] No recipients for order {order.order_no}. Skipping email.")
            return NotificationResult(status=NOTIFICATION_SKIPPED, error="no recipients")

        message = self._message(order, links, recipients)
        if not self.sender.delivers:
            self.sender.send(message)
            return NotificationResult(status=NOTIFICATION_SKIPPED, recipients=recipients, error="email provider not configured")

        try:
            message_id = self.sender.send(message)
        except NotifyError as e:
            logger.error(f"[Notifications] Order email for {order.order_no} failed: {e.message}")
            return NotificationResult(status=NOTIFICATION_FAILED, recipients=recipients, error=e.message)

        logger.info(
            f"[Notifications] Order email for {order.order_no} sent via {self.sender.name} "
            f"to {', '.join(redact_email(r) for r in recipients)}"
        )
        return NotificationResult(status=NOTIFICATION_SENT, recipients=recipients, message_id=message_id or None)

    def _message(self, order, links, recipients) -> EmailMessage:
        return EmailMessage(
            sender=self.from_address,
            to=recipients,
            subject=build_subject(order.order_no),
            text=format_order_email(order, links, self.currency),
            reply_to=[order.contact.email] if order.contact.email else [],
        )


def build_dispatcher(settings, sender: EmailSender) -> NotificationDispatcher:
    return NotificationDispatcher(
        sender,
        from_address=settings.orders_email_from,
        operations_address=settings.orders_email_to,
        currency=settings.currency,
    )
