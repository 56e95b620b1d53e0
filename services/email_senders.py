"""
Outbound email transports.

Capability contract: send(message) -> provider message id, or raise
NotifyError. Senders never decide whether a failure matters; the
notification dispatcher does.
"""
import logging
import smtplib
import ssl
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List

import requests

from errors import NotifyError
from utils.redaction import redact_email

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class EmailMessage:
    sender: str
    to: List[str]
    subject: str
    text: str
    reply_to: List[str] = field(default_factory=list)


class EmailSender(ABC):
    name = "base"

    # False for transports that drop mail on purpose (no provider configured)
    delivers = True

    @abstractmethod
    def send(self, message: EmailMessage) -> str:
        """Send the message and return the provider's message id."""


class SMTPEmailSender(EmailSender):
    name = "smtp"

    def __init__(self, host, port=587, user="", password="", use_tls=True, timeout=10):
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message):
        msg = MIMEMultipart()
        msg["From"] = message.sender
        msg["To"] = ", ".join(message.to)
        msg["Subject"] = message.subject
        if message.reply_to:
            msg["Reply-To"] = ", ".join(message.reply_to)
        message_id = f"<{uuid.uuid4().hex}@{message.sender.split('@')[-1] or 'localhost'}>"
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(message.text, "plain", "utf-8"))

        try:
            if self.port == 465:
                logger.info(f"[Notifications] Attempting SMTP_SSL connection to {self.host}:{self.port}...")
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    if self.user:
                        server.login(self.user, self.password)
                    server.send_message(msg)
            else:
                logger.info(f"[Notifications] Attempting SMTP (STARTTLS) connection to {self.host}:{self.port}...")
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    if self.use_tls:
                        server.starttls()
                    if self.user:
                        server.login(self.user, self.password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifyError(f"SMTP send failed ({type(e).__name__}): {e}") from e

        return message_id


class ResendEmailSender(EmailSender):
    name = "resend"

    def __init__(self, api_key, timeout=10, api_url=RESEND_API_URL, session=None):
        self.api_key = api_key
        self.timeout = timeout
        self.api_url = api_url
        self.session = session or requests.Session()

    def send(self, message):
        payload = {
            "from": message.sender,
            "to": list(message.to),
            "subject": message.subject,
            "text": message.text,
        }
        if message.reply_to:
            payload["reply_to"] = list(message.reply_to)

        try:
            resp = self.session.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotifyError(f"Resend request failed ({type(e).__name__})") from e

        if resp.status_code == 401 or resp.status_code == 403:
            raise NotifyError("Resend rejected the API key")
        if resp.status_code >= 400:
            raise NotifyError(f"Resend returned HTTP {resp.status_code}: {resp.text[:200]}")

        data = resp.json() if resp.content else {}
        return data.get("id") or ""


class NullEmailSender(EmailSender):
    """No provider configured: every send is reported as skipped."""
    name = "none"
    delivers = False

    def send(self, message):
        logger.warning(
            f"[Notifications] Email provider not configured. Dropping '{message.subject}' "
            f"to {', '.join(redact_email(r) for r in message.to)}"
        )
        return ""


def build_email_sender(settings) -> EmailSender:
    """Pick the transport named by EMAIL_PROVIDER; fall back to the null sender if it is incomplete."""
    provider = settings.email_provider
    if provider == "smtp":
        if not settings.smtp_host:
            logger.warning("[Notifications] EMAIL_PROVIDER=smtp but SMTP_HOST is empty. Emails will be skipped.")
            return NullEmailSender()
        return SMTPEmailSender(
            settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_pass,
            use_tls=settings.smtp_use_tls,
            timeout=settings.email_timeout_seconds,
        )
    if provider == "resend":
        if not settings.resend_api_key:
            logger.warning("[Notifications] EMAIL_PROVIDER=resend but RESEND_API_KEY is empty. Emails will be skipped.")
            return NullEmailSender()
        return ResendEmailSender(settings.resend_api_key, timeout=settings.email_timeout_seconds)
    return NullEmailSender()
