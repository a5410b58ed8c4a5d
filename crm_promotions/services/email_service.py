import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Literal

from crm_promotions.core.config import settings
from crm_promotions.core.observability import log_event

logger = logging.getLogger("crm_promotions.email")

EmailDeliveryStatus = Literal["sent", "not_configured", "failed"]


@dataclass(frozen=True)
class EmailDeliveryResult:
    status: EmailDeliveryStatus
    detail: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "sent"


def _smtp_configured() -> bool:
    return bool(settings.smtp_host and settings.smtp_sender_email)


def _build_message(*, to_address: str, subject: str, html: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.smtp_sender_email or "no-reply@localhost"
    message["To"] = to_address
    if settings.smtp_reply_to_email:
        message["Reply-To"] = settings.smtp_reply_to_email
    message.set_content("This message requires an HTML capable email client.")
    message.add_alternative(html, subtype="html")
    return message


def _open_smtp() -> smtplib.SMTP:
    if settings.smtp_use_ssl:
        return smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds)
    server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds)
    if settings.smtp_use_starttls:
        try:
            server.starttls()
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
    return server


def send_custom_email(to_address: str, subject: str, html: str) -> EmailDeliveryResult:
    if settings.email_transport == "log":
        log_event(logger, logging.INFO, "email_logged", to=to_address, subject=subject, html_length=len(html))
        return EmailDeliveryResult(status="sent", detail="logged")

    if not _smtp_configured():
        return EmailDeliveryResult(
            status="not_configured",
            detail="SMTP not configured",
        )

    message = _build_message(to_address=to_address, subject=subject, html=html)

    try:
        with _open_smtp() as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password or "")
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        log_event(logger, logging.WARNING, "email_send_failed", to=to_address, error=str(exc))
        return EmailDeliveryResult(status="failed", detail=str(exc))

    return EmailDeliveryResult(status="sent", detail=None)
