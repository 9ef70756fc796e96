import logging
import smtplib
import time
from email.message import EmailMessage
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks

from . import models
from .config import settings
from .database import SessionLocal
from .logging_utils import log_event, log_warning

SMTP_ATTEMPTS = 3


def _build_message(to_email: str, subject: str, body_text: str, body_html: Optional[str]) -> EmailMessage:
    message = EmailMessage()
    message["From"] = settings.smtp_sender
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message


def _deliver(message: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port or 25, timeout=10) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username:
            server.login(settings.smtp_username, settings.smtp_password or "")
        server.send_message(message)


def send_email_now(
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
    context: Dict[str, Any] | None = None,
) -> bool:
    """Hand a message to SMTP, retrying transient failures. Returns whether it was accepted."""
    context = context or {}
    if not settings.email_enabled:
        log_warning("email_disabled", to=to_email, subject=subject, **context)
        return False
    if not settings.smtp_host or not settings.smtp_sender:
        log_warning("email_smtp_not_configured", to=to_email, subject=subject, **context)
        return False

    message = _build_message(to_email, subject, body_text, body_html)
    for attempt in range(1, SMTP_ATTEMPTS + 1):
        try:
            _deliver(message)
        except (smtplib.SMTPException, OSError) as exc:
            log_warning(
                "email_send_failed_attempt",
                to=to_email,
                attempt=attempt,
                error=str(exc),
                smtp_host=settings.smtp_host,
                **context,
            )
            if attempt < SMTP_ATTEMPTS:
                time.sleep(0.5 * attempt)
            continue
        log_event("email_sent", to=to_email, subject=subject, attempt=attempt, **context)
        return True

    logging.getLogger("bazar").error(
        "Failed to send email after retries",
        extra={"to": to_email, "smtp_host": settings.smtp_host, "smtp_port": settings.smtp_port, **context},
    )
    return False


def render_email_item(item: models.EmailItem) -> str:
    lines = [item.body_preview or ""]
    lines.append("")
    lines.append(f"-- Bazar ({settings.public_base_url.rstrip('/')})")
    return "\n".join(lines)


def dispatch_email_item(email_id: str) -> bool:
    """Send an approved email item and record a ``sent`` event when the SMTP hand-off succeeds."""
    db = SessionLocal()
    try:
        item = db.query(models.EmailItem).filter(models.EmailItem.id == email_id).first()
        if item is None or not item.recipient_email:
            log_warning("email_item_not_dispatchable", email_id=email_id)
            return False
        sent = send_email_now(
            item.recipient_email,
            item.subject or "",
            render_email_item(item),
            context={"email_id": item.id, "template": item.template},
        )
        if sent:
            db.add(models.EmailEvent(email_id=item.id, event_type=models.EmailEventType.sent.value, actor_id=None))
            db.commit()
        return sent
    finally:
        db.close()


def schedule_email_item(background_tasks: BackgroundTasks | None, email_id: str) -> None:
    # Without a request-scoped task runner (scripts, shells) the item is sent inline.
    if background_tasks is None:
        dispatch_email_item(email_id)
        return
    background_tasks.add_task(dispatch_email_item, email_id)
