from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.message import EmailMessage
import logging
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, select_autoescape

from remindly.config import get_settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10.0

_template_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).resolve().parents[1] / "templates" / "email")),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class EmailSendResult:
    success: bool
    error: str | None = None


def render_email_template(name: str, **context: object) -> str:
    return _template_env.get_template(name).render(**context)


def _build_message(*, sender: str, to: str, subject: str, html: str) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(html, subtype="html")
    return message


async def _deliver(message: EmailMessage) -> None:
    settings = get_settings()
    # Port 465 speaks implicit TLS; everything else upgrades with STARTTLS.
    implicit_tls = settings.smtp_port == 465
    await aiosmtplib.send(
        message,
        hostname=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_user,
        password=settings.smtp_pass,
        use_tls=implicit_tls,
        start_tls=not implicit_tls,
        timeout=SMTP_TIMEOUT_SECONDS,
    )


def send_email(*, to: str, subject: str, html: str) -> EmailSendResult:
    settings = get_settings()
    if not settings.smtp_user or not settings.smtp_pass:
        logger.warning("SMTP credentials not configured; email to %s not sent", to)
        return EmailSendResult(success=False, error="SMTP is not configured.")

    try:
        message = _build_message(sender=settings.email_from, to=to, subject=subject, html=html)
    except ValueError as exc:
        logger.error("Email not built to=%s subject=%r: %s", to, subject, exc)
        return EmailSendResult(success=False, error=str(exc))
    try:
        asyncio.run(_deliver(message))
    except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
        logger.error("Email send failed to=%s subject=%r: %s", to, subject, exc)
        return EmailSendResult(success=False, error=str(exc) or exc.__class__.__name__)
    logger.info("Email sent to=%s subject=%r", to, subject)
    return EmailSendResult(success=True)
