"""SMTP delivery of verification emails."""
from __future__ import annotations

import random
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Any, Literal

import anyio
from jinja2 import Environment, FileSystemLoader, select_autoescape
from loguru import logger

from certportal.core.config import get_settings
from certportal.core.errors import DeliveryError
from certportal.core.logging import mask_email


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""


class TransientEmailError(EmailSendError):
    """Raised when a transient SMTP error occurs."""


@dataclass(slots=True)
class EmailClient:
    """Asynchronous SMTP client with retry support."""

    host: str
    port: int
    username: str
    password: str
    sender_email: str
    sender_name: str
    encryption: Literal["tls", "ssl"] = "tls"
    timeout: float = 30.0

    async def send_html_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        retries: int = 3,
        backoff_base: float = 1.0,
    ) -> None:
        """Send an HTML email with exponential backoff and jitter."""

        message = self._compose_message(to=to, subject=subject, html_body=html_body)
        attempt = 0
        delay = backoff_base

        while True:
            try:
                await anyio.to_thread.run_sync(self._send_message, message)
                return
            except TransientEmailError as exc:
                if attempt >= retries:
                    raise EmailSendError("Exceeded retry attempts") from exc
                jitter = random.uniform(0, delay / 2)
                await anyio.sleep(delay + jitter)
                delay *= 2
                attempt += 1

    def _compose_message(self, *, to: str, subject: str, html_body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.sender_name, self.sender_email))
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML-capable email client.")
        message.add_alternative(html_body, subtype="html")
        return message

    def _connect(self, context: ssl.SSLContext) -> smtplib.SMTP:
        if self.encryption == "ssl":
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        client = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        client.starttls(context=context)
        return client

    def _send_message(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        try:
            with self._connect(context) as client:
                if self.username:
                    client.login(self.username, self.password)
                refused = client.send_message(message)
                if refused:
                    raise EmailSendError(f"Recipients refused: {refused}")
        except smtplib.SMTPResponseException as exc:
            # 4xx replies are temporary; 5xx are permanent
            if 400 <= exc.smtp_code < 500:
                raise TransientEmailError(str(exc)) from exc
            raise EmailSendError(str(exc)) from exc
        except (
            smtplib.SMTPServerDisconnected,
            smtplib.SMTPConnectError,
            OSError,
        ) as exc:
            raise TransientEmailError(str(exc)) from exc


_template_env = Environment(
    loader=FileSystemLoader(Path(__file__).resolve().parent / "templates"),
    autoescape=select_autoescape(["html", "xml"]),
)


def _render_template(template_name: str, context: dict[str, Any]) -> str:
    template = _template_env.get_template(template_name)
    return template.render(**context)


class OtpMailer:
    """Sends one-time verification codes."""

    subject = "Your BSKI Portal verification code"

    def __init__(self, client: EmailClient | None = None) -> None:
        settings = get_settings()
        self._ttl_minutes = max(1, settings.otp_ttl_seconds // 60)
        self._brand = settings.mail_from_name
        self._client = client or EmailClient(
            host=settings.mail_host,
            port=settings.mail_port,
            username=settings.mail_username,
            password=settings.mail_password.get_secret_value(),
            sender_email=settings.mail_from_address,
            sender_name=settings.mail_from_name,
            encryption=settings.mail_encryption,
        )

    async def send_otp(self, email: str, code: str, display_name: str) -> None:
        """Deliver ``code``; any failure surfaces as :class:`DeliveryError`."""

        html_body = _render_template(
            "otp_verification.html",
            {
                "brand": self._brand,
                "name": display_name,
                "code": code,
                "ttl_minutes": self._ttl_minutes,
                "subject": self.subject,
            },
        )
        log = logger.bind(event="email_otp", recipient=mask_email(email))
        try:
            await self._client.send_html_email(email, self.subject, html_body)
        except EmailSendError as exc:
            log.bind(outcome="failure", reason=str(exc)).error("email_delivery_failed")
            raise DeliveryError() from exc
        log.bind(outcome="success").info("email_delivery_sent")


_mailer: OtpMailer | None = None


def get_otp_mailer() -> OtpMailer:
    """FastAPI dependency returning the process-wide mailer."""

    global _mailer
    if _mailer is None:
        _mailer = OtpMailer()
    return _mailer
