"""Email backend implementations for reward notifications."""

from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import TYPE_CHECKING, List, Optional, Protocol

import httpx
from loguru import logger

if TYPE_CHECKING:
    from cashback_api.core.settings import Settings


class EmailBackend(Protocol):
    """Minimal protocol for sending notification emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        ...


class ResendEmailBackend:
    """Transactional email over the Resend HTTP API."""

    provider = "resend"

    def __init__(
        self,
        *,
        api_key: str,
        sender_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender_email = sender_email
        self._api_url = api_url
        self._timeout = timeout_seconds
        self._client = http_client

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        payload: dict[str, object] = {
            "from": self._sender_email,
            "to": [recipient],
            "subject": subject,
            "text": body_text,
        }
        if body_html:
            payload["html"] = body_html
        headers = {"Authorization": f"Bearer {self._api_key}"}

        client = self._client
        close_client = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout)
            close_client = True
        try:
            response = await client.post(self._api_url, json=payload, headers=headers)
            response.raise_for_status()
        finally:
            if close_client:
                await client.aclose()


class SMTPEmailBackend:
    """SMTP-powered backend that sends emails via standard library."""

    provider = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        sender_email: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender_email = sender_email
        self._timeout = timeout_seconds

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        message = _build_message(recipient, subject, body_text, body_html)
        message["From"] = self._sender_email
        await asyncio.to_thread(self._send, message)

    def _send(self, message: EmailMessage) -> None:
        smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout)
        try:
            if self._use_tls:
                smtp.starttls()
            if self._username and self._password:
                smtp.login(self._username, self._password)
            smtp.send_message(message)
        finally:
            smtp.quit()


class LogEmailBackend:
    """Fallback when no provider is configured: the message is only logged."""

    provider = "log"

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        logger.warning(
            "No email provider configured; reward email not delivered",
            recipient=recipient,
            subject=subject,
        )


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[EmailMessage]
    provider = "memory"

    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.sent_messages = []
        self._fail_with = fail_with

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self.sent_messages.append(_build_message(recipient, subject, body_text, body_html))


def _build_message(recipient: str, subject: str, body_text: str, body_html: str | None) -> EmailMessage:
    message = EmailMessage()
    message["To"] = recipient
    message["Subject"] = subject
    message.set_content(body_text)
    if body_html:
        message.add_alternative(body_html, subtype="html")
    return message


def build_email_backend(settings: "Settings") -> EmailBackend:
    """Pick Resend, then SMTP, then the logging fallback based on configuration."""

    if settings.resend_api_key:
        return ResendEmailBackend(
            api_key=settings.resend_api_key,
            sender_email=settings.email_sender,
            api_url=settings.resend_api_url,
            timeout_seconds=settings.email_timeout_seconds,
        )
    if settings.smtp_host:
        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.email_sender,
            timeout_seconds=settings.email_timeout_seconds,
        )
    return LogEmailBackend()


__all__ = [
    "EmailBackend",
    "InMemoryEmailBackend",
    "LogEmailBackend",
    "ResendEmailBackend",
    "SMTPEmailBackend",
    "build_email_backend",
]
