from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.message import EmailMessage
import logging
import smtplib
import ssl

import aiohttp

from .config import Settings
from .errors import NotifyError

logger = logging.getLogger("failwatch.notifier")

ALERT_SUBJECT = "Alert: High Failed Request Activity"


def alert_text(origin: str) -> str:
    return f"The IP address {origin} has exceeded the failed request threshold."


class Notifier:
    """Delivers one threshold alert for an origin. Raise NotifyError on failure."""

    channel: str

    async def notify(self, origin: str) -> None:
        raise NotImplementedError


class SmtpNotifier(Notifier):
    channel = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        recipient: str,
        user: str = "",
        password: str = "",
        starttls: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._recipient = recipient
        self._user = user
        self._password = password
        self._starttls = starttls
        self._timeout = timeout

    def build_message(self, origin: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = ALERT_SUBJECT
        msg["From"] = self._user or self._recipient
        msg["To"] = self._recipient
        msg.set_content(alert_text(origin))
        return msg

    def _send_sync(self, origin: str) -> None:
        msg = self.build_message(origin)
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            if self._starttls:
                server.starttls(context=ssl.create_default_context())
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(msg)

    async def notify(self, origin: str) -> None:
        try:
            await asyncio.to_thread(self._send_sync, origin)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifyError(f"SMTP delivery to {self._recipient} failed: {exc}") from exc
        logger.info(
            "Alert email sent",
            extra={"event": "alert_email_sent", "origin": origin, "channel": self.channel},
        )


class WebhookNotifier(Notifier):
    channel = "webhook"

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    def build_payload(self, origin: str) -> dict[str, str]:
        return {
            "event": "failed_request_threshold",
            "ip_address": origin,
            "subject": ALERT_SUBJECT,
            "message": alert_text(origin),
            "ts": datetime.now(timezone.utc).isoformat(),
        }

    async def notify(self, origin: str) -> None:
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self._url, json=self.build_payload(origin)) as response:
                    if response.status >= 400:
                        raise NotifyError(f"Webhook responded with HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NotifyError(f"Webhook delivery failed: {exc.__class__.__name__}") from exc


class LogNotifier(Notifier):
    channel = "log"

    async def notify(self, origin: str) -> None:
        logger.warning(
            alert_text(origin),
            extra={"event": "alert_logged", "origin": origin, "channel": self.channel},
        )


def build_notifier(settings: Settings) -> Notifier:
    if settings.alert_channel == "smtp":
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            recipient=settings.alert_recipient,
            user=settings.smtp_user,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.notifier_timeout_seconds,
        )
    if settings.alert_channel == "webhook":
        return WebhookNotifier(settings.alert_webhook_url, timeout=settings.notifier_timeout_seconds)
    return LogNotifier()
