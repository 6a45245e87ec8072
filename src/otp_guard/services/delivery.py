"""Delivery adapters — hand an issued code to the outside world.

The OTP service only needs something with an async ``deliver`` method.
Three adapters are provided:

* ``ConsoleDelivery`` — logs the issuance (and the code in debug mode).
* ``EmailDelivery``   — sends the code over SMTP with ``aiosmtplib``.
* ``WebhookDelivery`` — POSTs the code to an SMS/notification gateway.
"""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib
import httpx

from otp_guard.config import Settings, settings
from otp_guard.utils import mask_identifier

logger = logging.getLogger(__name__)


class Delivery(Protocol):
    async def deliver(self, identifier: str, code: str) -> bool:
        """Send *code* to *identifier*. Returns ``True`` on success."""
        ...


class ConsoleDelivery:
    """Development delivery: writes to the log instead of sending anything."""

    def __init__(self, reveal_codes: bool | None = None) -> None:
        self._reveal = settings.debug if reveal_codes is None else reveal_codes

    async def deliver(self, identifier: str, code: str) -> bool:
        if self._reveal:
            logger.warning("OTP for %s: %s (debug delivery)", identifier, code)
        else:
            logger.info("OTP issued for %s (console delivery)", mask_identifier(identifier))
        return True


class EmailDelivery:
    """Sends the code by email using the configured SMTP server."""

    def __init__(self, config: Settings | None = None) -> None:
        self._config = config or settings

    async def deliver(self, identifier: str, code: str) -> bool:
        """Email *code* to the address *identifier*.

        Parameters
        ----------
        identifier:
            Recipient email address.
        code:
            The numeric one-time password.
        """
        minutes = max(int(self._config.otp_ttl_seconds // 60), 1)
        msg = EmailMessage()
        msg["Subject"] = f"Your verification code — {self._config.app_name}"
        msg["From"] = self._config.email_from
        msg["To"] = identifier
        msg.set_content(
            f"Your verification code is {code}.\n\n"
            f"It expires in {minutes} minute(s) and can be used once.\n"
            "If you did not request it, you can ignore this email.\n\n"
            f"The {self._config.app_name} Team"
        )

        try:
            await aiosmtplib.send(
                msg,
                hostname=self._config.smtp_host,
                port=self._config.smtp_port,
                username=self._config.smtp_username or None,
                password=self._config.smtp_password or None,
                start_tls=True,
            )
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("Failed to email OTP to %s", mask_identifier(identifier))
            return False

        logger.info("OTP email sent to %s", mask_identifier(identifier))
        return True


class WebhookDelivery:
    """POSTs ``{"to": ..., "code": ...}`` to an HTTP notification gateway."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url or settings.delivery_webhook_url
        self._token = token if token is not None else settings.delivery_webhook_token
        self._timeout = timeout
        self._transport = transport

    async def deliver(self, identifier: str, code: str) -> bool:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._url, json={"to": identifier, "code": code}, headers=headers
                )
        except httpx.HTTPError:
            logger.exception("OTP webhook request error for %s", mask_identifier(identifier))
            return False

        if resp.is_success:
            logger.info("OTP dispatched to gateway for %s", mask_identifier(identifier))
            return True
        logger.error(
            "OTP webhook failed for %s: %s %s",
            mask_identifier(identifier),
            resp.status_code,
            resp.text[:200],
        )
        return False


def build_delivery(config: Settings | None = None) -> Delivery:
    """Pick a delivery adapter from ``delivery_backend``."""
    config = config or settings
    backend = config.delivery_backend.lower()
    if backend == "smtp":
        return EmailDelivery(config)
    if backend == "webhook":
        if not config.delivery_webhook_url:
            raise ValueError("delivery_webhook_url is required for the webhook backend")
        return WebhookDelivery(config.delivery_webhook_url, config.delivery_webhook_token)
    if backend == "console":
        return ConsoleDelivery(reveal_codes=config.debug)
    raise ValueError(f"Unknown delivery backend: {config.delivery_backend!r}")
