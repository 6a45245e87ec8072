"""Tests for the delivery adapters and service wiring."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, patch

import aiosmtplib
import httpx
import pytest

from otp_guard.config import Settings
from otp_guard.dependencies import build_otp_service, build_store
from otp_guard.services.delivery import (
    ConsoleDelivery,
    EmailDelivery,
    WebhookDelivery,
    build_delivery,
)
from otp_guard.services.otp_service import OTPService
from otp_guard.store.memory import InMemoryOTPStore
from otp_guard.store.sql import SqlOTPStore
from otp_guard.utils import mask_identifier


@pytest.mark.parametrize(
    "identifier, masked",
    [
        ("john@example.com", "j***n@example.com"),
        ("jo@example.com", "j***@example.com"),
        ("+15551234567", "+***7"),
    ],
)
def test_mask_identifier(identifier, masked):
    assert mask_identifier(identifier) == masked


# ──────────────────────────────────────────────────────────
# Console
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_console_delivery_hides_code_by_default(caplog):
    caplog.set_level(logging.INFO)
    assert await ConsoleDelivery(reveal_codes=False).deliver("john@example.com", "482913")
    assert "482913" not in caplog.text
    assert "j***n@example.com" in caplog.text


@pytest.mark.asyncio
async def test_console_delivery_reveals_code_in_debug(caplog):
    assert await ConsoleDelivery(reveal_codes=True).deliver("john@example.com", "482913")
    assert "482913" in caplog.text


# ──────────────────────────────────────────────────────────
# Email
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_email_delivery_sends_message():
    config = Settings(smtp_host="mail.test", email_from="otp@test", app_name="Test")
    with patch("otp_guard.services.delivery.aiosmtplib.send", new=AsyncMock()) as send:
        assert await EmailDelivery(config).deliver("john@example.com", "482913")

    msg = send.await_args.args[0]
    assert msg["To"] == "john@example.com"
    assert msg["From"] == "otp@test"
    assert "482913" in msg.get_content()
    assert send.await_args.kwargs["hostname"] == "mail.test"


@pytest.mark.asyncio
async def test_email_delivery_failure_returns_false():
    failing = AsyncMock(side_effect=aiosmtplib.SMTPException("refused"))
    with patch("otp_guard.services.delivery.aiosmtplib.send", new=failing):
        assert await EmailDelivery(Settings()).deliver("john@example.com", "482913") is False


# ──────────────────────────────────────────────────────────
# Webhook
# ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_webhook_delivery_posts_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    delivery = WebhookDelivery(
        "https://gateway.test/send", token="s3cret", transport=httpx.MockTransport(handler)
    )
    assert await delivery.deliver("+15551234567", "482913")

    assert json.loads(seen[0].content) == {"to": "+15551234567", "code": "482913"}
    assert seen[0].headers["Authorization"] == "Bearer s3cret"


@pytest.mark.asyncio
async def test_webhook_delivery_reports_gateway_errors():
    delivery = WebhookDelivery(
        "https://gateway.test/send",
        token="",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
    )
    assert await delivery.deliver("+15551234567", "482913") is False


@pytest.mark.asyncio
async def test_webhook_delivery_reports_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    delivery = WebhookDelivery(
        "https://gateway.test/send", token="", transport=httpx.MockTransport(handler)
    )
    assert await delivery.deliver("+15551234567", "482913") is False


# ──────────────────────────────────────────────────────────
# Wiring
# ──────────────────────────────────────────────────────────
def test_build_delivery_by_backend():
    assert isinstance(build_delivery(Settings(delivery_backend="console")), ConsoleDelivery)
    assert isinstance(build_delivery(Settings(delivery_backend="smtp")), EmailDelivery)
    webhook = Settings(delivery_backend="webhook", delivery_webhook_url="https://gw.test")
    assert isinstance(build_delivery(webhook), WebhookDelivery)
    with pytest.raises(ValueError):
        build_delivery(Settings(delivery_backend="webhook", delivery_webhook_url=""))
    with pytest.raises(ValueError):
        build_delivery(Settings(delivery_backend="pigeon"))


def test_build_store_by_backend(clock):
    assert isinstance(build_store(Settings(store_backend="memory"), clock), InMemoryOTPStore)
    assert isinstance(build_store(Settings(store_backend="sql"), clock), SqlOTPStore)
    with pytest.raises(ValueError):
        build_store(Settings(store_backend="etcd"), clock)


def test_build_otp_service_from_settings():
    service = build_otp_service(Settings(otp_max_attempts=3, lockout_threshold=7))
    assert isinstance(service, OTPService)
    assert service._max_attempts == 3
    assert service._lockout.threshold == 7
