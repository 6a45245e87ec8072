"""Shared fixtures: manual clock, recording delivery and a service factory."""

from __future__ import annotations

import pytest

from otp_guard.clock import ManualClock
from otp_guard.security.lockout import LockoutManager
from otp_guard.security.rate_limiter import SlidingWindowRateLimiter
from otp_guard.services.otp_service import OTPService
from otp_guard.store.memory import InMemoryOTPStore


class RecordingDelivery:
    """Test double that remembers every code it was asked to deliver."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def deliver(self, identifier: str, code: str) -> bool:
        self.sent.append((identifier, code))
        return True

    def last_code(self, identifier: str) -> str:
        return next(code for who, code in reversed(self.sent) if who == identifier)


@pytest.fixture
def clock():
    return ManualClock(start=1_000_000.0)


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def store(clock):
    return InMemoryOTPStore(clock)


@pytest.fixture
def make_service(store, delivery, clock):
    """Factory for services with test-friendly defaults; override any knob."""

    def _make(
        *,
        generation_limit: int = 5,
        verification_limit: int = 10,
        window: float = 900.0,
        lockout_threshold: int = 5,
        lockout_base: float = 300.0,
        max_attempts: int = 5,
        ttl: float = 300.0,
        floor: float = 0.0,
    ) -> OTPService:
        return OTPService(
            store=store,
            delivery=delivery,
            clock=clock,
            generation_limiter=SlidingWindowRateLimiter(
                generation_limit, window, clock=clock, name="otp-generation"
            ),
            verification_limiter=SlidingWindowRateLimiter(
                verification_limit, window, clock=clock, name="otp-verification"
            ),
            lockout=LockoutManager(
                threshold=lockout_threshold,
                base_seconds=lockout_base,
                max_seconds=86400.0,
                reset_seconds=86400.0,
                clock=clock,
            ),
            otp_length=6,
            ttl_seconds=ttl,
            max_attempts=max_attempts,
            store_timeout=1.0,
            verification_floor=floor,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
