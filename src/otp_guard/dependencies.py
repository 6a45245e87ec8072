"""Service construction and FastAPI dependency providers."""

from __future__ import annotations

from fastapi import Request

from otp_guard.clock import Clock, SystemClock
from otp_guard.config import Settings, settings
from otp_guard.database.engine import async_session_factory
from otp_guard.security.lockout import LockoutManager
from otp_guard.security.rate_limiter import SlidingWindowRateLimiter
from otp_guard.services.delivery import Delivery, build_delivery
from otp_guard.services.otp_service import OTPService
from otp_guard.store.base import OTPStore
from otp_guard.store.memory import InMemoryOTPStore
from otp_guard.store.sql import SqlOTPStore


def build_store(config: Settings, clock: Clock) -> OTPStore:
    """Pick an OTP store from ``store_backend``."""
    backend = config.store_backend.lower()
    if backend == "sql":
        return SqlOTPStore(async_session_factory, clock=clock)
    if backend == "memory":
        return InMemoryOTPStore(clock=clock)
    raise ValueError(f"Unknown store backend: {config.store_backend!r}")


def build_otp_service(
    config: Settings | None = None,
    *,
    store: OTPStore | None = None,
    delivery: Delivery | None = None,
    clock: Clock | None = None,
) -> OTPService:
    """Wire an :class:`OTPService` from settings; any part may be overridden."""
    config = config or settings
    clock = clock or SystemClock()
    return OTPService(
        store=store or build_store(config, clock),
        delivery=delivery or build_delivery(config),
        clock=clock,
        generation_limiter=SlidingWindowRateLimiter(
            config.generation_rate_limit,
            config.generation_window_seconds,
            clock=clock,
            name="otp-generation",
        ),
        verification_limiter=SlidingWindowRateLimiter(
            config.verification_rate_limit,
            config.verification_window_seconds,
            clock=clock,
            name="otp-verification",
        ),
        lockout=LockoutManager(
            threshold=config.lockout_threshold,
            base_seconds=config.lockout_base_seconds,
            max_seconds=config.lockout_max_seconds,
            reset_seconds=config.lockout_reset_seconds,
            clock=clock,
        ),
        otp_length=config.otp_length,
        ttl_seconds=config.otp_ttl_seconds,
        max_attempts=config.otp_max_attempts,
        store_timeout=config.store_timeout_seconds,
        verification_floor=config.verification_floor_seconds,
    )


def get_otp_service(request: Request) -> OTPService:
    """Return the service built during application startup."""
    return request.app.state.otp_service
