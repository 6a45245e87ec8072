"""OTP service — issues and verifies one-time passwords.

Flow
----
``request_otp``
    1. Generation rate limit, per account and per source address.
    2. Fresh random code, stored over any previous record.
    3. Code handed to the delivery collaborator (failures are logged only).

``verify_otp``
    1. Lockout check, before anything else is touched.
    2. Verification rate limit, per account and per source address.
    3. Constant-time comparison against the active record (or a decoy when
       there is none), then consume on match or spend an attempt on
       mismatch.

Operations on one identifier are serialised; different identifiers run
in parallel. Every verification outcome is padded to the same minimum
duration so the failure kind cannot be told apart by timing.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from otp_guard.clock import Clock, SystemClock
from otp_guard.config import settings
from otp_guard.errors import (
    AccountLocked,
    DeliveryError,
    InvalidOtp,
    NoActiveOtp,
    RateLimited,
    StorageError,
    VerificationFailed,
)
from otp_guard.models.otp import OTPRecord
from otp_guard.security.keyed_lock import KeyedLock
from otp_guard.security.lockout import LockoutManager
from otp_guard.security.rate_limiter import RateScope, SlidingWindowRateLimiter
from otp_guard.services.delivery import Delivery
from otp_guard.store.base import OTPStore
from otp_guard.utils import mask_identifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OTPIssued:
    """Returned by :meth:`OTPService.request_otp`. Never carries the code."""

    identifier: str
    expires_at: float


@dataclass(frozen=True)
class OTPVerified:
    identifier: str
    verified_at: float


def generate_code(length: int) -> str:
    """Return a uniformly random numeric code of exactly *length* digits."""
    return str(secrets.randbelow(10**length)).zfill(length)


def codes_match(submitted: str, expected: str) -> bool:
    """Compare two codes in time independent of where they differ."""
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


class OTPService:
    """Orchestrates the OTP store, rate limiters and lockout manager.

    All collaborators are injected; anything omitted is built from
    ``settings``.
    """

    def __init__(
        self,
        store: OTPStore,
        delivery: Delivery,
        clock: Clock | None = None,
        *,
        generation_limiter: SlidingWindowRateLimiter | None = None,
        verification_limiter: SlidingWindowRateLimiter | None = None,
        lockout: LockoutManager | None = None,
        otp_length: int | None = None,
        ttl_seconds: float | None = None,
        max_attempts: int | None = None,
        store_timeout: float | None = None,
        verification_floor: float | None = None,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._clock = clock or SystemClock()
        self._generation_limiter = generation_limiter or SlidingWindowRateLimiter(
            settings.generation_rate_limit,
            settings.generation_window_seconds,
            clock=self._clock,
            name="otp-generation",
        )
        self._verification_limiter = verification_limiter or SlidingWindowRateLimiter(
            settings.verification_rate_limit,
            settings.verification_window_seconds,
            clock=self._clock,
            name="otp-verification",
        )
        self._lockout = lockout or LockoutManager(clock=self._clock)
        self._otp_length = otp_length or settings.otp_length
        self._ttl = ttl_seconds or settings.otp_ttl_seconds
        self._max_attempts = max_attempts or settings.otp_max_attempts
        self._store_timeout = store_timeout or settings.store_timeout_seconds
        self._floor = (
            settings.verification_floor_seconds
            if verification_floor is None
            else verification_floor
        )
        self._locks = KeyedLock()
        self._maintenance_task: asyncio.Task | None = None

    # ── Issuance ─────────────────────────────────────────

    async def request_otp(self, identifier: str, source_address: str) -> OTPIssued:
        """Issue a new code for *identifier*, invalidating any previous one.

        Raises
        ------
        RateLimited
            Too many codes requested for this account or address.
        StorageError
            The store failed or timed out; nothing was delivered.
        """
        identifier = self._normalise(identifier)
        async with self._locks.hold(identifier):
            decision = self._generation_limiter.allow_all(
                self._rate_keys(identifier, source_address)
            )
            if not decision.permitted:
                logger.info("OTP request rate limited for %s", mask_identifier(identifier))
                raise RateLimited(decision.retry_after)

            code = generate_code(self._otp_length)
            now = self._clock.now()
            record = OTPRecord(
                code=code,
                created_at=now,
                expires_at=now + self._ttl,
                attempts_remaining=self._max_attempts,
            )
            await self._call_store(self._store.put(identifier, record))

        logger.info("OTP issued for %s", mask_identifier(identifier))
        await self._deliver(identifier, code)
        return OTPIssued(identifier=identifier, expires_at=record.expires_at)

    # ── Verification ─────────────────────────────────────

    async def verify_otp(
        self, identifier: str, source_address: str, code: str
    ) -> OTPVerified:
        """Check *code* for *identifier* and consume it on success.

        Raises one of :class:`AccountLocked`, :class:`RateLimited`,
        :class:`NoActiveOtp` or :class:`InvalidOtp` on failure, all after
        the same minimum delay. :class:`StorageError` is raised as soon as
        it happens and is never retried here.
        """
        started = time.perf_counter()
        try:
            identifier = self._normalise(identifier)
            result = await self._verify(identifier, source_address, code.strip())
        except (VerificationFailed, ValueError):
            await self._pad(started)
            raise
        await self._pad(started)
        return result

    async def purge_expired(self) -> int:
        """Drop expired records from the store."""
        return await self._call_store(self._store.purge_expired())

    # ── Maintenance ──────────────────────────────────────

    async def sweep(self) -> int:
        """Purge expired codes and drop idle limiter and lockout entries.

        Returns the total number of entries removed.
        """
        removed = await self.purge_expired()
        removed += self._generation_limiter.sweep()
        removed += self._verification_limiter.sweep()
        removed += self._lockout.sweep()
        return removed

    def start_maintenance(self, interval: float) -> None:
        """Run :meth:`sweep` every *interval* seconds in a background task."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return
        self._maintenance_task = asyncio.create_task(
            self._maintenance_loop(interval), name="otp-maintenance"
        )
        logger.info("OTP maintenance started (every %.0fs)", interval)

    async def stop_maintenance(self) -> None:
        if self._maintenance_task is None:
            return
        self._maintenance_task.cancel()
        try:
            await self._maintenance_task
        except asyncio.CancelledError:
            pass
        self._maintenance_task = None
        logger.info("OTP maintenance stopped")

    @property
    def maintenance_running(self) -> bool:
        return self._maintenance_task is not None and not self._maintenance_task.done()

    # ── Private helpers ──────────────────────────────────

    async def _verify(
        self, identifier: str, source_address: str, submitted: str
    ) -> OTPVerified:
        async with self._locks.hold(identifier):
            status = self._lockout.check(identifier)
            if status.locked:
                logger.info("Verification refused, %s is locked", mask_identifier(identifier))
                raise AccountLocked(status.retry_after)

            decision = self._verification_limiter.allow_all(
                self._rate_keys(identifier, source_address)
            )
            if not decision.permitted:
                raise RateLimited(decision.retry_after)

            record = await self._call_store(self._store.get(identifier))
            now = self._clock.now()
            if record is None or not record.is_active(now):
                # Same comparison work as a real record
                codes_match(submitted, generate_code(self._otp_length))
                raise NoActiveOtp()

            if not codes_match(submitted, record.code):
                remaining = await self._call_store(
                    self._store.decrement_attempts(identifier)
                )
                if remaining is None:
                    # Consumed or replaced by another worker since the read
                    raise NoActiveOtp()
                self._lockout.record_failure(identifier)
                logger.info(
                    "Invalid OTP for %s, %d attempt(s) left",
                    mask_identifier(identifier),
                    remaining,
                )
                raise InvalidOtp(remaining)

            if not await self._call_store(self._store.mark_consumed(identifier)):
                raise NoActiveOtp()
            self._lockout.record_success(identifier)

        logger.info("OTP verified for %s", mask_identifier(identifier))
        return OTPVerified(identifier=identifier, verified_at=now)

    async def _maintenance_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep()
                if removed:
                    logger.info("OTP maintenance removed %d stale entries", removed)
            except Exception:
                logger.exception("OTP maintenance sweep failed")

    async def _deliver(self, identifier: str, code: str) -> None:
        try:
            delivered = await self._delivery.deliver(identifier, code)
            if not delivered:
                raise DeliveryError("delivery collaborator reported failure")
        except Exception:
            # Non-fatal: the record is already stored
            logger.exception("OTP delivery failed for %s", mask_identifier(identifier))

    async def _call_store(self, operation: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("OTP store call timed out after %.1fs", self._store_timeout)
            raise StorageError("OTP store timed out") from exc

    async def _pad(self, started: float) -> None:
        remaining = self._floor - (time.perf_counter() - started)
        if remaining > 0:
            await asyncio.sleep(remaining)

    @staticmethod
    def _rate_keys(identifier: str, source_address: str) -> list[tuple[RateScope, str]]:
        return [
            (RateScope.ACCOUNT, identifier),
            (RateScope.SOURCE_ADDRESS, source_address),
        ]

    @staticmethod
    def _normalise(identifier: str) -> str:
        identifier = identifier.strip()
        if not identifier:
            raise ValueError("identifier must not be empty")
        return identifier
