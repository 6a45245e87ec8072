"""In-memory OTP store with lazy expiry."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from otp_guard.clock import Clock, SystemClock
from otp_guard.models.otp import OTPRecord
from otp_guard.store.base import OTPStore

logger = logging.getLogger(__name__)


class InMemoryOTPStore(OTPStore):
    """Thread-safe in-memory store.

    Each entry maps ``identifier → OTPRecord``. Expired entries are
    purged lazily on access, or in bulk with :meth:`purge_expired`.
    Records handed out are copies, so callers cannot mutate stored state.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._records: dict[str, OTPRecord] = {}
        self._lock = threading.Lock()

    async def put(self, identifier: str, record: OTPRecord) -> None:
        with self._lock:
            self._records[identifier] = replace(record)

    async def get(self, identifier: str) -> OTPRecord | None:
        with self._lock:
            record = self._live(identifier)
            return replace(record) if record else None

    async def mark_consumed(self, identifier: str) -> bool:
        with self._lock:
            record = self._live(identifier)
            if record is None or record.consumed:
                return False
            record.consumed = True
            return True

    async def decrement_attempts(self, identifier: str) -> int | None:
        with self._lock:
            record = self._live(identifier)
            if record is None or record.consumed:
                return None
            record.attempts_remaining = max(record.attempts_remaining - 1, 0)
            if record.attempts_remaining == 0:
                record.consumed = True
            return record.attempts_remaining

    async def purge_expired(self) -> int:
        now = self._clock.now()
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug("Purged %d expired OTP record(s)", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)

    # ── Private helpers ──────────────────────────────────

    def _live(self, identifier: str) -> OTPRecord | None:
        """Return the stored record unless it has expired. Caller holds the lock."""
        record = self._records.get(identifier)
        if record is not None and record.is_expired(self._clock.now()):
            del self._records[identifier]
            return None
        return record
