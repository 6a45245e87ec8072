"""Per-account lockout with exponential backoff.

An account is *Open* until ``threshold`` consecutive verification
failures, then *Locked* for ``base * 2 ** lock_count`` seconds (capped
at ``max_seconds``). When the lock elapses the account is Open again
with a fresh failure count. Any success clears the failures and lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from otp_guard.clock import Clock, SystemClock
from otp_guard.config import settings

logger = logging.getLogger(__name__)


@dataclass
class LockoutState:
    consecutive_failures: int = 0
    locked_until: float | None = None
    lock_count: int = 0
    last_locked_at: float | None = None
    last_failure_at: float | None = None


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    retry_after: float | None = None


_OPEN = LockoutStatus(locked=False)


class LockoutManager:
    """Tracks consecutive failures and lock windows per account identifier."""

    def __init__(
        self,
        threshold: int | None = None,
        base_seconds: float | None = None,
        max_seconds: float | None = None,
        reset_seconds: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.threshold = threshold or settings.lockout_threshold
        self.base_seconds = base_seconds or settings.lockout_base_seconds
        self.max_seconds = max_seconds or settings.lockout_max_seconds
        self.reset_seconds = reset_seconds or settings.lockout_reset_seconds
        self._clock = clock or SystemClock()
        self._states: dict[str, LockoutState] = {}
        self._lock = threading.Lock()

    def check(self, identifier: str) -> LockoutStatus:
        """Return whether the account is currently locked."""
        now = self._clock.now()
        with self._lock:
            state = self._states.get(identifier)
            if state is None:
                return _OPEN
            if state.locked_until is not None:
                if state.locked_until > now:
                    return LockoutStatus(locked=True, retry_after=state.locked_until - now)
                # Lock has elapsed, back to Open
                state.locked_until = None
                state.consecutive_failures = 0
            return _OPEN

    def record_failure(self, identifier: str) -> LockoutStatus:
        """Count a failed verification; lock the account at the threshold."""
        now = self._clock.now()
        with self._lock:
            state = self._states.setdefault(identifier, LockoutState())
            if state.locked_until is not None and state.locked_until > now:
                return LockoutStatus(locked=True, retry_after=state.locked_until - now)
            if state.locked_until is not None:
                state.locked_until = None
                state.consecutive_failures = 0
            self._decay(state, now)

            state.consecutive_failures += 1
            state.last_failure_at = now
            if state.consecutive_failures < self.threshold:
                return _OPEN

            duration = self.lock_duration(state.lock_count)
            state.locked_until = now + duration
            state.last_locked_at = now
            state.lock_count += 1
            state.consecutive_failures = 0
        logger.warning(
            "Account locked for %.0fs after %d consecutive failures",
            duration,
            self.threshold,
        )
        return LockoutStatus(locked=True, retry_after=duration)

    def record_success(self, identifier: str) -> None:
        """Clear failures and any lock; the backoff history is kept."""
        with self._lock:
            state = self._states.get(identifier)
            if state is None:
                return
            state.consecutive_failures = 0
            state.locked_until = None
            if state.lock_count == 0:
                del self._states[identifier]

    def sweep(self) -> int:
        """Drop states that are unlocked, failure-free and past their backoff history."""
        now = self._clock.now()
        with self._lock:
            idle = []
            for identifier, state in self._states.items():
                if state.locked_until is not None:
                    if state.locked_until > now:
                        continue
                    state.locked_until = None
                    state.consecutive_failures = 0
                self._decay(state, now)
                if state.consecutive_failures == 0 and state.lock_count == 0:
                    idle.append(identifier)
            for identifier in idle:
                del self._states[identifier]
        if idle:
            logger.debug("Dropped %d idle lockout state(s)", len(idle))
        return len(idle)

    def __len__(self) -> int:
        return len(self._states)

    def failures(self, identifier: str) -> int:
        with self._lock:
            state = self._states.get(identifier)
            return state.consecutive_failures if state else 0

    def lock_duration(self, lock_count: int) -> float:
        """Backoff for the ``lock_count``-th lock (zero-based)."""
        # Cap the exponent so the power cannot overflow a float
        exponent = min(lock_count, 62)
        return min(self.base_seconds * (2**exponent), self.max_seconds)

    # ── Private helpers ──────────────────────────────────

    def _decay(self, state: LockoutState, now: float) -> None:
        """Forget failures and lockouts older than ``reset_seconds``."""
        if (
            state.last_failure_at is not None
            and now - state.last_failure_at >= self.reset_seconds
        ):
            state.consecutive_failures = 0
            state.last_failure_at = None
        if (
            state.last_locked_at is not None
            and now - state.last_locked_at >= self.reset_seconds
        ):
            state.lock_count = 0
            state.last_locked_at = None
