"""Sliding-window rate limiter keyed by ``(scope, key)``.

One limiter instance guards one operation (OTP generation, OTP
verification). Inside it, the account and the source address are
counted separately and a request must pass both.

Usage::

    limiter = SlidingWindowRateLimiter(limit=5, window_seconds=900)
    decision = limiter.allow_all(
        [(RateScope.ACCOUNT, "a@x.com"), (RateScope.SOURCE_ADDRESS, "1.2.3.4")]
    )
    if not decision.permitted:
        raise RateLimited(decision.retry_after)
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from otp_guard.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class RateScope(str, enum.Enum):
    ACCOUNT = "account"
    SOURCE_ADDRESS = "source-address"


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a limiter check. ``retry_after`` is set only when denied."""

    permitted: bool
    retry_after: float | None = None


_PERMIT = RateDecision(permitted=True)


class SlidingWindowRateLimiter:
    """Counts timestamped events in a trailing window of ``window_seconds``.

    The check and the increment happen under one lock, so a burst of
    concurrent callers can never all observe a stale "not yet limited"
    count. Denied requests are not recorded as events.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Clock | None = None,
        name: str = "rate-limiter",
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock or SystemClock()
        self._events: dict[tuple[RateScope, str], deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock.now()

    def allow(self, scope: RateScope, key: str) -> RateDecision:
        """Check a single ``(scope, key)`` and record the event if permitted."""
        return self.allow_all([(scope, key)])

    def allow_all(self, checks: Iterable[tuple[RateScope, str]]) -> RateDecision:
        """Check every ``(scope, key)`` pair; record against all only if all pass.

        When denied, ``retry_after`` is the longest wait among the keys
        that are over their limit.
        """
        keys = list(dict.fromkeys(checks))
        now = self._clock.now()
        with self._lock:
            # Idle keys are only dropped by a sweep; run one every window
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            waits = [w for w in (self._retry_after(k, now) for k in keys) if w is not None]
            if waits:
                retry_after = max(waits)
                logger.info(
                    "%s denied %s, retry after %.1fs",
                    self.name,
                    ", ".join(scope.value for scope, _ in keys),
                    retry_after,
                )
                return RateDecision(permitted=False, retry_after=retry_after)
            for key in keys:
                self._events.setdefault(key, deque()).append(now)
        return _PERMIT

    def count(self, scope: RateScope, key: str) -> int:
        """Number of events currently inside the window for this key."""
        with self._lock:
            self._prune((scope, key), self._clock.now())
            return len(self._events.get((scope, key), ()))

    def reset(self, scope: RateScope, key: str) -> None:
        with self._lock:
            self._events.pop((scope, key), None)

    def sweep(self) -> int:
        """Drop expired events for every key. Returns how many keys were removed."""
        with self._lock:
            return self._sweep(self._clock.now())

    def __len__(self) -> int:
        return len(self._events)

    # ── Private helpers ──────────────────────────────────

    def _prune(self, key: tuple[RateScope, str], now: float) -> None:
        events = self._events.get(key)
        if events is None:
            return
        cutoff = now - self.window_seconds
        while events and events[0] <= cutoff:
            events.popleft()
        if not events:
            del self._events[key]

    def _sweep(self, now: float) -> int:
        before = len(self._events)
        for key in list(self._events):
            self._prune(key, now)
        self._last_sweep = now
        removed = before - len(self._events)
        if removed:
            logger.debug("%s swept %d idle key(s)", self.name, removed)
        return removed

    def _retry_after(self, key: tuple[RateScope, str], now: float) -> float | None:
        """Seconds until this key may proceed, or ``None`` if it may now."""
        self._prune(key, now)
        events = self._events.get(key)
        if events is None or len(events) < self.limit:
            return None
        return events[0] + self.window_seconds - now
