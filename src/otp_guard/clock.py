"""Time sources: wall clock for production, manual clock for tests."""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Anything that can tell the current time in seconds."""

    def now(self) -> float: ...


class SystemClock:
    """Wall-clock time from the operating system."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """A clock that only moves when told to.

    Used by the test-suite and the attack simulator so that windows,
    expiries and lockouts can be crossed without sleeping.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("A clock cannot move backwards")
        self._now += seconds

    def set(self, timestamp: float) -> None:
        self._now = timestamp
