"""OTP store — abstract interface every backend must implement."""

from abc import ABC, abstractmethod

from otp_guard.models.otp import OTPRecord


class OTPStore(ABC):
    """Key-value mapping from account identifier to its current OTP record.

    Implementations must make :meth:`mark_consumed` and
    :meth:`decrement_attempts` atomic per identifier, and raise
    :class:`~otp_guard.errors.StorageError` when the backend fails.
    """

    @abstractmethod
    async def put(self, identifier: str, record: OTPRecord) -> None:
        """Store *record*, replacing whatever the identifier had before."""

    @abstractmethod
    async def get(self, identifier: str) -> OTPRecord | None:
        """Return the record, or ``None`` if absent or past ``expires_at``.

        Consumed records are still returned (with ``consumed=True``).
        """

    @abstractmethod
    async def mark_consumed(self, identifier: str) -> bool:
        """Flag the record consumed.

        Returns ``True`` only for the call that actually flipped the flag.
        Absent or already-consumed records are a no-op returning ``False``.
        """

    @abstractmethod
    async def decrement_attempts(self, identifier: str) -> int | None:
        """Spend one attempt and return how many are left (never below 0).

        Returns ``None`` when there was no active record to spend from,
        e.g. another worker consumed or replaced it first.
        """

    @abstractmethod
    async def purge_expired(self) -> int:
        """Evict expired records. Returns the number removed."""
