"""Error kinds raised by the OTP service.

The four verification-path errors share the :class:`VerificationFailed`
base so the transport layer can collapse them into one generic response.
"""

from __future__ import annotations


class OTPError(Exception):
    """Base class for every error raised by the OTP subsystem."""


class VerificationFailed(OTPError):
    """A user-facing failure; the caller supplied something we reject."""

    retry_after: float | None = None


class RateLimited(VerificationFailed):
    """Too many requests for this account or source address."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Rate limited, retry after {retry_after:.0f}s")
        self.retry_after = retry_after


class AccountLocked(VerificationFailed):
    """Verification is suspended after repeated failures."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Account locked, retry after {retry_after:.0f}s")
        self.retry_after = retry_after


class NoActiveOtp(VerificationFailed):
    """No unexpired, unconsumed code exists for the account."""

    def __init__(self) -> None:
        super().__init__("No active OTP")


class InvalidOtp(VerificationFailed):
    """The submitted code does not match the active one."""

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(f"Invalid OTP, {attempts_remaining} attempt(s) remaining")
        self.attempts_remaining = attempts_remaining


class StorageError(OTPError):
    """The backing store failed or timed out. A server fault, not a user error."""


class DeliveryError(OTPError):
    """The notification collaborator could not deliver a code.

    Never raised out of the service; issuance still succeeds and the
    failure is logged.
    """
