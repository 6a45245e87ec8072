"""OTP record — the value object and its SQLAlchemy table."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Boolean, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


@dataclass
class OTPRecord:
    """A single issued code and its remaining budget.

    ``consumed`` is terminal: once set, nothing verifies against the
    record again, even before ``expires_at``.
    """

    code: str
    created_at: float
    expires_at: float
    attempts_remaining: int
    consumed: bool = False

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_active(self, now: float) -> bool:
        return (
            not self.consumed
            and self.attempts_remaining > 0
            and not self.is_expired(now)
        )


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


class OTPRow(Base):
    """Durable form of :class:`OTPRecord`, one row per account identifier."""

    __tablename__ = "otp_records"

    identifier: Mapped[str] = mapped_column(String(320), primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)
    attempts_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_otp_records_expires_at", "expires_at"),)

    def to_record(self) -> OTPRecord:
        return OTPRecord(
            code=self.code,
            created_at=self.created_at,
            expires_at=self.expires_at,
            attempts_remaining=self.attempts_remaining,
            consumed=self.consumed,
        )

    def __repr__(self) -> str:
        # The code is deliberately left out
        return (
            f"<OTPRow identifier={self.identifier!r} "
            f"expires_at={self.expires_at} consumed={self.consumed}>"
        )
