"""SQL-backed OTP store — durable records with expiry by ``expires_at``."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from otp_guard.clock import Clock, SystemClock
from otp_guard.errors import StorageError
from otp_guard.models.otp import OTPRecord, OTPRow
from otp_guard.store.base import OTPStore

logger = logging.getLogger(__name__)


class SqlOTPStore(OTPStore):
    """OTP store on top of an async SQLAlchemy session factory.

    Consumption and attempt accounting are single conditional ``UPDATE``
    statements, so two processes sharing the database cannot both consume
    the same record.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    async def put(self, identifier: str, record: OTPRecord) -> None:
        async with self._transaction() as session:
            await session.merge(
                OTPRow(
                    identifier=identifier,
                    code=record.code,
                    created_at=record.created_at,
                    expires_at=record.expires_at,
                    attempts_remaining=record.attempts_remaining,
                    consumed=record.consumed,
                )
            )

    async def get(self, identifier: str) -> OTPRecord | None:
        async with self._transaction() as session:
            row = await session.get(OTPRow, identifier)
            if row is None:
                return None
            if row.expires_at <= self._clock.now():
                await session.delete(row)
                return None
            return row.to_record()

    async def mark_consumed(self, identifier: str) -> bool:
        stmt = (
            update(OTPRow)
            .where(
                OTPRow.identifier == identifier,
                OTPRow.consumed.is_(False),
                OTPRow.expires_at > self._clock.now(),
            )
            .values(consumed=True)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def decrement_attempts(self, identifier: str) -> int | None:
        # Right-hand sides see the pre-update column values
        stmt = (
            update(OTPRow)
            .where(
                OTPRow.identifier == identifier,
                OTPRow.consumed.is_(False),
                OTPRow.attempts_remaining > 0,
                OTPRow.expires_at > self._clock.now(),
            )
            .values(
                attempts_remaining=OTPRow.attempts_remaining - 1,
                consumed=case((OTPRow.attempts_remaining <= 1, True), else_=False),
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            remaining = await session.scalar(
                select(OTPRow.attempts_remaining).where(OTPRow.identifier == identifier)
            )
            return remaining or 0

    async def purge_expired(self) -> int:
        stmt = delete(OTPRow).where(OTPRow.expires_at <= self._clock.now())
        async with self._transaction() as session:
            result = await session.execute(stmt)
            removed = result.rowcount or 0
        if removed:
            logger.info("Purged %d expired OTP record(s)", removed)
        return removed

    # ── Private helpers ──────────────────────────────────

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction, translating backend errors."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.exception("OTP store backend error")
            raise StorageError(str(exc)) from exc
