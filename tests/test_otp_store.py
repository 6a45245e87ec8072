"""Tests for the OTP stores, run against both the in-memory and SQL backends."""

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from otp_guard.database.engine import init_db
from otp_guard.errors import StorageError
from otp_guard.models.otp import OTPRecord
from otp_guard.store.memory import InMemoryOTPStore
from otp_guard.store.sql import SqlOTPStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def otp_store(request, clock):
    """Yield each store implementation against the shared manual clock."""
    if request.param == "memory":
        yield InMemoryOTPStore(clock)
        return

    # Fresh in-memory database per test
    engine = create_async_engine("sqlite+aiosqlite://", echo=False, poolclass=StaticPool)
    await init_db(engine)
    yield SqlOTPStore(async_sessionmaker(engine, expire_on_commit=False), clock)
    await engine.dispose()


def _record(clock, code="123456", ttl=300.0, attempts=5):
    now = clock.now()
    return OTPRecord(
        code=code, created_at=now, expires_at=now + ttl, attempts_remaining=attempts
    )


# ── Tests ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_absent_returns_none(otp_store):
    assert await otp_store.get("nobody@x.com") is None


@pytest.mark.asyncio
async def test_put_then_get(otp_store, clock):
    await otp_store.put("a@x.com", _record(clock))
    record = await otp_store.get("a@x.com")
    assert record is not None
    assert record.code == "123456"
    assert record.attempts_remaining == 5
    assert record.consumed is False


@pytest.mark.asyncio
async def test_put_overwrites_previous_record(otp_store, clock):
    await otp_store.put("a@x.com", _record(clock, code="111111"))
    await otp_store.mark_consumed("a@x.com")
    await otp_store.put("a@x.com", _record(clock, code="222222"))
    record = await otp_store.get("a@x.com")
    assert record.code == "222222"
    assert record.consumed is False


@pytest.mark.asyncio
async def test_expired_record_is_absent(otp_store, clock):
    await otp_store.put("a@x.com", _record(clock, ttl=60))
    clock.advance(60)
    assert await otp_store.get("a@x.com") is None


@pytest.mark.asyncio
async def test_mark_consumed_wins_once(otp_store, clock):
    await otp_store.put("a@x.com", _record(clock))
    assert await otp_store.mark_consumed("a@x.com") is True
    assert await otp_store.mark_consumed("a@x.com") is False
    assert (await otp_store.get("a@x.com")).consumed is True


@pytest.mark.asyncio
async def test_mark_consumed_absent_is_noop(otp_store):
    assert await otp_store.mark_consumed("nobody@x.com") is False


@pytest.mark.asyncio
async def test_decrement_attempts_stops_at_zero(otp_store, clock):
    await otp_store.put("a@x.com", _record(clock, attempts=2))
    assert await otp_store.decrement_attempts("a@x.com") == 1
    assert await otp_store.decrement_attempts("a@x.com") == 0
    assert await otp_store.decrement_attempts("a@x.com") is None

    record = await otp_store.get("a@x.com")
    assert record.attempts_remaining == 0
    assert record.consumed is True


@pytest.mark.asyncio
async def test_decrement_attempts_without_active_record_returns_none(otp_store, clock):
    assert await otp_store.decrement_attempts("nobody@x.com") is None

    await otp_store.put("a@x.com", _record(clock))
    assert await otp_store.mark_consumed("a@x.com") is True
    assert await otp_store.decrement_attempts("a@x.com") is None


@pytest.mark.asyncio
async def test_purge_expired(otp_store, clock):
    await otp_store.put("old@x.com", _record(clock, ttl=10))
    await otp_store.put("new@x.com", _record(clock, ttl=600))
    clock.advance(30)
    assert await otp_store.purge_expired() == 1
    assert await otp_store.get("new@x.com") is not None


@pytest.mark.asyncio
async def test_memory_store_hands_out_copies(clock):
    store = InMemoryOTPStore(clock)
    await store.put("a@x.com", _record(clock))
    record = await store.get("a@x.com")
    record.consumed = True
    assert (await store.get("a@x.com")).consumed is False


@pytest.mark.asyncio
async def test_sql_backend_errors_become_storage_errors(clock):
    # No tables created on this engine
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    store = SqlOTPStore(async_sessionmaker(engine, expire_on_commit=False), clock)
    with pytest.raises(StorageError) as excinfo:
        await store.get("a@x.com")
    assert isinstance(excinfo.value.__cause__, OperationalError)
    await engine.dispose()
