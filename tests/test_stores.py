"""
Test user store backends: in-memory and SQL (aiosqlite).
"""

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from starx_mining.core.exceptions import (
    StoreUnavailableError,
    TimeUnavailableError,
    WriteFailureError,
)
from starx_mining.models import Base
from starx_mining.services.mining.core import MiningJobRunner, ReferralCounter
from starx_mining.services.mining.database import InMemoryUserStore, SqlUserStore
from starx_mining.services.mining.time_source import DatabaseTimeSource, SystemTimeSource

from .conftest import HOUR, MINUTE, T0, FixedTimeSource


SEED = {
    "balance": 1.5,
    "referralCode": "ABC",
    "mining/isMining": True,
    "mining/startTime": T0,
}


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mining.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)

    @asynccontextmanager
    async def factory():
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    yield factory
    await engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlUserStore(session_factory)


# In-memory backend

@pytest.mark.asyncio
async def test_memory_update_creates_and_merges(store):
    await store.update("u1", SEED)
    await store.update("u1", {"mining/lastUpdate": T0 + HOUR, "balance": 3.0})

    assert await store.get("u1") == {
        "balance": 3.0,
        "referralCode": "ABC",
        "mining": {"isMining": True, "startTime": T0, "lastUpdate": T0 + HOUR},
    }


@pytest.mark.asyncio
async def test_memory_update_replaces_malformed_intermediate():
    store = InMemoryUserStore({"u1": {"mining": "broken"}})

    await store.update("u1", {"mining/isMining": False})

    assert store.snapshot()["u1"]["mining"] == {"isMining": False}


@pytest.mark.asyncio
async def test_memory_reads_are_copies(store):
    await store.update("u1", SEED)

    record = await store.get("u1")
    record["mining"]["isMining"] = False

    assert store.snapshot()["u1"]["mining"]["isMining"] is True


@pytest.mark.asyncio
async def test_memory_query_matches_top_level_field():
    store = InMemoryUserStore({
        "a": {"referredBy": "ABC"},
        "b": {"referredBy": "XYZ"},
        "c": None,
    })

    assert await store.query("referredBy", "ABC") == [{"referredBy": "ABC"}]


@pytest.mark.asyncio
async def test_memory_compare_and_update(store):
    await store.update("u1", SEED)

    assert await store.compare_and_update("u1", T0, {"balance": 9.0}) is False
    assert await store.compare_and_update("u1", None, {"mining/lastUpdate": T0 + HOUR}) is True
    assert await store.compare_and_update("u1", None, {"balance": 9.0}) is False
    assert await store.compare_and_update("u1", T0 + HOUR, {"balance": 9.0}) is True
    assert store.snapshot()["u1"]["balance"] == 9.0


# SQL backend

@pytest.mark.asyncio
async def test_sql_update_inserts_then_merges(sql_store):
    await sql_store.update("u1", SEED)
    await sql_store.update("u1", {"mining/lastUpdate": T0 + HOUR, "balance": 4.0})

    assert await sql_store.get("u1") == {
        "balance": 4.0,
        "referralCode": "ABC",
        "referredBy": None,
        "mining": {"isMining": True, "startTime": T0, "lastUpdate": T0 + HOUR},
    }


@pytest.mark.asyncio
async def test_sql_get_missing_user(sql_store):
    assert await sql_store.get("nobody") is None


@pytest.mark.asyncio
async def test_sql_record_without_session_has_no_mining_key(sql_store):
    await sql_store.update("u1", {"balance": 2.0})

    users = await sql_store.get_all()

    assert users == {"u1": {"balance": 2.0, "referralCode": None, "referredBy": None}}


@pytest.mark.asyncio
async def test_sql_rejects_unknown_fields(sql_store):
    with pytest.raises(ValueError):
        await sql_store.update("u1", {"mining/speed": 3})
    with pytest.raises(ValueError):
        await sql_store.query("mining/isMining", True)


@pytest.mark.asyncio
async def test_sql_compare_and_update(sql_store):
    await sql_store.update("u1", SEED)

    assert await sql_store.compare_and_update("u1", T0, {"balance": 9.0}) is False
    assert await sql_store.compare_and_update("u1", None, {"mining/lastUpdate": T0 + HOUR}) is True
    assert await sql_store.compare_and_update("u1", None, {"balance": 9.0}) is False
    assert await sql_store.compare_and_update("u1", T0 + HOUR, {"balance": 9.0}) is True
    assert await sql_store.compare_and_update("ghost", None, {"balance": 1.0}) is False
    assert (await sql_store.get("u1"))["balance"] == 9.0


@pytest.mark.asyncio
async def test_sql_referral_count(sql_store):
    await sql_store.update("ref", SEED)
    await sql_store.update("a", {"referredBy": "ABC", "mining/isMining": True, "mining/startTime": T0})
    await sql_store.update("b", {"referredBy": "ABC", "mining/isMining": False, "mining/startTime": T0})
    await sql_store.update("c", {"referredBy": "ABC"})

    assert await ReferralCounter(sql_store).count_active("ABC") == 1
    assert await ReferralCounter(sql_store).count_active("NOPE") == 0


@pytest.mark.asyncio
async def test_sql_mining_job(sql_store):
    await sql_store.update("u1", {**SEED, "mining/lastUpdate": T0})
    await sql_store.update("u2", {"referredBy": "ABC", "mining/isMining": True, "mining/startTime": T0})
    await sql_store.update("u3", {"balance": 7.0})

    runner = MiningJobRunner(sql_store, FixedTimeSource(T0 + 60 * MINUTE), max_concurrency=1)
    stats = await runner.run()

    assert stats.credited == 2
    assert stats.skipped == 1
    assert stats.succeeded

    users = await sql_store.get_all()
    assert users["u1"]["balance"] == pytest.approx(1.5 + 2.25)
    assert users["u2"]["balance"] == pytest.approx(2.0)
    assert users["u2"]["mining"]["lastUpdate"] == T0 + HOUR
    assert users["u3"]["balance"] == 7.0


@pytest.mark.asyncio
async def test_sql_health_check(sql_store):
    assert await sql_store.health_check() is True


# Time sources

@pytest.mark.asyncio
async def test_database_time_source_reads_server_clock(session_factory):
    database_now = await DatabaseTimeSource(session_factory).now()
    system_now = await SystemTimeSource().now()

    assert isinstance(database_now, int)
    assert abs(database_now - system_now) < 5 * MINUTE


@pytest.mark.asyncio
async def test_database_time_source_failure():
    @asynccontextmanager
    async def broken():
        raise RuntimeError("Database not initialized")
        yield

    with pytest.raises(TimeUnavailableError):
        await DatabaseTimeSource(broken).now()


@pytest.mark.asyncio
async def test_sql_driver_errors_become_store_errors():
    @asynccontextmanager
    async def refused():
        raise ConnectionRefusedError("connection refused")
        yield

    store = SqlUserStore(refused)

    with pytest.raises(StoreUnavailableError):
        await store.get_all()
    with pytest.raises(StoreUnavailableError):
        await store.get("u1")
    with pytest.raises(WriteFailureError):
        await store.compare_and_update("u1", None, {"balance": 1.0})
    assert await store.health_check() is False


@pytest.mark.asyncio
async def test_sql_uninitialized_database_is_a_store_error():
    # default session factory before init_database()
    with pytest.raises(StoreUnavailableError):
        await SqlUserStore().get_all()
