"""
Test per-user accrual computation.
"""

import pytest

from starx_mining.services.mining.core.accrual import (
    AccrualEngine,
    compute_accrual,
    round_half_up,
)
from starx_mining.services.mining.core.referrals import ReferralCounter
from starx_mining.services.mining.core.types import UserRecord
from starx_mining.services.mining.database import InMemoryUserStore

from .conftest import HOUR, MINUTE, T0, mining_user


def record(data, user_id="u1"):
    return UserRecord.from_mapping(user_id, data)


class QueryCountingStore(InMemoryUserStore):
    def __init__(self, users=None):
        super().__init__(users)
        self.queries = 0

    async def query(self, field, value):
        self.queries += 1
        return await super().query(field, value)


def test_round_half_up():
    assert round_half_up(90.5) == 91
    assert round_half_up(89.5) == 90
    assert round_half_up(90.49) == 90
    assert round_half_up(-0.5) == 0


@pytest.mark.parametrize("data", [
    {"balance": 10},
    mining_user(is_mining=False),
    mining_user(start_time=None),
    {"balance": 1, "mining": "not-a-session"},
    {"balance": 1, "mining": {"isMining": "true", "startTime": T0}},
    {"balance": 1, "mining": {"isMining": True, "startTime": "yesterday"}},
    None,
])
def test_inert_users_produce_nothing(data):
    assert compute_accrual(record(data), T0 + 10 * HOUR) is None


def test_in_progress_session_rounds_to_nearest_minute():
    user = record(mining_user(last_update=T0, balance=5.0))

    result = compute_accrual(user, T0 + 90 * MINUTE)

    assert result.elapsed_minutes == 90
    assert result.coins_added == pytest.approx(3.0)
    assert result.new_balance == pytest.approx(8.0)
    assert result.new_last_update == T0 + 90 * MINUTE
    assert result.session_done is False
    assert result.is_mining is True


def test_in_progress_half_minute_rounds_up():
    user = record(mining_user(last_update=T0))

    assert compute_accrual(user, T0 + 90 * MINUTE + 30_000).elapsed_minutes == 91
    assert compute_accrual(user, T0 + 90 * MINUTE + 29_999).elapsed_minutes == 90


def test_last_update_falls_back_to_start_time():
    user = record(mining_user(last_update=None))

    result = compute_accrual(user, T0 + 2 * HOUR)

    assert result.elapsed_minutes == 120
    assert result.expected_last_update is None


def test_completed_session_truncates_to_session_end():
    user = record(mining_user(last_update=T0 + 23 * HOUR + 50 * MINUTE, balance=1.0))

    result = compute_accrual(user, T0 + 25 * HOUR)

    assert result.session_done is True
    assert result.is_mining is False
    assert result.elapsed_minutes == 10
    assert result.new_last_update == T0 + 24 * HOUR
    assert result.coins_added == pytest.approx(10 * 2.0 / 60)


def test_completed_session_floors_partial_minute():
    user = record(mining_user(last_update=T0 + 23 * HOUR + 50 * MINUTE + 30_000))

    result = compute_accrual(user, T0 + 24 * HOUR)

    assert result.session_done is True
    assert result.elapsed_minutes == 9


def test_completed_session_with_under_a_minute_left_stays_open():
    user = record(mining_user(last_update=T0 + 24 * HOUR - 30_000))

    assert compute_accrual(user, T0 + 30 * HOUR) is None


def test_referral_boost_raises_rate():
    user = record(mining_user(last_update=T0, referral_code="ABC"))

    result = compute_accrual(user, T0 + 60 * MINUTE, active_referrals=3)

    assert result.speed_boost == pytest.approx(0.75)
    assert result.coins_added == pytest.approx(60 * 2.75 / 60)


def test_boost_requires_referral_code():
    user = record(mining_user(last_update=T0))

    result = compute_accrual(user, T0 + 60 * MINUTE, active_referrals=3)

    assert result.speed_boost == 0.0
    assert result.coins_added == pytest.approx(2.0)


def test_last_update_in_future_is_skipped():
    user = record(mining_user(last_update=T0 + 5 * HOUR))

    assert compute_accrual(user, T0 + 4 * HOUR) is None


def test_no_elapsed_time_is_skipped():
    user = record(mining_user(last_update=T0 + HOUR))

    assert compute_accrual(user, T0 + HOUR) is None
    assert compute_accrual(user, T0 + HOUR + 29_999) is None


@pytest.mark.parametrize("raw, expected", [
    (None, 0.0),
    ("abc", 0.0),
    ("12.5", 12.5),
    (float("nan"), 0.0),
    (True, 0.0),
    (7, 7.0),
])
def test_balance_coercion(raw, expected):
    user = record(mining_user(last_update=T0, balance=raw))

    result = compute_accrual(user, T0 + 60 * MINUTE)

    assert result.new_balance == pytest.approx(expected + 2.0)


def test_update_fields_use_persisted_paths():
    user = record(mining_user(last_update=T0, balance=1.0))

    fields = compute_accrual(user, T0 + 60 * MINUTE).to_update_fields()

    assert fields == {
        "balance": pytest.approx(3.0),
        "mining/isMining": True,
        "mining/lastUpdate": T0 + 60 * MINUTE,
    }


@pytest.mark.asyncio
async def test_engine_reads_live_referral_count():
    store = QueryCountingStore({
        "r1": mining_user(referred_by="ABC"),
        "r2": mining_user(referred_by="ABC", is_mining=False),
    })
    engine = AccrualEngine(ReferralCounter(store))

    result = await engine.evaluate(record(mining_user(last_update=T0, referral_code="ABC")), T0 + HOUR)

    assert store.queries == 1
    assert result.speed_boost == pytest.approx(0.25)
    assert result.coins_added == pytest.approx(2.25)


@pytest.mark.asyncio
async def test_engine_skips_referral_query_when_not_needed():
    store = QueryCountingStore()
    engine = AccrualEngine(ReferralCounter(store))

    assert await engine.evaluate(record(mining_user(last_update=T0 + HOUR, referral_code="ABC")), T0 + HOUR) is None
    assert await engine.evaluate(record(mining_user(last_update=T0)), T0 + HOUR) is not None
    assert store.queries == 0
