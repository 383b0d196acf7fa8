"""
Shared fixtures and helpers for mining tests.
"""

from typing import Any, Dict, Optional

import pytest

from starx_mining.core.exceptions import TimeUnavailableError
from starx_mining.services.mining.database import InMemoryUserStore
from starx_mining.services.mining.time_source import TimeSource


MINUTE = 60 * 1000
HOUR = 60 * MINUTE

# Session start used across tests (2023-11-14T22:13:20Z)
T0 = 1_700_000_000_000


class FixedTimeSource(TimeSource):
    """Test clock returning a settable timestamp and counting reads."""

    def __init__(self, now: int):
        self.value = now
        self.calls = 0

    async def now(self) -> int:
        self.calls += 1
        return self.value


class FailingTimeSource(TimeSource):
    async def now(self) -> int:
        raise TimeUnavailableError("clock offline")


def mining_user(
    start_time: Optional[int] = T0,
    last_update: Optional[int] = None,
    is_mining: bool = True,
    balance: Any = 0.0,
    referral_code: Optional[str] = None,
    referred_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a raw user record in the persisted layout."""
    mining: Dict[str, Any] = {"isMining": is_mining}
    if start_time is not None:
        mining["startTime"] = start_time
    if last_update is not None:
        mining["lastUpdate"] = last_update

    record: Dict[str, Any] = {"balance": balance, "mining": mining}
    if referral_code is not None:
        record["referralCode"] = referral_code
    if referred_by is not None:
        record["referredBy"] = referred_by
    return record


@pytest.fixture
def store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def clock() -> FixedTimeSource:
    return FixedTimeSource(T0 + 90 * MINUTE)
