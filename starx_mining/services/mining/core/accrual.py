"""
Per-user mining accrual.

Coins accrue per whole minute between the last credited instant and the
batch time, capped at the session end. Sessions still in progress round to
the nearest minute; a finishing session truncates to the whole minutes left
before its end, so the final credit never runs past the session boundary.
"""

import math
from dataclasses import dataclass
from typing import Optional
import structlog

from starx_mining.core.config import MiningConfig
from .referrals import ReferralCounter
from .types import AccrualResult, Timestamp, UserRecord


logger = structlog.get_logger(__name__)


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (``round()`` would round halves to even)."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class AccrualWindow:
    """Uncredited part of a session as seen at one batch time."""
    last_update: Timestamp
    session_end: Timestamp
    credit_until: Timestamp
    session_done: bool
    elapsed_minutes: int


def accrual_window(record: UserRecord, now: int) -> Optional[AccrualWindow]:
    """Return the creditable window, or None for an inert user."""
    session = record.mining
    if session is None or not session.is_active:
        return None

    last_update = session.last_update or session.start_time
    session_end = session.start_time + MiningConfig.MINING_DURATION_MS
    credit_until = min(now, session_end)
    session_done = credit_until >= session_end

    if session_done:
        elapsed_minutes = (session_end - last_update) // MiningConfig.MINUTE_MS
    else:
        elapsed_minutes = round_half_up((credit_until - last_update) / MiningConfig.MINUTE_MS)

    return AccrualWindow(
        last_update=last_update,
        session_end=session_end,
        credit_until=credit_until,
        session_done=session_done,
        elapsed_minutes=int(elapsed_minutes),
    )


def speed_boost(active_referrals: int) -> float:
    return active_referrals * MiningConfig.BOOST_PER_REFERRAL


def compute_accrual(record: UserRecord, now: int, active_referrals: int = 0) -> Optional[AccrualResult]:
    """
    Compute the credit for one user at ``now``.

    Returns None when the user is inert or no whole minute has elapsed
    (including clock skew where the last update lies in the future).
    """
    window = accrual_window(record, now)
    if window is None or window.elapsed_minutes <= 0:
        return None

    boost = speed_boost(active_referrals) if record.referral_code else 0.0
    coins_per_minute = (MiningConfig.BASE_COINS_PER_HOUR + boost) / 60.0
    coins_to_add = window.elapsed_minutes * coins_per_minute

    return AccrualResult(
        user_id=record.user_id,
        coins_added=coins_to_add,
        speed_boost=boost,
        elapsed_minutes=window.elapsed_minutes,
        session_done=window.session_done,
        new_balance=record.balance + coins_to_add,
        new_last_update=window.credit_until,
        expected_last_update=record.stored_last_update,
    )


class AccrualEngine:
    """Evaluates accrual for users, reading live referral counts from the store."""

    def __init__(self, referral_counter: ReferralCounter):
        self.referral_counter = referral_counter
        self.logger = logger.bind(service="accrual_engine")

    async def evaluate(self, record: UserRecord, now: int) -> Optional[AccrualResult]:
        """Return the accrual for ``record`` at ``now``, or None for a no-op."""
        window = accrual_window(record, now)
        if window is None or window.elapsed_minutes <= 0:
            return None

        active_referrals = 0
        if record.referral_code:
            active_referrals = await self.referral_counter.count_active(record.referral_code)

        return compute_accrual(record, now, active_referrals)

    def log_credit(self, result: AccrualResult) -> None:
        """Emit the trace line for a credited user."""
        self.logger.info(
            "User credited",
            user_id=result.user_id,
            coins_added=f"{result.coins_added:.5f}",
            speed_boost=f"{result.speed_boost:.2f}",
            elapsed_minutes=result.elapsed_minutes,
            mining="ended" if result.session_done else "continues",
        )
