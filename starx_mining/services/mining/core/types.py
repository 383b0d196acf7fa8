"""
Types for mining accrual processing.
"""

import math
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from starx_mining.core.config import MiningConfig

# Epoch milliseconds; stored values may be fractional and are kept as-is
Timestamp = Union[int, float]


class ProcessorStatus(Enum):
    """Status of the mining job runner."""
    IDLE = "idle"
    RUNNING = "running"


class UserOutcome(Enum):
    """Result of processing a single user within a batch."""
    CREDITED = "credited"
    SKIPPED = "skipped"  # inert user or nothing elapsed
    FAILED = "failed"  # store failure or unexpected error for this user
    CONFLICT = "conflict"  # conditional write kept losing to a concurrent writer


def _coerce_balance(value: Any) -> float:
    """Numeric balance or 0 for anything missing or non-numeric."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _coerce_timestamp(value: Any) -> Optional[Timestamp]:
    """Epoch milliseconds, or None when absent or not a usable number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def _coerce_code(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


@dataclass(frozen=True)
class MiningSession:
    """Mining session sub-record of a user."""
    is_mining: bool
    start_time: Optional[Timestamp]
    last_update: Optional[Timestamp]

    @classmethod
    def from_mapping(cls, data: Any) -> Optional["MiningSession"]:
        if not isinstance(data, Mapping):
            return None
        return cls(
            is_mining=data.get("isMining") is True,
            start_time=_coerce_timestamp(data.get("startTime")),
            last_update=_coerce_timestamp(data.get("lastUpdate")),
        )

    @property
    def is_active(self) -> bool:
        """Open session with a known start; anything else is inert."""
        return self.is_mining and bool(self.start_time)


@dataclass(frozen=True)
class UserRecord:
    """Parsed view of one persisted user record."""
    user_id: str
    balance: float = 0.0
    referral_code: Optional[str] = None
    referred_by: Optional[str] = None
    mining: Optional[MiningSession] = None
    # mining.lastUpdate exactly as stored, used as the compare-and-swap token
    stored_last_update: Any = None

    @classmethod
    def from_mapping(cls, user_id: str, data: Any) -> "UserRecord":
        """Parse a raw record; malformed data yields an inert user, never an error."""
        if not isinstance(data, Mapping):
            return cls(user_id=user_id)

        raw_mining = data.get("mining")
        stored_last_update = None
        if isinstance(raw_mining, Mapping):
            stored_last_update = raw_mining.get("lastUpdate")

        return cls(
            user_id=user_id,
            balance=_coerce_balance(data.get("balance")),
            referral_code=_coerce_code(data.get("referralCode")),
            referred_by=_coerce_code(data.get("referredBy")),
            mining=MiningSession.from_mapping(raw_mining),
            stored_last_update=stored_last_update,
        )

    @property
    def is_mining(self) -> bool:
        return self.mining is not None and self.mining.is_mining


@dataclass(frozen=True)
class AccrualResult:
    """Coins earned by one user for one batch and the session state to persist."""
    user_id: str
    coins_added: float
    speed_boost: float
    elapsed_minutes: int
    session_done: bool
    new_balance: float
    new_last_update: Timestamp
    expected_last_update: Any = None

    @property
    def is_mining(self) -> bool:
        return not self.session_done

    def to_update_fields(self) -> Dict[str, Any]:
        """Slash-path fields written back to the store."""
        return {
            MiningConfig.BALANCE_FIELD: self.new_balance,
            MiningConfig.IS_MINING_FIELD: self.is_mining,
            MiningConfig.LAST_UPDATE_FIELD: self.new_last_update,
        }


@dataclass
class UserProcessingResult:
    """Outcome of one user's task inside a batch."""
    user_id: str
    outcome: UserOutcome
    accrual: Optional[AccrualResult] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class JobStats:
    """Statistics for one mining job run."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    batch_now: Optional[int] = None
    total_users: int = 0
    credited: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0
    coins_credited: float = 0.0
    total_processing_time: float = 0.0
    first_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    # Batch stopped before every user was processed (time or store unavailable)
    aborted: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.aborted and self.failed == 0 and self.conflicts == 0

    @property
    def success_rate(self) -> float:
        if self.total_users == 0:
            return 1.0
        return (self.credited + self.skipped) / self.total_users

    def record(self, result: UserProcessingResult) -> None:
        """Fold one user's outcome into the aggregate counts."""
        if result.outcome is UserOutcome.CREDITED:
            self.credited += 1
            if result.accrual is not None:
                self.coins_credited += result.accrual.coins_added
        elif result.outcome is UserOutcome.SKIPPED:
            self.skipped += 1
        elif result.outcome is UserOutcome.FAILED:
            self.failed += 1
        elif result.outcome is UserOutcome.CONFLICT:
            self.conflicts += 1

        if result.error:
            message = f"{result.user_id}: {result.error}"
            if self.first_error is None:
                self.first_error = message
            self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "batch_now": self.batch_now,
            "total_users": self.total_users,
            "credited": self.credited,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "coins_credited": round(self.coins_credited, 5),
            "processing_time_seconds": round(self.total_processing_time, 3),
            "succeeded": self.succeeded,
            "aborted": self.aborted,
            "first_error": self.first_error,
            "errors": self.errors[:5],
        }
