"""
Core mining accrual components.
"""

from .types import (
    ProcessorStatus,
    UserOutcome,
    MiningSession,
    UserRecord,
    AccrualResult,
    UserProcessingResult,
    JobStats,
)
from .accrual import AccrualEngine, compute_accrual
from .referrals import ReferralCounter
from .processor import MiningJobRunner

__all__ = [
    "ProcessorStatus",
    "UserOutcome",
    "MiningSession",
    "UserRecord",
    "AccrualResult",
    "UserProcessingResult",
    "JobStats",
    "AccrualEngine",
    "compute_accrual",
    "ReferralCounter",
    "MiningJobRunner",
]
