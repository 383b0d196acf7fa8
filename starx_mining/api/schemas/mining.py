"""
Mining API schemas.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from starx_mining.services.mining.core.types import UserRecord


class UserBalance(BaseModel):
    """Read-only balance view of one user."""
    user_id: str
    balance: float = Field(description="Mined coin balance")
    is_mining: bool = Field(description="Whether a mining session is open")
    last_update: Optional[int] = Field(default=None, description="Last credited instant, epoch ms")

    @classmethod
    def from_record(cls, user_id: str, data: Any) -> "UserBalance":
        record = UserRecord.from_mapping(user_id, data)
        return cls(
            user_id=user_id,
            balance=round(record.balance, 5),
            is_mining=record.is_mining,
            last_update=record.mining.last_update if record.mining else None,
        )


class BalancesResponse(BaseModel):
    """List of user balances."""
    total: int
    users: List[UserBalance]


class JobRunResponse(BaseModel):
    """Outcome of one mining job run."""
    succeeded: bool
    processing_stats: Dict[str, Any]
