"""
Mining user model - one row per user id with the mining session flattened into columns.
"""

from typing import Any, Dict, Optional

from sqlalchemy import String, Float, BigInteger, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class MiningUser(BaseModel, TimestampMixin):
    """User balance, referral links and mining session state."""

    __tablename__ = "mining_users"

    id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
        comment="User identifier"
    )

    balance: Mapped[float] = mapped_column(
        Float,
        default=0.0,
        comment="Mined coin balance"
    )

    referral_code: Mapped[Optional[str]] = mapped_column(
        String(64),
        unique=True,
        comment="Code identifying this user as a referrer"
    )

    referred_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="Referral code of the user who referred this one"
    )

    # Mining session (all NULL when the user never started mining)
    is_mining: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        comment="Whether a mining session is open"
    )

    start_time: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        comment="Session start, epoch milliseconds"
    )

    last_update: Mapped[Optional[int]] = mapped_column(
        BigInteger,
        comment="Last credited instant, epoch milliseconds"
    )

    __table_args__ = (
        Index("idx_mining_users_referred_by", "referred_by"),
        Index("idx_mining_users_is_mining", "is_mining"),
    )

    # Persisted (slash path) field name -> column attribute
    FIELD_COLUMNS = {
        "balance": "balance",
        "referralCode": "referral_code",
        "referredBy": "referred_by",
        "mining/isMining": "is_mining",
        "mining/startTime": "start_time",
        "mining/lastUpdate": "last_update",
    }

    def __repr__(self) -> str:
        return f"<MiningUser(id={self.id}, balance={self.balance}, is_mining={self.is_mining})>"

    def to_record(self) -> Dict[str, Any]:
        """Render the row in the nested persisted layout."""
        record: Dict[str, Any] = {
            "balance": self.balance,
            "referralCode": self.referral_code,
            "referredBy": self.referred_by,
        }
        if self.is_mining is not None or self.start_time is not None or self.last_update is not None:
            record["mining"] = {
                "isMining": self.is_mining,
                "startTime": self.start_time,
                "lastUpdate": self.last_update,
            }
        return record

    @classmethod
    def columns_for(cls, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Translate slash-path fields into column values, rejecting unknown paths."""
        values = {}
        for path, value in fields.items():
            column = cls.FIELD_COLUMNS.get(path)
            if column is None:
                raise ValueError(f"Unknown user field: {path}")
            values[column] = value
        return values
