"""
Active referral counting for the mining speed boost.
"""

from typing import Optional
import structlog

from ..database.base import UserStore
from .types import UserRecord


logger = structlog.get_logger(__name__)


class ReferralCounter:
    """Counts referred users that currently have an open mining session."""

    REFERRED_BY_FIELD = "referredBy"

    def __init__(self, store: UserStore):
        self.store = store
        self.logger = logger.bind(service="referral_counter")

    async def count_active(self, referral_code: Optional[str]) -> int:
        """
        Count users referred by ``referral_code`` whose session is mining.

        The store is read at call time, so users already written earlier in
        the same batch are seen with their new state.
        """
        if not referral_code:
            return 0

        referred = await self.store.query(self.REFERRED_BY_FIELD, referral_code)

        count = sum(
            1 for record in referred
            if UserRecord.from_mapping("", record).is_mining
        )

        self.logger.debug(
            "Counted active referrals",
            referral_code=referral_code,
            referred=len(referred),
            active=count
        )
        return count
