"""
User store interface shared by all persistence backends.

Records use the nested persisted layout::

    {
        "balance": 12.5,
        "referralCode": "ABC",
        "referredBy": "XYZ",
        "mining": {"isMining": True, "startTime": 1700000000000, "lastUpdate": ...},
    }

Writes take slash-path fields (``"mining/lastUpdate"``) and merge only those
fields into the stored record.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class UserStore(ABC):
    """Key-value store of user records keyed by user id."""

    @abstractmethod
    async def get_all(self) -> Dict[str, Dict[str, Any]]:
        """Return every user record keyed by user id."""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return one user record, or None if it does not exist."""

    @abstractmethod
    async def query(self, field: str, value: Any) -> List[Dict[str, Any]]:
        """Return records whose top-level ``field`` equals ``value``."""

    @abstractmethod
    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the record, creating it when absent."""

    @abstractmethod
    async def compare_and_update(
        self,
        user_id: str,
        expected_last_update: Any,
        fields: Dict[str, Any]
    ) -> bool:
        """
        Merge ``fields`` only if ``mining.lastUpdate`` still equals ``expected_last_update``.

        Returns:
            True if the write was applied, False on a concurrent modification
        """

    async def health_check(self) -> bool:
        return True


def split_path(path: str) -> List[str]:
    return [part for part in path.split("/") if part]
