"""
In-memory user store for local runs and tests.
"""

import copy
from typing import Any, Dict, List, Optional

import structlog

from .base import UserStore, split_path


logger = structlog.get_logger(__name__)


class InMemoryUserStore(UserStore):
    """
    Dict-of-dicts store with the same merge semantics as the database backend.

    Every method copies records in and out so callers never share state with
    the store. Conditional writes have no await between check and write, so
    they are atomic within one event loop.
    """

    def __init__(self, users: Optional[Dict[str, Dict[str, Any]]] = None):
        self._users: Dict[str, Dict[str, Any]] = copy.deepcopy(users or {})
        self.logger = logger.bind(service="in_memory_user_store")

    async def get_all(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._users)

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        record = self._users.get(user_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(self, field: str, value: Any) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(record)
            for record in self._users.values()
            if isinstance(record, dict) and record.get(field) == value
        ]

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        record = self._users.get(user_id)
        if not isinstance(record, dict):
            record = {}
            self._users[user_id] = record

        for path, value in fields.items():
            parts = split_path(path)
            if not parts:
                raise ValueError(f"Empty field path for user {user_id}")
            target = record
            for part in parts[:-1]:
                child = target.get(part)
                if not isinstance(child, dict):
                    child = {}
                    target[part] = child
                target = child
            target[parts[-1]] = copy.deepcopy(value)

    async def compare_and_update(
        self,
        user_id: str,
        expected_last_update: Any,
        fields: Dict[str, Any]
    ) -> bool:
        if self._current_last_update(user_id) != expected_last_update:
            self.logger.debug("Conditional write rejected", user_id=user_id)
            return False
        await self.update(user_id, fields)
        return True

    def _current_last_update(self, user_id: str) -> Any:
        record = self._users.get(user_id)
        if not isinstance(record, dict):
            return None
        mining = record.get("mining")
        if not isinstance(mining, dict):
            return None
        return mining.get("lastUpdate")

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Synchronous copy of all records (for the API and tests)."""
        return copy.deepcopy(self._users)
