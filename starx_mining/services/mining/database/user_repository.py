"""
Repository for user records stored in the SQL database.
"""

from typing import Any, AsyncContextManager, Callable, Dict, List, Optional
import structlog

from sqlalchemy import select, update, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from starx_mining.core.database import get_async_session
from starx_mining.core.exceptions import StoreUnavailableError, WriteFailureError
from starx_mining.models.user import MiningUser
from .base import UserStore


logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]

# asyncpg connect failures surface as OSError, an uninitialized engine as RuntimeError
DRIVER_ERRORS = (SQLAlchemyError, OSError, RuntimeError)


class SqlUserStore(UserStore):
    """
    User store backed by the ``mining_users`` table.

    Every call runs in its own session so per-user tasks of a batch never
    share a transaction. The conditional write is a single UPDATE guarded on
    the previously read ``last_update``.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory or get_async_session
        self.logger = logger.bind(service="sql_user_store")

    async def get_all(self) -> Dict[str, Dict[str, Any]]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(MiningUser))
                users = {user.id: user.to_record() for user in result.scalars().all()}

            self.logger.debug("Loaded user records", count=len(users))
            return users

        except DRIVER_ERRORS as e:
            self.logger.error("Failed to load user records", error=str(e))
            raise StoreUnavailableError("Failed to load user records", {"error": str(e)}) from e

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.session_factory() as db:
                user = await db.get(MiningUser, user_id)
                return user.to_record() if user is not None else None

        except DRIVER_ERRORS as e:
            self.logger.error("Failed to load user record", user_id=user_id, error=str(e))
            raise StoreUnavailableError(
                f"Failed to load user {user_id}",
                {"user_id": user_id, "error": str(e)}
            ) from e

    async def query(self, field: str, value: Any) -> List[Dict[str, Any]]:
        column_name = MiningUser.FIELD_COLUMNS.get(field)
        if column_name is None or "/" in field:
            raise ValueError(f"Field {field} cannot be queried")

        column = getattr(MiningUser, column_name)
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(MiningUser).where(column == value))
                return [user.to_record() for user in result.scalars().all()]

        except DRIVER_ERRORS as e:
            self.logger.error("User query failed", field=field, error=str(e))
            raise StoreUnavailableError(
                f"Failed to query users by {field}",
                {"field": field, "error": str(e)}
            ) from e

    async def update(self, user_id: str, fields: Dict[str, Any]) -> None:
        values = MiningUser.columns_for(fields)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(MiningUser)
                    .where(MiningUser.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    db.add(MiningUser(id=user_id, **values))

        except DRIVER_ERRORS as e:
            self.logger.error("User update failed", user_id=user_id, error=str(e))
            raise WriteFailureError(user_id, str(e)) from e

    async def compare_and_update(
        self,
        user_id: str,
        expected_last_update: Any,
        fields: Dict[str, Any]
    ) -> bool:
        values = MiningUser.columns_for(fields)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(MiningUser)
                    .where(MiningUser.id == user_id)
                    .where(MiningUser.last_update.is_not_distinct_from(expected_last_update))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                applied = result.rowcount == 1

        except DRIVER_ERRORS as e:
            self.logger.error("Conditional user update failed", user_id=user_id, error=str(e))
            raise WriteFailureError(user_id, str(e)) from e

        if not applied:
            self.logger.debug("Conditional write rejected", user_id=user_id)
        return applied

    async def health_check(self) -> bool:
        try:
            async with self.session_factory() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.logger.error("User store health check failed", error=str(e))
            return False
