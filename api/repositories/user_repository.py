"""User repository for database operations."""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from repositories.utils import log_slow_query, translate_store_errors


class UserRepository:
    """Repository for User database operations.

    Users are owned by the identity provider; this service only keeps a
    placeholder row per Clerk id so check-ins and streaks have a parent.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @translate_store_errors("get_user")
    async def get_by_id(self, user_id: str) -> User | None:
        """Get a user by their ID."""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @translate_store_errors("ensure_user")
    @log_slow_query("ensure_user")
    async def ensure_exists(self, user_id: str) -> None:
        """Create the placeholder row unless it already exists.

        INSERT ... ON CONFLICT DO NOTHING keeps concurrent first check-ins
        for the same user from failing on the primary key.
        """
        await self.db.execute(
            pg_insert(User)
            .values(id=user_id, email=f"{user_id}@placeholder.local")
            .on_conflict_do_nothing(index_elements=["id"])
        )

    @translate_store_errors("is_admin")
    @log_slow_query("is_admin")
    async def is_admin(self, user_id: str) -> bool:
        result = await self.db.execute(
            select(User.is_admin).where(User.id == user_id)
        )
        return bool(result.scalar_one_or_none())
