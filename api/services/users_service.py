"""User service for admin checks."""

from sqlalchemy.ext.asyncio import AsyncSession

from core.telemetry import track_operation
from repositories.user_repository import UserRepository


@track_operation("user_is_admin")
async def is_admin(db: AsyncSession, user_id: str) -> bool:
    """Unknown users are never admins."""
    return await UserRepository(db).is_admin(user_id)
