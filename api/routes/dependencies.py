"""Shared FastAPI dependencies for the streak routes."""

from typing import Annotated

from fastapi import Depends, HTTPException

from core.auth import UserId
from core.database import DbSession
from services.streaks_service import StreakEngine
from services.users_service import is_admin


def get_streak_engine(db: DbSession) -> StreakEngine:
    """Streak engine bound to the request's database session."""
    return StreakEngine.for_session(db)


StreakEngineDep = Annotated[StreakEngine, Depends(get_streak_engine)]


async def require_admin(db: DbSession, user_id: UserId) -> str:
    """Verify user is admin, raise 403 if not."""
    if not await is_admin(db, user_id):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user_id


AdminUserId = Annotated[str, Depends(require_admin)]
