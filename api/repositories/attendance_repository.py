"""Repository for gym check-in (attendance) operations."""

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Attendance
from repositories.user_repository import UserRepository
from repositories.utils import log_slow_query, translate_store_errors
from schemas import AttendanceEvent
from services.weeks import Week


class AttendanceRepository:
    """Append-only check-in log backed by the attendances table.

    Window counts use the (user_id, occurred_at) index and are
    start-inclusive, end-exclusive.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @translate_store_errors("count_events_in_window")
    @log_slow_query("count_events_in_window")
    async def count_events_in_window(self, user_id: str, week: Week) -> int:
        result = await self.db.execute(
            select(func.count(Attendance.id)).where(
                Attendance.user_id == user_id,
                Attendance.occurred_at >= week.start,
                Attendance.occurred_at < week.end,
            )
        )
        return result.scalar_one()

    @translate_store_errors("most_recent_event")
    @log_slow_query("most_recent_event")
    async def most_recent_event(self, user_id: str) -> datetime | None:
        result = await self.db.execute(
            select(func.max(Attendance.occurred_at)).where(
                Attendance.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    @translate_store_errors("record_event")
    @log_slow_query("record_event")
    async def record_event(
        self,
        user_id: str,
        occurred_at: datetime,
        *,
        gym_name: str | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> AttendanceEvent:
        """Insert a check-in, creating the placeholder user row if needed."""
        if occurred_at.tzinfo is None:
            raise ValueError("occurred_at must be timezone-aware")

        await UserRepository(self.db).ensure_exists(user_id)

        attendance = Attendance(
            user_id=user_id,
            occurred_at=occurred_at,
            gym_name=gym_name or "",
            location=location,
            notes=notes,
        )
        self.db.add(attendance)
        await self.db.flush()
        return AttendanceEvent.model_validate(attendance)

    @translate_store_errors("list_events")
    @log_slow_query("list_events")
    async def list_events(
        self, user_id: str, *, limit: int, offset: int = 0
    ) -> list[AttendanceEvent]:
        """Get check-ins for a user, most recent first."""
        result = await self.db.execute(
            select(Attendance)
            .where(Attendance.user_id == user_id)
            .order_by(Attendance.occurred_at.desc(), Attendance.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [AttendanceEvent.model_validate(row) for row in result.scalars().all()]

    @translate_store_errors("count_events")
    @log_slow_query("count_events")
    async def count_events(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count(Attendance.id)).where(Attendance.user_id == user_id)
        )
        return result.scalar_one()

    @translate_store_errors("event_times_between")
    @log_slow_query("event_times_between")
    async def event_times_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[datetime]:
        result = await self.db.execute(
            select(Attendance.occurred_at)
            .where(
                Attendance.user_id == user_id,
                Attendance.occurred_at >= start,
                Attendance.occurred_at < end,
            )
            .order_by(Attendance.occurred_at)
        )
        return list(result.scalars().all())
