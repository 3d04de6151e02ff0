"""Repository for persisted weekly streak records."""

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from models import UserStreak, utcnow
from repositories.protocols import StreakConflictError
from repositories.utils import log_slow_query, translate_store_errors
from schemas import StreakRecord


class StreakRepository:
    """StreakRecord storage with compare-and-swap on ``version``.

    Updates are ``UPDATE ... WHERE version = :expected``; a zero rowcount is
    a lost race. Creation is ``INSERT ... ON CONFLICT DO NOTHING`` so two
    first check-ins cannot both create the row.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @translate_store_errors("get_streak")
    @log_slow_query("get_streak")
    async def get(self, user_id: str) -> StreakRecord | None:
        # populate_existing: a CAS retry must see the row as committed now
        result = await self.db.execute(
            select(UserStreak)
            .where(UserStreak.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return StreakRecord.model_validate(row) if row is not None else None

    @translate_store_errors("save_streak")
    @log_slow_query("save_streak")
    async def save(
        self, record: StreakRecord, *, expected_version: int | None
    ) -> StreakRecord:
        values = {
            "current_streak": record.current_streak,
            "last_reconciled_week": record.last_reconciled_week,
            "last_qualified_week": record.last_qualified_week,
            "last_reconciled_at": record.last_reconciled_at,
            "updated_at": utcnow(),
        }

        if expected_version is None:
            new_version = 1
            inserted = await self._insert_if_absent(record.user_id, values)
            if not inserted:
                raise StreakConflictError(record.user_id, expected_version)
        else:
            new_version = expected_version + 1
            result = await self.db.execute(
                update(UserStreak)
                .where(
                    UserStreak.user_id == record.user_id,
                    UserStreak.version == expected_version,
                )
                .values(version=new_version, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StreakConflictError(record.user_id, expected_version)

        return record.model_copy(update={"version": new_version})

    async def _insert_if_absent(self, user_id: str, values: dict) -> bool:
        stmt = (
            pg_insert(UserStreak)
            .values(user_id=user_id, version=1, **values)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    @translate_store_errors("list_streak_user_ids")
    @log_slow_query("list_streak_user_ids")
    async def list_user_ids(self, *, min_streak: int = 0) -> list[str]:
        result = await self.db.execute(
            select(UserStreak.user_id)
            .where(UserStreak.current_streak >= min_streak)
            .order_by(UserStreak.user_id)
        )
        return list(result.scalars().all())
