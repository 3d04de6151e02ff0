"""Store contracts the streak engine depends on.

Both the PostgreSQL repositories and the in-memory stores implement these.
Implementations raise StoreUnavailableError for infrastructure failures and
must never report a failed query as a zero count.
"""

from datetime import datetime
from typing import Protocol

from schemas import AttendanceEvent, StreakRecord
from services.weeks import Week


class StoreUnavailableError(Exception):
    """A store query or write failed; the operation cannot be answered."""


class StreakConflictError(Exception):
    """A compare-and-swap on a StreakRecord lost to a concurrent writer."""

    def __init__(self, user_id: str, expected_version: int | None):
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(
            f"Streak record for {user_id} changed (expected version {expected_version})"
        )


class AttendanceStore(Protocol):
    async def count_events_in_window(self, user_id: str, week: Week) -> int:
        """Events with ``week.start <= occurred_at < week.end``."""
        ...

    async def most_recent_event(self, user_id: str) -> datetime | None: ...

    async def record_event(
        self,
        user_id: str,
        occurred_at: datetime,
        *,
        gym_name: str | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> AttendanceEvent: ...

    async def list_events(
        self, user_id: str, *, limit: int, offset: int = 0
    ) -> list[AttendanceEvent]:
        """Most recent first."""
        ...

    async def count_events(self, user_id: str) -> int: ...

    async def event_times_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[datetime]:
        """``occurred_at`` of events in ``[start, end)``, oldest first."""
        ...


class StreakRecordStore(Protocol):
    async def get(self, user_id: str) -> StreakRecord | None: ...

    async def save(
        self, record: StreakRecord, *, expected_version: int | None
    ) -> StreakRecord:
        """Compare-and-swap write.

        ``expected_version=None`` creates the record and fails if one exists.
        Raises StreakConflictError when the stored version differs. Returns
        the stored record with its new version.
        """
        ...

    async def list_user_ids(self, *, min_streak: int = 0) -> list[str]: ...
