"""In-memory reference stores.

Used by the engine's unit and property tests and as the verified fake for
the PostgreSQL repositories. Every call yields to the event loop once so
concurrent coroutines interleave the way they would against a database.
"""

import asyncio
import bisect
from collections import defaultdict
from datetime import datetime

from repositories.protocols import StoreUnavailableError, StreakConflictError
from schemas import AttendanceEvent, StreakRecord
from services.weeks import Week


class InMemoryAttendanceStore:
    """Append-only check-in log kept sorted by occurred_at per user."""

    def __init__(self) -> None:
        self._times: dict[str, list[datetime]] = defaultdict(list)
        self._events: dict[str, list[AttendanceEvent]] = defaultdict(list)
        self._next_id = 1
        self.available = True

    async def _io(self) -> None:
        await asyncio.sleep(0)
        if not self.available:
            raise StoreUnavailableError("attendance store offline")

    async def count_events_in_window(self, user_id: str, week: Week) -> int:
        await self._io()
        times = self._times.get(user_id, [])
        return bisect.bisect_left(times, week.end) - bisect.bisect_left(
            times, week.start
        )

    async def most_recent_event(self, user_id: str) -> datetime | None:
        await self._io()
        times = self._times.get(user_id)
        return times[-1] if times else None

    async def record_event(
        self,
        user_id: str,
        occurred_at: datetime,
        *,
        gym_name: str | None = None,
        location: str | None = None,
        notes: str | None = None,
    ) -> AttendanceEvent:
        await self._io()
        if occurred_at.tzinfo is None:
            raise ValueError("occurred_at must be timezone-aware")
        event = AttendanceEvent(
            id=self._next_id,
            user_id=user_id,
            occurred_at=occurred_at,
            gym_name=gym_name,
            location=location,
            notes=notes,
        )
        self._next_id += 1
        index = bisect.bisect_right(self._times[user_id], occurred_at)
        self._times[user_id].insert(index, occurred_at)
        self._events[user_id].insert(index, event)
        return event

    async def list_events(
        self, user_id: str, *, limit: int, offset: int = 0
    ) -> list[AttendanceEvent]:
        await self._io()
        newest_first = list(reversed(self._events.get(user_id, [])))
        return newest_first[offset : offset + limit]

    async def count_events(self, user_id: str) -> int:
        await self._io()
        return len(self._times.get(user_id, []))

    async def event_times_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[datetime]:
        await self._io()
        times = self._times.get(user_id, [])
        return times[bisect.bisect_left(times, start) : bisect.bisect_left(times, end)]


class InMemoryStreakRecordStore:
    """StreakRecord map with atomic compare-and-swap on ``version``."""

    def __init__(self) -> None:
        self._records: dict[str, StreakRecord] = {}
        self.available = True

    async def _io(self) -> None:
        await asyncio.sleep(0)
        if not self.available:
            raise StoreUnavailableError("streak store offline")

    async def get(self, user_id: str) -> StreakRecord | None:
        await self._io()
        return self._records.get(user_id)

    async def save(
        self, record: StreakRecord, *, expected_version: int | None
    ) -> StreakRecord:
        await self._io()
        # No await between the check and the write: atomic on the event loop
        current = self._records.get(record.user_id)
        current_version = current.version if current is not None else None
        if current_version != expected_version:
            raise StreakConflictError(record.user_id, expected_version)

        stored = record.model_copy(update={"version": (expected_version or 0) + 1})
        self._records[record.user_id] = stored
        return stored

    async def list_user_ids(self, *, min_streak: int = 0) -> list[str]:
        await self._io()
        return sorted(
            user_id
            for user_id, record in self._records.items()
            if record.current_streak >= min_streak
        )
