"""Ground-truth weekly streak computation.

The auditor derives a user's streak purely from the attendance log:

- A week qualifies when it holds at least ``threshold`` check-ins.
- The current week may still be in progress, so if it does not qualify yet
  it is skipped once (grace) and the run is counted from the previous week.
- The run extends backward until the first non-qualifying week.

Cost is one count query per week in the run, plus one.
"""

from dataclasses import dataclass
from datetime import date, datetime

from repositories.protocols import AttendanceStore
from services.weeks import Week, WeekWindow


@dataclass(frozen=True)
class AuditResult:
    """Streak plus the week bookkeeping needed to persist it."""

    streak: int
    current_week: Week
    last_qualified_week: date | None


class StreakAuditor:
    def __init__(
        self, store: AttendanceStore, window: WeekWindow, threshold: int
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.store = store
        self.window = window
        self.threshold = threshold

    async def qualifies(self, user_id: str, week: Week) -> bool:
        return await self.store.count_events_in_window(user_id, week) >= self.threshold

    async def audit(self, user_id: str, as_of: datetime) -> AuditResult:
        current = self.window.window_containing(as_of)

        if await self.qualifies(user_id, current):
            head = current
        else:
            previous = self.window.previous(current)
            if not await self.qualifies(user_id, previous):
                return AuditResult(0, current, None)
            head = previous

        streak = 1
        week = self.window.previous(head)
        while await self.qualifies(user_id, week):
            streak += 1
            week = self.window.previous(week)

        return AuditResult(streak, current, head.start_date)

    async def recompute(self, user_id: str, as_of: datetime) -> int:
        """Streak as of ``as_of``. Store failures propagate."""
        return (await self.audit(user_id, as_of)).streak
