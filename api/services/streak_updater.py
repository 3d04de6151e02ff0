"""Incremental streak update applied after each recorded check-in.

Only two count queries are needed per check-in: the event's week and the
week before it. The prior record supplies the rest. Credit for a week is
tracked through ``last_qualified_week`` so a week is counted exactly once
no matter how many check-ins land in it after reaching the threshold.
"""

from datetime import date, datetime

from repositories.protocols import AttendanceStore
from schemas import StreakRecord
from services.weeks import WeekWindow


def next_streak(
    old_streak: int,
    last_qualified_week: date | None,
    current_week: date,
    current_count: int,
    previous_count: int,
    threshold: int,
) -> tuple[int, date | None]:
    """Streak transition for one check-in.

    Args:
        old_streak: Streak stored before this check-in
        last_qualified_week: Most recent week already credited into old_streak
        current_week: Start date of the check-in's week
        current_count: Check-ins in that week, including this one
        previous_count: Check-ins in the week before
        threshold: Check-ins needed for a week to qualify

    Returns:
        Tuple of (new_streak, last_qualified_week)
    """
    previous_qualified = previous_count >= threshold

    if current_count >= threshold:
        if last_qualified_week == current_week:
            return old_streak, last_qualified_week
        base = old_streak if previous_qualified else 0
        return base + 1, current_week

    if previous_qualified:
        # Grace: the current week is still in progress
        return old_streak, last_qualified_week

    return 0, None


class IncrementalUpdater:
    def __init__(
        self, store: AttendanceStore, window: WeekWindow, threshold: int
    ) -> None:
        self.store = store
        self.window = window
        self.threshold = threshold

    async def apply(
        self, record: StreakRecord, occurred_at: datetime
    ) -> StreakRecord:
        """Return the record as updated by a check-in at ``occurred_at``.

        The event must already be in the store. The result is not persisted.
        """
        week = self.window.window_containing(occurred_at)
        current_count = await self.store.count_events_in_window(record.user_id, week)
        previous_count = await self.store.count_events_in_window(
            record.user_id, self.window.previous(week)
        )

        streak, last_qualified = next_streak(
            record.current_streak,
            record.last_qualified_week,
            week.start_date,
            current_count,
            previous_count,
            self.threshold,
        )
        return record.model_copy(
            update={
                "current_streak": streak,
                "last_qualified_week": last_qualified,
                "last_reconciled_week": week.start_date,
                "last_reconciled_at": occurred_at,
            }
        )
