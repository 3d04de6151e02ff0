"""When to replace the incremental streak update with a full audit.

The incremental path is only valid when the stored record accounts for every
week up to the one before the event. Anything else (no record, a record that
fell behind, an event older than the record) goes through the auditor.
Reads only reconcile a streak that can no longer be alive.
"""

import random
from datetime import datetime
from enum import Enum as PyEnum

from schemas import StreakRecord
from services.weeks import WeekWindow


class ReconciliationReason(str, PyEnum):
    """Why a full audit replaced the incremental path."""

    BULK_REPAIR = "bulk_repair"
    LAPSED_ON_READ = "lapsed_on_read"
    MISSING_RECORD = "missing_record"
    UNTRACKED_HISTORY = "untracked_history"
    OUT_OF_ORDER = "out_of_order"
    SPOT_CHECK = "spot_check"
    MANUAL = "manual"


class ReconciliationPolicy:
    def __init__(
        self,
        window: WeekWindow,
        spot_check_rate: float = 0.0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= spot_check_rate <= 1.0:
            raise ValueError("spot_check_rate must be between 0 and 1")
        self.window = window
        self.spot_check_rate = spot_check_rate
        self.rng = rng or random.Random()

    def on_write(
        self, record: StreakRecord | None, occurred_at: datetime
    ) -> ReconciliationReason | None:
        """Reason to audit after a check-in, or None to apply incrementally."""
        if record is None:
            return ReconciliationReason.MISSING_RECORD

        reconciled_at = record.last_reconciled_at
        if reconciled_at is not None and occurred_at < reconciled_at:
            return ReconciliationReason.OUT_OF_ORDER

        week = self.window.window_containing(occurred_at)
        previous_start = self.window.previous(week).start_date
        reconciled_week = record.last_reconciled_week
        if reconciled_week is None or reconciled_week < previous_start:
            return ReconciliationReason.UNTRACKED_HISTORY

        if self.spot_check_rate and self.rng.random() < self.spot_check_rate:
            return ReconciliationReason.SPOT_CHECK

        return None

    def on_read(
        self, record: StreakRecord | None, now: datetime
    ) -> ReconciliationReason | None:
        """Reason to audit before serving a read, or None to trust the record.

        A positive streak whose last credited week is older than the previous
        week cannot be alive any more: the grace week has passed without
        qualifying.
        """
        if record is None or record.current_streak == 0:
            return None

        current = self.window.window_containing(now)
        previous_start = self.window.previous(current).start_date
        qualified_week = record.last_qualified_week
        if qualified_week is None or qualified_week < previous_start:
            return ReconciliationReason.LAPSED_ON_READ

        return None
