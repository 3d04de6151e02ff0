"""Weekly streak engine: check-ins, status reads, reconciliation and repair.

This module handles:
- Recording a check-in and updating the streak incrementally
- Serving the weekly count and streak, reconciling lapsed streaks on read
- Manual and administrative reconciliation against the auditor
- The optional background repair loop

Every StreakRecord write is a compare-and-swap on ``version``. A lost race
raises StreakConflictError and the whole read-count-write cycle is retried
with fresh reads, so a retried writer always sees the competing check-in.
"""

import asyncio
import random
from collections import Counter
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager, nullcontext
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from core.config import Settings, get_settings
from core.database import session_scope
from core.logger import get_logger
from core.telemetry import add_custom_attribute, log_business_event, track_operation
from core.wide_event import (
    set_wide_event_fields,
    set_wide_event_nested,
    wide_event_scope,
)
from repositories.attendance_repository import AttendanceRepository
from repositories.protocols import (
    AttendanceStore,
    StreakConflictError,
    StreakRecordStore,
)
from repositories.streak_repository import StreakRepository
from schemas import (
    AttendanceEvent,
    CheckInResult,
    DailyCount,
    RepairFailure,
    RepairReport,
    StreakRecord,
    StreakStatus,
)
from services.reconciliation import ReconciliationPolicy, ReconciliationReason
from services.streak_auditor import AuditResult, StreakAuditor
from services.streak_updater import IncrementalUpdater
from services.weeks import WeekWindow

logger = get_logger(__name__)

CAS_MAX_ATTEMPTS = 10
# Full jitter, 10ms doubling, never more than 200ms between attempts
CAS_BACKOFF = wait_random_exponential(multiplier=0.01, max=0.2)

_cas_retry = retry(
    stop=stop_after_attempt(CAS_MAX_ATTEMPTS),
    wait=CAS_BACKOFF,
    retry=retry_if_exception_type(StreakConflictError),
    reraise=True,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _record_from_audit(
    user_id: str,
    audit: AuditResult,
    as_of: datetime,
    base: StreakRecord | None,
) -> StreakRecord:
    return StreakRecord(
        user_id=user_id,
        current_streak=audit.streak,
        last_reconciled_week=audit.current_week.start_date,
        last_qualified_week=audit.last_qualified_week,
        last_reconciled_at=as_of,
        version=base.version if base is not None else 0,
    )


def _same_state(a: StreakRecord, b: StreakRecord) -> bool:
    return (
        a.current_streak == b.current_streak
        and a.last_qualified_week == b.last_qualified_week
        and a.last_reconciled_week == b.last_reconciled_week
    )


class StreakEngine:
    """Streak operations over an attendance store and a record store."""

    def __init__(
        self,
        attendance: AttendanceStore,
        records: StreakRecordStore,
        *,
        threshold: int = 3,
        window: WeekWindow | None = None,
        spot_check_rate: float = 0.0,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        isolation: Callable[[], AbstractAsyncContextManager] | None = None,
    ) -> None:
        self.attendance = attendance
        self.records = records
        self.threshold = threshold
        self.window = window or WeekWindow()
        self.auditor = StreakAuditor(attendance, self.window, threshold)
        self.updater = IncrementalUpdater(attendance, self.window, threshold)
        self.policy = ReconciliationPolicy(self.window, spot_check_rate, rng)
        self.clock = clock
        # Per-user unit for repair, so one failure does not poison the batch
        self._isolation = isolation or nullcontext

    @classmethod
    def from_settings(
        cls,
        attendance: AttendanceStore,
        records: StreakRecordStore,
        settings: Settings | None = None,
        **kwargs,
    ) -> "StreakEngine":
        settings = settings or get_settings()
        return cls(
            attendance,
            records,
            threshold=settings.streak_threshold,
            window=WeekWindow(settings.streak_week_start_day, settings.streak_tz),
            spot_check_rate=settings.streak_spot_check_rate,
            **kwargs,
        )

    @classmethod
    def for_session(
        cls, db: AsyncSession, settings: Settings | None = None
    ) -> "StreakEngine":
        """Engine backed by PostgreSQL repositories on ``db``."""
        return cls.from_settings(
            AttendanceRepository(db),
            StreakRepository(db),
            settings,
            isolation=db.begin_nested,
        )

    # -------------------------------------------------------------------------
    # Check-ins
    # -------------------------------------------------------------------------

    @track_operation("streak_check_in")
    async def record_check_in(
        self,
        user_id: str,
        *,
        gym_name: str | None = None,
        location: str | None = None,
        notes: str | None = None,
        occurred_at: datetime | None = None,
    ) -> CheckInResult:
        """Record a check-in, then update the streak before returning."""
        event = await self.attendance.record_event(
            user_id,
            occurred_at or self.clock(),
            gym_name=gym_name,
            location=location,
            notes=notes,
        )
        record, previous_streak = await self._apply_check_in(
            user_id, event.occurred_at
        )

        add_custom_attribute("streak.current", record.current_streak)
        set_wide_event_fields(
            streak_current=record.current_streak,
            streak_previous=previous_streak,
        )
        logger.info(
            "streak.check_in.recorded",
            user_id=user_id,
            occurred_at=event.occurred_at.isoformat(),
            previous_streak=previous_streak,
            current_streak=record.current_streak,
        )
        log_business_event("check_ins.recorded", 1)

        return CheckInResult(
            event=event,
            current_streak=record.current_streak,
            previous_streak=previous_streak,
        )

    @_cas_retry
    async def _apply_check_in(
        self, user_id: str, occurred_at: datetime
    ) -> tuple[StreakRecord, int]:
        record = await self.records.get(user_id)
        previous_streak = record.current_streak if record is not None else 0
        reason = self.policy.on_write(record, occurred_at)

        if reason is None:
            updated = await self.updater.apply(record, occurred_at)
        elif reason is ReconciliationReason.SPOT_CHECK:
            updated = await self.updater.apply(record, occurred_at)
            audit = await self.auditor.audit(user_id, occurred_at)
            if audit.streak != updated.current_streak:
                logger.error(
                    "streak.drift_detected",
                    user_id=user_id,
                    incremental_streak=updated.current_streak,
                    audited_streak=audit.streak,
                    occurred_at=occurred_at.isoformat(),
                )
                log_business_event("streaks.drift_detected", 1)
                set_wide_event_nested(
                    "streak_drift",
                    incremental=updated.current_streak,
                    audited=audit.streak,
                )
                updated = _record_from_audit(user_id, audit, occurred_at, record)
        else:
            as_of = occurred_at
            if reason is ReconciliationReason.OUT_OF_ORDER:
                as_of = record.last_reconciled_at
            audit = await self.auditor.audit(user_id, as_of)
            updated = _record_from_audit(user_id, audit, as_of, record)
            logger.info(
                "streak.reconciled",
                user_id=user_id,
                reason=reason.value,
                previous_streak=previous_streak,
                current_streak=updated.current_streak,
            )
            set_wide_event_nested(
                "reconciliation",
                reason=reason.value,
                previous_streak=previous_streak,
                current_streak=updated.current_streak,
            )

        saved = await self.records.save(
            updated,
            expected_version=record.version if record is not None else None,
        )
        return saved, previous_streak

    async def list_check_ins(
        self, user_id: str, *, page: int = 1, limit: int = 20
    ) -> tuple[list[AttendanceEvent], int]:
        """One page of the user's check-ins, most recent first, plus the total."""
        total = await self.attendance.count_events(user_id)
        events = await self.attendance.list_events(
            user_id, limit=limit, offset=(page - 1) * limit
        )
        return events, total

    async def daily_counts(
        self, user_id: str, year: int | None = None
    ) -> list[DailyCount]:
        """Check-ins per local calendar day of ``year``, oldest day first.

        Days use the engine timezone, the same one weeks are cut in. Days
        without a check-in are omitted. ``year`` defaults to the current one.
        """
        tz = self.window.tz
        year = year or self.clock().astimezone(tz).year
        times = await self.attendance.event_times_between(
            user_id,
            datetime(year, 1, 1, tzinfo=tz),
            datetime(year + 1, 1, 1, tzinfo=tz),
        )
        per_day = Counter(t.astimezone(tz).date() for t in times)
        return [DailyCount(date=day, count=n) for day, n in sorted(per_day.items())]

    # -------------------------------------------------------------------------
    # Reads and reconciliation
    # -------------------------------------------------------------------------

    async def get_status(
        self, user_id: str, now: datetime | None = None
    ) -> StreakStatus:
        """Weekly count and streak, reconciling a lapsed streak first."""
        now = now or self.clock()
        record = await self.records.get(user_id)

        reason = self.policy.on_read(record, now)
        if reason is not None:
            record, _ = await self.reconcile_user(user_id, reason, as_of=now)

        week = self.window.window_containing(now)
        weekly_count = await self.attendance.count_events_in_window(user_id, week)
        total = await self.attendance.count_events(user_id)
        last_check_in = await self.attendance.most_recent_event(user_id)

        return StreakStatus(
            user_id=user_id,
            weekly_count=weekly_count,
            current_streak=record.current_streak if record is not None else 0,
            threshold=self.threshold,
            week_start=week.start,
            week_end=week.end,
            total_check_ins=total,
            last_check_in_at=last_check_in,
            reconciled=reason is not None,
        )

    @_cas_retry
    async def reconcile_user(
        self,
        user_id: str,
        reason: ReconciliationReason,
        as_of: datetime | None = None,
    ) -> tuple[StreakRecord | None, bool]:
        """Overwrite the user's record with the auditor's value.

        Returns the stored record (None for a user with no record and no
        streak) and whether the streak value changed. Bookkeeping-only
        differences are written but do not count as a change.
        """
        as_of = as_of or self.clock()
        record = await self.records.get(user_id)
        audit = await self.auditor.audit(user_id, as_of)

        if record is None and audit.streak == 0:
            return None, False

        updated = _record_from_audit(user_id, audit, as_of, record)
        if record is not None and _same_state(record, updated):
            return record, False

        saved = await self.records.save(
            updated,
            expected_version=record.version if record is not None else None,
        )
        previous_streak = record.current_streak if record is not None else 0
        changed = record is None or previous_streak != saved.current_streak

        logger.info(
            "streak.reconciled",
            user_id=user_id,
            reason=reason.value,
            previous_streak=previous_streak,
            current_streak=saved.current_streak,
        )
        if reason is not ReconciliationReason.BULK_REPAIR:
            set_wide_event_nested(
                "reconciliation",
                reason=reason.value,
                previous_streak=previous_streak,
                current_streak=saved.current_streak,
            )
        return saved, changed

    @track_operation("streak_repair")
    async def repair(
        self,
        user_ids: list[str] | None = None,
        *,
        include_inactive: bool = False,
        now: datetime | None = None,
    ) -> RepairReport:
        """Audit and overwrite every selected user's record.

        Without ``user_ids`` every user with a positive streak is selected,
        or every stored record with ``include_inactive``. Per-user failures
        are collected in the report instead of aborting the batch.
        """
        now = now or self.clock()
        if user_ids is None:
            user_ids = await self.records.list_user_ids(
                min_streak=0 if include_inactive else 1
            )

        report = RepairReport()
        for user_id in dict.fromkeys(user_ids):
            report.examined += 1
            try:
                async with self._isolation():
                    _, changed = await self.reconcile_user(
                        user_id, ReconciliationReason.BULK_REPAIR, as_of=now
                    )
            except Exception as e:
                logger.warning(
                    "streak.repair.user_failed",
                    user_id=user_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                report.failures.append(RepairFailure(user_id=user_id, error=str(e)))
                continue
            if changed:
                report.changed += 1

        set_wide_event_fields(
            repair_examined=report.examined,
            repair_changed=report.changed,
            repair_failed=len(report.failures),
        )
        logger.info(
            "streak.repair.completed",
            examined=report.examined,
            changed=report.changed,
            failed=len(report.failures),
        )
        log_business_event("streaks.repaired", report.changed)
        return report


async def streak_repair_loop(
    session_maker: async_sessionmaker[AsyncSession],
    interval_seconds: float,
) -> None:
    """Background loop that repairs all active streaks on a timer.

    Runs forever until cancelled. Each pass emits one ``job.completed``
    line; failures are logged but do not stop the loop.
    """
    while True:
        try:
            with wide_event_scope("streak_repair_loop"):
                async with session_scope(session_maker) as db:
                    await StreakEngine.for_session(db).repair()
        except Exception:
            logger.exception("streak.repair.background_failed")
        await asyncio.sleep(interval_seconds)
