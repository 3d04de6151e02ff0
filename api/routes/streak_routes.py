"""Weekly streak status endpoints."""

from fastapi import APIRouter, Request

from core import get_logger
from core.auth import UserId
from core.ratelimit import READ_LIMIT, RECONCILE_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from routes.dependencies import StreakEngineDep
from schemas import StreakStatusResponse
from services.reconciliation import ReconciliationReason

logger = get_logger(__name__)

router = APIRouter(prefix="/api/streak", tags=["streak"])


@router.get(
    "",
    response_model=StreakStatusResponse,
    responses={
        401: {"description": "Not authenticated"},
        503: {"description": "Attendance store unavailable"},
    },
)
@limiter.limit(READ_LIMIT)
async def get_streak(
    request: Request,
    user_id: UserId,
    engine: StreakEngineDep,
) -> StreakStatusResponse:
    """Get this week's check-in count and the current streak.

    A streak whose grace week has passed without qualifying is
    reconciled before it is returned.
    """
    status = await engine.get_status(user_id)

    set_wide_event_fields(
        current_streak=status.current_streak,
        weekly_count=status.weekly_count,
        streak_reconciled=status.reconciled,
    )

    return StreakStatusResponse.model_validate(status)


@router.post(
    "/reconcile",
    response_model=StreakStatusResponse,
    summary="Recompute the caller's streak from their check-ins",
    responses={
        401: {"description": "Not authenticated"},
        503: {"description": "Attendance store unavailable"},
    },
)
@limiter.limit(RECONCILE_LIMIT)
async def reconcile_streak(
    request: Request,
    user_id: UserId,
    engine: StreakEngineDep,
) -> StreakStatusResponse:
    """Recompute the streak from the full check-in history and store it."""
    _, changed = await engine.reconcile_user(user_id, ReconciliationReason.MANUAL)
    status = await engine.get_status(user_id)

    logger.info("streak.manual_reconcile", user_id=user_id, changed=changed)

    return StreakStatusResponse.model_validate(
        status.model_copy(update={"reconciled": True})
    )
