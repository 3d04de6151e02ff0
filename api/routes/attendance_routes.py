"""Gym check-in endpoints."""

import math

from fastapi import APIRouter, Query, Request

from core import get_logger
from core.auth import UserId
from core.ratelimit import CHECK_IN_LIMIT, READ_LIMIT, limiter
from core.wide_event import set_wide_event_fields
from routes.dependencies import StreakEngineDep
from schemas import (
    AttendanceEventResponse,
    AttendanceListResponse,
    CheckInRequest,
    CheckInResponse,
    DailyCountResponse,
    PaginationResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post(
    "",
    response_model=CheckInResponse,
    status_code=201,
    summary="Record a gym check-in",
    responses={
        401: {"description": "Not authenticated"},
        503: {"description": "Attendance store unavailable"},
    },
)
@limiter.limit(CHECK_IN_LIMIT)
async def check_in(
    request: Request,
    body: CheckInRequest,
    user_id: UserId,
    engine: StreakEngineDep,
) -> CheckInResponse:
    """Record a check-in at the current time.

    The streak is updated before the response is sent, so the returned
    ``current_streak`` already reflects this check-in.
    """
    result = await engine.record_check_in(
        user_id,
        gym_name=body.gym_name,
        location=body.location,
        notes=body.notes,
    )

    set_wide_event_fields(check_in_gym=body.gym_name)

    return CheckInResponse(
        attendance=AttendanceEventResponse.model_validate(result.event),
        current_streak=result.current_streak,
    )


@router.get(
    "",
    response_model=AttendanceListResponse,
    summary="List the caller's check-ins",
    responses={401: {"description": "Not authenticated"}},
)
@limiter.limit(READ_LIMIT)
async def list_check_ins(
    request: Request,
    user_id: UserId,
    engine: StreakEngineDep,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> AttendanceListResponse:
    """Get the caller's check-ins, most recent first."""
    events, total = await engine.list_check_ins(user_id, page=page, limit=limit)

    return AttendanceListResponse(
        attendances=[AttendanceEventResponse.model_validate(e) for e in events],
        pagination=PaginationResponse(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
        ),
    )


@router.get(
    "/heatmap",
    response_model=list[DailyCountResponse],
    summary="Check-ins per day for one year",
    responses={401: {"description": "Not authenticated"}},
)
@limiter.limit(READ_LIMIT)
async def check_in_heatmap(
    request: Request,
    user_id: UserId,
    engine: StreakEngineDep,
    year: int | None = Query(default=None, ge=2000, le=2100),
) -> list[DailyCountResponse]:
    """Per-day check-in counts for the caller, days without check-ins omitted.

    Defaults to the current year in the streak timezone.
    """
    days = await engine.daily_counts(user_id, year)
    set_wide_event_fields(heatmap_days=len(days))
    return [DailyCountResponse.model_validate(d) for d in days]
