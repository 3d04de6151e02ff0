"""Admin endpoints for streak maintenance.

All endpoints require admin authentication.
"""

from fastapi import APIRouter, Request

from core import get_logger
from core.ratelimit import ADMIN_LIMIT, limiter
from routes.dependencies import AdminUserId, StreakEngineDep
from schemas import RepairRequest, RepairResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post(
    "/streaks/repair",
    response_model=RepairResponse,
    summary="Recompute and overwrite stored streaks",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Admin access required"},
    },
)
@limiter.limit(ADMIN_LIMIT)
async def repair_streaks(
    request: Request,
    admin_id: AdminUserId,
    engine: StreakEngineDep,
    body: RepairRequest | None = None,
) -> RepairResponse:
    """Audit the selected users and overwrite their stored streaks.

    Without a body every user with a positive streak is repaired. One
    user's failure is reported in ``failures`` and does not stop the run.
    """
    body = body or RepairRequest()
    report = await engine.repair(
        body.user_ids, include_inactive=body.include_inactive
    )

    logger.info(
        "admin.streaks.repaired",
        admin_id=admin_id,
        examined=report.examined,
        changed=report.changed,
    )

    return RepairResponse.model_validate(report)
