"""Pydantic schemas for the streak engine boundary and the HTTP API."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Engine boundary shapes
# =============================================================================


class AttendanceEvent(BaseModel):
    """A recorded check-in as seen by the streak engine.

    Only ``user_id`` and ``occurred_at`` matter to the engine; the rest is
    opaque payload carried back to the caller.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int | None = None
    user_id: str
    occurred_at: datetime
    gym_name: str | None = None
    location: str | None = None
    notes: str | None = None


class StreakRecord(BaseModel):
    """Persisted derived streak state for one user.

    Weeks are identified by their local start date. ``last_qualified_week``
    is the most recent week already credited into ``current_streak``.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: str
    current_streak: int = Field(default=0, ge=0)
    last_reconciled_week: date | None = None
    last_qualified_week: date | None = None
    last_reconciled_at: datetime | None = None
    version: int = 0


# =============================================================================
# Service results
# =============================================================================


class CheckInResult(BaseModel):
    """Outcome of recording a check-in."""

    event: AttendanceEvent
    current_streak: int
    previous_streak: int


class StreakStatus(BaseModel):
    """Weekly count and streak for one user at a point in time."""

    user_id: str
    weekly_count: int
    current_streak: int
    threshold: int
    week_start: datetime
    week_end: datetime
    total_check_ins: int
    last_check_in_at: datetime | None = None
    reconciled: bool = False


class DailyCount(BaseModel):
    """Check-ins on one local calendar day."""

    date: date
    count: int


class RepairFailure(BaseModel):
    user_id: str
    error: str


class RepairReport(BaseModel):
    """Result of a bulk repair run."""

    examined: int = 0
    changed: int = 0
    failures: list[RepairFailure] = Field(default_factory=list)


# =============================================================================
# API schemas
# =============================================================================


class CheckInRequest(BaseModel):
    """Request to record a gym check-in."""

    gym_name: str = Field(max_length=255)
    location: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)

    @field_validator("gym_name")
    @classmethod
    def validate_gym_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("gym_name cannot be empty")
        return v


class AttendanceEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None
    occurred_at: datetime
    gym_name: str | None = None
    location: str | None = None
    notes: str | None = None


class CheckInResponse(BaseModel):
    """Response for a recorded check-in, with the fresh streak."""

    attendance: AttendanceEventResponse
    current_streak: int


class PaginationResponse(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class AttendanceListResponse(BaseModel):
    attendances: list[AttendanceEventResponse]
    pagination: PaginationResponse


class DailyCountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    count: int


class StreakStatusResponse(BaseModel):
    """Current weekly count and streak for the authenticated user."""

    model_config = ConfigDict(from_attributes=True)

    weekly_count: int
    current_streak: int
    threshold: int
    week_start: datetime
    week_end: datetime
    total_check_ins: int
    last_check_in_at: datetime | None = None
    reconciled: bool = False


class RepairRequest(BaseModel):
    """Administrative repair request.

    Without ``user_ids`` every user with a positive streak is repaired;
    ``include_inactive`` widens that to every stored record.
    """

    user_ids: list[str] | None = Field(default=None, max_length=1000)
    include_inactive: bool = False


class RepairFailureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    error: str


class RepairResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    examined: int
    changed: int
    failures: list[RepairFailureResponse]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class PoolStatusResponse(BaseModel):
    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class StreakConfigResponse(BaseModel):
    """Engine settings in effect, for checking a deploy picked up its config."""

    threshold: int
    week_start_day: int
    timezone: str
    spot_check_rate: float
    repair_interval_seconds: int


class DetailedHealthResponse(BaseModel):
    status: str
    service: str
    database: bool
    pool: PoolStatusResponse | None = None
    streak: StreakConfigResponse | None = None
