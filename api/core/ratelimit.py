"""Rate limiting configuration using slowapi.

Limits are keyed by Clerk user id once ``require_auth`` has run, so a
shared gym Wi-Fi address does not throttle every member behind it.
Unauthenticated traffic (health probes, rejected tokens) falls back to the
client address.

Production MUST use Redis (RATELIMIT_STORAGE_URI="redis://host:port/db");
memory:// counters are per-process and multiply limits by the replica count.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)

# Check-ins past the weekly threshold never move the streak, so a burst
# is almost certainly a client retry loop; the daily cap bounds the log
CHECK_IN_LIMIT = "30/minute;200/day"
READ_LIMIT = "60/minute"
# Each manual reconcile walks the user's whole streak history
RECONCILE_LIMIT = "5/minute"
# Each repair audits every active user
ADMIN_LIMIT = "5/minute"
HEALTH_LIMIT = "30/minute"

settings = get_settings()

if (
    settings.environment != "development"
    and settings.ratelimit_storage_uri == "memory://"
):
    logger.warning(
        "ratelimit.memory_storage",
        environment=settings.environment,
        hint="Set RATELIMIT_STORAGE_URI to a Redis URL for distributed rate limiting",
    )


def _get_request_identifier(request: Request) -> str:
    """Rate-limit key: authenticated user ID when known, else client IP."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=_get_request_identifier,
    default_limits=["100/minute"],
    storage_uri=settings.ratelimit_storage_uri,
    # Degrade to memory when Redis is temporarily unavailable
    in_memory_fallback_enabled=settings.ratelimit_storage_uri.startswith("redis"),
    key_prefix="gym:",
)


def rate_limit_exceeded_handler(request: Request, exc: Exception) -> Response:
    """429 with the limit that was hit and a Retry-After hint."""
    if not isinstance(exc, RateLimitExceeded):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    retry_after = getattr(exc, "retry_after", 60)
    logger.warning(
        "ratelimit.exceeded",
        key=_get_request_identifier(request),
        limit=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please slow down.",
            "limit": exc.detail,
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
