"""Clerk authentication for the streak endpoints.

Every check-in and streak endpoint is scoped to the caller, so the only
thing this module hands to routes is the verified Clerk user id (the
token's ``sub`` claim). Profile data stays with Clerk.

JWKS outages are separated from ordinary bad tokens: five consecutive
JWKS failures open a circuit breaker, and for the next 60 seconds
requests fail fast with 401 instead of waiting on Clerk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated

from circuitbreaker import CircuitBreakerError, circuit
from fastapi import Depends, HTTPException, Request

from core.config import get_settings
from core.logger import get_logger
from core.telemetry import log_business_event, track_dependency
from core.wide_event import set_wide_event_fields

if TYPE_CHECKING:
    from clerk_backend_api import Clerk
    from clerk_backend_api.security.types import RequestState

logger = get_logger(__name__)

_CIRCUIT_NAME = "clerk_auth"
_CIRCUIT_FAILURE_THRESHOLD = 5
_CIRCUIT_RECOVERY_TIMEOUT = 60


@dataclass
class _ClerkState:
    """Process-wide Clerk client, set up once by the app lifespan."""

    client: Clerk | None = None
    initialized: bool = False
    jwks_failure_reasons: frozenset = field(default_factory=frozenset)


_state = _ClerkState()


class ClerkAuthUnavailable(Exception):
    """Raised when Clerk JWKS infrastructure fails (trips the circuit breaker)."""

    def __init__(self, reason: object):
        self.reason = reason
        super().__init__(f"Clerk auth unavailable: {reason}")


def _jwks_failure_reasons() -> frozenset:
    from clerk_backend_api.security.types import TokenVerificationErrorReason

    return frozenset(
        {
            TokenVerificationErrorReason.JWK_FAILED_TO_LOAD,
            TokenVerificationErrorReason.JWK_REMOTE_INVALID,
            TokenVerificationErrorReason.JWK_FAILED_TO_RESOLVE,
            TokenVerificationErrorReason.JWK_KID_MISMATCH,
        }
    )


def init_clerk_client() -> None:
    """Initialize Clerk SDK. Auth disabled if CLERK_SECRET_KEY not set."""
    _state.initialized = True

    settings = get_settings()
    if not settings.clerk_secret_key:
        logger.warning(
            "auth.clerk.disabled",
            hint="CLERK_SECRET_KEY not configured; authenticated endpoints return 401",
        )
        return

    from clerk_backend_api import Clerk as _Clerk

    _state.client = _Clerk(bearer_auth=settings.clerk_secret_key)
    _state.jwks_failure_reasons = _jwks_failure_reasons()
    logger.info("auth.clerk.initialized")


def close_clerk_client() -> None:
    """Drop the client reference. The SDK owns its httpx lifecycle."""
    _state.client = None


@track_dependency("clerk_auth", "Auth")
@circuit(
    failure_threshold=_CIRCUIT_FAILURE_THRESHOLD,
    recovery_timeout=_CIRCUIT_RECOVERY_TIMEOUT,
    expected_exception=(ClerkAuthUnavailable,),
    name=_CIRCUIT_NAME,
)
def _authenticate_request_with_circuit_breaker(
    clerk: Clerk, req: Request, authorized_parties: list[str]
) -> RequestState:
    """Raises ClerkAuthUnavailable on JWKS failure (triggers circuit breaker)."""
    from clerk_backend_api.security.types import AuthenticateRequestOptions

    request_state = clerk.authenticate_request(
        req,
        AuthenticateRequestOptions(authorized_parties=authorized_parties),
    )

    if not request_state.is_signed_in:
        reason = getattr(request_state, "reason", None)
        if reason in _state.jwks_failure_reasons:
            raise ClerkAuthUnavailable(reason)

    return request_state


def get_user_id_from_request(req: Request) -> str | None:
    """Get authenticated Clerk user ID, or None.

    Synchronous: JWT validation is CPU-bound against cached JWKS.
    """
    if not _state.initialized:
        set_wide_event_fields(auth_error="clerk_not_initialized")
        return None

    if _state.client is None:
        return None

    try:
        request_state = _authenticate_request_with_circuit_breaker(
            _state.client, req, get_settings().allowed_origins
        )
    except CircuitBreakerError:
        log_business_event("clerk_auth_circuit_rejected", 1, {"circuit": _CIRCUIT_NAME})
        set_wide_event_fields(auth_error="clerk_circuit_open")
        return None
    except ClerkAuthUnavailable as e:
        set_wide_event_fields(
            auth_error="clerk_infrastructure_issue",
            auth_error_reason=str(e.reason),
        )
        return None

    if request_state.is_signed_in and request_state.payload is not None:
        return request_state.payload.get("sub")
    return None


def require_auth(request: Request) -> str:
    """Raises 401 if not authenticated. Sets request.state.user_id."""
    user_id = get_user_id_from_request(request)
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = user_id
    set_wide_event_fields(user_id=user_id)
    return user_id


UserId = Annotated[str, Depends(require_auth)]
