"""FastAPI application for the Gym Streak API."""

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import fastapi
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from core.auth import close_clerk_client, init_clerk_client
from core.config import get_settings
from core.database import (
    create_engine,
    create_session_maker,
    dispose_engine,
    init_db,
)
from core.logger import configure_logging, get_logger
from core.ratelimit import limiter, rate_limit_exceeded_handler
from core.telemetry import RequestTimingMiddleware, SecurityHeadersMiddleware
from repositories.protocols import StoreUnavailableError, StreakConflictError
from routes import (
    admin_router,
    attendance_router,
    health_router,
    streak_router,
)
from services.streaks_service import streak_repair_loop

configure_logging()
logger = get_logger(__name__)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler for unhandled exceptions."""
    logger.exception(
        "unhandled.exception",
        exc_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again."},
    )


async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handler for request validation errors."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(status_code=500, content={"detail": "Unexpected error"})

    logger.warning(
        "request.validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content={"detail": _jsonable_errors(exc)},
    )


def _jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry the raw ValueError from a field validator
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """Store failures and exhausted CAS retries: the answer is unknown, not zero."""
    logger.error(
        "store.unavailable.request_failed",
        exc_type=type(exc).__name__,
        error=str(exc),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Attendance store temporarily unavailable. Please retry."},
        headers={"Retry-After": "1"},
    )


async def _run_alembic_migrations() -> None:
    """Apply pending migrations via ``scripts.migrate`` in a child process.

    psycopg2 pool cleanup deadlocks under asyncio.to_thread with uvloop,
    so the synchronous Alembic run gets its own interpreter.
    """
    proc = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "scripts.migrate",
        "upgrade",
        cwd=Path(__file__).parent,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await proc.communicate()

    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        logger.error("migrations.failed", returncode=proc.returncode, stderr=detail)
        raise RuntimeError(f"Alembic migration failed:\n{detail}")

    logger.info("migrations.complete")


@asynccontextmanager
async def lifespan(app: fastapi.FastAPI):
    """Create DB engine at startup, dispose on shutdown."""
    settings = get_settings()
    app.state.engine = create_engine()
    app.state.session_maker = create_session_maker(app.state.engine)

    app.state.init_done = False
    app.state.init_error = None

    try:
        async with asyncio.timeout(60):
            await asyncio.gather(
                asyncio.to_thread(init_clerk_client),
                init_db(app.state.engine),
            )

        async with asyncio.timeout(120):
            await _run_alembic_migrations()

        app.state.init_done = True
        logger.info("init.complete")
    except TimeoutError:
        logger.error(
            "init.timeout",
            hint="Startup hung - check DB connectivity and migration state",
        )
        raise RuntimeError("Application startup timed out")
    except Exception as e:
        app.state.init_error = str(e)
        logger.error("init.failed", error=str(e), exc_info=True)
        raise

    repair_task = None
    if settings.streak_repair_interval_seconds > 0:
        repair_task = asyncio.create_task(
            streak_repair_loop(
                app.state.session_maker, settings.streak_repair_interval_seconds
            )
        )

    try:
        yield
    finally:
        if repair_task is not None:
            if not repair_task.done():
                repair_task.cancel()
            try:
                await repair_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("background.task.failed")

        close_clerk_client()
        await dispose_engine(app.state.engine)


_settings = get_settings()
_docs_enabled = _settings.enable_docs or _settings.debug

app = fastapi.FastAPI(
    title="Gym Streak API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if _docs_enabled else None,
    redoc_url="/redoc" if _docs_enabled else None,
    openapi_url="/openapi.json" if _docs_enabled else None,
)

app.state.limiter = limiter

_EXCEPTION_HANDLERS = {
    RateLimitExceeded: rate_limit_exceeded_handler,
    RequestValidationError: validation_exception_handler,
    # Exhausted CAS retries leave the streak unknown, same as a store outage
    StoreUnavailableError: store_unavailable_handler,
    StreakConflictError: store_unavailable_handler,
    Exception: global_exception_handler,
}
for exc_class, handler in _EXCEPTION_HANDLERS.items():
    app.add_exception_handler(exc_class, handler)

# Last added runs first: CORS, then timing/wide event, then headers, then gzip
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

for router in (health_router, attendance_router, streak_router, admin_router):
    app.include_router(router)
