"""Repository utility functions for common database operations."""

import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError

from core.logger import get_logger
from core.wide_event import set_wide_event_fields
from repositories.protocols import StoreUnavailableError

logger = get_logger(__name__)

# Threshold for logging slow queries (milliseconds)
SLOW_QUERY_THRESHOLD_MS = 500

P = ParamSpec("P")
R = TypeVar("R")


def log_slow_query(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator to record slow repository operations and errors.

    Slow queries (over SLOW_QUERY_THRESHOLD_MS) and exceptions are added to
    the request's wide event. Exceptions are re-raised.

    Usage:
        @log_slow_query("count_events_in_window")
        async def count_events_in_window(self, user_id: str, week: Week) -> int:
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                duration_ms = (time.perf_counter() - start_time) * 1000
                if duration_ms > SLOW_QUERY_THRESHOLD_MS:
                    set_wide_event_fields(
                        db_slow_query=True,
                        db_operation=operation_name,
                        db_duration_ms=round(duration_ms, 2),
                    )
                return result
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                set_wide_event_fields(
                    db_query_error=True,
                    db_operation=operation_name,
                    db_duration_ms=round(duration_ms, 2),
                    db_error=str(e),
                    db_error_type=type(e).__name__,
                )
                raise

        return wrapper

    return decorator


def translate_store_errors(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator turning driver and connection failures into StoreUnavailableError.

    Integrity errors are left alone; they signal a bad write, not an
    unreachable store.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except IntegrityError:
                raise
            except (DBAPIError, TimeoutError, OSError) as e:
                logger.error(
                    "store.unavailable",
                    operation=operation_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StoreUnavailableError(
                    f"{operation_name} failed: {type(e).__name__}"
                ) from e

        return wrapper

    return decorator
