"""Wide Event context for canonical log lines.

A dict that accumulates context for one unit of work and is logged once
at the end. For HTTP requests RequestTimingMiddleware owns the lifecycle;
background repair passes and CLI commands use ``wide_event_scope``.

Usage:
    from core.wide_event import set_wide_event_fields

    # In route handlers or services:
    set_wide_event_fields(streak_before=2, streak_after=3)

    # For nested data:
    set_wide_event_nested("reconciliation", reason="lapsed_on_read")
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from core.logger import get_logger

logger = get_logger(__name__)

_wide_event: ContextVar[dict[str, Any]] = ContextVar("wide_event")


def init_wide_event() -> dict[str, Any]:
    """Initialize a new wide event dict for the current async context."""
    event: dict[str, Any] = {}
    _wide_event.set(event)
    return event


def get_wide_event() -> dict[str, Any]:
    """Get the current wide event dict. Returns empty dict if not initialized."""
    try:
        return _wide_event.get()
    except LookupError:
        return {}


def set_wide_event_fields(**kwargs: Any) -> None:
    """Set multiple fields on the current wide event.

    No-op until the owner has populated the event, so engine code can call
    it unconditionally.
    """
    event = get_wide_event()
    if event:
        event.update(kwargs)


def set_wide_event_nested(category: str, **kwargs: Any) -> None:
    """Set fields in a nested category.

    Example:
        set_wide_event_nested("streak", before=1, after=2)
        # Results in: {"streak": {"before": 1, "after": 2}}
    """
    event = get_wide_event()
    if not event:
        return
    event.setdefault(category, {}).update(kwargs)


def clear_wide_event() -> None:
    """Clear the wide event for the current context."""
    _wide_event.set({})


@contextmanager
def wide_event_scope(job: str, **fields: Any) -> Iterator[dict[str, Any]]:
    """Wide event for work outside a request; emits ``job.completed`` on exit.

    Exceptions are recorded on the event and re-raised.
    """
    event = init_wide_event()
    event.update(job=job, **fields)
    start_time = time.perf_counter()
    try:
        yield event
        event["outcome"] = "success"
    except Exception as exc:
        event["outcome"] = "exception"
        event["exception_type"] = type(exc).__name__
        raise
    finally:
        event["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        logger.info("job.completed", **event)
        clear_wide_event()
