"""Centralized logging configuration using structlog.

Every log line is a named event with key/value context, e.g.
``streak.check_in.recorded`` with ``user_id`` and ``current_streak``.
Rendering is JSON when LOG_FORMAT=json (or when an OTLP exporter is
configured) and a colored console otherwise. Stdlib loggers from uvicorn
and SQLAlchemy go through the same processor chain.

Usage:
    from core import get_logger
    logger = get_logger(__name__)
    logger.info("streak.check_in.recorded", user_id="user_123", current_streak=2)
"""

import logging
import os
import sys

import structlog
from structlog.types import EventDict, Processor

_TELEMETRY_ENABLED = bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))

# Loggers that drown out streak events at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "asyncio")


def _add_service_context(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Stamp service name and environment so shared sinks can be filtered."""
    event_dict.setdefault("service", os.getenv("SERVICE_NAME", "gym-streak-api"))
    event_dict.setdefault("env", os.getenv("ENVIRONMENT", "development"))
    return event_dict


def _add_open_telemetry_spans(
    _logger: logging.Logger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Add trace and span IDs when a span is recording."""
    if not _TELEMETRY_ENABLED:
        return event_dict

    try:
        from opentelemetry import trace

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            event_dict["trace_id"] = format(ctx.trace_id, "032x")
            event_dict["span_id"] = format(ctx.span_id, "016x")
    except Exception:
        # Telemetry must never break logging
        pass

    return event_dict


def _get_log_level() -> int:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _is_json_format() -> bool:
    log_format = os.environ.get("LOG_FORMAT", "").lower()
    if log_format in ("json", "console"):
        return log_format == "json"
    return _TELEMETRY_ENABLED


def _build_renderer(use_json: bool) -> Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging() -> None:
    """Configure structlog and stdlib logging. Call once at process startup.

    Both the API (main.py) and the management CLI call this; calling it
    again replaces the stdout handler instead of stacking a second one.
    """
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_service_context,
        _add_open_telemetry_spans,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _build_renderer(_is_json_format()),
        ],
    )

    root_logger = logging.getLogger()
    # An OTLP log exporter installs its own LoggingHandler; keep it
    kept = [h for h in root_logger.handlers if "LoggingHandler" in type(h).__name__]
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.handlers[:] = [*kept, handler]
    root_logger.setLevel(_get_log_level())

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # SQL statements only when explicitly asked for
    echo = os.getenv("DB_ECHO", "").lower() == "true"
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if echo else logging.WARNING
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically ``get_logger(__name__)``."""
    return structlog.stdlib.get_logger(name)


bind_contextvars = structlog.contextvars.bind_contextvars
clear_contextvars = structlog.contextvars.clear_contextvars
