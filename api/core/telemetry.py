"""Telemetry and monitoring utilities for request and engine tracking.

Tracing is optional: spans are only created when OTEL_EXPORTER_OTLP_ENDPOINT
is set and the ``telemetry`` extra is installed. Without it every decorator
here is a plain pass-through and the canonical request log line is the
only signal.
"""

import asyncio
import os
import re
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.logger import bind_contextvars, clear_contextvars, get_logger
from core.wide_event import clear_wide_event, get_wide_event, init_wide_event

logger = get_logger(__name__)

TELEMETRY_ENABLED = bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))

SERVICE_NAME = os.getenv("SERVICE_NAME", "gym-streak-api")
SERVICE_VERSION = os.getenv("SERVICE_VERSION", "0.1.0")

if TELEMETRY_ENABLED:
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    tracer = trace.get_tracer(__name__)
else:
    trace = None
    tracer = None
    Status = None
    StatusCode = None

P = ParamSpec("P")
R = TypeVar("R")

SLOW_REQUEST_MS = 1000

# Inbound ids from a proxy are reused only if they look like ids
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{8,64}$")

# Wide event keys that make a request worth logging even when it succeeded
_NOTEWORTHY_KEYS = ("user_id", "reconciliation", "streak_drift", "db_slow_query")


def instrument_sqlalchemy_engine(engine: Any) -> None:
    """Add OpenTelemetry instrumentation for query tracing."""
    if not TELEMETRY_ENABLED:
        return

    try:
        from opentelemetry.instrumentation.sqlalchemy import (
            SQLAlchemyInstrumentor,
        )

        SQLAlchemyInstrumentor().instrument(
            engine=engine.sync_engine,
            enable_commenter=True,
        )
        logger.info("sqlalchemy.instrumentation.enabled")
    except Exception as e:
        logger.warning("sqlalchemy.instrumentation.failed", error=str(e))


class SecurityHeadersMiddleware:
    """Adds security headers for a JSON-only API."""

    SECURITY_HEADERS: list[tuple[bytes, bytes]] = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"no-referrer"),
        (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'"),
        (b"strict-transport-security", b"max-age=31536000; includeSubDomains"),
        (b"cache-control", b"no-store"),
    ]

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                present = {name.lower() for name, _ in headers}
                headers.extend(
                    h for h in self.SECURITY_HEADERS if h[0] not in present
                )
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _incoming_request_id(scope: Scope) -> str | None:
    for name, value in scope.get("headers") or []:
        if name == b"x-request-id":
            candidate = value.decode("latin-1")
            if _REQUEST_ID_PATTERN.match(candidate):
                return candidate
    return None


def _should_emit(event: dict[str, Any], status: int | None, duration_ms: float) -> bool:
    """Errors, slow requests and anything touching a user's streak are kept.

    Anonymous fast successes (health probes) are dropped.
    """
    if status is None or status >= 400 or duration_ms > SLOW_REQUEST_MS:
        return True
    return any(event.get(key) for key in _NOTEWORTHY_KEYS)


class RequestTimingMiddleware:
    """Times each request and emits one wide event (canonical log line) at the end.

    The request id is bound to structlog's contextvars for the lifetime of
    the request, so engine logs such as ``streak.drift_detected`` can be
    joined to the request line.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        request_id = _incoming_request_id(scope) or str(uuid.uuid4())

        wide_event = init_wide_event()
        wide_event.update(
            service_name=SERVICE_NAME,
            service_version=SERVICE_VERSION,
            request_id=request_id,
            http_method=method,
            http_path=path,
        )
        bind_contextvars(request_id=request_id)

        response_status: int | None = None

        def elapsed_ms() -> float:
            return (time.perf_counter() - start_time) * 1000

        async def send_wrapper(message: Message) -> None:
            nonlocal response_status

            if message.get("type") == "http.response.start":
                response_status = int(message.get("status", 0))
                headers: list[tuple[bytes, bytes]] = list(message.get("headers", []))
                headers.append(
                    (b"x-request-duration-ms", f"{elapsed_ms():.2f}".encode())
                )
                headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = headers

            elif message.get("type") == "http.response.body" and not message.get(
                "more_body", False
            ):
                duration_ms = elapsed_ms()
                route = scope.get("route")

                event = get_wide_event()
                event["http_route"] = getattr(route, "path", None) or path
                event["http_status_code"] = response_status
                event["duration_ms"] = round(duration_ms, 2)
                event["outcome"] = (
                    "success" if response_status and response_status < 400 else "error"
                )
                if _should_emit(event, response_status, duration_ms):
                    logger.info("request.completed", **event)

            await send(message)

        try:
            with _span(
                f"{method} {path}",
                {
                    "http.method": method,
                    "http.route": path,
                    "request.id": request_id,
                    "service.name": SERVICE_NAME,
                },
            ):
                await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            event = get_wide_event()
            event["duration_ms"] = round(elapsed_ms(), 2)
            event["outcome"] = "exception"
            event["exception_type"] = type(exc).__name__
            logger.info("request.completed", **event)
            raise
        finally:
            clear_wide_event()
            clear_contextvars()


@contextmanager
def _span(name: str, attributes: dict[str, str]) -> Iterator[Any]:
    """Current span when tracing is on, otherwise nothing."""
    if not TELEMETRY_ENABLED or not tracer:
        yield None
        return
    with tracer.start_as_current_span(name, attributes=attributes) as span:
        yield span


def _traced_span(
    span_name: str,
    attributes: dict[str, str],
    *,
    record_exceptions: bool = False,
):
    """Shared decorator logic for tracing sync/async functions with OpenTelemetry."""
    prefix = next(iter(attributes)).split(".")[0]  # "dependency" or "operation"

    def _finish(span: Any, start_time: float, error: Exception | None) -> None:
        span.set_attribute(
            f"{prefix}.duration_ms", (time.perf_counter() - start_time) * 1000
        )
        span.set_attribute(f"{prefix}.success", error is None)
        if error is None:
            return
        if record_exceptions:
            span.record_exception(error)
        else:
            span.set_attribute(f"{prefix}.error", str(error))
        if Status is not None and StatusCode is not None:
            span.set_status(Status(StatusCode.ERROR, str(error)))

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if asyncio.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                with _span(span_name, attributes) as span:
                    if span is None:
                        return await func(*args, **kwargs)
                    start_time = time.perf_counter()
                    try:
                        result = await func(*args, **kwargs)
                    except Exception as e:
                        _finish(span, start_time, e)
                        raise
                    _finish(span, start_time, None)
                    return result

            return cast(Callable[P, R], async_wrapper)

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with _span(span_name, attributes) as span:
                if span is None:
                    return func(*args, **kwargs)
                start_time = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _finish(span, start_time, e)
                    raise
                _finish(span, start_time, None)
                return result

        return sync_wrapper

    return decorator


def track_dependency(name: str, dependency_type: str = "custom"):
    """Decorator to track external dependency calls (auth provider, store)."""
    return _traced_span(
        name,
        {"dependency.type": dependency_type, "dependency.name": name},
        record_exceptions=False,
    )


def track_operation(operation_name: str):
    """Decorator to track streak engine operations."""
    return _traced_span(
        operation_name,
        {"operation.name": operation_name},
        record_exceptions=True,
    )


def add_custom_attribute(key: str, value: str | int | float | bool) -> None:
    """Add a custom attribute to the current span."""
    if not TELEMETRY_ENABLED or trace is None:
        return

    span = trace.get_current_span()
    if span:
        span.set_attribute(key, value)


def log_business_event(
    name: str, value: float, properties: dict[str, str] | None = None
) -> None:
    """Log a structured business event (check-ins, repairs, drift).

    Emits a log line, not an OpenTelemetry metric.
    """
    if not TELEMETRY_ENABLED:
        return

    logger.info("business.event", event_name=name, value=value, **(properties or {}))
