"""
Distributed tracing for mediator dispatches.

Spans are opened by pipeline behaviors, so tracing is switched on by
registering them:

    configure_tracing("opentelemetry", service_name="orders")
    registry.register(TracingBehavior())
    registry.register(NotificationTracingBehavior())
    registry.register(StreamTracingBehavior())
"""

from contextlib import contextmanager
from functools import wraps
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Optional, Protocol, runtime_checkable
import logging

from ..cancellation import CancellationToken
from ..core import (
    Command,
    NextHandler,
    NotificationNextHandler,
    NotificationPipelineBehavior,
    PipelineBehavior,
    StreamNextHandler,
    StreamPipelineBehavior,
    TItem,
    TNotification,
    TRequest,
    TResponse,
    TStreamRequest,
)

try:
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    HAS_OPENTELEMETRY = True
except ImportError:
    HAS_OPENTELEMETRY = False

try:
    import sentry_sdk

    HAS_SENTRY = True
except ImportError:
    HAS_SENTRY = False

logger = logging.getLogger("cqrs_mediator")

SYSTEM = "cqrs-mediator"


@runtime_checkable
class TracingBackend(Protocol):
    """Opens spans around dispatches."""

    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """Context manager yielding the backend's span object (or None)."""
        ...


class NoOpBackend:
    """Backend that records nothing."""

    @contextmanager
    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        yield None


class OpenTelemetryBackend:
    """Spans through the globally configured OpenTelemetry tracer provider."""

    def __init__(self, service_name: str = SYSTEM):
        if not HAS_OPENTELEMETRY:
            raise ImportError("opentelemetry-api is not installed.")
        self.tracer = trace.get_tracer(service_name)

    @contextmanager
    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        # Status is set here so the error message lands on the span
        with self.tracer.start_as_current_span(
            name,
            kind=trace.SpanKind.INTERNAL,
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, f"{type(e).__name__}: {e}"))
                raise


class SentryBackend:
    """Spans as Sentry performance spans; op is ``mediator.<operation>``."""

    def __init__(self):
        if not HAS_SENTRY:
            raise ImportError("sentry-sdk is not installed.")

    @contextmanager
    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        attributes = attributes or {}
        operation = attributes.get("messaging.operation", "dispatch")
        with sentry_sdk.start_span(op=f"mediator.{operation}", name=name) as span:
            for key, value in attributes.items():
                span.set_data(key, value)
            yield span


class TracingService:
    """Holds the active backend; behaviors read it at dispatch time."""

    def __init__(self, backend: Optional[TracingBackend] = None):
        self.backend = backend or NoOpBackend()

    def configure(self, backend: TracingBackend) -> None:
        self.backend = backend

    @contextmanager
    def start_span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Any]:
        with self.backend.start_span(name, attributes) as span:
            yield span


_tracing_service = TracingService()


def get_tracing_service() -> TracingService:
    return _tracing_service


# name -> factory taking the service name
_BACKENDS: Dict[str, Callable[[str], Any]] = {
    "opentelemetry": lambda service_name: OpenTelemetryBackend(service_name),
    "sentry": lambda service_name: SentryBackend(),
}


def configure_tracing(
    backend_name: str = "noop",
    service_name: str = SYSTEM,
    custom_backend: Optional[TracingBackend] = None,
) -> TracingBackend:
    """
    Select the backend used by the global tracing service.

    Args:
        backend_name: 'noop', 'opentelemetry' or 'sentry'.
        service_name: Tracer name for OpenTelemetry.
        custom_backend: Use this backend instead of a named one.

    Returns:
        The backend now in use. Unknown names and missing libraries fall
        back to the no-op backend with a warning.
    """
    backend: TracingBackend
    if custom_backend is not None:
        backend = custom_backend
    elif backend_name in _BACKENDS:
        available = HAS_OPENTELEMETRY if backend_name == "opentelemetry" else HAS_SENTRY
        if available:
            backend = _BACKENDS[backend_name](service_name)
        else:
            logger.warning(f"Tracing backend '{backend_name}' is not installed, tracing disabled")
            backend = NoOpBackend()
    else:
        if backend_name != "noop":
            logger.warning(f"Unknown tracing backend '{backend_name}', tracing disabled")
        backend = NoOpBackend()

    _tracing_service.configure(backend)
    return backend


def _span_attributes(message: Any, operation: str) -> Dict[str, Any]:
    attributes = {
        "messaging.system": SYSTEM,
        "messaging.operation": operation,
        "messaging.destination": type(message).__name__,
    }
    correlation_id = getattr(message, "correlation_id", None)
    if correlation_id:
        attributes["messaging.correlation_id"] = correlation_id
    return attributes


class TracingBehavior(PipelineBehavior[TRequest, TResponse]):
    """
    One span per request dispatch, named ``handle_request X`` or
    ``handle_command X``.

    Failures are recorded on the span by the backend and re-raised.
    """

    def __init__(self, service: Optional[TracingService] = None):
        self.service = service

    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: CancellationToken,
    ) -> TResponse:
        operation = "command" if isinstance(request, Command) else "request"
        service = self.service or _tracing_service
        with service.start_span(
            f"handle_{operation} {type(request).__name__}",
            _span_attributes(request, operation),
        ):
            return await next_handler()


class NotificationTracingBehavior(NotificationPipelineBehavior[TNotification]):
    """One span per notification handler pipeline."""

    def __init__(self, service: Optional[TracingService] = None):
        self.service = service

    async def handle(
        self,
        notification: TNotification,
        next_handler: NotificationNextHandler,
        cancellation_token: CancellationToken,
    ) -> None:
        service = self.service or _tracing_service
        with service.start_span(
            f"handle_notification {type(notification).__name__}",
            _span_attributes(notification, "notification"),
        ):
            await next_handler()


class StreamTracingBehavior(StreamPipelineBehavior[TStreamRequest, TItem]):
    """Spans the whole enumeration of a stream, from first pull to exhaustion."""

    def __init__(self, service: Optional[TracingService] = None):
        self.service = service

    async def handle(
        self,
        request: TStreamRequest,
        next_handler: StreamNextHandler[TItem],
        cancellation_token: CancellationToken,
    ) -> AsyncIterator[TItem]:
        service = self.service or _tracing_service
        with service.start_span(
            f"handle_stream {type(request).__name__}",
            _span_attributes(request, "stream"),
        ) as span:
            count = 0
            async for item in next_handler():
                count += 1
                yield item
            if span is not None and hasattr(span, "set_attribute"):
                span.set_attribute("messaging.batch.message_count", count)


def trace_span(name: Optional[str] = None):
    """Trace a coroutine function with the global tracing service."""

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            with _tracing_service.start_span(name or func.__name__):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
