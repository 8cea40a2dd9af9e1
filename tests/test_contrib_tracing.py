from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cqrs_mediator.cancellation import CancellationToken
from cqrs_mediator.contrib import tracing
from cqrs_mediator.contrib.tracing import (
    NoOpBackend,
    NotificationTracingBehavior,
    OpenTelemetryBackend,
    SentryBackend,
    StreamTracingBehavior,
    TracingBehavior,
    TracingService,
    configure_tracing,
    get_tracing_service,
    trace_span,
)
from cqrs_mediator.core import Command, Notification, Request, StreamRequest


@dataclass(frozen=True)
class GetReport(Request[str]):
    correlation_id: str = None


@dataclass(frozen=True)
class ArchiveReport(Command):
    pass


@dataclass(frozen=True)
class ReportReady(Notification):
    pass


@dataclass(frozen=True)
class ExportReport(StreamRequest[int]):
    pass


@pytest.fixture(autouse=True)
def reset_tracing():
    yield
    configure_tracing("noop")


@pytest.fixture
def backend():
    return MagicMock()


def span_names(backend):
    return [c.args[0] for c in backend.start_span.call_args_list]


def test_tracing_service_noop():
    service = TracingService()  # Defaults to NoOp
    with service.start_span("test") as span:
        assert span is None


def test_tracing_service_configure(backend):
    service = TracingService()
    service.configure(backend)

    with service.start_span("test"):
        pass
    backend.start_span.assert_called()


@pytest.mark.asyncio
async def test_tracing_behavior_spans_requests(backend):
    behavior = TracingBehavior(TracingService(backend))
    next_handler = AsyncMock(return_value="report")

    result = await behavior.handle(
        GetReport(correlation_id="c-9"), next_handler, CancellationToken.none()
    )

    assert result == "report"
    assert span_names(backend) == ["handle_request GetReport"]
    attributes = backend.start_span.call_args.args[1]
    assert attributes["messaging.operation"] == "request"
    assert attributes["messaging.destination"] == "GetReport"
    assert attributes["messaging.correlation_id"] == "c-9"


@pytest.mark.asyncio
async def test_tracing_behavior_names_commands(backend):
    behavior = TracingBehavior(TracingService(backend))

    await behavior.handle(ArchiveReport(), AsyncMock(), CancellationToken.none())

    assert span_names(backend) == ["handle_command ArchiveReport"]


@pytest.mark.asyncio
async def test_tracing_behavior_uses_global_service(backend):
    configure_tracing(custom_backend=backend)

    await TracingBehavior().handle(GetReport(), AsyncMock(), CancellationToken.none())

    assert span_names(backend) == ["handle_request GetReport"]


@pytest.mark.asyncio
async def test_notification_tracing_behavior(backend):
    behavior = NotificationTracingBehavior(TracingService(backend))
    next_handler = AsyncMock()

    await behavior.handle(ReportReady(), next_handler, CancellationToken.none())

    next_handler.assert_awaited_once()
    assert span_names(backend) == ["handle_notification ReportReady"]


@pytest.mark.asyncio
async def test_stream_tracing_behavior_spans_enumeration(backend):
    behavior = StreamTracingBehavior(TracingService(backend))

    async def items():
        yield 1
        yield 2

    result = [
        item
        async for item in behavior.handle(ExportReport(), items, CancellationToken.none())
    ]

    assert result == [1, 2]
    assert span_names(backend) == ["handle_stream ExportReport"]


@pytest.mark.asyncio
async def test_tracing_behaviors_in_mediator(mediator, registry, backend):
    from cqrs_mediator.core import RequestHandler

    class GetReportHandler(RequestHandler[GetReport, str]):
        async def handle(self, request, cancellation_token):
            return "report"

    registry.register(GetReportHandler)
    registry.register(TracingBehavior(TracingService(backend)))

    assert await mediator.send(GetReport()) == "report"
    assert span_names(backend) == ["handle_request GetReport"]


@pytest.mark.asyncio
async def test_trace_span_decorator(backend):
    configure_tracing(custom_backend=backend)

    @trace_span("custom_name")
    async def my_func():
        return 42

    assert await my_func() == 42
    assert span_names(backend) == ["custom_name"]


@pytest.mark.asyncio
async def test_trace_span_defaults_to_function_name(backend):
    configure_tracing(custom_backend=backend)

    @trace_span()
    async def compute():
        return 1

    await compute()
    assert span_names(backend) == ["compute"]


def test_configure_tracing_unknown_backend(caplog):
    caplog.set_level("WARNING")

    configure_tracing("zipkin")

    assert isinstance(get_tracing_service().backend, NoOpBackend)
    assert any("Unknown tracing backend 'zipkin'" in r.message for r in caplog.records)


def test_configure_tracing_opentelemetry():
    configure_tracing("opentelemetry", service_name="orders")

    assert isinstance(get_tracing_service().backend, OpenTelemetryBackend)


def test_configure_tracing_falls_back_without_library(caplog):
    caplog.set_level("WARNING")

    with patch.object(tracing, "HAS_OPENTELEMETRY", False):
        configure_tracing("opentelemetry")

    assert isinstance(get_tracing_service().backend, NoOpBackend)
    assert any("is not installed" in r.message for r in caplog.records)


def test_configure_tracing_sentry():
    configure_tracing("sentry")

    assert isinstance(get_tracing_service().backend, SentryBackend)


def test_opentelemetry_backend_reraises_errors():
    backend = OpenTelemetryBackend()

    with pytest.raises(ValueError):
        with backend.start_span("failing", attributes={"k": "v"}):
            raise ValueError("boom")


def test_opentelemetry_backend_requires_library():
    with patch.object(tracing, "HAS_OPENTELEMETRY", False):
        with pytest.raises(ImportError):
            OpenTelemetryBackend()


def test_sentry_backend_sets_span_data():
    span = MagicMock()
    with patch.object(tracing, "sentry_sdk") as sentry:
        sentry.start_span.return_value.__enter__.return_value = span
        backend = SentryBackend()

        with backend.start_span("job", attributes={"messaging.operation": "request"}) as yielded:
            assert yielded is span

    sentry.start_span.assert_called_once_with(op="mediator.request", name="job")
    span.set_data.assert_called_once_with("messaging.operation", "request")
