import asyncio
import logging
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel, Field

from cqrs_mediator.behaviors import (
    LoggingBehavior,
    NotificationLoggingBehavior,
    NotificationValidationBehavior,
    RetryBehavior,
    StreamLoggingBehavior,
    TimeoutBehavior,
    ValidationBehavior,
)
from cqrs_mediator.cancellation import CancellationToken
from cqrs_mediator.core import (
    Notification,
    NotificationHandler,
    Request,
    RequestHandler,
    StreamRequest,
    StreamRequestHandler,
)
from cqrs_mediator.exceptions import OperationCancelledError, ValidationError
from cqrs_mediator.validation import ModelValidator, ValidationResult

# --- Helper Objects ---


@dataclass(frozen=True)
class CreateUser(Request[str]):
    name: str
    correlation_id: str = None


@dataclass(frozen=True)
class UserCreated(Notification):
    name: str


@dataclass(frozen=True)
class ListUsers(StreamRequest[str]):
    pass


class CreateUserHandler(RequestHandler[CreateUser, str]):
    async def handle(self, request, cancellation_token):
        return f"created {request.name}"


class ListUsersHandler(StreamRequestHandler[ListUsers, str]):
    async def handle(self, request, cancellation_token):
        yield "alice"
        yield "bob"


class UserCreatedHandler(NotificationHandler[UserCreated]):
    async def handle(self, notification, cancellation_token):
        pass


class NameRules(BaseModel):
    name: str = Field(min_length=1)


class RejectAll:
    async def validate(self, message):
        return ValidationResult.failure({"name": ["rejected"]})


class AcceptAll:
    async def validate(self, message):
        return ValidationResult.success()


def flaky(failures, error=ConnectionError("down")):
    """Continuation failing ``failures`` times before succeeding."""
    calls = []

    async def next_handler():
        calls.append(1)
        if len(calls) <= failures:
            raise error
        return "ok"

    return next_handler, calls


# --- Logging ---


@pytest.mark.asyncio
async def test_logging_behavior_logs_start_and_end(mediator, registry, caplog):
    caplog.set_level(logging.INFO)
    registry.register(CreateUserHandler)
    registry.register(LoggingBehavior())

    await mediator.send(CreateUser("bob", correlation_id="c-1"))

    messages = [r.message for r in caplog.records]
    assert "[c-1] Handling CreateUser" in messages
    assert any(m.startswith("[c-1] Handled CreateUser in") for m in messages)


@pytest.mark.asyncio
async def test_logging_behavior_logs_failure(caplog):
    caplog.set_level(logging.INFO)
    next_handler = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        await LoggingBehavior().handle(CreateUser("x"), next_handler, CancellationToken.none())

    errors = [r for r in caplog.records if r.levelname == "ERROR"]
    assert errors[0].message == "Failed CreateUser: boom"


@pytest.mark.asyncio
async def test_logging_behavior_level(caplog):
    caplog.set_level(logging.DEBUG)
    next_handler = AsyncMock(return_value="ok")

    await LoggingBehavior(level="debug").handle(
        CreateUser("x"), next_handler, CancellationToken.none()
    )

    records = [r for r in caplog.records if r.name == "cqrs_mediator"]
    assert len(records) == 2
    assert all(r.levelno == logging.DEBUG for r in records)


@pytest.mark.asyncio
async def test_notification_logging_behavior(mediator, registry, caplog):
    caplog.set_level(logging.INFO)
    registry.register(UserCreatedHandler)
    registry.register(NotificationLoggingBehavior())

    await mediator.publish(UserCreated("bob"))

    messages = [r.message for r in caplog.records]
    assert "Publishing UserCreated" in messages
    assert "Published UserCreated" in messages


@pytest.mark.asyncio
async def test_stream_logging_behavior_counts_items(mediator, registry, caplog):
    caplog.set_level(logging.INFO)
    registry.register(ListUsersHandler)
    registry.register(StreamLoggingBehavior())

    items = [item async for item in mediator.send_stream(ListUsers())]

    assert items == ["alice", "bob"]
    assert "Streamed ListUsers: 2 items" in [r.message for r in caplog.records]


# --- Validation ---


@pytest.mark.asyncio
async def test_validation_behavior_short_circuits(mediator, registry):
    handler = MagicMock()
    handler.handle = AsyncMock(return_value="created")
    registry.register_request_handler(CreateUser, handler)
    registry.register(ValidationBehavior(RejectAll()))

    with pytest.raises(ValidationError) as exc:
        await mediator.send(CreateUser("bob"))

    assert exc.value.errors == {"name": ["rejected"]}
    assert exc.value.message_type == "CreateUser"
    handler.handle.assert_not_awaited()


@pytest.mark.asyncio
async def test_validation_behavior_passes_valid_requests(mediator, registry):
    registry.register(CreateUserHandler)
    # Validator classes are instantiated per dispatch
    registry.register(ValidationBehavior(AcceptAll))

    assert await mediator.send(CreateUser("bob")) == "created bob"


@pytest.mark.asyncio
async def test_validation_behavior_with_model_validator(mediator, registry):
    registry.register(CreateUserHandler)
    registry.register(ValidationBehavior(ModelValidator(NameRules)))

    assert await mediator.send(CreateUser("bob")) == "created bob"
    with pytest.raises(ValidationError) as exc:
        await mediator.send(CreateUser(""))
    assert "name" in exc.value.errors


@pytest.mark.asyncio
async def test_notification_validation_fails_each_handler(mediator, registry):
    from cqrs_mediator.exceptions import AggregateHandlerError

    registry.register(UserCreatedHandler)
    registry.register(UserCreatedHandler)
    registry.register(NotificationValidationBehavior(RejectAll()))

    with pytest.raises(AggregateHandlerError) as exc:
        await mediator.publish(UserCreated("bob"))

    assert len(exc.value.exceptions) == 2
    assert all(isinstance(e, ValidationError) for e in exc.value.exceptions)


# --- Retry ---


@pytest.mark.asyncio
async def test_retry_behavior_retries_until_success():
    next_handler, calls = flaky(2)
    behavior = RetryBehavior(attempts=3, min_wait=0, max_wait=0)

    result = await behavior.handle(CreateUser("x"), next_handler, CancellationToken.none())

    assert result == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_behavior_gives_up_with_last_error():
    next_handler, calls = flaky(5)
    behavior = RetryBehavior(attempts=2, min_wait=0, max_wait=0)

    with pytest.raises(ConnectionError):
        await behavior.handle(CreateUser("x"), next_handler, CancellationToken.none())

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_behavior_respects_retry_on():
    next_handler, calls = flaky(1, error=KeyError("bad"))
    behavior = RetryBehavior(attempts=3, min_wait=0, max_wait=0, retry_on=(ConnectionError,))

    with pytest.raises(KeyError):
        await behavior.handle(CreateUser("x"), next_handler, CancellationToken.none())

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_behavior_never_retries_cancellation():
    next_handler, calls = flaky(5, error=OperationCancelledError())
    behavior = RetryBehavior(attempts=3, min_wait=0, max_wait=0)

    with pytest.raises(OperationCancelledError):
        await behavior.handle(CreateUser("x"), next_handler, CancellationToken.none())

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retry_backoff_interrupted_by_cancellation():
    next_handler, calls = flaky(5)
    token = CancellationToken()
    behavior = RetryBehavior(attempts=5, min_wait=10, max_wait=10)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(behavior.handle(CreateUser("x"), next_handler, token), timeout=1)
    await canceller

    assert len(calls) == 1


# --- Timeout ---


@pytest.mark.asyncio
async def test_timeout_behavior_raises():
    async def slow():
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(TimeoutError, match="CreateUser timed out after 0.01s"):
        await TimeoutBehavior(0.01).handle(CreateUser("x"), slow, CancellationToken.none())


@pytest.mark.asyncio
async def test_timeout_behavior_passes_fast_results():
    next_handler = AsyncMock(return_value="quick")

    result = await TimeoutBehavior(1).handle(CreateUser("x"), next_handler, CancellationToken.none())

    assert result == "quick"
