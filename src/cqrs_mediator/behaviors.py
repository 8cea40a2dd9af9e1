"""Ready-made pipeline behaviors for cross-cutting concerns."""
import asyncio
from datetime import datetime
import logging
from typing import Any, AsyncIterator, Tuple, Type

from .cancellation import CancellationToken
from .core import (
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
from .exceptions import OperationCancelledError, ValidationError
from .protocols import Validator

try:
    from tenacity import (
        AsyncRetrying,
        before_sleep_log,
        retry_if_exception_type,
        retry_if_not_exception_type,
        stop_after_attempt,
        wait_exponential,
    )

    HAS_TENACITY = True
except ImportError:
    HAS_TENACITY = False

logger = logging.getLogger("cqrs_mediator")


def _trace_prefix(message: Any) -> str:
    trace_id = getattr(message, "correlation_id", None)
    return f"[{trace_id}] " if trace_id else ""


class LoggingBehavior(PipelineBehavior[TRequest, TResponse]):
    """
    Behavior for logging request execution and duration.

    Logs start, completion and failures. Applies to every request.
    """

    def __init__(self, level: str = "info"):
        self.level = getattr(logging, level.upper())

    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: CancellationToken,
    ) -> TResponse:
        name = type(request).__name__
        prefix = _trace_prefix(request)

        logger.log(self.level, f"{prefix}Handling {name}")
        start_time = datetime.now()
        try:
            result = await next_handler()
        except Exception as e:
            logger.error(f"{prefix}Failed {name}: {e}")
            raise
        duration = datetime.now() - start_time
        logger.log(self.level, f"{prefix}Handled {name} in {duration.total_seconds():.3f}s")
        return result


class NotificationLoggingBehavior(NotificationPipelineBehavior[TNotification]):
    """Logs each handler's processing of a notification."""

    def __init__(self, level: str = "info"):
        self.level = getattr(logging, level.upper())

    async def handle(
        self,
        notification: TNotification,
        next_handler: NotificationNextHandler,
        cancellation_token: CancellationToken,
    ) -> None:
        name = type(notification).__name__
        prefix = _trace_prefix(notification)

        logger.log(self.level, f"{prefix}Publishing {name}")
        try:
            await next_handler()
        except Exception as e:
            logger.error(f"{prefix}Failed {name}: {e}")
            raise
        logger.log(self.level, f"{prefix}Published {name}")


class StreamLoggingBehavior(StreamPipelineBehavior[TStreamRequest, TItem]):
    """Logs stream start, item count and completion."""

    def __init__(self, level: str = "info"):
        self.level = getattr(logging, level.upper())

    async def handle(
        self,
        request: TStreamRequest,
        next_handler: StreamNextHandler[TItem],
        cancellation_token: CancellationToken,
    ) -> AsyncIterator[TItem]:
        name = type(request).__name__
        prefix = _trace_prefix(request)
        count = 0

        logger.log(self.level, f"{prefix}Streaming {name}")
        try:
            async for item in next_handler():
                count += 1
                yield item
        except Exception as e:
            logger.error(f"{prefix}Stream {name} failed after {count} items: {e}")
            raise
        logger.log(self.level, f"{prefix}Streamed {name}: {count} items")


async def _run_validator(validator: Any, message: Any) -> None:
    if isinstance(validator, type):
        validator = validator()
    result = await validator.validate(message)
    if result.has_errors():
        raise ValidationError(type(message).__name__, result.errors)


class ValidationBehavior(PipelineBehavior[TRequest, TResponse]):
    """
    Behavior for validation using the Validator protocol.

    Short-circuits with ``ValidationError`` when validation fails; the
    handler never runs.
    """

    def __init__(self, validator: "Validator | Type[Validator]"):
        self.validator = validator

    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: CancellationToken,
    ) -> TResponse:
        await _run_validator(self.validator, request)
        return await next_handler()


class NotificationValidationBehavior(NotificationPipelineBehavior[TNotification]):
    """Validation for notifications; fails each handler's pipeline independently."""

    def __init__(self, validator: "Validator | Type[Validator]"):
        self.validator = validator

    async def handle(
        self,
        notification: TNotification,
        next_handler: NotificationNextHandler,
        cancellation_token: CancellationToken,
    ) -> None:
        await _run_validator(self.validator, notification)
        await next_handler()


class RetryBehavior(PipelineBehavior[TRequest, TResponse]):
    """
    Re-runs the rest of the pipeline (handler included) on failure.

    Uses exponential backoff via tenacity. Cancellation is never retried, and
    cancelling during a backoff wait fails immediately.
    """

    def __init__(
        self,
        attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 10.0,
        multiplier: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        if not HAS_TENACITY:
            raise ImportError("tenacity is not installed.")
        self.attempts = attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.multiplier = multiplier
        self.retry_on = retry_on

    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: CancellationToken,
    ) -> TResponse:
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(
                multiplier=self.multiplier, min=self.min_wait, max=self.max_wait
            ),
            retry=(
                retry_if_exception_type(self.retry_on)
                & retry_if_not_exception_type(OperationCancelledError)
            ),
            sleep=cancellation_token.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        async for attempt in retrying:
            with attempt:
                return await next_handler()


class TimeoutBehavior(PipelineBehavior[TRequest, TResponse]):
    """Raise ``TimeoutError`` if the rest of the pipeline exceeds ``timeout_seconds``."""

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds

    async def handle(
        self,
        request: TRequest,
        next_handler: NextHandler[TResponse],
        cancellation_token: CancellationToken,
    ) -> TResponse:
        try:
            return await asyncio.wait_for(next_handler(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{type(request).__name__} timed out after {self.timeout_seconds}s"
            ) from e
