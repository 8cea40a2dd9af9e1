"""Mediator - dispatches requests, stream requests and notifications through behavior pipelines."""

import asyncio
import logging
from typing import Any, AsyncIterator, List, Optional, TypeVar

from .cancellation import CancellationToken
from .core import Notification, Request, StreamRequest, response_type_of
from .exceptions import AggregateHandlerError, HandlerNotFoundError, InvalidMessageError
from .handler_registry import default_registry
from .pipeline import build_pipeline, close_stream, with_cancellation
from .protocols import HandlerResolver

logger = logging.getLogger(__name__)

TResponse = TypeVar("TResponse")
TItem = TypeVar("TItem")


class Mediator:
    """
    Mediator - routes requests, stream requests and notifications to their handlers.

    Every dispatch resolves its handler(s) and behaviors from the registry,
    folds them into a fresh pipeline (last registered behavior outermost) and
    runs it once:
    - Requests: exactly one handler, one result
    - Stream requests: exactly one handler, a lazy async iterator
    - Notifications: every handler, each in its own pipeline, concurrently

    Usage:
        mediator = Mediator(registry)
        user = await mediator.send(GetUser(user_id=1))
        async for row in mediator.send_stream(ExportUsers()):
            ...
        await mediator.publish(UserCreated(user_id=1))
    """

    def __init__(
        self,
        registry: Optional[HandlerResolver] = None,
        max_concurrent_handlers: Optional[int] = None,
    ):
        """
        Initialize the mediator.

        Args:
            registry: Handler/behavior lookup. Defaults to the module-level
                default registry.
            max_concurrent_handlers: Upper bound on notification handlers
                running at once within one publish. None means unbounded.
        """
        if max_concurrent_handlers is not None and max_concurrent_handlers < 1:
            raise ValueError("max_concurrent_handlers must be at least 1")
        self._registry = registry if registry is not None else default_registry
        self._max_concurrent_handlers = max_concurrent_handlers

    @property
    def registry(self) -> HandlerResolver:
        return self._registry

    def register(self, target: Any, message_type: Optional[type] = None) -> Any:
        """Register a handler or behavior into the underlying registry."""
        register = getattr(self._registry, "register", None)
        if register is None:
            raise TypeError(f"{type(self._registry).__name__} does not support registration")
        return register(target, message_type)

    async def send(
        self,
        request: Request[TResponse],
        cancellation_token: Optional[CancellationToken] = None,
    ) -> TResponse:
        """
        Send a request to its handler through the behavior pipeline.

        Args:
            request: The request to send
            cancellation_token: Token threaded through behaviors and handler

        Returns:
            The result of the pipeline

        Raises:
            InvalidMessageError: If request is None or not a Request.
            HandlerNotFoundError: If no handler is registered for its exact type.
        """
        if request is None:
            raise InvalidMessageError("request must not be None")
        if not isinstance(request, Request):
            raise InvalidMessageError(f"{type(request).__name__} is not a Request")

        token = cancellation_token if cancellation_token is not None else CancellationToken.none()
        request_type = type(request)
        response_type = response_type_of(request_type)

        handler = self._registry.resolve_handler(request_type, response_type)
        if handler is None:
            raise HandlerNotFoundError(request_type)
        behaviors = self._registry.resolve_behaviors(request_type, response_type)

        logger.debug(
            f"Sending {request_type.__name__} to {type(handler).__name__} "
            f"through {len(behaviors)} behaviors"
        )

        async def invoke_handler():
            return await handler.handle(request, token)

        pipeline = build_pipeline(request, invoke_handler, behaviors, token)
        return await pipeline()

    def send_stream(
        self,
        request: StreamRequest[TItem],
        cancellation_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[TItem]:
        """
        Send a stream request to its handler through the stream behavior pipeline.

        Returns immediately. Validation, resolution and execution are deferred
        until the first item is requested, so errors (including
        InvalidMessageError and HandlerNotFoundError) surface on iteration.
        Each call runs the full pipeline afresh.

        The token is checked before each item is pulled; once cancelled,
        iteration fails with OperationCancelledError.
        """
        token = cancellation_token if cancellation_token is not None else CancellationToken.none()
        return with_cancellation(self._stream(request, token), token)

    async def _stream(self, request: Any, token: CancellationToken) -> AsyncIterator[Any]:
        if request is None:
            raise InvalidMessageError("request must not be None")
        if not isinstance(request, StreamRequest):
            raise InvalidMessageError(f"{type(request).__name__} is not a StreamRequest")

        request_type = type(request)
        item_type = response_type_of(request_type)

        handler = self._registry.resolve_handler(request_type, item_type)
        if handler is None:
            raise HandlerNotFoundError(request_type, kind="stream")
        behaviors = self._registry.resolve_behaviors(request_type, item_type)

        logger.debug(
            f"Streaming {request_type.__name__} from {type(handler).__name__} "
            f"through {len(behaviors)} behaviors"
        )

        def invoke_handler():
            return handler.handle(request, token)

        stream = build_pipeline(request, invoke_handler, behaviors, token)()
        try:
            async for item in stream:
                yield item
        finally:
            await close_stream(stream)

    async def publish(
        self,
        notification: Notification,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> None:
        """
        Publish a notification to every registered handler.

        Each handler gets its own pipeline over the same behavior instances.
        All pipelines run concurrently and are awaited to completion, even
        when some fail early.

        Raises:
            InvalidMessageError: If notification is None or not a Notification.
            Exception: The original failure when exactly one pipeline fails.
            AggregateHandlerError: When two or more pipelines fail, carrying
                every failure in completion order.
        """
        if notification is None:
            raise InvalidMessageError("notification must not be None", "notification")
        if not isinstance(notification, Notification):
            raise InvalidMessageError(
                f"{type(notification).__name__} is not a Notification", "notification"
            )

        token = cancellation_token if cancellation_token is not None else CancellationToken.none()
        notification_type = type(notification)

        handlers = self._registry.resolve_handlers(notification_type)
        if not handlers:
            logger.debug(f"No handlers registered for {notification_type.__name__}")
            return
        behaviors = self._registry.resolve_behaviors(notification_type)

        logger.debug(
            f"Publishing {notification_type.__name__} to {len(handlers)} handlers "
            f"through {len(behaviors)} behaviors"
        )

        failures: List[Exception] = []
        semaphore = (
            asyncio.Semaphore(self._max_concurrent_handlers)
            if self._max_concurrent_handlers
            else None
        )

        async def run(handler: Any) -> None:
            async def invoke_handler():
                await handler.handle(notification, token)

            pipeline = build_pipeline(notification, invoke_handler, behaviors, token)
            try:
                if semaphore is None:
                    await pipeline()
                else:
                    async with semaphore:
                        await pipeline()
            except Exception as e:
                logger.error(
                    f"Handler {type(handler).__name__} failed for {notification_type.__name__}: {e}",
                    exc_info=True,
                )
                failures.append(e)

        await asyncio.gather(*(run(handler) for handler in handlers))

        if len(failures) == 1:
            raise failures[0]
        if failures:
            raise AggregateHandlerError(notification_type, failures)
