"""
Pipeline chain builder.

Folds an ordered behavior list and a terminal handler invocation into a
single zero-argument continuation. The same fold serves all three pipeline
kinds: for requests and notifications the continuation returns an awaitable,
for streams it returns an async iterator.
"""

from typing import Any, AsyncIterator, Callable, Sequence, TypeVar

from .cancellation import CancellationToken


T = TypeVar("T")


def build_pipeline(
    message: Any,
    terminal: Callable[[], T],
    behaviors: Sequence[Any],
    cancellation_token: CancellationToken,
) -> Callable[[], T]:
    """
    Wrap ``terminal`` with ``behaviors`` (given in registration order).

    Behaviors are folded in registration order, so the last registered wraps
    everything before it and runs first:

        [B1, B2, B3] + H  ->  B3 -> B2 -> B1 -> H

    No behavior is skipped, reordered or deduplicated. Each behavior decides
    how many times to call the continuation it receives.

    Args:
        message: The request or notification being dispatched.
        terminal: Zero-argument callable invoking the handler.
        behaviors: Behavior instances in registration order.
        cancellation_token: Token passed to every behavior.

    Returns:
        The outermost continuation. It is built for one dispatch and must
        not be cached.
    """
    chain = terminal
    for behavior in behaviors:
        chain = _link(behavior, message, chain, cancellation_token)
    return chain


def _link(
    behavior: Any,
    message: Any,
    next_handler: Callable[[], T],
    cancellation_token: CancellationToken,
) -> Callable[[], T]:
    # Separate scope so each link captures its own behavior and successor
    def invoke() -> T:
        return behavior.handle(message, next_handler, cancellation_token)

    return invoke


async def with_cancellation(
    stream: AsyncIterator[T], cancellation_token: CancellationToken
) -> AsyncIterator[T]:
    """
    Re-yield ``stream``, checking the token before every item is pulled.

    Items already yielded are never retracted; after cancellation the next
    pull fails with ``OperationCancelledError`` and the inner stream is closed.
    """
    try:
        cancellation_token.raise_if_cancelled()
        async for item in stream:
            yield item
            cancellation_token.raise_if_cancelled()
    finally:
        await close_stream(stream)


async def close_stream(stream: Any) -> None:
    """Close an async iterator if it supports closing."""
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
