"""Cooperative cancellation shared by every participant of one dispatch."""

import asyncio
import logging
import threading
from typing import Callable, List, Optional

from .exceptions import OperationCancelledError

logger = logging.getLogger("cqrs_mediator")


class CancellationToken:
    """
    Cooperative cancellation signal.

    One token is threaded through a whole dispatch: every behavior, the
    handler and, for streams, every yield point. Cancelling does not abort
    anything by itself; code that honours the token checks it and fails with
    ``OperationCancelledError``.

    The token may be cancelled from any thread. Waiters are woken on the
    event loop they wait on, while callbacks run on the cancelling thread.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(mediator.send(GetReport(), token))
        token.cancel()
    """

    def __init__(self, cancelled: bool = False):
        self._cancelled = cancelled
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @classmethod
    def none(cls) -> "CancellationToken":
        """A fresh token that nobody holds a reference to cancel."""
        return cls()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Idempotent."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            event, loop = self._event, self._loop
            callbacks, self._callbacks = self._callbacks, []

        if event is not None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                event.set()
            else:
                loop.call_soon_threadsafe(event.set)

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancellation callback {callback} failed: {e}", exc_info=True)

    def register(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError()

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        with self._lock:
            if self._cancelled:
                return
            if self._event is None:
                self._event = asyncio.Event()
                self._loop = asyncio.get_running_loop()
            event = self._event
        await event.wait()

    async def sleep(self, delay: float) -> None:
        """
        Sleep for ``delay`` seconds, failing early if cancelled meanwhile.

        Raises:
            OperationCancelledError: If the token is (or becomes) cancelled.
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled})"
