"""Cooperative cancellation shared between coroutines and pump threads."""

import asyncio
import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Raised when an operation notices its CancelToken was cancelled."""

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)


class CancelToken:
    """Thread-safe cancellation token.

    Supports:
    - Simple cancellation via cancel()
    - Polling via the is_cancelled property
    - Blocking wait via wait(), awaitable wait via wait_async()
    - Callback registration via on_cancel()

    A timeout is just a token that cancels itself after a deadline, see
    CancelToken.with_timeout().

    Example:
        token = CancelToken.with_timeout(30)
        result = await runner.run(AzCommand("group list"), token)
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        """Create a token that cancels itself after the given number of seconds."""
        token = cls()
        timer = threading.Timer(seconds, token.cancel)
        timer.daemon = True
        timer.start()
        token.on_cancel(timer.cancel)
        return token

    @classmethod
    def linked(cls, *parents: "CancelToken | None") -> "CancelToken":
        """Create a token that is cancelled when any parent is cancelled.

        Cancelling the linked token does not affect its parents.
        """
        token = cls()
        for parent in parents:
            if parent is not None:
                parent.on_cancel(token.cancel)
        return token

    def cancel(self) -> None:
        """Request cancellation.

        Idempotent: registered callbacks run once, on the first call.
        """
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        self._event.set()

        # Callbacks run outside the lock so they may touch this token
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    @property
    def is_cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancelled

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback for cancellation.

        The callback runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout expires.

        Returns:
            True if cancelled, False if the timeout expired
        """
        return self._event.wait(timeout=timeout)

    async def wait_async(self, timeout: float | None = None) -> bool:
        """Await cancellation without blocking the event loop.

        Returns:
            True if cancelled, False if the timeout expired
        """
        if self._cancelled:
            return True

        loop = asyncio.get_running_loop()
        cancelled: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            loop.call_soon_threadsafe(_resolve, cancelled)

        unregister = self.on_cancel(_wake)
        try:
            await asyncio.wait({cancelled}, timeout=timeout)
        finally:
            unregister()
            if not cancelled.done():
                cancelled.cancel()
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._cancelled:
            raise OperationCancelledError()


def _resolve(future: "asyncio.Future[None]") -> None:
    if not future.done():
        future.set_result(None)
