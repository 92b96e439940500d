"""Unit tests for CancelToken."""

import asyncio
import threading

import pytest

from azpanel.util.cancellation import CancelToken, OperationCancelledError


class TestCancelToken:
    """Test cancellation state and callbacks."""

    def test_initial_state(self):
        token = CancelToken()
        assert not token.is_cancelled
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self):
        """Callbacks run once no matter how often cancel() is called."""
        token = CancelToken()
        calls: list[int] = []
        token.on_cancel(lambda: calls.append(1))
        token.cancel()
        token.cancel()
        assert token.is_cancelled
        assert calls == [1]

    def test_raise_if_cancelled(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_on_cancel_after_cancel_runs_immediately(self):
        token = CancelToken()
        token.cancel()
        calls: list[int] = []
        token.on_cancel(lambda: calls.append(1))
        assert calls == [1]

    def test_unregister(self):
        token = CancelToken()
        calls: list[int] = []
        unregister = token.on_cancel(lambda: calls.append(1))
        unregister()
        token.cancel()
        assert calls == []

    def test_failing_callback_does_not_stop_others(self):
        token = CancelToken()
        calls: list[str] = []

        def _boom() -> None:
            raise RuntimeError("boom")

        token.on_cancel(_boom)
        token.on_cancel(lambda: calls.append("second"))
        token.cancel()
        assert calls == ["second"]

    def test_linked_follows_parent(self):
        """A linked token is cancelled with its parent but not vice versa."""
        parent = CancelToken()
        child = CancelToken.linked(parent, None)
        child.cancel()
        assert not parent.is_cancelled

        other_child = CancelToken.linked(parent)
        parent.cancel()
        assert other_child.is_cancelled

    def test_blocking_wait_from_thread(self):
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(timeout=5)

    def test_blocking_wait_timeout(self):
        assert not CancelToken().wait(timeout=0.01)


class TestAsyncWait:
    """Test awaiting cancellation."""

    @pytest.mark.asyncio
    async def test_wait_async_wakes_on_cancel(self):
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        assert await token.wait_async(timeout=5)

    @pytest.mark.asyncio
    async def test_wait_async_timeout(self):
        assert not await CancelToken().wait_async(timeout=0.01)

    @pytest.mark.asyncio
    async def test_cancel_from_other_thread(self):
        """Cancellation from a pump-like thread wakes the event loop."""
        token = CancelToken()
        threading.Timer(0.05, token.cancel).start()
        assert await token.wait_async(timeout=5)

    @pytest.mark.asyncio
    async def test_with_timeout(self):
        """A deadline token cancels itself."""
        token = CancelToken.with_timeout(0.05)
        assert not token.is_cancelled
        assert await token.wait_async(timeout=5)
        assert token.is_cancelled
