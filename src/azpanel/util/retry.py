"""Retry with exponential backoff for operations that report failure as data.

The action returns a value whether it worked or not; ``is_success`` decides.
Exhausting the attempts is not an error: the last (failing) value is returned.
Only cancellation ends the loop early.

Usage:
    result = await with_backoff(
        lambda token: runner.run(command, token),
        max_attempts=3,
        is_success=lambda r: r.success,
        initial_delay=0.25,
        cancel_token=token,
    )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .cancellation import CancelToken, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Delay ceiling in seconds
DEFAULT_MAX_DELAY = 2.0

# Signature: (attempt: int, max_attempts: int, delay: float) -> None
RetryCallback = Callable[[int, int, float], None]


def calculate_backoff(
    attempt: int, initial_delay: float, max_delay: float = DEFAULT_MAX_DELAY
) -> float:
    """Delay before the retry that follows a failed attempt.

    Args:
        attempt: The attempt that just failed (1-indexed)
        initial_delay: Delay after the first failure, in seconds
        max_delay: Ceiling for the delay, in seconds

    Returns:
        initial_delay doubled once per earlier retry, capped at max_delay
    """
    return min(initial_delay * (2 ** (attempt - 1)), max_delay)


async def with_backoff(
    action: Callable[[CancelToken | None], Awaitable[T]],
    max_attempts: int,
    is_success: Callable[[T], bool],
    initial_delay: float,
    cancel_token: CancelToken | None = None,
    max_delay: float = DEFAULT_MAX_DELAY,
    on_retry: RetryCallback | None = None,
) -> T:
    """Run an action until it succeeds or attempts are exhausted.

    Args:
        action: Coroutine function receiving the cancel token
        max_attempts: Total number of invocations allowed (must be >= 1)
        is_success: Predicate deciding whether a result is final
        initial_delay: Seconds to wait after the first failure
        cancel_token: Optional token checked before each attempt and during waits
        max_delay: Ceiling for the doubling delay, in seconds
        on_retry: Optional callback notified before each wait

    Returns:
        The first successful result, or the last failing one

    Raises:
        ValueError: If max_attempts is less than 1
        OperationCancelledError: If cancelled before an attempt or during a wait
    """
    if max_attempts <= 0:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    attempt = 1
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        result = await action(cancel_token)
        if is_success(result) or attempt >= max_attempts:
            return result

        delay = calculate_backoff(attempt, initial_delay, max_delay)
        logger.debug("Attempt %d/%d failed, retrying in %.2fs", attempt, max_attempts, delay)
        if on_retry is not None:
            on_retry(attempt, max_attempts, delay)

        if cancel_token is not None:
            if await cancel_token.wait_async(delay):
                raise OperationCancelledError()
        else:
            await asyncio.sleep(delay)
        attempt += 1
