"""Generic building blocks: cancellation, retry with backoff, TTL cache."""

from .cache import CacheEntry, TTLCache
from .cancellation import CancelToken, OperationCancelledError
from .retry import DEFAULT_MAX_DELAY, calculate_backoff, with_backoff

__all__ = [
    "CacheEntry",
    "TTLCache",
    "CancelToken",
    "OperationCancelledError",
    "DEFAULT_MAX_DELAY",
    "calculate_backoff",
    "with_backoff",
]
