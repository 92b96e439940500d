"""Output sink: where every completed Azure CLI attempt is reported.

The facade owns one OutputSink and publishes each result to it; front ends
subscribe observers. Everything delivered to observers has been redacted.
"""

import logging
import threading
from collections.abc import Callable

from azpanel.redaction import redact
from azpanel.runner.base import AzResult

logger = logging.getLogger(__name__)

ResultObserver = Callable[[AzResult], None]
TextObserver = Callable[[str], None]


class OutputSink:
    """Fan-out of results and free-form text to registered observers.

    Delivery is serialized under a lock, so an observer never runs
    concurrently with itself. A failing observer is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._result_observers: list[ResultObserver] = []
        self._text_observers: list[TextObserver] = []

    def subscribe(self, on_result: ResultObserver) -> Callable[[], None]:
        """Register a result observer.

        Returns:
            A callable that removes the observer again
        """
        with self._lock:
            self._result_observers.append(on_result)
        return lambda: self._remove(self._result_observers, on_result)

    def subscribe_text(self, on_text: TextObserver) -> Callable[[], None]:
        """Register a text observer; returns its unsubscribe callable."""
        with self._lock:
            self._text_observers.append(on_text)
        return lambda: self._remove(self._text_observers, on_text)

    def publish(self, result: AzResult) -> None:
        """Deliver a redacted copy of a result to every result observer."""
        safe = result.redacted()
        with self._lock:
            for observer in list(self._result_observers):
                try:
                    observer(safe)
                except Exception:
                    logger.exception("Output observer failed for %s", safe.command)

    def publish_text(self, text: str) -> None:
        """Deliver redacted text to every text observer."""
        safe = redact(text)
        with self._lock:
            for observer in list(self._text_observers):
                try:
                    observer(safe)
                except Exception:
                    logger.exception("Output text observer failed")

    def _remove(self, observers: list, observer: Callable) -> None:
        with self._lock:
            if observer in observers:
                observers.remove(observer)


class LoggingObserver:
    """Logs every published result; attach with ``sink.subscribe(LoggingObserver())``."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def __call__(self, result: AzResult) -> None:
        if result.success:
            self._log.info("%s succeeded in %.0f ms", result.command, result.duration_ms)
        else:
            self._log.warning(
                "%s failed (%s, exit %d) in %.0f ms: %s",
                result.command,
                result.outcome.value,
                result.exit_code,
                result.duration_ms,
                result.stderr.strip() or result.stdout.strip(),
            )
