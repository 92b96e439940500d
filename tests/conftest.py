"""Shared pytest fixtures and a scripted fake runner for testing."""

import asyncio
import json
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from typing import Any

import pytest

from azpanel.config import PanelConfig, RetryConfig
from azpanel.runner.base import (
    EXIT_CANCELLED,
    AzCommand,
    AzResult,
    Outcome,
    classify_exit,
)
from azpanel.services.facade import AzureCliFacade
from azpanel.services.output import OutputSink
from azpanel.util.cancellation import CancelToken


def ok(payload: Any = None, stdout: str | None = None) -> tuple[int, str, str]:
    """Scripted success: JSON-encodes payload unless raw stdout is given."""
    if stdout is None:
        stdout = json.dumps(payload) if payload is not None else ""
    return (0, stdout, "")


def fail(stderr: str = "ERROR: something went wrong", exit_code: int = 1) -> tuple[int, str, str]:
    """Scripted failure."""
    return (exit_code, "", stderr)


class FakeRunner:
    """CliRunner stand-in returning scripted results per verb.

    This runner never starts a process and is useful for:
    - Testing facade caching, retry and invalidation
    - Checking which commands were issued, in order
    - Measuring how many runs were in flight at once
    """

    def __init__(self, latency: float = 0.0, az_path: str | None = "/usr/bin/az") -> None:
        """Initialize the fake runner.

        Args:
            latency: Seconds each run takes (lets concurrent runs overlap)
            az_path: Value reported as the resolved executable
        """
        self._az_path = az_path
        self._latency = latency
        self._scripts: dict[str, deque[tuple[int, str, str]]] = defaultdict(deque)
        self._defaults: dict[str, tuple[int, str, str]] = {}
        self._streams: dict[str, list[str]] = {}
        self.calls: list[AzCommand] = []
        self.active = 0
        self.max_active = 0

    @property
    def az_path(self) -> str | None:
        return self._az_path

    def script(self, verb: str, *outcomes: tuple[int, str, str]) -> None:
        """Queue outcomes for successive runs of a verb."""
        self._scripts[verb].extend(outcomes)

    def always(self, verb: str, outcome: tuple[int, str, str]) -> None:
        """Outcome used for a verb once its queue is empty."""
        self._defaults[verb] = outcome

    def stream_lines(self, verb: str, lines: list[str]) -> None:
        self._streams[verb] = lines

    def calls_for(self, verb: str) -> list[AzCommand]:
        return [c for c in self.calls if c.verb == verb]

    async def run(self, command: AzCommand, cancel_token: CancelToken | None = None) -> AzResult:
        self.calls.append(command)
        if cancel_token is not None and cancel_token.is_cancelled:
            return AzResult(command, EXIT_CANCELLED, "", "Cancelled.", 0.0, Outcome.CANCELLED)

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self._latency)
        finally:
            self.active -= 1

        queue = self._scripts[command.verb]
        if queue:
            exit_code, stdout, stderr = queue.popleft()
        elif command.verb in self._defaults:
            exit_code, stdout, stderr = self._defaults[command.verb]
        else:
            raise AssertionError(f"Unscripted command: {command}")
        return AzResult(command, exit_code, stdout, stderr, 1.0, classify_exit(exit_code))

    async def stream(
        self, command: AzCommand, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[str]:
        self.calls.append(command)
        for line in self._streams.get(command.verb, []):
            if cancel_token is not None and cancel_token.is_cancelled:
                return
            yield line


# --- Pytest Fixtures ---


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Provide an empty scripted runner."""
    return FakeRunner()


@pytest.fixture
def fast_config() -> PanelConfig:
    """Default config with retry delays shrunk to nothing."""
    return PanelConfig(retry=RetryConfig(max_attempts=3, initial_delay_ms=0, max_delay_ms=0))


@pytest.fixture
def sink() -> OutputSink:
    return OutputSink()


@pytest.fixture
def published(sink: OutputSink) -> list[AzResult]:
    """Every result delivered to the sink fixture."""
    results: list[AzResult] = []
    sink.subscribe(results.append)
    return results


@pytest.fixture
def facade(fake_runner: FakeRunner, fast_config: PanelConfig, sink: OutputSink) -> AzureCliFacade:
    """Facade wired to the fake runner and the shared sink."""
    return AzureCliFacade(fake_runner, fast_config, output=sink)
