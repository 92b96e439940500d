"""Subprocess runner for the Azure CLI: batch capture and live line streaming."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator

from azpanel.redaction import redact
from azpanel.util.cancellation import CancelToken

from .base import (
    EXIT_CANCELLED,
    EXIT_INTERNAL_ERROR,
    EXIT_SPAWN_FAILED,
    AzCommand,
    AzResult,
    AzStreamError,
    Outcome,
    classify_exit,
)
from .locator import ExecutableLocator, HostPlatform
from .process import kill_process_tree, release, spawn, start_pump
from .quoting import Invocation, build_direct_invocation, build_shell_invocation

logger = logging.getLogger(__name__)

STDERR_PREFIX = "[stderr] "
EXCEPTION_PREFIX = "[exception] "


class _EndOfStream:
    """Queue item marking the end of a stream, optionally with a failure."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error


class AzCliRunner:
    """Runs Azure CLI commands as child processes.

    ``run`` captures a command to completion and never raises for process
    failures; the outcome is encoded in the returned AzResult. ``stream``
    yields output lines live until the process exits or is cancelled.
    """

    def __init__(
        self,
        az_path_override: str | None = None,
        host: HostPlatform | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            az_path_override: Optional explicit path to the az executable
            host: Host platform (defaults to the running one)
        """
        self._locator = ExecutableLocator(host)
        self._host = self._locator.host
        self._az_path = self._locator.locate(az_path_override)

    @property
    def az_path(self) -> str | None:
        """Resolved executable path, or None if nothing was found."""
        return self._az_path

    def build_invocation(self, command: AzCommand) -> Invocation:
        """Build the launch for a command using the matching quoting strategy."""
        executable = self._az_path or self._locator.resolve()
        if self._host.requires_shell(executable):
            return build_shell_invocation(executable, command, self._host.shell)
        return build_direct_invocation(executable, command)

    async def run(self, command: AzCommand, cancel_token: CancelToken | None = None) -> AzResult:
        """Run a command to completion, capturing stdout and stderr.

        Args:
            command: The command to run
            cancel_token: Optional token; cancelling kills the process tree

        Returns:
            A fully populated AzResult, whatever happened
        """
        started = time.perf_counter()
        token = cancel_token or CancelToken()

        def _result(exit_code: int, stdout: str, stderr: str, outcome: Outcome) -> AzResult:
            duration_ms = (time.perf_counter() - started) * 1000
            return AzResult(command, exit_code, stdout, stderr, duration_ms, outcome)

        if token.is_cancelled:
            return _result(EXIT_CANCELLED, "", "Cancelled.", Outcome.CANCELLED)

        try:
            invocation = self.build_invocation(command)
            logger.debug("Running %s", redact(invocation.command_line))
            try:
                process = spawn(self._host, invocation)
            except OSError as e:
                logger.debug("Failed to start %s: %s", invocation.program, e)
                return _result(
                    EXIT_SPAWN_FAILED,
                    "",
                    f"Failed to start Azure CLI process: {e}",
                    Outcome.SPAWN_FAILURE,
                )

            stdout_lines: list[str] = []
            stderr_lines: list[str] = []
            pumps = [
                start_pump(process.stdout, stdout_lines.append, name="az-stdout"),  # type: ignore[arg-type]
                start_pump(process.stderr, stderr_lines.append, name="az-stderr"),  # type: ignore[arg-type]
            ]
            # Both streams must hit EOF and the process must exit
            completion = asyncio.gather(
                *(asyncio.shield(p) for p in pumps),
                asyncio.to_thread(process.wait),
            )
            try:
                finished = await _wait_unless_cancelled(completion, token)
                if not finished:
                    await kill_process_tree(process)
            except BaseException:
                # Task cancellation or a pump failure: never leave the process behind
                await asyncio.shield(kill_process_tree(process))
                raise
            finally:
                await release(process, pumps)

            if not finished:
                return _result(EXIT_CANCELLED, "", "Cancelled.", Outcome.CANCELLED)

            exit_code = process.returncode
            return _result(
                exit_code,
                _join_lines(stdout_lines),
                _join_lines(stderr_lines),
                classify_exit(exit_code),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error running %s", command)
            return _result(
                EXIT_INTERNAL_ERROR,
                "",
                f"Exception running Azure CLI: {e!r}",
                Outcome.NON_ZERO_EXIT,
            )

    async def stream(
        self, command: AzCommand, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[str]:
        """Run a command and yield its output lines as they arrive.

        Stderr lines are prefixed with STDERR_PREFIX. The sequence ends when
        the process exits or the token is cancelled; closing the iterator
        early (``aclose()`` or leaving an ``aclosing`` block) also stops the
        process.

        Raises:
            AzStreamError: After yielding a diagnostic line, if reading the
                process output failed
        """
        stop = CancelToken.linked(cancel_token)
        queue: asyncio.Queue[str | _EndOfStream] = asyncio.Queue()
        producer = asyncio.create_task(self._produce(command, queue, stop))

        try:
            while True:
                item = await _next_unless_cancelled(queue, stop)
                if item is None:
                    return
                if isinstance(item, _EndOfStream):
                    if item.error is not None:
                        raise AzStreamError(
                            f"Reading output of {command} failed: {item.error}",
                            command=str(command),
                        ) from item.error
                    return
                yield item
        finally:
            stop.cancel()
            await asyncio.shield(producer)

    async def _produce(
        self,
        command: AzCommand,
        queue: "asyncio.Queue[str | _EndOfStream]",
        stop: CancelToken,
    ) -> None:
        """Own the process for a stream; always ends by closing the queue."""
        loop = asyncio.get_running_loop()

        def _push(line: str) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, line)

        try:
            invocation = self.build_invocation(command)
            logger.debug("Streaming %s", redact(invocation.command_line))
            process = spawn(self._host, invocation)
        except OSError as e:
            queue.put_nowait(f"Failed to start Azure CLI process: {e}")
            queue.put_nowait(_EndOfStream())
            return

        pumps: list[asyncio.Future[None]] = []
        try:
            pumps = [
                start_pump(process.stdout, _push, lambda: stop.is_cancelled, "az-stdout"),  # type: ignore[arg-type]
                start_pump(
                    process.stderr,  # type: ignore[arg-type]
                    lambda line: _push(STDERR_PREFIX + line),
                    lambda: stop.is_cancelled,
                    "az-stderr",
                ),
            ]
            finished = await _wait_unless_cancelled(
                asyncio.gather(*(asyncio.shield(p) for p in pumps)), stop
            )
            # Pumps also stop early at a line boundary once cancelled
            if finished and not stop.is_cancelled:
                await asyncio.to_thread(process.wait)
            else:
                await kill_process_tree(process)
            # Each pump resolves after its last push, so every line is queued
            queue.put_nowait(_EndOfStream())
        except Exception as e:
            logger.warning("Streaming %s failed: %s", command, redact(str(e)))
            await kill_process_tree(process)
            queue.put_nowait(redact(f"{EXCEPTION_PREFIX}{e!r}"))
            queue.put_nowait(_EndOfStream(e))
        except asyncio.CancelledError:
            await asyncio.shield(kill_process_tree(process))
            queue.put_nowait(_EndOfStream())
            raise
        finally:
            await release(process, pumps)


def _join_lines(lines: list[str]) -> str:
    return "".join(f"{line}\n" for line in lines)


async def _wait_unless_cancelled(awaitable: "asyncio.Future", token: CancelToken) -> bool:
    """Await a future unless the token fires first.

    Returns:
        True if the future completed, False if cancellation won (the future
        is then cancelled)
    """
    future = asyncio.ensure_future(awaitable)
    canceller = asyncio.ensure_future(token.wait_async())
    try:
        await asyncio.wait({future, canceller}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        future.cancel()
        raise
    finally:
        canceller.cancel()

    if future.done():
        future.result()
        return True
    future.cancel()
    return False


async def _next_unless_cancelled(
    queue: "asyncio.Queue[str | _EndOfStream]", token: CancelToken
) -> "str | _EndOfStream | None":
    """Next queue item, or None once the token is cancelled."""
    if token.is_cancelled:
        return None
    getter = asyncio.ensure_future(queue.get())
    if await _wait_unless_cancelled(getter, token):
        return getter.result()
    return None
