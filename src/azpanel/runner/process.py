"""Low-level process plumbing: spawning, line pumps and tree termination."""

import asyncio
import logging
import subprocess
import threading
from collections.abc import Callable
from typing import IO

import psutil

from .locator import HostPlatform
from .quoting import Invocation

logger = logging.getLogger(__name__)

# Seconds to wait for killed processes to disappear
KILL_WAIT_TIMEOUT = 3.0


def spawn(host: HostPlatform, invocation: Invocation) -> "subprocess.Popen[str]":
    """Start the process with both output streams piped and decoded as UTF-8.

    Raises:
        OSError: If the process could not be started
    """
    return subprocess.Popen(  # noqa: S603
        host.popen_args(invocation),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        encoding="utf-8",
        errors="replace",
        **host.popen_kwargs(),
    )


def start_pump(
    stream: IO[str],
    on_line: Callable[[str], None],
    should_stop: Callable[[], bool] | None = None,
    name: str = "pump",
) -> "asyncio.Future[None]":
    """Read a stream line by line on a daemon thread.

    Each line (without its trailing newline) is passed to on_line from the
    pump thread. The returned future resolves when the stream reaches EOF or
    should_stop() returns true at a line boundary, and carries the exception
    if reading fails.
    """
    loop = asyncio.get_running_loop()
    done: asyncio.Future[None] = loop.create_future()

    def _read() -> None:
        try:
            for line in stream:
                if should_stop is not None and should_stop():
                    break
                on_line(line.rstrip("\r\n"))
        except Exception as e:  # reported through the future
            _call_soon(loop, _fail, done, e)
        else:
            _call_soon(loop, _finish, done)

    threading.Thread(target=_read, name=name, daemon=True).start()
    return done


def _call_soon(loop: asyncio.AbstractEventLoop, callback: Callable, *args: object) -> None:
    try:
        loop.call_soon_threadsafe(callback, *args)
    except RuntimeError:
        # Loop already closed; nobody is waiting any more
        logger.debug("Event loop closed before pump %s finished", callback.__name__)


def _finish(future: "asyncio.Future[None]") -> None:
    if not future.done():
        future.set_result(None)


def _fail(future: "asyncio.Future[None]", error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def terminate_process_tree(process: "subprocess.Popen[str]") -> None:
    """Kill a process and all of its descendants, then reap the process.

    Descendants matter for shell-wrapped runs, where the real CLI is a child
    of cmd.exe.
    """
    try:
        children = psutil.Process(process.pid).children(recursive=True)
    except psutil.Error:
        children = []

    for child in children:
        try:
            child.kill()
        except psutil.Error:
            pass  # already gone

    try:
        process.kill()
    except OSError:
        pass

    try:
        process.wait(timeout=KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Process %d did not exit after kill", process.pid)

    _, alive = psutil.wait_procs(children, timeout=KILL_WAIT_TIMEOUT)
    for proc in alive:
        logger.warning("Descendant process %d survived termination", proc.pid)


async def kill_process_tree(process: "subprocess.Popen[str]") -> None:
    """Async wrapper around terminate_process_tree."""
    await asyncio.to_thread(terminate_process_tree, process)


def close_pipes(process: "subprocess.Popen[str]") -> None:
    """Release the process's pipe handles."""
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            try:
                stream.close()
            except OSError:
                pass


async def release(process: "subprocess.Popen[str]", pumps: "list[asyncio.Future[None]]") -> None:
    """Close the process's pipes once its pumps have stopped reading them."""
    pending = [p for p in pumps if not p.done()]
    if pending:
        _, still_running = await asyncio.wait(pending, timeout=KILL_WAIT_TIMEOUT)
        if still_running:
            logger.warning("Output pumps for process %d still running, pipes left open", process.pid)
            return
    close_pipes(process)
