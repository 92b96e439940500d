"""Running the Azure CLI as a child process.

This package contains:

- Command and result types (AzCommand, AzResult, Outcome) and errors
- Executable discovery behind a per-host seam (ExecutableLocator, HostPlatform)
- Command-line quoting for direct and cmd.exe-wrapped launches
- The subprocess runner (AzCliRunner) with batch and streaming modes

Example:
    from azpanel.runner import AzCliRunner, AzCommand

    runner = AzCliRunner()
    result = await runner.run(AzCommand("group list"))
    async for line in runner.stream(AzCommand("webapp log tail", ("-g", "rg", "-n", "app"))):
        print(line)
"""

from .base import (
    AZ_TOOL_NAME,
    EXIT_CANCELLED,
    EXIT_INTERNAL_ERROR,
    EXIT_SPAWN_FAILED,
    AzCancelledError,
    AzCliError,
    AzCommand,
    AzCommandError,
    AzParseError,
    AzResult,
    AzSpawnError,
    AzStreamError,
    CliRunner,
    Outcome,
    describe_failure,
    error_from_result,
)
from .cli import STDERR_PREFIX, AzCliRunner
from .locator import ExecutableLocator, HostPlatform, PosixHost, WindowsHost, current_host
from .quoting import (
    Invocation,
    build_direct_invocation,
    build_shell_invocation,
    build_tokens,
    quote_for_direct_exec,
    quote_for_shell,
)

__all__ = [
    # Types
    "AZ_TOOL_NAME",
    "AzCommand",
    "AzResult",
    "Outcome",
    "CliRunner",
    "EXIT_CANCELLED",
    "EXIT_INTERNAL_ERROR",
    "EXIT_SPAWN_FAILED",
    # Exceptions
    "AzCliError",
    "AzCommandError",
    "AzSpawnError",
    "AzCancelledError",
    "AzParseError",
    "AzStreamError",
    "describe_failure",
    "error_from_result",
    # Runner
    "AzCliRunner",
    "STDERR_PREFIX",
    # Discovery
    "ExecutableLocator",
    "HostPlatform",
    "PosixHost",
    "WindowsHost",
    "current_host",
    # Quoting
    "Invocation",
    "build_direct_invocation",
    "build_shell_invocation",
    "build_tokens",
    "quote_for_direct_exec",
    "quote_for_shell",
]
