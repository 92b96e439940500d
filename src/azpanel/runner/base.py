"""Command descriptors, execution results and error types for Azure CLI runs."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol, runtime_checkable

from azpanel.redaction import redact
from azpanel.util.cancellation import CancelToken

# Canonical name of the wrapped tool
AZ_TOOL_NAME = "az"

# Sentinel exit codes for runs that never produced a real one
EXIT_CANCELLED = -1
EXIT_INTERNAL_ERROR = 1
EXIT_SPAWN_FAILED = 127


class Outcome(str, Enum):
    """How an invocation ended."""

    SUCCESS = "success"
    NON_ZERO_EXIT = "non_zero_exit"
    SPAWN_FAILURE = "spawn_failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AzCommand:
    """An immutable description of one Azure CLI invocation.

    Attributes:
        verb: Whitespace-separated sub-command tokens (e.g. "account show")
        args: Ordered argument strings passed after the verb
        expect_json: Whether the command should produce JSON output
    """

    verb: str
    args: tuple[str, ...] = field(default_factory=tuple)
    expect_json: bool = True

    def __post_init__(self) -> None:
        # Accept any sequence but always store a tuple
        object.__setattr__(self, "args", tuple(self.args))

    def __str__(self) -> str:
        """Display text for messages and logs, with secrets redacted."""
        text = f"{AZ_TOOL_NAME} {self.verb}"
        if self.args:
            text += " " + " ".join(_escape_for_display(a) for a in self.args)
        return redact(text)


def _escape_for_display(value: str) -> str:
    if " " in value:
        return '"' + value.replace('"', '\\"') + '"'
    return value


@dataclass(frozen=True)
class AzResult:
    """Result of running an AzCommand.

    Always fully populated, including for spawn failures and cancellation.

    Attributes:
        command: The command that produced this result
        exit_code: Process exit code, or a sentinel (EXIT_*)
        stdout: Captured standard output
        stderr: Captured standard error (or an explanatory message)
        duration_ms: End-to-end duration in milliseconds
        outcome: Tag describing how the run ended
    """

    command: AzCommand
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    outcome: Outcome = Outcome.SUCCESS

    @property
    def success(self) -> bool:
        """Whether the command ran and exited with code 0."""
        return self.outcome == Outcome.SUCCESS and self.exit_code == 0

    def redacted(self) -> "AzResult":
        """Copy of this result with secrets scrubbed from both streams."""
        return replace(self, stdout=redact(self.stdout), stderr=redact(self.stderr))


def classify_exit(exit_code: int) -> Outcome:
    """Outcome for a process that actually ran."""
    return Outcome.SUCCESS if exit_code == 0 else Outcome.NON_ZERO_EXIT


@runtime_checkable
class CliRunner(Protocol):
    """Protocol for anything that can execute AzCommands.

    The facade only depends on this, so tests can substitute a scripted fake.
    """

    @property
    def az_path(self) -> str | None:
        """Resolved executable path, if one was found."""
        ...

    async def run(self, command: AzCommand, cancel_token: CancelToken | None = None) -> AzResult:
        """Run a command to completion, capturing all output. Never raises."""
        ...

    def stream(
        self, command: AzCommand, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[str]:
        """Run a command, yielding output lines as they arrive."""
        ...


class AzCliError(Exception):
    """Base exception for Azure CLI related errors."""

    def __init__(self, message: str, command: str | None = None) -> None:
        self.command = command
        super().__init__(message)


class AzCommandError(AzCliError):
    """Raised when a command did not succeed.

    Attributes:
        exit_code: Exit code (or sentinel) reported by the run
        detail: Redacted stderr/stdout excerpt
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        detail: str = "",
    ) -> None:
        super().__init__(message, command)
        self.exit_code = exit_code
        self.detail = detail


class AzSpawnError(AzCommandError):
    """Raised when the Azure CLI process could not be started."""

    pass


class AzCancelledError(AzCommandError):
    """Raised when a command was cancelled by the caller."""

    pass


class AzParseError(AzCliError):
    """Raised when command output is not the expected JSON document."""

    pass


class AzStreamError(AzCliError):
    """Raised to a streaming consumer when the output pumps failed."""

    pass


_NO_OUTPUT_MESSAGE = "Azure CLI returned a non-zero exit code with no output."


def describe_failure(result: AzResult) -> str:
    """Build a redacted, human-readable description of a failed result."""
    detail = redact(result.stderr.strip())
    if not detail.strip():
        detail = redact(result.stdout.strip())
    if not detail.strip():
        detail = _NO_OUTPUT_MESSAGE
    return f"{result.command}\nExitCode={result.exit_code}\n{detail}"


def error_from_result(result: AzResult) -> AzCommandError:
    """Convert a failing result into the matching caller-visible exception."""
    error_types: dict[Outcome, type[AzCommandError]] = {
        Outcome.SPAWN_FAILURE: AzSpawnError,
        Outcome.CANCELLED: AzCancelledError,
    }
    error_type = error_types.get(result.outcome, AzCommandError)
    detail = redact((result.stderr or result.stdout).strip())
    return error_type(
        describe_failure(result),
        command=str(result.command),
        exit_code=result.exit_code,
        detail=detail,
    )

