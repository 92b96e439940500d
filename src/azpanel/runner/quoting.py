"""Command-line construction for the two ways the Azure CLI can be launched.

Direct execution hands a command line to the OS process loader, whose parser
takes backslash-escaped quotes. A ``.cmd``/``.bat`` wrapper has to go through
``cmd.exe``, whose tokenizer wants doubled quotes, and the whole script call
needs one more layer of quotes so ``cmd /s /c`` sees it as a single unit.
The two quoting functions target different grammars and are kept apart.
"""

from dataclasses import dataclass

from .base import AzCommand

OUTPUT_FLAG = "-o"
OUTPUT_FLAGS = ("-o", "--output")
JSON_OUTPUT = "json"

# cmd.exe switches: /d skips AutoRun, /s keeps the outer quotes predictable
SHELL_SWITCHES = "/d /s /c"


def split_verb(verb: str) -> list[str]:
    """Split "webapp log tail" into ["webapp", "log", "tail"]."""
    return verb.split()


def _has_output_flag(tokens: list[str]) -> bool:
    return any(t in OUTPUT_FLAGS or t.startswith("--output=") for t in tokens)


def build_tokens(command: AzCommand) -> list[str]:
    """Ordered, unquoted tokens for a command: verb tokens, args, output flags.

    The ``-o json`` pair is appended for JSON commands unless the caller
    already chose an output format.
    """
    tokens = [*split_verb(command.verb), *command.args]
    if command.expect_json and not _has_output_flag(tokens):
        tokens.extend([OUTPUT_FLAG, JSON_OUTPUT])
    return tokens


def quote_for_direct_exec(token: str) -> str:
    """Quote a token for direct process creation.

    Only tokens containing a space or a quote (or empty ones) are quoted;
    embedded quotes are escaped with a backslash. A run of backslashes is
    doubled when a quote follows it, including the closing quote, so
    ``C:\\My Dir\\`` keeps its trailing backslash.
    """
    if token and " " not in token and '"' not in token:
        return token

    parts = ['"']
    backslashes = 0
    for c in token:
        if c == "\\":
            backslashes += 1
            continue
        if c == '"':
            parts.append("\\" * (backslashes * 2 + 1) + '"')
        else:
            parts.append("\\" * backslashes + c)
        backslashes = 0
    parts.append("\\" * (backslashes * 2) + '"')
    return "".join(parts)


def quote_for_shell(token: str) -> str:
    """Quote a token for the cmd.exe tokenizer.

    Tokens containing whitespace or a quote are quoted; embedded quotes are
    doubled rather than backslash-escaped.
    """
    if token and not any(c in token for c in ' \t"'):
        return token
    return '"' + token.replace('"', '""') + '"'


def render_direct_arguments(command: AzCommand) -> str:
    """Argument string for launching the executable directly."""
    return " ".join(quote_for_direct_exec(t) for t in build_tokens(command))


def render_shell_arguments(command: AzCommand) -> str:
    """Argument string for the script call inside cmd.exe."""
    return " ".join(quote_for_shell(t) for t in build_tokens(command))


@dataclass(frozen=True)
class Invocation:
    """A fully built process launch.

    Attributes:
        program: Executable handed to the OS (the script itself or cmd.exe)
        arguments: Flattened, quoted argument string for that program
        argv: Unquoted argument vector for hosts that take one (POSIX)
        shell_wrapped: Whether the call goes through the interpreter shell
    """

    program: str
    arguments: str
    argv: tuple[str, ...]
    shell_wrapped: bool = False

    @property
    def command_line(self) -> str:
        """The complete command line, program first."""
        program = quote_for_direct_exec(self.program)
        return f"{program} {self.arguments}" if self.arguments else program


def build_direct_invocation(executable: str, command: AzCommand) -> Invocation:
    """Launch the executable itself with direct-exec quoting."""
    tokens = build_tokens(command)
    return Invocation(
        program=executable,
        arguments=render_direct_arguments(command),
        argv=(executable, *tokens),
    )


def build_shell_invocation(
    script: str, command: AzCommand, shell: str = "cmd.exe"
) -> Invocation:
    """Launch a script wrapper through cmd.exe.

    Produces ``/d /s /c ""<script>" <args...>"``: the quote closing the script
    path comes before the arguments, and the final quote closes the outer
    wrapper after all of them.
    """
    tokens = build_tokens(command)
    inner = render_shell_arguments(command)
    return Invocation(
        program=shell,
        arguments=f'{SHELL_SWITCHES} ""{script}" {inner}"',
        argv=(shell, *SHELL_SWITCHES.split(), f'"{script}" {inner}'),
        shell_wrapped=True,
    )
