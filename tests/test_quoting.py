"""Unit tests for command-line construction and quoting."""

import pytest

from azpanel.runner.base import AzCommand
from azpanel.runner.quoting import (
    SHELL_SWITCHES,
    build_direct_invocation,
    build_shell_invocation,
    build_tokens,
    quote_for_direct_exec,
    quote_for_shell,
    split_verb,
)

# Tokens that must survive a round trip through either grammar
AWKWARD_TOKENS = [
    "my group",
    'say "hi"',
    '"',
    '""',
    'a"b',
    "two  spaces",
    " leading",
    "trailing ",
    "",
    "C:\\Program Files\\app",
    "a b\\",
    "C:\\My Dir\\",
    'a\\"b',
    'x\\\\" y',
    "tab\there",
    "plain",
]


def parse_direct(line: str) -> list[str]:
    """Reparse a direct-exec command line with the Windows argv rules.

    2n backslashes before a quote give n backslashes and a delimiting quote;
    2n+1 give n backslashes and a literal quote. Other backslashes are literal.
    """
    args: list[str] = []
    current: list[str] = []
    in_quotes = False
    has_token = False
    i = 0
    while i < len(line):
        c = line[i]
        if c == "\\":
            run = len(line[i:]) - len(line[i:].lstrip("\\"))
            i += run
            has_token = True
            if line[i : i + 1] != '"':
                current.append("\\" * run)
                continue
            current.append("\\" * (run // 2))
            if run % 2:
                current.append('"')
                i += 1
                continue
            c = line[i]
        if c == '"':
            in_quotes = not in_quotes
            has_token = True
        elif c == " " and not in_quotes:
            if has_token:
                args.append("".join(current))
                current, has_token = [], False
        else:
            current.append(c)
            has_token = True
        i += 1
    if has_token:
        args.append("".join(current))
    return args


def parse_shell(line: str) -> list[str]:
    """Reparse a cmd.exe-style line: "" inside quotes is a literal quote."""
    args: list[str] = []
    current: list[str] = []
    in_quotes = False
    has_token = False
    i = 0
    while i < len(line):
        c = line[i]
        if c == '"':
            if in_quotes and line[i + 1 : i + 2] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
            has_token = True
        elif c in " \t" and not in_quotes:
            if has_token:
                args.append("".join(current))
                current, has_token = [], False
        else:
            current.append(c)
            has_token = True
        i += 1
    if has_token:
        args.append("".join(current))
    return args


def unwrap_shell(arguments: str) -> str:
    """What cmd /s /c runs: the text between the first and last quote."""
    assert arguments.startswith(SHELL_SWITCHES + " ")
    wrapped = arguments[len(SHELL_SWITCHES) + 1 :]
    assert wrapped.startswith('"') and wrapped.endswith('"')
    return wrapped[1:-1]


class TestTokens:
    """Test token building before quoting."""

    def test_split_verb(self):
        """Verb is split on any whitespace."""
        assert split_verb("webapp  log\ttail") == ["webapp", "log", "tail"]

    def test_json_flag_appended(self):
        """JSON commands get -o json after the caller's arguments."""
        tokens = build_tokens(AzCommand("group list", ("--query", "[].name")))
        assert tokens == ["group", "list", "--query", "[].name", "-o", "json"]

    def test_no_json_flag_for_text_commands(self):
        """Commands not expecting JSON are left alone."""
        tokens = build_tokens(AzCommand("login", expect_json=False))
        assert tokens == ["login"]

    @pytest.mark.parametrize("flag", [("-o", "tsv"), ("--output", "table"), ("--output=yaml",)])
    def test_existing_output_flag_respected(self, flag):
        """An output flag from the caller suppresses the default one."""
        tokens = build_tokens(AzCommand("account show", flag))
        assert tokens.count("json") == 0
        assert tokens[-len(flag) :] == list(flag)


class TestDirectQuoting:
    """Test the backslash-escaping strategy."""

    def test_plain_token_untouched(self):
        """Tokens without spaces or quotes are not quoted."""
        assert quote_for_direct_exec("resource-group_1") == "resource-group_1"

    def test_space_quoted(self):
        assert quote_for_direct_exec("my group") == '"my group"'

    def test_quote_backslash_escaped(self):
        """Embedded quotes use a backslash, not doubling."""
        assert quote_for_direct_exec('a"b') == '"a\\"b"'

    def test_backslashes_before_quotes_doubled(self):
        """Backslash runs ahead of any quote are doubled, others left alone."""
        assert quote_for_direct_exec("C:\\My Dir\\") == '"C:\\My Dir\\\\"'
        assert quote_for_direct_exec('a\\"b') == '"a\\\\\\"b"'
        assert quote_for_direct_exec("C:\\dir\\") == "C:\\dir\\"

    def test_tab_alone_not_quoted(self):
        """Only spaces and quotes trigger quoting in this grammar."""
        assert quote_for_direct_exec("a\tb") == "a\tb"

    def test_empty_token_quoted(self):
        assert quote_for_direct_exec("") == '""'

    @pytest.mark.parametrize("token", [t for t in AWKWARD_TOKENS if "\t" not in t])
    def test_round_trip(self, token):
        """Every quoted token reparses to exactly the original string."""
        assert parse_direct(quote_for_direct_exec(token)) == [token]


class TestShellQuoting:
    """Test the quote-doubling strategy for cmd.exe."""

    def test_plain_token_untouched(self):
        assert quote_for_shell("eastus") == "eastus"

    def test_quote_doubled(self):
        """Embedded quotes are doubled, not backslash-escaped."""
        assert quote_for_shell('a"b') == '"a""b"'
        assert "\\" not in quote_for_shell('a"b')

    def test_tab_quoted(self):
        """Any whitespace triggers quoting for cmd.exe."""
        assert quote_for_shell("a\tb") == '"a\tb"'

    @pytest.mark.parametrize("token", AWKWARD_TOKENS)
    def test_round_trip(self, token):
        assert parse_shell(quote_for_shell(token)) == [token]

    def test_strategies_differ_for_quotes(self):
        """The two grammars need different escapes for the same token."""
        assert quote_for_shell('x"y') != quote_for_direct_exec('x"y')


class TestDirectInvocation:
    """Test invocations that launch the executable itself."""

    def test_command_line_starts_with_program_and_verb(self):
        """Program comes first, then the verb tokens in order."""
        invocation = build_direct_invocation("/usr/bin/az", AzCommand("webapp log tail"))
        assert parse_direct(invocation.command_line)[:4] == ["/usr/bin/az", "webapp", "log", "tail"]

    def test_program_with_space(self):
        """A program path with a space is quoted in the command line."""
        command = AzCommand("group show", ("-n", "my group"))
        invocation = build_direct_invocation("C:\\Program Files\\az.exe", command)
        assert invocation.command_line.startswith('"C:\\Program Files\\az.exe" group show')
        assert parse_direct(invocation.command_line) == [
            "C:\\Program Files\\az.exe", "group", "show", "-n", "my group", "-o", "json",
        ]

    def test_argv_is_unquoted(self):
        """The argv vector keeps raw tokens for hosts that take a list."""
        invocation = build_direct_invocation("az", AzCommand("group show", ("-n", 'a "b"')))
        assert invocation.argv == ("az", "group", "show", "-n", 'a "b"', "-o", "json")
        assert not invocation.shell_wrapped


class TestShellInvocation:
    """Test cmd.exe-wrapped invocations of a script."""

    SCRIPT = "C:\\Program Files\\Microsoft SDKs\\Azure\\CLI2\\wbin\\az.cmd"

    def test_outer_wrapper_layout(self):
        """Script quote closes before the arguments; the final quote closes the wrapper."""
        invocation = build_shell_invocation(self.SCRIPT, AzCommand("group list"))
        assert invocation.arguments == f'/d /s /c ""{self.SCRIPT}" group list -o json"'
        assert invocation.program == "cmd.exe"
        assert invocation.shell_wrapped

    def test_inner_reparses_to_script_and_tokens(self):
        """After cmd strips the outer layer, the call reparses exactly."""
        command = AzCommand("webapp show", ("-g", "my rg", "-n", 'odd"name'))
        invocation = build_shell_invocation(self.SCRIPT, command, shell="C:\\Windows\\cmd.exe")
        assert parse_shell(unwrap_shell(invocation.arguments)) == [
            self.SCRIPT, "webapp", "show", "-g", "my rg", "-n", 'odd"name', "-o", "json",
        ]

    def test_command_line_starts_with_shell(self):
        invocation = build_shell_invocation("az.cmd", AzCommand("account show"))
        assert invocation.command_line == 'cmd.exe /d /s /c ""az.cmd" account show -o json"'

    @pytest.mark.parametrize("token", AWKWARD_TOKENS)
    def test_any_argument_survives_wrapping(self, token):
        invocation = build_shell_invocation(self.SCRIPT, AzCommand("group show", ("-n", token)))
        parsed = parse_shell(unwrap_shell(invocation.arguments))
        assert parsed[:5] == [self.SCRIPT, "group", "show", "-n", token]
