"""Secret scrubbing for any Azure CLI text that reaches a display or a log.

Rules are applied in order. Each replaces only the secret span and keeps the
surrounding delimiters, so redacted JSON stays readable. Applying ``redact``
to already-redacted text returns it unchanged.
"""

import re
from collections.abc import Callable

REDACTION_MARKER = "***REDACTED***"

_TOKEN_CHARS = r"A-Za-z0-9\-._~+/"

# Token-like fragment inside an AADSTS diagnostic line. Must not start in the
# middle of another fragment or right after a marker asterisk.
_DIAGNOSTIC_FRAGMENT = re.compile(rf"(?<![{_TOKEN_CHARS}*])[{_TOKEN_CHARS}]{{20,}}=*")


def _json_field_rule(field_name: str) -> re.Pattern[str]:
    return re.compile(rf'("{field_name}"\s*:\s*")([^"]+)(")', re.IGNORECASE)


def _keep_delimiters(match: re.Match[str]) -> str:
    return match.group(1) + REDACTION_MARKER + match.group(3)


def _keep_prefix(match: re.Match[str]) -> str:
    return match.group(1) + REDACTION_MARKER


def _scrub_diagnostic(match: re.Match[str]) -> str:
    return match.group(1) + _DIAGNOSTIC_FRAGMENT.sub(REDACTION_MARKER, match.group(2))


_RULES: tuple[tuple[re.Pattern[str], Callable[[re.Match[str]], str]], ...] = (
    (_json_field_rule("access_token"), _keep_delimiters),
    (_json_field_rule("refresh_token"), _keep_delimiters),
    (_json_field_rule("id_token"), _keep_delimiters),
    (
        re.compile(rf"(Bearer\s+)([{_TOKEN_CHARS}]+=*)", re.IGNORECASE),
        _keep_prefix,
    ),
    # AADSTS error lines sometimes echo token fragments back
    (re.compile(r"(AADSTS\d+:)([^\n]*)", re.IGNORECASE), _scrub_diagnostic),
)


def redact(text: str | None) -> str:
    """Replace secrets in text with REDACTION_MARKER.

    Args:
        text: Arbitrary CLI output; None is treated as empty

    Returns:
        The scrubbed text (unchanged when nothing matches)
    """
    scrubbed = text or ""
    for pattern, replacement in _RULES:
        scrubbed = pattern.sub(replacement, scrubbed)
    return scrubbed
