"""Parsing Azure CLI JSON output into plain Python values."""

import json
from typing import Any
from urllib.parse import urlparse

from azpanel.runner.base import AzParseError, AzResult

# Issuer hosts whose first path segment is the tenant id
_STS_HOST = "sts.windows.net"
_LOGIN_HOST = "login.microsoftonline.com"


def parse_json(result: AzResult) -> Any:
    """Decode the stdout of a successful result.

    Raises:
        AzParseError: If stdout is not a JSON document
    """
    try:
        return json.loads(result.stdout)
    except (json.JSONDecodeError, TypeError) as e:
        raise AzParseError(
            f"Invalid JSON from {result.command}: {e}", command=str(result.command)
        ) from e


def parse_json_list(result: AzResult) -> list[dict[str, Any]]:
    """Decode stdout that must be a JSON array of objects.

    Raises:
        AzParseError: If stdout is not a JSON array
    """
    data = parse_json(result)
    if not isinstance(data, list):
        raise AzParseError(
            f"Expected a JSON array from {result.command}", command=str(result.command)
        )
    return [item for item in data if isinstance(item, dict)]


def parse_json_object(result: AzResult) -> dict[str, Any]:
    """Decode stdout that must be a JSON object.

    Raises:
        AzParseError: If stdout is not a JSON object
    """
    data = parse_json(result)
    if not isinstance(data, dict):
        raise AzParseError(
            f"Expected a JSON object from {result.command}", command=str(result.command)
        )
    return data


def get_str(data: dict[str, Any], *path: str) -> str | None:
    """Follow a key path through nested objects; None unless it ends at a string."""
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current if isinstance(current, str) else None


def tenant_from_issuer(issuer: str) -> str | None:
    """Extract the tenant id from an Entra ID issuer URL.

    ``https://sts.windows.net/<tenant>/`` and
    ``https://login.microsoftonline.com/<tenant>/v2.0`` both carry it as the
    first path segment.
    """
    try:
        parsed = urlparse(issuer)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host != _STS_HOST and _LOGIN_HOST not in host:
        return None
    segments = [s for s in parsed.path.split("/") if s]
    return segments[0] if segments else None
