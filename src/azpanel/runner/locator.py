"""Finding the Azure CLI executable and the host-specific launch details.

Everything that differs between Windows and POSIX hosts lives behind the
HostPlatform protocol; ``current_host()`` is the only place that looks at
the running platform.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Protocol

from .base import AZ_TOOL_NAME
from .quoting import Invocation

logger = logging.getLogger(__name__)

# Seconds allowed for the PATH lookup command
DEFAULT_LOOKUP_TIMEOUT = 3.0


class HostPlatform(Protocol):
    """Host-specific discovery and launch behaviour."""

    script_extensions: tuple[str, ...]
    binary_extensions: tuple[str, ...]

    @property
    def shell(self) -> str:
        """Interpreter used for shell-wrapped invocations."""
        ...

    def find_candidates(self, tool_name: str, timeout: float) -> list[str]:
        """All paths the host resolves tool_name to, in lookup order."""
        ...

    def requires_shell(self, executable: str) -> bool:
        """Whether the executable must be run through the interpreter shell."""
        ...

    def popen_args(self, invocation: Invocation) -> str | list[str]:
        """The args value to hand to subprocess.Popen."""
        ...

    def popen_kwargs(self) -> dict[str, Any]:
        """Extra keyword arguments for subprocess.Popen."""
        ...


class WindowsHost:
    """Windows: ``where`` lookup, .cmd wrappers run through cmd.exe, no console window."""

    script_extensions = (".cmd", ".bat")
    binary_extensions = (".exe",)

    @property
    def shell(self) -> str:
        return os.environ.get("COMSPEC", "cmd.exe")

    def find_candidates(self, tool_name: str, timeout: float) -> list[str]:
        completed = subprocess.run(
            ["where", tool_name],
            capture_output=True,
            text=True,
            timeout=timeout,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
        )
        return [line.strip() for line in completed.stdout.splitlines() if line.strip()]

    def requires_shell(self, executable: str) -> bool:
        return executable.lower().endswith(self.script_extensions)

    def popen_args(self, invocation: Invocation) -> str | list[str]:
        # A string is passed to CreateProcess verbatim, keeping our quoting intact
        return invocation.command_line

    def popen_kwargs(self) -> dict[str, Any]:
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}


class PosixHost:
    """POSIX: scan PATH, execute the (shebang) script directly with an argv list."""

    script_extensions: tuple[str, ...] = ()
    binary_extensions: tuple[str, ...] = ()

    @property
    def shell(self) -> str:
        return "/bin/sh"

    def find_candidates(self, tool_name: str, timeout: float) -> list[str]:
        candidates: list[str] = []
        for directory in os.environ.get("PATH", "").split(os.pathsep):
            if not directory:
                continue
            found = shutil.which(tool_name, path=directory)
            if found and found not in candidates:
                candidates.append(found)
        return candidates

    def requires_shell(self, executable: str) -> bool:
        return False

    def popen_args(self, invocation: Invocation) -> str | list[str]:
        return list(invocation.argv)

    def popen_kwargs(self) -> dict[str, Any]:
        return {}


def current_host() -> HostPlatform:
    """The HostPlatform for the running interpreter."""
    if os.name == "nt":
        return WindowsHost()
    return PosixHost()


class ExecutableLocator:
    """Resolves the path of the Azure CLI executable.

    Lookups never raise: any failure degrades to "not found".
    """

    def __init__(
        self,
        host: HostPlatform | None = None,
        tool_name: str = AZ_TOOL_NAME,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
    ) -> None:
        self._host = host or current_host()
        self._tool_name = tool_name
        self._lookup_timeout = lookup_timeout

    @property
    def host(self) -> HostPlatform:
        """The host platform used for lookups."""
        return self._host

    @property
    def _preferred_extensions(self) -> tuple[str, ...]:
        return (*self._host.script_extensions, *self._host.binary_extensions)

    def locate(self, override: str | None = None) -> str | None:
        """Find the executable.

        Args:
            override: Optional user-supplied path to use instead of a lookup

        Returns:
            The resolved path, or None if the lookup found nothing
        """
        try:
            if override and override.strip():
                return self._resolve_override(override.strip())
            candidates = self._host.find_candidates(self._tool_name, self._lookup_timeout)
            return self._pick(candidates)
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            logger.debug("Executable lookup for %s failed: %s", self._tool_name, e)
            return None

    def resolve(self, override: str | None = None) -> str:
        """Like locate(), but falls back to the bare tool name."""
        return self.locate(override) or self._tool_name

    def _pick(self, candidates: list[str]) -> str | None:
        """Prefer a script wrapper, then a native binary, then the first hit."""
        if not candidates:
            return None
        for extension in self._preferred_extensions:
            for candidate in candidates:
                if candidate.lower().endswith(extension):
                    return candidate
        return candidates[0]

    def _resolve_override(self, override: str) -> str:
        path = Path(override)
        if not path.is_file():
            logger.debug("Override %s does not exist, using %s", override, self._tool_name)
            return self._tool_name

        if not path.suffix:
            for extension in self._preferred_extensions:
                sibling = Path(f"{override}{extension}")
                if sibling.is_file():
                    return str(sibling)

        if path.name.lower() == self._tool_name.lower():
            for extension in self._preferred_extensions:
                sibling = path.with_name(f"{self._tool_name}{extension}")
                if sibling.is_file():
                    return str(sibling)

        return override
