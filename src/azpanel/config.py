"""Configuration models and loading for azpanel."""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class RetryConfig(BaseModel):
    """Backoff settings for cached reads.

    Mutations are never retried; these only apply to read commands.
    """

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: int = Field(default=250, ge=0)
    max_delay_ms: int = Field(default=2000, ge=0)

    @property
    def initial_delay(self) -> float:
        """Initial delay in seconds."""
        return self.initial_delay_ms / 1000

    @property
    def max_delay(self) -> float:
        """Delay ceiling in seconds."""
        return self.max_delay_ms / 1000


class PanelConfig(BaseModel):
    """Top-level configuration.

    Example TOML:
        cache_ttl_seconds = 45
        max_concurrency = 4
        az_path = "C:/Program Files/Microsoft SDKs/Azure/CLI2/wbin/az.cmd"

        [retry]
        max_attempts = 3
        initial_delay_ms = 250
    """

    cache_ttl_seconds: float = 45.0
    max_concurrency: int = 4
    az_path: str | None = None  # Explicit az executable, skips PATH lookup
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        """Ensure the cache TTL is positive."""
        if v <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive: {v}")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Ensure at least one child process may run."""
        if v < 1:
            raise ValueError(f"max_concurrency must be at least 1: {v}")
        return v

    @field_validator("az_path")
    @classmethod
    def validate_az_path(cls, v: str | None) -> str | None:
        """Treat a blank override as no override."""
        if v is not None and not v.strip():
            return None
        return v


def load_config(path: Path) -> PanelConfig:
    """Load and validate a TOML configuration file.

    Args:
        path: Path to the TOML config file

    Returns:
        Validated PanelConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        tomllib.TOMLDecodeError: If TOML is malformed
        pydantic.ValidationError: If config doesn't match schema
    """
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return PanelConfig.model_validate(data)


def get_default_config_dir() -> Path:
    """Get the default configuration directory (~/.config/azpanel).

    Unlike a session store this is only read, so it is not created.
    """
    return Path.home() / ".config" / "azpanel"


def get_default_config_path() -> Path:
    """Path of the default config file."""
    return get_default_config_dir() / "config.toml"


def load_config_or_default(path: Path | None = None) -> PanelConfig:
    """Load the given (or default) config file, falling back to defaults.

    An explicitly given path must exist; a missing default file just means
    nothing was configured.

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
    """
    if path is not None:
        return load_config(path)
    default_path = get_default_config_path()
    if default_path.is_file():
        return load_config(default_path)
    return PanelConfig()
