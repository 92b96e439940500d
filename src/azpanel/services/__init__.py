"""Azure operations on top of the CLI runner.

This package contains:

- AzureCliFacade: cached and retried reads, invalidating mutations, log streams
- OutputSink: observers for every command result (always redacted)
- JSON helpers for decoding CLI output

Example:
    from azpanel.runner import AzCliRunner
    from azpanel.services import AzureCliFacade, LoggingObserver

    facade = AzureCliFacade(AzCliRunner())
    facade.output.subscribe(LoggingObserver())
    groups = await facade.list_resource_groups()
"""

from .facade import (
    MANAGED_RESOURCE_TYPES,
    SOURCE_EASY_AUTH,
    SOURCE_MANAGED_IDENTITY,
    SOURCE_NONE,
    WEBAPP_LOG_LEVELS,
    AzureCliFacade,
)
from .output import LoggingObserver, OutputSink
from .parsing import parse_json, parse_json_list, parse_json_object, tenant_from_issuer

__all__ = [
    # Facade
    "AzureCliFacade",
    "MANAGED_RESOURCE_TYPES",
    "WEBAPP_LOG_LEVELS",
    "SOURCE_EASY_AUTH",
    "SOURCE_MANAGED_IDENTITY",
    "SOURCE_NONE",
    # Output
    "OutputSink",
    "LoggingObserver",
    # Parsing
    "parse_json",
    "parse_json_list",
    "parse_json_object",
    "tenant_from_issuer",
]
