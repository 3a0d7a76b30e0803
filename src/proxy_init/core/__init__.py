"""Shared building blocks: errors, configuration, console, command execution."""

from proxy_init.core.config import FirewallConfiguration, RedirectMode, RuntimeSettings
from proxy_init.core.context import ExecutionContext, create_context
from proxy_init.core.exceptions import (
    ConfigurationError,
    FirewallError,
    ProxyInitError,
    ValidationError,
)
from proxy_init.core.executor import CommandExecutor, CommandResult
from proxy_init.core.output import Console, Verbosity, console

__all__ = [
    "CommandExecutor",
    "CommandResult",
    "ConfigurationError",
    "Console",
    "ExecutionContext",
    "FirewallConfiguration",
    "FirewallError",
    "ProxyInitError",
    "RedirectMode",
    "RuntimeSettings",
    "ValidationError",
    "Verbosity",
    "console",
    "create_context",
]
