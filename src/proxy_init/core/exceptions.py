"""Error hierarchy for proxy-init.

Every error carries a message, an optional hint and detail lines, and
the process exit code the CLI should terminate with.
"""

from typing import Optional


class ProxyInitError(Exception):
    """Root of all errors raised by proxy-init.

    Attributes:
        message: What went wrong
        hint: What the operator can try next
        details: Extra lines printed under the message
        exit_code: Status the CLI exits with
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = list(details or [])

    def __str__(self) -> str:
        return self.message


class ConfigurationError(ProxyInitError):
    """The configuration cannot be loaded or does not describe a valid setup
    (unreadable file, bad YAML, unknown mode, missing proxy port)."""
    exit_code = 2


class ValidationError(ProxyInitError):
    """A single value is malformed: a port, a port list or a namespace path."""
    exit_code = 3


class FirewallError(ProxyInitError):
    """The rule table could not be read, or a rule could not be installed.

    Attributes:
        command: Command line that failed
        chain: Chain the failing mutation targeted, if any
    """
    exit_code = 15

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        chain: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.chain = chain
