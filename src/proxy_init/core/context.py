"""Per-run state shared by the CLI, the executor and the driver."""

from dataclasses import dataclass, field
from typing import Optional

from proxy_init.core.config import RuntimeSettings
from proxy_init.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags for one invocation plus handles to the console and tool settings.

    Creating a context reconfigures the console it wraps, so the last
    context created decides verbosity and colour for the process.
    """

    dry_run: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False

    _settings: Optional[RuntimeSettings] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def settings(self) -> RuntimeSettings:
        """Binary names, read from PROXY_INIT_* variables on first use."""
        if self._settings is None:
            self._settings = RuntimeSettings()
        return self._settings

    @property
    def console(self) -> Console:
        return self._console


def create_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    settings: Optional[RuntimeSettings] = None,
) -> ExecutionContext:
    """Build a context from the common CLI flags.

    ``quiet`` wins over any number of ``-v``; verbosity is capped at DEBUG.
    """
    verbosity = Verbosity.QUIET if quiet else min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)
    return ExecutionContext(
        dry_run=dry_run,
        verbosity=verbosity,
        no_color=no_color,
        _settings=settings,
    )
