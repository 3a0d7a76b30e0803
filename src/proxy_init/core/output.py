"""Terminal output for proxy-init, rendered with Rich.

Messages carry a level tag ([INFO], [OK], [ERROR], ...). Commands and
the text captured from iptables are echoed without markup parsing, so
brackets in rule comments or kernel messages are printed as-is.
"""

from enum import IntEnum
from typing import Any

from rich import box
from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table


class Verbosity(IntEnum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class Console:
    """Level-aware wrapper around a stdout and a stderr Rich console.

    Errors and warnings go to stderr and are never silenced. Everything
    else honours the configured verbosity.
    """

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._build()

    def _build(self) -> None:
        self._console = RichConsole(highlight=False, no_color=self.no_color)
        self._err_console = RichConsole(stderr=True, highlight=False, no_color=self.no_color)

    def configure(
        self,
        verbosity: int = Verbosity.NORMAL,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply the flags of a new run."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self.no_color = no_color
            self._build()

    def _enabled(self, level: Verbosity) -> bool:
        return self.verbosity >= level

    # Levelled messages
    def info(self, message: str) -> None:
        if self._enabled(Verbosity.NORMAL):
            self._console.print(f"[green][INFO][/green] {message}")

    def success(self, message: str) -> None:
        if self._enabled(Verbosity.NORMAL):
            self._console.print(f"[green][OK][/green] {message}")

    def warn(self, message: str) -> None:
        self._err_console.print(f"[yellow][WARN][/yellow] {message}")

    def error(self, message: str) -> None:
        self._err_console.print(f"[red][ERROR][/red] {message}")

    def verbose(self, message: str) -> None:
        """Shown with -v and above."""
        if self._enabled(Verbosity.VERBOSE):
            self._console.print(f"[dim]{message}[/dim]")

    def debug(self, message: str) -> None:
        """Shown with -vv."""
        if self._enabled(Verbosity.DEBUG):
            self._console.print(f"[cyan][DEBUG][/cyan] {message}")

    def hint(self, message: str) -> None:
        self._console.print(f"[cyan]Hint:[/cyan] {message}")

    # Command echo
    def command(self, command_line: str) -> None:
        """Echo a command line in shell-prompt form before running it."""
        if self._enabled(Verbosity.NORMAL):
            self._console.print(f":; {command_line}", markup=False)

    def output(self, text: str) -> None:
        """Print what a command wrote, verbatim."""
        if text and self._enabled(Verbosity.NORMAL):
            self._console.print(text.rstrip("\n"), markup=False)

    def dry_run_msg(self, message: str) -> None:
        """Announce an action that simulation mode skips."""
        if self.dry_run:
            self._console.print("[blue][DRY-RUN][/blue] Would: ", end="")
            self._console.print(message, markup=False)

    # Layout
    def print(self, message: Any = "", **kwargs: Any) -> None:
        self._console.print(message, **kwargs)

    def section(self, title: str) -> None:
        """Open a named phase of the run (current state, cleanup, ...)."""
        if self._enabled(Verbosity.NORMAL):
            self._console.rule(title, align="left")

    def end_section(self) -> None:
        if self._enabled(Verbosity.NORMAL):
            self._console.print()

    def table(
        self,
        title: str,
        columns: list[str],
        rows: list[list[str]],
        box_style: box.Box = box.ROUNDED,
    ) -> None:
        table = Table(title=title, box=box_style)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(escape(cell) for cell in row))
        self._console.print(table)

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print key/value pairs in a panel; booleans become Yes/No."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                rendered = "[green]Yes[/green]" if value else "[red]No[/red]"
            else:
                rendered = escape(str(value))
            lines.append(f"[bold]{key}:[/bold] {rendered}")
        self._console.print(Panel("\n".join(lines), title=title, border_style="blue"))


console = Console()
