"""Command execution with output capture.

Provides:
- Safe command execution (argument vectors, never a shell)
- Combined stdout/stderr capture for diagnostics
"""

import shlex
import subprocess
from dataclasses import dataclass

from proxy_init.core.context import ExecutionContext


# Exit statuses reported when the binary cannot be started, as a shell would
COMMAND_NOT_FOUND = 127
COMMAND_NOT_EXECUTABLE = 126


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    output: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    @property
    def command_line(self) -> str:
        """Command rendered as a shell-quoted string."""
        return shlex.join(self.command)


class CommandExecutor:
    """Command execution with combined output capture.

    The executor always runs what it is given and never raises for a
    failed command; deciding whether a command should run at all
    (simulation) and what a failure means is the caller's job.
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(self, command: list[str]) -> CommandResult:
        """Execute a command and capture stdout and stderr together.

        A binary that cannot be started is reported as a failed result
        (exit status 127 or 126) carrying the reason as its output.
        """
        self.ctx.console.debug(f"Running: {shlex.join(command)}")

        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError:
            return CommandResult(
                command=command,
                return_code=COMMAND_NOT_FOUND,
                output=f"{command[0]}: command not found",
            )
        except OSError as e:
            return CommandResult(
                command=command,
                return_code=COMMAND_NOT_EXECUTABLE,
                output=f"{command[0]}: {e.strerror or e}",
            )

        return CommandResult(
            command=command,
            return_code=result.returncode,
            output=result.stdout or "",
        )
