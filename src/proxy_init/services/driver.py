"""Execute a composed rule transaction against the live rule table.

Two dispatch policies exist and are kept as separate methods so the
call site shows which one applies:

- run_best_effort: failures are reported and ignored (cleanup, final dump)
- run_or_abort: the first failure raises FirewallError (installation,
  initial dump); nothing already applied is rolled back
"""

import shlex
from dataclasses import dataclass, field
from typing import Optional, Sequence

from proxy_init.core.config import FirewallConfiguration
from proxy_init.core.context import ExecutionContext
from proxy_init.core.exceptions import FirewallError
from proxy_init.core.executor import CommandExecutor, CommandResult
from proxy_init.services.composer import RuleTransaction
from proxy_init.services.rules import RuleBuilder, RuleMutation, Tool


WAIT_FLAG = "-w"


@dataclass
class DriverReport:
    """Outcome of applying a transaction."""
    trace_id: str
    simulated: bool
    dispatched: int = 0
    applied: list[RuleMutation] = field(default_factory=list)
    ignored_failures: list[CommandResult] = field(default_factory=list)


class ExecutionDriver:
    """Dispatches rule mutations one at a time, in order.

    Args:
        ctx: Execution context (console, tool settings)
        executor: Command executor (created from ctx if omitted)
        simulate_only: Print commands instead of running them
        use_wait_flag: Make iptables wait for the xtables lock
        net_ns: Run every command inside this network namespace
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: Optional[CommandExecutor] = None,
        *,
        simulate_only: bool = False,
        use_wait_flag: bool = False,
        net_ns: Optional[str] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor or CommandExecutor(ctx)
        self.simulate_only = simulate_only
        self.use_wait_flag = use_wait_flag
        self.net_ns = net_ns
        self.dispatched = 0
        self.ignored_failures: list[CommandResult] = []

    @classmethod
    def for_config(
        cls,
        ctx: ExecutionContext,
        config: FirewallConfiguration,
        executor: Optional[CommandExecutor] = None,
    ) -> "ExecutionDriver":
        """Create a driver honouring a configuration's execution flags."""
        return cls(
            ctx,
            executor,
            simulate_only=config.simulate_only,
            use_wait_flag=config.use_wait_flag,
            net_ns=config.net_ns,
        )

    def command_for(self, mutation: RuleMutation) -> list[str]:
        """Full argument vector for a mutation, as it would be executed."""
        settings = self.ctx.settings
        binary = settings.iptables if mutation.tool == Tool.IPTABLES else settings.iptables_save
        command = [binary] + mutation.args()

        # iptables-save takes no lock, only iptables understands -w
        if self.use_wait_flag and mutation.tool == Tool.IPTABLES:
            command.append(WAIT_FLAG)

        if self.net_ns:
            command = [settings.nsenter, f"--net={self.net_ns}"] + command

        return command

    def run_best_effort(self, mutation: RuleMutation) -> Optional[CommandResult]:
        """Dispatch a mutation, reporting but ignoring any failure."""
        result = self._dispatch(mutation)
        if result is not None and not result.success:
            self.ctx.console.verbose(
                f"Ignoring failure of {mutation.label or mutation} (exit code {result.return_code})"
            )
            self.ignored_failures.append(result)
        return result

    def run_or_abort(self, mutation: RuleMutation) -> Optional[CommandResult]:
        """Dispatch a mutation and raise on failure.

        Raises:
            FirewallError: If the command exits non-zero or cannot be started
        """
        result = self._dispatch(mutation)
        if result is not None and not result.success:
            details = [f"Exit code: {result.return_code}"]
            if result.output.strip():
                details.append(f"Output: {result.output.strip()}")
            raise FirewallError(
                f"Failed to apply {mutation.label or mutation.operation.value}: {result.command_line}",
                command=result.command_line,
                chain=mutation.chain,
                details=details,
                hint="Rules applied so far were left in place; re-run to clean up and retry",
            )
        return result

    def snapshot(self, *, required: bool) -> Optional[CommandResult]:
        """Dump the full rule table for diagnostics.

        Args:
            required: Abort the run if the dump fails

        Raises:
            FirewallError: If required and the dump fails
        """
        dump = RuleBuilder.show_all_rules()
        if not required:
            return self.run_best_effort(dump)

        try:
            return self.run_or_abort(dump)
        except FirewallError as e:
            self.ctx.console.error("Aborting firewall configuration")
            raise FirewallError(
                "Cannot read the current rule table",
                command=e.command,
                details=e.details,
                hint="Check that iptables is installed and that you are running as root",
            ) from e

    def apply(self, transaction: RuleTransaction) -> DriverReport:
        """Apply a transaction: snapshot, cleanup, install, snapshot.

        Raises:
            FirewallError: On the initial dump or any installation failure
        """
        console = self.ctx.console
        report = DriverReport(trace_id=transaction.trace_id, simulated=self.simulate_only)

        console.section("current state")
        self.snapshot(required=True)
        console.end_section()

        console.section("cleanup")
        for mutation in transaction.cleanup:
            self.run_best_effort(mutation)
        console.end_section()

        console.section("adding rules")
        for mutation in transaction.install:
            try:
                self.run_or_abort(mutation)
            except FirewallError:
                console.error("Aborting firewall configuration")
                raise
            report.applied.append(mutation)
        console.end_section()

        console.section("end state")
        self.snapshot(required=False)
        console.end_section()

        report.dispatched = self.dispatched
        report.ignored_failures = list(self.ignored_failures)
        return report

    def cleanup(self, mutations: Sequence[RuleMutation], trace_id: str) -> DriverReport:
        """Run only best-effort cleanup mutations."""
        report = DriverReport(trace_id=trace_id, simulated=self.simulate_only)

        self.ctx.console.section("cleanup")
        for mutation in mutations:
            self.run_best_effort(mutation)
        self.ctx.console.end_section()

        report.dispatched = self.dispatched
        report.ignored_failures = list(self.ignored_failures)
        return report

    def _dispatch(self, mutation: RuleMutation) -> Optional[CommandResult]:
        command = self.command_for(mutation)
        command_line = shlex.join(command)

        if self.simulate_only:
            self.ctx.console.dry_run_msg(f"Run: {command_line}")
            return None

        self.ctx.console.command(command_line)
        result = self.executor.run(command)
        self.dispatched += 1
        self.ctx.console.output(result.output)
        return result
