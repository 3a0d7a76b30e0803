"""Entry points tying composition and execution together."""

import time
from typing import Callable, Optional

from proxy_init.core.config import FirewallConfiguration
from proxy_init.core.context import ExecutionContext
from proxy_init.core.executor import CommandExecutor, CommandResult
from proxy_init.services.composer import RuleTransaction, compose_cleanup, compose_transaction
from proxy_init.services.driver import DriverReport, ExecutionDriver
from proxy_init.services.rules import RuleBuilder, new_trace_id


def _announce(ctx: ExecutionContext, trace_id: str) -> None:
    ctx.console.info(f"Tracing this script execution as [{trace_id}]")


def plan_firewall(
    config: FirewallConfiguration,
    ctx: ExecutionContext,
    *,
    trace_id: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> RuleTransaction:
    """Compose the transaction for a configuration without executing it."""
    trace_id = trace_id or new_trace_id(clock)
    _announce(ctx, trace_id)

    ctx.console.section("configuration")
    transaction = compose_transaction(config, trace_id, ctx.console)
    ctx.console.end_section()
    return transaction


def configure_firewall(
    config: FirewallConfiguration,
    ctx: ExecutionContext,
    *,
    executor: Optional[CommandExecutor] = None,
    trace_id: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> DriverReport:
    """Redirect the namespace's TCP traffic through the proxy.

    Args:
        config: Firewall configuration
        ctx: Execution context
        executor: Command executor (created from ctx if omitted)
        trace_id: Run identifier (generated from ``clock`` if omitted)
        clock: Time source for the generated identifier

    Returns:
        DriverReport describing what was dispatched

    Raises:
        FirewallError: If the rule table cannot be read or a rule fails
    """
    transaction = plan_firewall(config, ctx, trace_id=trace_id, clock=clock)
    driver = ExecutionDriver.for_config(ctx, config, executor)
    return driver.apply(transaction)


def cleanup_firewall(
    ctx: ExecutionContext,
    *,
    executor: Optional[CommandExecutor] = None,
    simulate_only: bool = False,
    use_wait_flag: bool = False,
    net_ns: Optional[str] = None,
    trace_id: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> DriverReport:
    """Remove proxy-init's chains, ignoring anything that is not there."""
    trace_id = trace_id or new_trace_id(clock)
    _announce(ctx, trace_id)

    driver = ExecutionDriver(
        ctx,
        executor,
        simulate_only=simulate_only,
        use_wait_flag=use_wait_flag,
        net_ns=net_ns,
    )
    return driver.cleanup(compose_cleanup(RuleBuilder(trace_id)), trace_id)


def show_rules(
    ctx: ExecutionContext,
    *,
    executor: Optional[CommandExecutor] = None,
    net_ns: Optional[str] = None,
) -> Optional[CommandResult]:
    """Print the current rule table of the target namespace.

    Raises:
        FirewallError: If the dump fails
    """
    driver = ExecutionDriver(ctx, executor, net_ns=net_ns)
    return driver.snapshot(required=True)
