"""Compose the ordered list of rule mutations for one run.

Rule evaluation is first-match, so the order built here is what makes
the redirection work:

- cleanup of a previous run comes first
- a chain is created before any rule is added to it or jumps into it
- inside a chain, every exemption precedes the catch-all redirect
- the jump from the built-in hook chain is added last, once the chain
  is complete
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

from proxy_init.core.config import FirewallConfiguration, RedirectMode
from proxy_init.core.output import Console
from proxy_init.services.rules import (
    OUTPUT_CHAIN,
    REDIRECT_CHAIN,
    HookChain,
    RuleBuilder,
    RuleMutation,
)


class Phase(str, Enum):
    """Part of the transaction a mutation belongs to."""
    CLEANUP = "cleanup"
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class RuleTransaction:
    """Every mutation for one run, grouped by phase.

    Installation dispatches ``inbound`` before ``outbound``: the proxy
    egress rule in the output chain jumps into the redirect chain, which
    therefore has to exist first.
    """
    trace_id: str
    cleanup: tuple[RuleMutation, ...]
    inbound: tuple[RuleMutation, ...]
    outbound: tuple[RuleMutation, ...]

    @property
    def install(self) -> tuple[RuleMutation, ...]:
        return self.inbound + self.outbound

    def phases(self) -> Iterator[tuple[Phase, RuleMutation]]:
        """Iterate over all mutations in dispatch order, with their phase."""
        for mutation in self.cleanup:
            yield Phase.CLEANUP, mutation
        for mutation in self.inbound:
            yield Phase.INBOUND, mutation
        for mutation in self.outbound:
            yield Phase.OUTBOUND, mutation

    def __len__(self) -> int:
        return len(self.cleanup) + len(self.inbound) + len(self.outbound)


def compose_cleanup(builder: RuleBuilder) -> list[RuleMutation]:
    """Remove whatever a previous run installed.

    Every one of these may fail on a first run; the driver ignores
    their failures.
    """
    commands = [
        builder.delete_jump(HookChain.OUTPUT, OUTPUT_CHAIN, "install-proxy-init-output"),
        builder.delete_jump(HookChain.PREROUTING, REDIRECT_CHAIN, "install-proxy-init-prerouting"),
    ]
    for chain in (OUTPUT_CHAIN, REDIRECT_CHAIN):
        commands.append(builder.flush_chain(chain))
        commands.append(builder.delete_chain(chain))
    return commands


def compose_outbound(
    config: FirewallConfiguration,
    builder: RuleBuilder,
    console: Optional[Console] = None,
) -> list[RuleMutation]:
    """Build the OUTPUT side: exemptions, then redirect everything else."""
    commands = [builder.create_chain(OUTPUT_CHAIN)]

    if config.proxy_uid is not None:
        if console:
            console.info(f"Ignoring uid {config.proxy_uid}")
        # Proxy egress to an app container in this pod re-enters as ingress
        commands.append(builder.redirect_proxy_egress(OUTPUT_CHAIN, REDIRECT_CHAIN, config.proxy_uid))
        commands.append(builder.ignore_uid(OUTPUT_CHAIN, config.proxy_uid))
    elif console:
        console.info("Not ignoring any uid")

    commands.append(builder.ignore_loopback(OUTPUT_CHAIN))
    commands.extend(_ignored_ports(config.outbound_ports_to_ignore, OUTPUT_CHAIN, builder, console))

    if console:
        console.info(f"Redirecting all OUTPUT to {config.proxy_outgoing_port}")
    commands.append(
        builder.redirect_to_port(
            OUTPUT_CHAIN,
            config.proxy_outgoing_port,
            "redirect-all-outgoing-to-proxy-port",
        )
    )

    commands.append(builder.jump(HookChain.OUTPUT, OUTPUT_CHAIN, "install-proxy-init-output"))
    return commands


def compose_inbound(
    config: FirewallConfiguration,
    builder: RuleBuilder,
    console: Optional[Console] = None,
) -> list[RuleMutation]:
    """Build the PREROUTING side according to the redirect mode."""
    commands = [builder.create_chain(REDIRECT_CHAIN)]
    commands.extend(_ignored_ports(config.inbound_ports_to_ignore, REDIRECT_CHAIN, builder, console))

    if config.mode == RedirectMode.REDIRECT_ALL:
        if console:
            console.info("Will redirect all INPUT ports to proxy")
        commands.append(
            builder.redirect_to_port(
                REDIRECT_CHAIN,
                config.proxy_inbound_port,
                "redirect-all-incoming-to-proxy-port",
            )
        )
    elif config.mode == RedirectMode.REDIRECT_LISTED:
        if console:
            ports = ", ".join(str(p) for p in config.ports_to_redirect_inbound) or "none"
            console.info(f"Will redirect some INPUT ports to proxy: {ports}")
        for port in config.ports_to_redirect_inbound:
            commands.append(
                builder.redirect_port_to_port(REDIRECT_CHAIN, port, config.proxy_inbound_port)
            )

    commands.append(builder.jump(HookChain.PREROUTING, REDIRECT_CHAIN, "install-proxy-init-prerouting"))
    return commands


def compose_transaction(
    config: FirewallConfiguration,
    trace_id: str,
    console: Optional[Console] = None,
) -> RuleTransaction:
    """Translate a configuration into the full ordered transaction.

    Args:
        config: Firewall configuration for this run
        trace_id: Run identifier embedded in rule comments
        console: If given, configuration decisions are reported on it

    Returns:
        RuleTransaction with cleanup, inbound and outbound mutations
    """
    builder = RuleBuilder(trace_id)
    return RuleTransaction(
        trace_id=trace_id,
        cleanup=tuple(compose_cleanup(builder)),
        inbound=tuple(compose_inbound(config, builder, console)),
        outbound=tuple(compose_outbound(config, builder, console)),
    )


def _ignored_ports(
    ports: tuple[int, ...],
    chain: str,
    builder: RuleBuilder,
    console: Optional[Console],
) -> list[RuleMutation]:
    commands = []
    for port in ports:
        if console:
            console.info(f"Will ignore port {port} on chain {chain}")
        commands.append(builder.ignore_port(chain, port))
    return commands
