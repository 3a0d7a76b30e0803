"""Main CLI entry point using Typer.

Commands:
- configure: redirect the namespace's TCP traffic through the proxy
- plan: print the rules a configuration would install
- cleanup: remove proxy-init's chains
- show: print the current rule table
- example-config: print a sample YAML configuration
"""

import os
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.markup import escape

from proxy_init import __version__
from proxy_init.core.config import FirewallConfiguration, RedirectMode, get_example_config, load_yaml
from proxy_init.core.context import ExecutionContext, create_context
from proxy_init.core.exceptions import ProxyInitError
from proxy_init.core.output import console
from proxy_init.core.validation import parse_port_list, validate_netns, validate_trace_id
from proxy_init.services.composer import RuleTransaction
from proxy_init.services.firewall import cleanup_firewall, configure_firewall, plan_firewall, show_rules


app = typer.Typer(
    name="proxy-init",
    help="Redirect a pod's TCP traffic through a sidecar proxy using iptables.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


# Type aliases for common options
IncomingProxyPortOption = Annotated[
    Optional[int],
    typer.Option(
        "--incoming-proxy-port",
        "-p",
        help="Port to redirect incoming traffic to.",
    ),
]

OutgoingProxyPortOption = Annotated[
    Optional[int],
    typer.Option(
        "--outgoing-proxy-port",
        "-o",
        help="Port to redirect outgoing traffic to.",
    ),
]

ProxyUidOption = Annotated[
    Optional[int],
    typer.Option(
        "--proxy-uid",
        "-u",
        help="User ID the proxy runs as; its traffic is not redirected. 0 or less disables this.",
    ),
]

PortsToRedirectOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--ports-to-redirect",
        "-r",
        help="Only redirect these inbound ports (repeatable or comma-separated).",
    ),
]

InboundIgnoreOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--inbound-ports-to-ignore",
        help="Inbound ports that bypass the proxy (repeatable or comma-separated).",
    ),
]

OutboundIgnoreOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--outbound-ports-to-ignore",
        help="Outbound ports that bypass the proxy (repeatable or comma-separated).",
    ),
]

ModeOption = Annotated[
    Optional[RedirectMode],
    typer.Option(
        "--mode",
        help="Inbound policy. Defaults to redirect-listed when ports to redirect are given.",
        case_sensitive=False,
    ),
]

SimulateOption = Annotated[
    bool,
    typer.Option(
        "--simulate",
        help="Print the iptables commands without running them.",
        is_flag=True,
    ),
]

NetNsOption = Annotated[
    Optional[str],
    typer.Option(
        "--netns",
        help="Network namespace to configure, e.g. /proc/1234/ns/net. Defaults to the current one.",
    ),
]

WaitFlagOption = Annotated[
    bool,
    typer.Option(
        "--use-wait-flag",
        "-w",
        help="Make iptables wait for the xtables lock instead of failing.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="YAML configuration file. Command-line options override its values.",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"proxy-init version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """proxy-init - transparent traffic redirection for sidecar proxies.

    Installs two NAT chains, PROXY_INIT_REDIRECT (inbound, hooked from
    PREROUTING) and PROXY_INIT_OUTPUT (outbound, hooked from OUTPUT),
    after removing whatever a previous run left behind.

    [bold]Examples:[/bold]
        proxy-init configure -p 4143 -o 4140 -u 2102 --inbound-ports-to-ignore 4190,4191
        proxy-init plan -p 4143 -o 4140 -r 8080 -r 9090
        proxy-init cleanup --netns /proc/1234/ns/net
    """
    pass


def _check_root(ctx: ExecutionContext, simulate: bool) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not simulate:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run as root, or pass --simulate to only print the commands")
        raise typer.Exit(6)


def _handle_error(error: ProxyInitError) -> None:
    """Handle a ProxyInitError by printing formatted error and exiting."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{escape(detail)}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def build_configuration(
    *,
    config_path: Optional[Path] = None,
    mode: Optional[RedirectMode] = None,
    incoming_proxy_port: Optional[int] = None,
    outgoing_proxy_port: Optional[int] = None,
    proxy_uid: Optional[int] = None,
    ports_to_redirect: Optional[list[str]] = None,
    inbound_ports_to_ignore: Optional[list[str]] = None,
    outbound_ports_to_ignore: Optional[list[str]] = None,
    simulate: bool = False,
    netns: Optional[str] = None,
    use_wait_flag: bool = False,
) -> FirewallConfiguration:
    """Merge a configuration file (if any) with command-line options.

    Raises:
        ConfigurationError: If the result is not a valid configuration
        ValidationError: If a port list cannot be parsed
    """
    data: dict[str, Any] = load_yaml(config_path) if config_path else {}

    overrides: dict[str, Any] = {
        "proxyInboundPort": incoming_proxy_port,
        "proxyOutgoingPort": outgoing_proxy_port,
        "proxyUID": proxy_uid,
        "netNs": netns,
    }
    if ports_to_redirect:
        overrides["portsToRedirectInbound"] = parse_port_list(ports_to_redirect)
    if inbound_ports_to_ignore:
        overrides["inboundPortsToIgnore"] = parse_port_list(inbound_ports_to_ignore, allow_zero=True)
    if outbound_ports_to_ignore:
        overrides["outboundPortsToIgnore"] = parse_port_list(outbound_ports_to_ignore, allow_zero=True)
    if simulate:
        overrides["simulateOnly"] = True
    if use_wait_flag:
        overrides["useWaitFlag"] = True

    for key, value in overrides.items():
        if value is not None:
            # Drop a snake_case spelling from the file so the flag wins
            data.pop(_SNAKE_CASE[key], None)
            data[key] = value

    if mode is not None:
        data.pop("mode", None)
        data["mode"] = mode
    elif ports_to_redirect:
        data["mode"] = RedirectMode.REDIRECT_LISTED

    return FirewallConfiguration.from_dict(data)


_SNAKE_CASE = {
    "proxyInboundPort": "proxy_inbound_port",
    "proxyOutgoingPort": "proxy_outgoing_port",
    "proxyUID": "proxy_uid",
    "netNs": "net_ns",
    "portsToRedirectInbound": "ports_to_redirect_inbound",
    "inboundPortsToIgnore": "inbound_ports_to_ignore",
    "outboundPortsToIgnore": "outbound_ports_to_ignore",
    "simulateOnly": "simulate_only",
    "useWaitFlag": "use_wait_flag",
}


def _print_plan(
    ctx: ExecutionContext,
    config: FirewallConfiguration,
    transaction: RuleTransaction,
) -> None:
    if config.mode == RedirectMode.REDIRECT_ALL:
        redirected = "all"
    else:
        redirected = ", ".join(map(str, config.ports_to_redirect_inbound)) or "none"
    ctx.console.summary("Configuration", {
        "Mode": config.mode.value,
        "Inbound proxy port": config.proxy_inbound_port,
        "Outbound proxy port": config.proxy_outgoing_port,
        "Proxy UID": config.proxy_uid if config.has_proxy_uid else "none",
        "Redirected inbound ports": redirected,
        "Namespace": config.net_ns or "current",
        "Wait for xtables lock": config.use_wait_flag,
    })
    rows = []
    for index, (phase, mutation) in enumerate(transaction.phases(), start=1):
        rows.append([str(index), phase.value, mutation.chain or "-", str(mutation)])
    ctx.console.table(
        f"Rule transaction {transaction.trace_id}",
        ["#", "Phase", "Chain", "Command"],
        rows,
    )


# =============================================================================
# Commands
# =============================================================================

@app.command("configure")
def configure(
    incoming_proxy_port: IncomingProxyPortOption = None,
    outgoing_proxy_port: OutgoingProxyPortOption = None,
    proxy_uid: ProxyUidOption = None,
    ports_to_redirect: PortsToRedirectOption = None,
    inbound_ports_to_ignore: InboundIgnoreOption = None,
    outbound_ports_to_ignore: OutboundIgnoreOption = None,
    mode: ModeOption = None,
    simulate: SimulateOption = False,
    netns: NetNsOption = None,
    use_wait_flag: WaitFlagOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Redirect inbound and outbound TCP traffic through the proxy.

    Removes rules left by a previous run, then installs the inbound and
    outbound chains. Stops at the first rule that fails to install.

    [bold]Examples:[/bold]

        proxy-init configure -p 4143 -o 4140 -u 2102
        proxy-init configure -c /etc/proxy-init/config.yaml --simulate
    """
    try:
        firewall_config = build_configuration(
            config_path=config,
            mode=mode,
            incoming_proxy_port=incoming_proxy_port,
            outgoing_proxy_port=outgoing_proxy_port,
            proxy_uid=proxy_uid,
            ports_to_redirect=ports_to_redirect,
            inbound_ports_to_ignore=inbound_ports_to_ignore,
            outbound_ports_to_ignore=outbound_ports_to_ignore,
            simulate=simulate,
            netns=netns,
            use_wait_flag=use_wait_flag,
        )
    except ProxyInitError as e:
        _handle_error(e)

    ctx = create_context(
        dry_run=firewall_config.simulate_only,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
    )
    _check_root(ctx, firewall_config.simulate_only)

    try:
        report = configure_firewall(firewall_config, ctx)
    except ProxyInitError as e:
        _handle_error(e)

    if report.simulated:
        ctx.console.info("Simulation only: no rules were changed")
    else:
        ctx.console.success(
            f"Installed {len(report.applied)} rule(s), trace id {report.trace_id}"
        )


@app.command("plan")
def plan(
    incoming_proxy_port: IncomingProxyPortOption = None,
    outgoing_proxy_port: OutgoingProxyPortOption = None,
    proxy_uid: ProxyUidOption = None,
    ports_to_redirect: PortsToRedirectOption = None,
    inbound_ports_to_ignore: InboundIgnoreOption = None,
    outbound_ports_to_ignore: OutboundIgnoreOption = None,
    mode: ModeOption = None,
    netns: NetNsOption = None,
    use_wait_flag: WaitFlagOption = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show the ordered iptables commands a configuration would run.

    Nothing is executed and root is not required.
    """
    try:
        firewall_config = build_configuration(
            config_path=config,
            mode=mode,
            incoming_proxy_port=incoming_proxy_port,
            outgoing_proxy_port=outgoing_proxy_port,
            proxy_uid=proxy_uid,
            ports_to_redirect=ports_to_redirect,
            inbound_ports_to_ignore=inbound_ports_to_ignore,
            outbound_ports_to_ignore=outbound_ports_to_ignore,
            simulate=True,
            netns=netns,
            use_wait_flag=use_wait_flag,
        )
    except ProxyInitError as e:
        _handle_error(e)

    ctx = create_context(verbose=verbose, no_color=no_color)
    transaction = plan_firewall(firewall_config, ctx)
    _print_plan(ctx, firewall_config, transaction)


@app.command("cleanup")
def cleanup(
    simulate: SimulateOption = False,
    netns: NetNsOption = None,
    use_wait_flag: WaitFlagOption = False,
    trace_id: Annotated[
        Optional[str],
        typer.Option(
            "--trace-id",
            "-t",
            help="Trace id of the run whose jumps should be removed, as printed by configure.",
        ),
    ] = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Remove the PROXY_INIT chains and the jumps into them.

    A jump is only removed when its comment matches exactly, so pass the
    trace id printed by the configure run that installed it (also visible
    in 'show' as proxy-init/<label>/<id>). Without --trace-id a new id
    is used and only jumps installed in this same second match; a chain
    that is still referenced by a jump cannot be deleted. Missing rules and
    chains are not an error.

    [bold]Examples:[/bold]

        proxy-init cleanup --trace-id 1700000000
        proxy-init cleanup --trace-id 1700000000 --netns /proc/1234/ns/net
    """
    ctx = create_context(dry_run=simulate, verbose=verbose, quiet=quiet, no_color=no_color)
    _check_root(ctx, simulate)

    try:
        report = cleanup_firewall(
            ctx,
            simulate_only=simulate,
            use_wait_flag=use_wait_flag,
            net_ns=validate_netns(netns) if netns else None,
            trace_id=validate_trace_id(trace_id) if trace_id else None,
        )
    except ProxyInitError as e:
        _handle_error(e)

    if not report.simulated:
        skipped = len(report.ignored_failures)
        ctx.console.success(f"Cleanup finished ({skipped} step(s) had nothing to remove)")


@app.command("show")
def show(
    netns: NetNsOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Print the current rule table (iptables-save)."""
    ctx = create_context(no_color=no_color)
    _check_root(ctx, False)

    try:
        show_rules(ctx, net_ns=validate_netns(netns) if netns else None)
    except ProxyInitError as e:
        _handle_error(e)


@app.command("example-config")
def example_config() -> None:
    """Print an example YAML configuration file."""
    console.print(get_example_config(), markup=False)


if __name__ == "__main__":
    app()
