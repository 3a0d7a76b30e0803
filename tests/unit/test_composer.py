"""Unit tests for rule transaction composition."""

from unittest.mock import Mock

import pytest

from proxy_init.core.config import FirewallConfiguration, RedirectMode
from proxy_init.services.composer import (
    Phase,
    compose_cleanup,
    compose_inbound,
    compose_outbound,
    compose_transaction,
)
from proxy_init.services.rules import (
    OUTPUT_CHAIN,
    REDIRECT_CHAIN,
    Operation,
    RuleBuilder,
)


TRACE_ID = "1700000000"


def make_config(**overrides) -> FirewallConfiguration:
    data = {
        "mode": RedirectMode.REDIRECT_ALL,
        "proxy_inbound_port": 4143,
        "proxy_outgoing_port": 4140,
    }
    data.update(overrides)
    return FirewallConfiguration(**data)


@pytest.fixture
def builder() -> RuleBuilder:
    return RuleBuilder(TRACE_ID)


CONFIGS = [
    make_config(),
    make_config(proxy_uid=2102),
    make_config(proxy_uid=2102, outbound_ports_to_ignore=(25, 443)),
    make_config(outbound_ports_to_ignore=(0, 3306)),
    make_config(
        mode=RedirectMode.REDIRECT_LISTED,
        ports_to_redirect_inbound=(8080,),
        inbound_ports_to_ignore=(4190, 4191),
        proxy_uid=1,
    ),
]


class TestCleanup:
    """Tests for the cleanup phase."""

    def test_order(self, builder):
        """Jumps are removed before their chains are flushed and deleted."""
        commands = compose_cleanup(builder)
        assert [(c.operation, c.chain) for c in commands] == [
            (Operation.DELETE, "OUTPUT"),
            (Operation.DELETE, "PREROUTING"),
            (Operation.FLUSH_CHAIN, OUTPUT_CHAIN),
            (Operation.DELETE_CHAIN, OUTPUT_CHAIN),
            (Operation.FLUSH_CHAIN, REDIRECT_CHAIN),
            (Operation.DELETE_CHAIN, REDIRECT_CHAIN),
        ]

    def test_jump_deletions_target_own_chains(self, builder):
        commands = compose_cleanup(builder)
        assert commands[0].target == OUTPUT_CHAIN
        assert commands[1].target == REDIRECT_CHAIN

    def test_jump_deletions_match_install_labels(self, builder):
        """Deleted jumps carry the same labels as the installed ones."""
        cleanup = compose_cleanup(builder)
        outbound = compose_outbound(make_config(), builder)
        inbound = compose_inbound(make_config(), builder)
        assert cleanup[0].label == outbound[-1].label
        assert cleanup[1].label == inbound[-1].label


class TestOutbound:
    """Tests for the OUTPUT side."""

    def test_full_order_with_uid(self, builder):
        config = make_config(proxy_uid=2102, outbound_ports_to_ignore=(25, 443))
        labels = [c.label for c in compose_outbound(config, builder)]
        assert labels == [
            "redirect-common-chain",
            "redirect-non-loopback-local-traffic",
            "ignore-proxy-user-id",
            "ignore-loopback",
            "ignore-port-25",
            "ignore-port-443",
            "redirect-all-outgoing-to-proxy-port",
            "install-proxy-init-output",
        ]

    def test_without_uid_has_no_owner_rules(self, builder):
        commands = compose_outbound(make_config(), builder)
        assert all("--uid-owner" not in c.matches for c in commands)
        assert [c.label for c in commands] == [
            "redirect-common-chain",
            "ignore-loopback",
            "redirect-all-outgoing-to-proxy-port",
            "install-proxy-init-output",
        ]

    @pytest.mark.parametrize("config", CONFIGS)
    def test_exemptions_precede_catch_all(self, builder, config):
        """Every exemption comes before the single catch-all redirect."""
        commands = compose_outbound(config, builder)
        redirects = [i for i, c in enumerate(commands) if c.is_redirect]
        exemptions = [i for i, c in enumerate(commands) if c.is_exemption]
        assert len(redirects) == 1
        assert exemptions
        assert max(exemptions) < redirects[0]

    @pytest.mark.parametrize("config", [c for c in CONFIGS if c.proxy_uid is not None])
    def test_hairpin_before_uid_exemption_before_loopback(self, builder, config):
        labels = [c.label for c in compose_outbound(config, builder)]
        hairpin = labels.index("redirect-non-loopback-local-traffic")
        uid = labels.index("ignore-proxy-user-id")
        loopback = labels.index("ignore-loopback")
        assert hairpin < uid < loopback

    def test_hairpin_jumps_into_redirect_chain(self, builder):
        commands = compose_outbound(make_config(proxy_uid=2102), builder)
        assert commands[1].target == REDIRECT_CHAIN
        assert commands[1].chain == OUTPUT_CHAIN

    def test_catch_all_uses_outgoing_port(self, builder):
        commands = compose_outbound(make_config(proxy_outgoing_port=15001), builder)
        redirect = next(c for c in commands if c.is_redirect)
        assert redirect.redirect_port == 15001
        assert redirect.destination_port is None

    def test_ends_with_jump_from_output(self, builder):
        last = compose_outbound(make_config(), builder)[-1]
        assert (last.operation, last.chain, last.target) == (Operation.APPEND, "OUTPUT", OUTPUT_CHAIN)

    def test_reports_decisions(self, builder):
        console = Mock()
        compose_outbound(make_config(proxy_uid=2102, outbound_ports_to_ignore=(25,)), builder, console)
        messages = [call.args[0] for call in console.info.call_args_list]
        assert "Ignoring uid 2102" in messages
        assert f"Will ignore port 25 on chain {OUTPUT_CHAIN}" in messages
        assert "Redirecting all OUTPUT to 4140" in messages


class TestInbound:
    """Tests for the PREROUTING side."""

    def test_redirect_all_single_unconditional(self, builder):
        config = make_config(ports_to_redirect_inbound=(8080, 9090))
        commands = compose_inbound(config, builder)
        redirects = [c for c in commands if c.is_redirect]
        assert len(redirects) == 1
        assert redirects[0].destination_port is None
        assert redirects[0].redirect_port == 4143

    def test_redirect_listed_one_rule_per_port(self, builder):
        config = make_config(
            mode=RedirectMode.REDIRECT_LISTED,
            ports_to_redirect_inbound=(8080, 9090),
        )
        redirects = [c for c in compose_inbound(config, builder) if c.is_redirect]
        assert [r.destination_port for r in redirects] == [8080, 9090]
        assert all(r.redirect_port == 4143 for r in redirects)

    def test_redirect_listed_empty_is_inert(self, builder):
        config = make_config(mode=RedirectMode.REDIRECT_LISTED, ports_to_redirect_inbound=())
        commands = compose_inbound(config, builder)
        assert not any(c.is_redirect for c in commands)
        assert commands[0].operation == Operation.NEW_CHAIN
        assert commands[0].chain == REDIRECT_CHAIN
        assert (commands[-1].chain, commands[-1].target) == ("PREROUTING", REDIRECT_CHAIN)
        assert len(commands) == 2

    def test_ignored_ports_before_redirects(self, builder):
        config = make_config(
            mode=RedirectMode.REDIRECT_LISTED,
            ports_to_redirect_inbound=(8080,),
            inbound_ports_to_ignore=(4190, 4191),
        )
        labels = [c.label for c in compose_inbound(config, builder)]
        assert labels == [
            "redirect-common-chain",
            "ignore-port-4190",
            "ignore-port-4191",
            "redirect-port-8080-to-proxy-port",
            "install-proxy-init-prerouting",
        ]

    def test_reports_listed_ports(self, builder):
        console = Mock()
        config = make_config(mode=RedirectMode.REDIRECT_LISTED, ports_to_redirect_inbound=(8080, 9090))
        compose_inbound(config, builder, console)
        console.info.assert_any_call("Will redirect some INPUT ports to proxy: 8080, 9090")


class TestTransaction:
    """Tests for the composed transaction."""

    def test_install_is_inbound_then_outbound(self):
        transaction = compose_transaction(make_config(proxy_uid=2102), TRACE_ID)
        assert transaction.install == transaction.inbound + transaction.outbound

    def test_redirect_chain_created_before_it_is_targeted(self):
        transaction = compose_transaction(make_config(proxy_uid=2102), TRACE_ID)
        install = list(transaction.install)
        created = next(
            i for i, c in enumerate(install)
            if c.operation == Operation.NEW_CHAIN and c.chain == REDIRECT_CHAIN
        )
        targeted = [i for i, c in enumerate(install) if c.target == REDIRECT_CHAIN]
        assert targeted
        assert created < min(targeted)

    def test_every_chain_created_before_populated(self):
        transaction = compose_transaction(make_config(proxy_uid=2102), TRACE_ID)
        created: set[str] = set()
        for mutation in transaction.install:
            if mutation.operation == Operation.NEW_CHAIN:
                created.add(mutation.chain)
            elif mutation.chain in (OUTPUT_CHAIN, REDIRECT_CHAIN):
                assert mutation.chain in created

    def test_phases_in_dispatch_order(self):
        transaction = compose_transaction(make_config(), TRACE_ID)
        phases = [phase for phase, _ in transaction.phases()]
        assert phases == (
            [Phase.CLEANUP] * len(transaction.cleanup)
            + [Phase.INBOUND] * len(transaction.inbound)
            + [Phase.OUTBOUND] * len(transaction.outbound)
        )
        assert len(transaction) == len(phases)

    def test_comments_carry_trace_id(self):
        transaction = compose_transaction(make_config(proxy_uid=2102), TRACE_ID)
        comments = [m.comment for _, m in transaction.phases() if m.comment]
        assert comments
        assert all(c.endswith(f"/{TRACE_ID}") for c in comments)
        assert all(c.startswith("proxy-init/") for c in comments)

    def test_different_runs_differ(self):
        first = compose_transaction(make_config(), "1700000000")
        second = compose_transaction(make_config(), "1700000001")
        assert first.install[0].comment != second.install[0].comment

    def test_deterministic(self):
        config = make_config(proxy_uid=2102, outbound_ports_to_ignore=(25,))
        assert compose_transaction(config, TRACE_ID) == compose_transaction(config, TRACE_ID)
