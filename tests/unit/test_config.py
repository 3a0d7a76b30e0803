"""Unit tests for configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from proxy_init.core.config import (
    FirewallConfiguration,
    RedirectMode,
    RuntimeSettings,
    get_example_config,
    load_yaml,
)
from proxy_init.core.exceptions import ConfigurationError


BASE = {"proxyInboundPort": 4143, "proxyOutgoingPort": 4140}


class TestRedirectMode:
    """Tests for RedirectMode enum."""

    def test_values(self):
        assert RedirectMode.REDIRECT_ALL.value == "redirect-all"
        assert RedirectMode.REDIRECT_LISTED.value == "redirect-listed"

    def test_only_two_modes(self):
        assert len(RedirectMode) == 2


class TestFirewallConfiguration:
    """Tests for FirewallConfiguration."""

    def test_camel_case_aliases(self):
        config = FirewallConfiguration.from_dict({
            **BASE,
            "mode": "redirect-listed",
            "portsToRedirectInbound": [8080, 9090],
            "inboundPortsToIgnore": [4190],
            "outboundPortsToIgnore": [25],
            "proxyUID": 2102,
            "simulateOnly": True,
            "netNs": "/proc/1/ns/net",
            "useWaitFlag": True,
        })
        assert config.mode == RedirectMode.REDIRECT_LISTED
        assert config.ports_to_redirect_inbound == (8080, 9090)
        assert config.inbound_ports_to_ignore == (4190,)
        assert config.outbound_ports_to_ignore == (25,)
        assert config.proxy_uid == 2102
        assert config.simulate_only is True
        assert config.net_ns == "/proc/1/ns/net"
        assert config.use_wait_flag is True

    def test_snake_case_names(self):
        config = FirewallConfiguration(proxy_inbound_port=1, proxy_outgoing_port=2)
        assert config.mode == RedirectMode.REDIRECT_ALL
        assert config.ports_to_redirect_inbound == ()

    def test_unknown_mode_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            FirewallConfiguration.from_dict({**BASE, "mode": "redirect-some"})
        assert any("mode" in d for d in exc.value.details)

    def test_direct_construction_rejects_unknown_mode(self):
        with pytest.raises(PydanticValidationError):
            FirewallConfiguration(mode="bogus", proxy_inbound_port=1, proxy_outgoing_port=2)

    def test_proxy_ports_required(self):
        with pytest.raises(ConfigurationError) as exc:
            FirewallConfiguration.from_dict({"mode": "redirect-all"})
        assert len(exc.value.details) == 2

    def test_proxy_port_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            FirewallConfiguration.from_dict({**BASE, "proxyInboundPort": 0})

    def test_ignored_port_zero_allowed(self):
        config = FirewallConfiguration.from_dict({**BASE, "outboundPortsToIgnore": [0]})
        assert config.outbound_ports_to_ignore == (0,)

    def test_ignored_port_out_of_range(self):
        with pytest.raises(ConfigurationError):
            FirewallConfiguration.from_dict({**BASE, "inboundPortsToIgnore": [70000]})

    def test_redirect_port_out_of_range(self):
        with pytest.raises(ConfigurationError):
            FirewallConfiguration.from_dict({**BASE, "portsToRedirectInbound": [0]})

    @pytest.mark.parametrize("uid", [0, -1, None])
    def test_non_positive_uid_means_no_exemption(self, uid):
        config = FirewallConfiguration.from_dict({**BASE, "proxyUID": uid})
        assert config.proxy_uid is None
        assert config.has_proxy_uid is False

    @pytest.mark.parametrize("uid", [True, False, 2102.9, "proxy", [2102]])
    def test_malformed_uid_rejected(self, uid):
        with pytest.raises(ConfigurationError) as exc:
            FirewallConfiguration.from_dict({**BASE, "proxyUID": uid})
        assert any("proxy" in d.lower() for d in exc.value.details)

    @pytest.mark.parametrize("uid", [2102, 2102.0, "2102"])
    def test_integral_uid_accepted(self, uid):
        config = FirewallConfiguration.from_dict({**BASE, "proxyUID": uid})
        assert config.proxy_uid == 2102

    def test_empty_netns_means_current(self):
        config = FirewallConfiguration.from_dict({**BASE, "netNs": ""})
        assert config.net_ns is None
        assert config.in_namespace is False

    def test_invalid_netns(self):
        with pytest.raises(ConfigurationError):
            FirewallConfiguration.from_dict({**BASE, "netNs": "pod; rm -rf /"})

    def test_unknown_field_rejected(self):
        with pytest.raises(ConfigurationError):
            FirewallConfiguration.from_dict({**BASE, "redirectUdp": True})

    def test_frozen(self):
        config = FirewallConfiguration.from_dict(BASE)
        with pytest.raises(PydanticValidationError):
            config.proxy_inbound_port = 1

    def test_port_order_preserved(self):
        config = FirewallConfiguration.from_dict({**BASE, "outboundPortsToIgnore": [443, 25, 80]})
        assert config.outbound_ports_to_ignore == (443, 25, 80)

    def test_with_overrides(self):
        config = FirewallConfiguration.from_dict(BASE)
        updated = config.with_overrides(proxy_uid=2102, simulate_only=True)
        assert updated.proxy_uid == 2102
        assert updated.simulate_only is True
        assert config.proxy_uid is None

    def test_with_overrides_validates(self):
        config = FirewallConfiguration.from_dict(BASE)
        with pytest.raises(ConfigurationError):
            config.with_overrides(proxy_outgoing_port=99999)


class TestLoad:
    """Tests for loading YAML configuration files."""

    def test_load(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "mode: redirect-listed\n"
            "portsToRedirectInbound: [8080]\n"
            "proxyInboundPort: 4143\n"
            "proxyOutgoingPort: 4140\n"
        )
        config = FirewallConfiguration.load(path)
        assert config.mode == RedirectMode.REDIRECT_LISTED
        assert config.ports_to_redirect_inbound == (8080,)

    def test_example_config_is_valid(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text(get_example_config())
        config = FirewallConfiguration.load(path)
        assert config.proxy_uid == 2102
        assert config.net_ns is None

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError) as exc:
            load_yaml(tmp_path / "missing.yaml")
        assert "not found" in str(exc.value)

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("mode: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc:
            load_yaml(path)
        assert "Invalid YAML" in str(exc.value)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_yaml(path)

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}


class TestRuntimeSettings:
    """Tests for environment-driven tool settings."""

    def test_defaults(self, monkeypatch):
        for name in ("PROXY_INIT_IPTABLES", "PROXY_INIT_IPTABLES_SAVE", "PROXY_INIT_NSENTER"):
            monkeypatch.delenv(name, raising=False)
        settings = RuntimeSettings()
        assert settings.iptables == "iptables"
        assert settings.iptables_save == "iptables-save"
        assert settings.nsenter == "nsenter"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PROXY_INIT_IPTABLES", "iptables-legacy")
        assert RuntimeSettings().iptables == "iptables-legacy"
