"""Configuration management using Pydantic.

Provides:
- The FirewallConfiguration model describing one redirection run
- YAML file loading
- Environment overrides for the external tool binaries
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from proxy_init.core.exceptions import ConfigurationError, ValidationError
from proxy_init.core.validation import validate_netns, validate_port, validate_ports


class RedirectMode(str, Enum):
    """Inbound redirection policy."""
    REDIRECT_ALL = "redirect-all"
    REDIRECT_LISTED = "redirect-listed"


class FirewallConfiguration(BaseModel):
    """How to configure a pod's NAT table for the proxy.

    Immutable once constructed. Field names accept both the snake_case
    attribute names and the camelCase names used in configuration files.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    mode: RedirectMode = RedirectMode.REDIRECT_ALL
    ports_to_redirect_inbound: tuple[int, ...] = Field(default=(), alias="portsToRedirectInbound")
    inbound_ports_to_ignore: tuple[int, ...] = Field(default=(), alias="inboundPortsToIgnore")
    outbound_ports_to_ignore: tuple[int, ...] = Field(default=(), alias="outboundPortsToIgnore")
    proxy_inbound_port: int = Field(alias="proxyInboundPort")
    proxy_outgoing_port: int = Field(alias="proxyOutgoingPort")
    proxy_uid: Optional[int] = Field(default=None, alias="proxyUID")
    simulate_only: bool = Field(default=False, alias="simulateOnly")
    net_ns: Optional[str] = Field(default=None, alias="netNs")
    use_wait_flag: bool = Field(default=False, alias="useWaitFlag")

    @field_validator("proxy_inbound_port", "proxy_outgoing_port")
    @classmethod
    def validate_proxy_port(cls, v: int) -> int:
        try:
            return validate_port(v)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("ports_to_redirect_inbound")
    @classmethod
    def validate_redirect_ports(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        try:
            return validate_ports(v)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("inbound_ports_to_ignore", "outbound_ports_to_ignore")
    @classmethod
    def validate_ignored_ports(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        try:
            return validate_ports(v, allow_zero=True)
        except ValidationError as e:
            raise ValueError(e.message) from e

    @field_validator("proxy_uid", mode="before")
    @classmethod
    def normalize_proxy_uid(cls, v: Any) -> Optional[int]:
        # Zero or negative means "do not exempt any uid"
        if v is None:
            return None
        if isinstance(v, bool) or (isinstance(v, float) and not v.is_integer()):
            raise ValueError(f"Invalid proxy uid: {v!r}")
        try:
            uid = int(v)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid proxy uid: {v!r}") from None
        return uid if uid > 0 else None

    @field_validator("net_ns", mode="before")
    @classmethod
    def normalize_net_ns(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        try:
            return validate_netns(str(v).strip())
        except ValidationError as e:
            raise ValueError(e.message) from e

    @property
    def has_proxy_uid(self) -> bool:
        """Check if traffic from the proxy's own uid is exempted."""
        return self.proxy_uid is not None

    @property
    def in_namespace(self) -> bool:
        """Check if commands run inside another network namespace."""
        return self.net_ns is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FirewallConfiguration":
        """Build a configuration, reporting problems as ConfigurationError.

        Raises:
            ConfigurationError: If any field is missing or invalid
        """
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            details = []
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"]) or "configuration"
                details.append(f"{location}: {err['msg']}")
            raise ConfigurationError(
                "Invalid firewall configuration",
                details=details,
                hint="Valid modes: " + ", ".join(m.value for m in RedirectMode),
            ) from e

    @classmethod
    def load(cls, path: Path) -> "FirewallConfiguration":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        return cls.from_dict(load_yaml(path))

    def with_overrides(self, **changes: Any) -> "FirewallConfiguration":
        """Return a validated copy with some fields replaced."""
        data = self.model_dump()
        data.update(changes)
        return type(self).from_dict(data)


def load_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping from disk.

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            hint="Pass the ports on the command line or point --config at a YAML file",
        )

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file: {path}",
            details=[str(e)],
        ) from e
    except PermissionError:
        raise ConfigurationError(
            f"Cannot read configuration file: {path}",
            hint="Check file permissions or run with sudo",
        )

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a mapping: {path}",
        )
    return data


class RuntimeSettings(BaseSettings):
    """External tool locations, overridable from the environment.

    PROXY_INIT_IPTABLES=iptables-legacy selects the legacy backend, for example.
    """

    model_config = SettingsConfigDict(env_prefix="PROXY_INIT_", extra="ignore")

    iptables: str = "iptables"
    iptables_save: str = "iptables-save"
    nsenter: str = "nsenter"


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# proxy-init configuration
mode: redirect-all            # redirect-all, redirect-listed
portsToRedirectInbound: []    # only used with redirect-listed
inboundPortsToIgnore: [4190, 4191]
outboundPortsToIgnore: []
proxyInboundPort: 4143
proxyOutgoingPort: 4140
proxyUID: 2102                # 0 or less disables the uid exemption
simulateOnly: false
netNs: ""                     # empty means the current namespace
useWaitFlag: true
"""
