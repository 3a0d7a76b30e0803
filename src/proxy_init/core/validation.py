"""Input validation utilities.

Provides validation for:
- Port numbers (proxy ports and ignore lists)
- Port lists given on the command line
- Network namespace references
- Run identifiers (trace ids)

All validators return the validated value or raise ValidationError.
"""

import re
from typing import Iterable, Optional

from proxy_init.core.exceptions import ValidationError


MIN_PORT = 1
MAX_PORT = 65535

# Namespace references are either a name under /var/run/netns or a path
# such as /proc/<pid>/ns/net.
NETNS_PATTERN = re.compile(r"^[A-Za-z0-9_./:@-]+$")

# Run identifiers are Unix timestamps in whole seconds
TRACE_ID_PATTERN = re.compile(r"^[0-9]+$")


def validate_port(value: int, *, allow_zero: bool = False) -> int:
    """Validate a port number.

    Args:
        value: Port number to validate
        allow_zero: Accept port 0 (valid in ignore lists)

    Returns:
        The validated port number

    Raises:
        ValidationError: If port is out of valid range
    """
    low = 0 if allow_zero else MIN_PORT
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= MAX_PORT:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint=f"Port must be between {low} and {MAX_PORT}",
        )
    return value


def validate_ports(values: Iterable[int], *, allow_zero: bool = False) -> tuple[int, ...]:
    """Validate every port in a list, preserving order."""
    return tuple(validate_port(v, allow_zero=allow_zero) for v in values)


def parse_port_list(values: Optional[Iterable[str]], *, allow_zero: bool = False) -> tuple[int, ...]:
    """Parse port arguments that may be repeated and/or comma-separated.

    Example:
        parse_port_list(["4190,4191", "25"]) -> (4190, 4191, 25)

    Raises:
        ValidationError: If an entry is not an integer or out of range
    """
    ports: list[int] = []
    for value in values or []:
        for item in str(value).split(","):
            item = item.strip()
            if not item:
                continue
            try:
                port = int(item)
            except ValueError:
                raise ValidationError(
                    f"Invalid port number: {item!r}",
                    hint="Ports must be integers, e.g. --inbound-ports-to-ignore 4190,4191",
                )
            ports.append(validate_port(port, allow_zero=allow_zero))
    return tuple(ports)


def validate_netns(value: str) -> str:
    """Validate a network namespace reference passed to nsenter.

    Raises:
        ValidationError: If the reference contains unexpected characters
    """
    if not NETNS_PATTERN.match(value):
        raise ValidationError(
            f"Invalid network namespace: {value!r}",
            hint="Use a namespace path such as /var/run/netns/pod or /proc/1234/ns/net",
        )
    return value


def validate_trace_id(value: str) -> str:
    """Validate a run identifier as printed by ``configure`` (Unix seconds).

    Raises:
        ValidationError: If the identifier is not a non-negative integer
    """
    value = value.strip()
    if not TRACE_ID_PATTERN.match(value):
        raise ValidationError(
            f"Invalid trace id: {value!r}",
            hint="Use the id from 'Tracing this script execution as [<id>]' "
                 "or from the proxy-init/<label>/<id> rule comments",
        )
    return value
