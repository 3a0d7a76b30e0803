"""Rule primitives for the proxy-init NAT chains.

Every function here builds exactly one RuleMutation: an immutable
description of a single iptables invocation. Nothing is executed;
the driver turns mutations into processes later.

Rules created by a run are tagged with a comment of the form
``proxy-init/<label>/<trace-id>`` so stale rules left behind by an
earlier run can be told apart when reading ``iptables-save`` output.
"""

import re
import shlex
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from proxy_init.core.exceptions import ValidationError
from proxy_init.core.validation import validate_port


# Chains owned by proxy-init
OUTPUT_CHAIN = "PROXY_INIT_OUTPUT"
REDIRECT_CHAIN = "PROXY_INIT_REDIRECT"

COMMENT_NAMESPACE = "proxy-init"
MAX_COMMENT_LENGTH = 256

LOOPBACK_INTERFACE = "lo"
LOCALHOST_CIDR = "127.0.0.1/32"


class Tool(str, Enum):
    """External tool a mutation is dispatched to."""
    IPTABLES = "iptables"
    IPTABLES_SAVE = "iptables-save"


class Table(str, Enum):
    """Iptables table."""
    NAT = "nat"


class Operation(str, Enum):
    """Iptables command, valued by its flag."""
    APPEND = "-A"
    DELETE = "-D"
    NEW_CHAIN = "-N"
    FLUSH_CHAIN = "-F"
    DELETE_CHAIN = "-X"
    DUMP = "dump"


class Target(str, Enum):
    """Built-in rule targets used by proxy-init."""
    RETURN = "RETURN"
    REDIRECT = "REDIRECT"


class HookChain(str, Enum):
    """Built-in NAT chains proxy-init hooks into."""
    PREROUTING = "PREROUTING"
    OUTPUT = "OUTPUT"


@dataclass(frozen=True)
class RuleMutation:
    """One iptables command, fully described and not yet executed."""
    operation: Operation
    chain: Optional[str] = None
    table: Table = Table.NAT
    matches: tuple[str, ...] = ()
    target: Optional[str] = None
    target_args: tuple[str, ...] = ()
    comment: Optional[str] = None
    label: str = ""

    @property
    def tool(self) -> Tool:
        """Tool that executes this mutation."""
        if self.operation == Operation.DUMP:
            return Tool.IPTABLES_SAVE
        return Tool.IPTABLES

    @property
    def is_mutating(self) -> bool:
        """Whether this command changes the rule table."""
        return self.operation != Operation.DUMP

    @property
    def is_redirect(self) -> bool:
        return self.target == Target.REDIRECT.value

    @property
    def is_exemption(self) -> bool:
        return self.target == Target.RETURN.value

    @property
    def is_jump(self) -> bool:
        """Whether this rule transfers evaluation to a user-defined chain."""
        return self.target is not None and self.target not in {t.value for t in Target}

    @property
    def destination_port(self) -> Optional[int]:
        """Destination port this rule matches on, if any."""
        if "--destination-port" in self.matches:
            return int(self.matches[self.matches.index("--destination-port") + 1])
        return None

    @property
    def redirect_port(self) -> Optional[int]:
        """Port a REDIRECT rule sends traffic to."""
        if self.is_redirect and "--to-port" in self.target_args:
            return int(self.target_args[self.target_args.index("--to-port") + 1])
        return None

    def args(self) -> list[str]:
        """Arguments following the tool name."""
        if self.operation == Operation.DUMP:
            return []

        args = ["-t", self.table.value, self.operation.value, self.chain or ""]
        args.extend(self.matches)

        if self.target:
            args.extend(["-j", self.target])
            args.extend(self.target_args)

        if self.comment:
            args.extend(["-m", "comment", "--comment", self.comment])

        return args

    def __str__(self) -> str:
        return shlex.join([self.tool.value] + self.args())


def new_trace_id(clock: Callable[[], float] = time.time) -> str:
    """Identifier for one run: the current Unix time in whole seconds.

    Two runs started within the same second share an identifier.
    """
    return str(int(clock()))


def sanitize_comment(comment: Optional[str]) -> Optional[str]:
    """Sanitize comment string for iptables.

    Args:
        comment: Comment string to sanitize

    Returns:
        Sanitized comment or None
    """
    if not comment:
        return None

    # Remove newlines and control characters
    sanitized = re.sub(r'[\x00-\x1f\x7f]', ' ', comment)

    if len(sanitized) > MAX_COMMENT_LENGTH:
        sanitized = sanitized[:MAX_COMMENT_LENGTH - 3] + "..."

    return sanitized.strip()


def _hook(chain: Union[HookChain, str]) -> HookChain:
    try:
        return HookChain(chain)
    except ValueError:
        valid = ", ".join(h.value for h in HookChain)
        raise ValidationError(
            f"Invalid hook chain: {chain}",
            hint=f"Valid hook chains: {valid}",
        )


def _uid(uid: int) -> int:
    if isinstance(uid, bool) or not isinstance(uid, int) or uid <= 0:
        raise ValidationError(
            f"Invalid proxy uid: {uid}",
            hint="The proxy uid must be a positive integer",
        )
    return uid


class RuleBuilder:
    """Builds tagged rule mutations for a single run.

    Args:
        trace_id: Identifier of the run, embedded in every rule comment
        namespace: First component of every rule comment
    """

    def __init__(self, trace_id: str, namespace: str = COMMENT_NAMESPACE) -> None:
        self.trace_id = trace_id
        self.namespace = namespace

    def format_comment(self, label: str) -> str:
        """Comment identifying which run added a rule and why."""
        return sanitize_comment(f"{self.namespace}/{label}/{self.trace_id}")

    # =========================================================================
    # Chain lifecycle
    # =========================================================================

    def create_chain(self, name: str, label: str = "redirect-common-chain") -> RuleMutation:
        return RuleMutation(
            operation=Operation.NEW_CHAIN,
            chain=name,
            comment=self.format_comment(label),
            label=label,
        )

    def flush_chain(self, name: str) -> RuleMutation:
        return RuleMutation(operation=Operation.FLUSH_CHAIN, chain=name, label=f"flush-{name}")

    def delete_chain(self, name: str) -> RuleMutation:
        return RuleMutation(operation=Operation.DELETE_CHAIN, chain=name, label=f"delete-{name}")

    # =========================================================================
    # Exemptions
    # =========================================================================

    def ignore_port(self, chain: str, port: int, label: Optional[str] = None) -> RuleMutation:
        """Let TCP traffic to ``port`` leave the chain unredirected."""
        validate_port(port, allow_zero=True)
        label = label or f"ignore-port-{port}"
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=("-p", "tcp", "--destination-port", str(port)),
            target=Target.RETURN.value,
            comment=self.format_comment(label),
            label=label,
        )

    def ignore_loopback(self, chain: str, label: str = "ignore-loopback") -> RuleMutation:
        """Let traffic leaving through the loopback interface pass."""
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=("-o", LOOPBACK_INTERFACE),
            target=Target.RETURN.value,
            comment=self.format_comment(label),
            label=label,
        )

    def ignore_uid(self, chain: str, uid: int, label: str = "ignore-proxy-user-id") -> RuleMutation:
        """Let traffic generated by processes running as ``uid`` pass."""
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=("-m", "owner", "--uid-owner", str(_uid(uid))),
            target=Target.RETURN.value,
            comment=self.format_comment(label),
            label=label,
        )

    # =========================================================================
    # Redirects
    # =========================================================================

    def redirect_to_port(self, chain: str, to_port: int, label: str) -> RuleMutation:
        """Redirect all TCP traffic reaching this rule to ``to_port``."""
        validate_port(to_port)
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=("-p", "tcp"),
            target=Target.REDIRECT.value,
            target_args=("--to-port", str(to_port)),
            comment=self.format_comment(label),
            label=label,
        )

    def redirect_port_to_port(
        self,
        chain: str,
        destination_port: int,
        to_port: int,
        label: Optional[str] = None,
    ) -> RuleMutation:
        """Redirect TCP traffic for ``destination_port`` only."""
        validate_port(destination_port)
        validate_port(to_port)
        label = label or f"redirect-port-{destination_port}-to-proxy-port"
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=("-p", "tcp", "--destination-port", str(destination_port)),
            target=Target.REDIRECT.value,
            target_args=("--to-port", str(to_port)),
            comment=self.format_comment(label),
            label=label,
        )

    def redirect_proxy_egress(
        self,
        chain: str,
        target_chain: str,
        uid: int,
        label: str = "redirect-non-loopback-local-traffic",
    ) -> RuleMutation:
        """Send the proxy's own loopback traffic to non-127.0.0.1 addresses
        back through the inbound chain.

        This covers app -> proxy (outbound) -> proxy (inbound) -> app when
        the destination is the pod's own address.
        """
        return RuleMutation(
            operation=Operation.APPEND,
            chain=chain,
            matches=(
                "-m", "owner", "--uid-owner", str(_uid(uid)),
                "-o", LOOPBACK_INTERFACE,
                "!", "-d", LOCALHOST_CIDR,
            ),
            target=target_chain,
            comment=self.format_comment(label),
            label=label,
        )

    # =========================================================================
    # Hooks
    # =========================================================================

    def jump(self, hook: Union[HookChain, str], target_chain: str, label: str) -> RuleMutation:
        """Append a jump from a built-in chain into ``target_chain``."""
        return RuleMutation(
            operation=Operation.APPEND,
            chain=_hook(hook).value,
            target=target_chain,
            comment=self.format_comment(label),
            label=label,
        )

    def delete_jump(self, hook: Union[HookChain, str], target_chain: str, label: str) -> RuleMutation:
        """Delete a jump previously added by :meth:`jump`."""
        return RuleMutation(
            operation=Operation.DELETE,
            chain=_hook(hook).value,
            target=target_chain,
            comment=self.format_comment(label),
            label=label,
        )

    # =========================================================================
    # Diagnostics
    # =========================================================================

    @staticmethod
    def show_all_rules() -> RuleMutation:
        """Dump the whole rule table in restorable form."""
        return RuleMutation(operation=Operation.DUMP, label="show-all-rules")
