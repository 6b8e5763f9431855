"""UFW packet-filter service.

Reads the active allow-list from ``ufw status`` and issues
``ufw allow`` / ``ufw delete allow`` / ``ufw reload``.

Only plain incoming ALLOW rules are owned by the agent. Lines for
IPv6 duplicates, outgoing rules, interface-bound rules, application
profiles and multi-port lists are left untouched.
"""

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from lsh_agent.core.context import ExecutionContext
from lsh_agent.core.exceptions import (
    CommandError,
    ExecutionError,
    FirewallError,
    ParseError,
    PrerequisiteError,
)
from lsh_agent.core.executor import CommandExecutor
from lsh_agent.services.rules import CanonicalRule, RuleSet, is_any, normalize


DEFAULT_UFW_BINARY = Path("/usr/sbin/ufw")
ANY_SOURCE = "any"

# "<to>  ALLOW [IN]  <from>"
RULE_LINE_PATTERN = re.compile(
    r"^(?P<to>.+?)\s+(?P<action>ALLOW|DENY|REJECT|LIMIT)(?:\s+(?P<direction>IN|OUT|FWD))?\s+(?P<from>.+)$"
)

# 22/tcp, 6000:6010/udp, 80, Anywhere/tcp, Anywhere
TO_PATTERN = re.compile(
    r"^(?:(?P<port>\d+(?::\d+)?)|(?P<anywhere>Anywhere))(?:/(?P<protocol>[a-z]+))?$"
)

STATUS_PATTERN = re.compile(r"^Status:\s*(?P<status>\S+)", re.IGNORECASE)


@dataclass
class UfwStatus:
    """Parsed ``ufw status`` output."""
    active: bool
    rules: list[CanonicalRule] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)


def _parse_rule_line(line: str) -> Optional[CanonicalRule]:
    """Parse one listing line, returning None if the agent doesn't own it."""
    if "(v6)" in line:
        return None

    # Strip trailing "# comment"
    line = line.split("#", 1)[0].strip()
    if not line:
        return None

    match = RULE_LINE_PATTERN.match(line)
    if not match:
        return None
    if match.group("action") != "ALLOW" or match.group("direction") not in (None, "IN"):
        return None

    to = TO_PATTERN.match(match.group("to").strip())
    if not to:
        return None

    source = match.group("from").strip()
    if len(source.split()) != 1:
        return None

    return normalize(source, to.group("protocol"), to.group("port"))


def parse_ufw_status(output: str) -> UfwStatus:
    """Parse ``ufw status`` output.

    Args:
        output: Raw command output

    Returns:
        UfwStatus with owned rules and the rule lines that were skipped

    Raises:
        ParseError: If the output has no "Status:" line
    """
    status: Optional[str] = None
    in_table = False
    rules: list[CanonicalRule] = []
    ignored: list[str] = []

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        status_match = STATUS_PATTERN.match(line)
        if status_match:
            status = status_match.group("status").lower()
            continue

        if line.startswith("To") and "Action" in line:
            in_table = True
            continue
        if set(line) <= {"-", " "}:
            continue
        if not in_table:
            continue

        rule = _parse_rule_line(line)
        if rule is None:
            ignored.append(line)
        else:
            rules.append(rule)

    if status is None:
        raise ParseError(
            "Unrecognized ufw status output (no 'Status:' line)",
            payload=output,
        )

    if status != "active":
        return UfwStatus(active=False)

    return UfwStatus(active=True, rules=rules, ignored=ignored)


def add_rule_args(rule: CanonicalRule) -> list[str]:
    """Arguments for ``ufw allow [proto P] from F to any [port N]``."""
    args = ["allow"]
    if not is_any(rule.protocol):
        args.extend(["proto", rule.protocol])
    args.extend(["from", ANY_SOURCE if is_any(rule.source) else rule.source, "to", "any"])
    if not is_any(rule.port):
        args.extend(["port", rule.port])
    return args


def remove_rule_args(rule: CanonicalRule) -> list[str]:
    """Arguments for ``ufw delete allow from F to any [port N] [proto P]``."""
    args = ["delete", "allow", "from", ANY_SOURCE if is_any(rule.source) else rule.source, "to", "any"]
    if not is_any(rule.port):
        args.extend(["port", rule.port])
    if not is_any(rule.protocol):
        args.extend(["proto", rule.protocol])
    return args


class UfwService:
    """Packet-filter implementation backed by the ufw CLI.

    Read-only probes honour the stop event (the child is killed);
    mutating commands always run to completion.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        ufw_binary: Path = DEFAULT_UFW_BINARY,
        stop_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Initialize ufw service.

        Args:
            ctx: Execution context
            executor: Command executor
            ufw_binary: Path to the ufw executable
            stop_event: Cancels in-flight status probes when set
            timeout: Per-command timeout in seconds
        """
        self.ctx = ctx
        self.executor = executor
        self.ufw_binary = ufw_binary
        self.stop_event = stop_event
        self.timeout = timeout

    def _command(self, args: list[str]) -> list[str]:
        return [str(self.ufw_binary)] + args

    def check_binary(self) -> None:
        """Raise PrerequisiteError if the ufw binary is missing."""
        if not self.ufw_binary.exists():
            raise PrerequisiteError(
                f"UFW binary not found at {self.ufw_binary}",
                hint="Install ufw (apt-get install ufw) or set firewall.ufw_binary",
            )

    # =========================================================================
    # Read path
    # =========================================================================

    def _probe(self, args: list[str]) -> str:
        try:
            result = self.executor.run(
                self._command(args),
                read_only=True,
                timeout=self.timeout,
                cancel_event=self.stop_event,
            )
        except ExecutionError as e:
            raise FirewallError(
                f"Failed to read ufw state: {e}",
                hint="Check that ufw is installed and the agent runs as root",
                details=e.details,
            ) from e
        return result.stdout

    def status(self) -> UfwStatus:
        """Run ``ufw status`` and parse it."""
        return parse_ufw_status(self._probe(["status"]))

    def status_numbered(self) -> str:
        """Raw ``ufw status numbered`` output for display."""
        return self._probe(["status", "numbered"])

    def list_rules(self, case_sensitive: bool = False) -> RuleSet:
        """Currently owned allow rules."""
        status = self.status()
        if not status.active:
            self.ctx.console.warn("UFW is inactive, treating current rule set as empty")
        for line in status.ignored:
            self.ctx.console.debug(f"Ignoring unmanaged ufw rule: {line}")
        return RuleSet.build(status.rules, case_sensitive=case_sensitive)

    # =========================================================================
    # Write path
    # =========================================================================

    def _mutate(self, args: list[str], description: str, rule: Optional[CanonicalRule] = None) -> None:
        try:
            self.executor.run(self._command(args), timeout=self.timeout)
        except ExecutionError as e:
            raise CommandError(
                f"{description} failed",
                rule=str(rule) if rule else None,
                command=e.command,
                return_code=e.return_code,
                stderr=e.stderr,
            ) from e

    def add_rule(self, rule: CanonicalRule) -> None:
        """Run ``ufw allow`` for the rule.

        Raises:
            CommandError: If ufw exits non-zero
        """
        self._mutate(add_rule_args(rule), f"ufw allow {rule}", rule)

    def remove_rule(self, rule: CanonicalRule) -> None:
        """Run ``ufw delete allow`` for the rule.

        Raises:
            CommandError: If ufw exits non-zero
        """
        self._mutate(remove_rule_args(rule), f"ufw delete {rule}", rule)

    def commit(self) -> None:
        """Run ``ufw reload``.

        Raises:
            CommandError: If ufw exits non-zero
        """
        self._mutate(["reload"], "ufw reload")
