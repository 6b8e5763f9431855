"""Shared fixtures: in-memory packet filter and rule source."""

import json
from pathlib import Path
from typing import Callable, Iterable, Optional
from unittest.mock import Mock

import pytest

from lsh_agent.core.audit import AuditLogger
from lsh_agent.core.exceptions import AgentError, CommandError, FirewallError
from lsh_agent.services.rules import CanonicalRule, RuleSet, normalize


def rule(port: str = "22", protocol: str = "tcp", source: str = "any") -> CanonicalRule:
    """Shorthand for a canonical allow rule."""
    return normalize(source, protocol, port)


class FakePacketFilter:
    """In-memory stand-in for ufw.

    Records every call in ``calls`` as (operation, rule) tuples.
    """

    def __init__(
        self,
        rules: Iterable[CanonicalRule] = (),
        *,
        fail_add: Iterable[CanonicalRule] = (),
        fail_remove: Iterable[CanonicalRule] = (),
        fail_commit: bool = False,
        fail_list: bool = False,
    ) -> None:
        self.rules: list[CanonicalRule] = list(rules)
        self.fail_add = set(fail_add)
        self.fail_remove = set(fail_remove)
        self.fail_commit = fail_commit
        self.fail_list = fail_list
        self.calls: list[tuple] = []
        self.commits = 0
        # Called after each add/remove, used to simulate a stop request
        self.on_mutate: Optional[Callable[[], None]] = None

    def list_rules(self, case_sensitive: bool = False) -> RuleSet:
        self.calls.append(("list", None))
        if self.fail_list:
            raise FirewallError("ufw status failed")
        return RuleSet.build(self.rules, case_sensitive=case_sensitive)

    def add_rule(self, rule: CanonicalRule) -> None:
        self.calls.append(("add", rule))
        if rule in self.fail_add:
            raise CommandError(f"ufw allow {rule} failed", rule=str(rule), return_code=1)
        self.rules.append(rule)
        if self.on_mutate:
            self.on_mutate()

    def remove_rule(self, rule: CanonicalRule) -> None:
        self.calls.append(("remove", rule))
        if rule in self.fail_remove:
            raise CommandError(f"ufw delete {rule} failed", rule=str(rule), return_code=1)
        self.rules = [r for r in self.rules if r.key() != rule.key()]
        if self.on_mutate:
            self.on_mutate()

    def commit(self) -> None:
        self.calls.append(("commit", None))
        if self.fail_commit:
            raise CommandError("ufw reload failed", return_code=1)
        self.commits += 1

    def status_numbered(self) -> str:
        self.calls.append(("status", None))
        return "Status: active\n" + "\n".join(
            f"[{i:2}] {rule.display()}" for i, rule in enumerate(self.rules, 1)
        )

    @property
    def mutations(self) -> list[tuple]:
        """Calls that change the filter."""
        return [call for call in self.calls if call[0] not in ("list", "status")]


class FakeRuleSource:
    """Desired-rule source returning a fixed list or raising an error."""

    def __init__(self, rules: Iterable[CanonicalRule] = (), error: Optional[AgentError] = None) -> None:
        self.rules = list(rules)
        self.error = error
        self.fetches = 0

    def fetch(self) -> list[CanonicalRule]:
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return list(self.rules)


@pytest.fixture
def mock_console():
    """Console double that records output calls."""
    return Mock()


@pytest.fixture
def audit(tmp_path):
    """Audit logger writing to a temporary file."""
    return AuditLogger(log_path=tmp_path / "audit.log")


def read_audit_events(path: Path) -> list[dict]:
    """Parse every JSON line of an audit log."""
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]
