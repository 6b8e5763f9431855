"""Tests for ufw status parsing and the ufw service."""

import threading
from pathlib import Path
from unittest.mock import Mock

import pytest

from lsh_agent.core.exceptions import (
    CommandError,
    CycleCancelled,
    ExecutionError,
    FirewallError,
    ParseError,
    PrerequisiteError,
)
from lsh_agent.core.executor import CommandResult
from lsh_agent.services.rules import CanonicalRule
from lsh_agent.services.ufw import (
    UfwService,
    add_rule_args,
    parse_ufw_status,
    remove_rule_args,
)


ACTIVE_STATUS = """\
Status: active

To                         Action      From
--                         ------      ----
22/tcp                     ALLOW       Anywhere
80                         ALLOW       10.0.0.0/8
443/tcp                    ALLOW IN    192.168.1.0/24             # web
6000:6007/udp              ALLOW       Anywhere
Anywhere                   ALLOW       203.0.113.5
25/tcp                     DENY        Anywhere
53 on eth0                 ALLOW       Anywhere
OpenSSH                    ALLOW       Anywhere
8080/tcp                   ALLOW OUT   Anywhere
22/tcp (v6)                ALLOW       Anywhere (v6)
"""


class TestParseUfwStatus:
    """Tests for parse_ufw_status()."""

    def test_active_rules(self):
        """Should parse plain incoming ALLOW rules."""
        status = parse_ufw_status(ACTIVE_STATUS)

        assert status.active
        assert status.rules == [
            CanonicalRule("any", "tcp", "22"),
            CanonicalRule("10.0.0.0/8", "any", "80"),
            CanonicalRule("192.168.1.0/24", "tcp", "443"),
            CanonicalRule("any", "udp", "6000:6007"),
            CanonicalRule("203.0.113.5", "any", "any"),
        ]

    def test_unowned_lines_ignored(self):
        """Should skip deny, interface, profile, outgoing and IPv6 lines."""
        status = parse_ufw_status(ACTIVE_STATUS)

        assert len(status.ignored) == 5
        assert any("(v6)" in line for line in status.ignored)
        assert any("OpenSSH" in line for line in status.ignored)

    def test_v6_never_contributes(self):
        """Should drop IPv6 duplicates even when the v4 rule is absent."""
        output = (
            "Status: active\n\n"
            "To                         Action      From\n"
            "--                         ------      ----\n"
            "3306/tcp (v6)              ALLOW       Anywhere (v6)\n"
        )
        assert parse_ufw_status(output).rules == []

    def test_inactive(self):
        """Should report an inactive firewall with no rules."""
        status = parse_ufw_status("Status: inactive\n")

        assert not status.active
        assert status.rules == []

    def test_active_without_rules(self):
        """Should accept an active firewall with an empty table."""
        status = parse_ufw_status("Status: active\n")

        assert status.active
        assert status.rules == []

    def test_lines_before_header_skipped(self):
        """Should ignore verbose preamble lines."""
        output = (
            "Status: active\n"
            "Logging: on (low)\n"
            "Default: deny (incoming), allow (outgoing), disabled (routed)\n"
            "New profiles: skip\n\n"
            "To                         Action      From\n"
            "--                         ------      ----\n"
            "22/tcp                     ALLOW IN    Anywhere\n"
        )
        status = parse_ufw_status(output)

        assert status.rules == [CanonicalRule("any", "tcp", "22")]
        assert status.ignored == []

    def test_anywhere_with_protocol(self):
        """Should read Anywhere/proto as any port for that protocol."""
        output = (
            "Status: active\n\n"
            "To                         Action      From\n"
            "--                         ------      ----\n"
            "Anywhere/udp               ALLOW       10.0.0.1\n"
        )
        assert parse_ufw_status(output).rules == [CanonicalRule("10.0.0.1", "udp", "any")]

    def test_missing_status_line(self):
        """Should raise ParseError on unrecognized output."""
        with pytest.raises(ParseError, match="Status"):
            parse_ufw_status("ERROR: problem running iptables\n")


class TestRuleArgs:
    """Tests for ufw argument builders."""

    def test_add_full(self):
        """Should build allow with proto, source and port."""
        rule = CanonicalRule("10.0.0.0/8", "tcp", "22")
        assert add_rule_args(rule) == [
            "allow", "proto", "tcp", "from", "10.0.0.0/8", "to", "any", "port", "22",
        ]

    def test_add_any_protocol(self):
        """Should omit proto for any protocol."""
        rule = CanonicalRule("any", "any", "80")
        assert add_rule_args(rule) == ["allow", "from", "any", "to", "any", "port", "80"]

    def test_add_any_port(self):
        """Should omit port for any port."""
        rule = CanonicalRule("203.0.113.5", "any", "any")
        assert add_rule_args(rule) == ["allow", "from", "203.0.113.5", "to", "any"]

    def test_remove_full(self):
        """Should build delete allow with proto last."""
        rule = CanonicalRule("any", "udp", "53")
        assert remove_rule_args(rule) == [
            "delete", "allow", "from", "any", "to", "any", "port", "53", "proto", "udp",
        ]

    def test_remove_any_protocol(self):
        """Should omit proto for any protocol."""
        rule = CanonicalRule("any", "any", "80")
        assert remove_rule_args(rule) == ["delete", "allow", "from", "any", "to", "any", "port", "80"]


class TestUfwService:
    """Tests for UfwService with a mocked executor."""

    @pytest.fixture
    def mock_ctx(self):
        ctx = Mock()
        ctx.dry_run = False
        ctx.console = Mock()
        return ctx

    @pytest.fixture
    def executor(self):
        executor = Mock()
        executor.run.return_value = CommandResult(
            command=["/usr/sbin/ufw", "status"],
            return_code=0,
            stdout=ACTIVE_STATUS,
            stderr="",
        )
        return executor

    def test_list_rules(self, mock_ctx, executor):
        """Should probe ufw status read-only and build a rule set."""
        service = UfwService(mock_ctx, executor, ufw_binary=Path("/usr/sbin/ufw"))

        rules = service.list_rules()

        assert len(rules) == 5
        assert rules.contains(CanonicalRule("any", "tcp", "22"))
        args, kwargs = executor.run.call_args
        assert args[0] == ["/usr/sbin/ufw", "status"]
        assert kwargs["read_only"] is True

    def test_list_rules_passes_stop_event(self, mock_ctx, executor):
        """Should make the probe cancellable."""
        stop = threading.Event()
        service = UfwService(mock_ctx, executor, stop_event=stop)

        service.list_rules()

        assert executor.run.call_args.kwargs["cancel_event"] is stop

    def test_inactive_warns(self, mock_ctx, executor):
        """Should warn and return an empty set when ufw is inactive."""
        executor.run.return_value = CommandResult(["ufw"], 0, "Status: inactive\n", "")
        service = UfwService(mock_ctx, executor)

        assert len(service.list_rules()) == 0
        mock_ctx.console.warn.assert_called_once()

    def test_probe_failure(self, mock_ctx, executor):
        """Should wrap probe failures in FirewallError."""
        executor.run.side_effect = ExecutionError("Command failed", return_code=1)
        service = UfwService(mock_ctx, executor)

        with pytest.raises(FirewallError):
            service.status()

    def test_probe_cancelled(self, mock_ctx, executor):
        """Should let cancellation propagate unchanged."""
        executor.run.side_effect = CycleCancelled("Stop requested")
        service = UfwService(mock_ctx, executor)

        with pytest.raises(CycleCancelled):
            service.status()

    def test_add_rule(self, mock_ctx, executor):
        """Should run ufw allow."""
        service = UfwService(mock_ctx, executor, ufw_binary=Path("/usr/sbin/ufw"), timeout=60)

        service.add_rule(CanonicalRule("any", "tcp", "22"))

        executor.run.assert_called_once_with(
            ["/usr/sbin/ufw", "allow", "proto", "tcp", "from", "any", "to", "any", "port", "22"],
            timeout=60,
        )

    def test_remove_rule_failure(self, mock_ctx, executor):
        """Should raise CommandError carrying the rule and exit code."""
        executor.run.side_effect = ExecutionError(
            "Command failed",
            command="ufw delete allow from any to any port 80",
            return_code=1,
            stderr="Could not delete non-existent rule",
        )
        service = UfwService(mock_ctx, executor)

        with pytest.raises(CommandError) as exc_info:
            service.remove_rule(CanonicalRule("any", "any", "80"))

        assert exc_info.value.rule == "ALLOW 80 from any"
        assert exc_info.value.return_code == 1
        assert "Could not delete" in exc_info.value.stderr

    def test_commit(self, mock_ctx, executor):
        """Should run ufw reload."""
        service = UfwService(mock_ctx, executor, ufw_binary=Path("/usr/sbin/ufw"))

        service.commit()

        assert executor.run.call_args.args[0] == ["/usr/sbin/ufw", "reload"]

    def test_check_binary_missing(self, mock_ctx, executor, tmp_path):
        """Should raise PrerequisiteError for a missing binary."""
        service = UfwService(mock_ctx, executor, ufw_binary=tmp_path / "ufw")

        with pytest.raises(PrerequisiteError):
            service.check_binary()

    def test_check_binary_present(self, mock_ctx, executor, tmp_path):
        """Should accept an existing binary."""
        binary = tmp_path / "ufw"
        binary.touch()
        service = UfwService(mock_ctx, executor, ufw_binary=binary)

        service.check_binary()
