"""Tests for the lsh-agent CLI."""

from unittest.mock import Mock, patch

import pytest
import yaml
from typer.testing import CliRunner

from lsh_agent import __version__
from lsh_agent.cli import app
from lsh_agent.core.audit import AuditLogger
from lsh_agent.services.diff import ReconciliationPlan
from lsh_agent.services.rules import CanonicalRule
from lsh_agent.services.ufw import parse_ufw_status


runner = CliRunner()

ENV_VARS = [
    "LATITUDESH_AUTH_TOKEN",
    "PROJECT_ID",
    "FIREWALL_ID",
    "PUBLIC_IP",
    "AGENT_INTERVAL",
    "LOG_LEVEL",
    "UFW_BINARY",
    "FIREWALL_ENABLED",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    """A complete configuration pointing at a fake ufw binary."""
    ufw = tmp_path / "ufw"
    ufw.touch()
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "latitude": {"project_id": "proj_1", "firewall_id": "fw_1"},
        "firewall": {"ufw_binary": str(ufw), "output_file": str(tmp_path / "rules.json")},
        "logging": {"audit_enabled": False, "timestamps": False},
    }))
    return path


@pytest.fixture
def components():
    """Mocked agent components returned by build_components."""
    with patch("lsh_agent.commands.agent.build_components") as build:
        mocked = Mock()
        build.return_value = mocked
        yield mocked


class TestRootCommand:
    """Tests for global options."""

    def test_version(self):
        """Should print the version and exit 0."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"lsh-agent version {__version__}" in result.output

    def test_help(self):
        """Should list the agent commands."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("run", "sync", "plan", "status", "config", "service"):
            assert command in result.output


class TestConfigCommands:
    """Tests for config subcommands."""

    def test_example(self):
        """Should print the example configuration."""
        result = runner.invoke(app, ["config", "example"])

        assert result.exit_code == 0
        assert "latitude:" in result.output
        assert "LATITUDESH_AUTH_TOKEN" in result.output

    def test_init(self, tmp_path):
        """Should create a configuration file."""
        path = tmp_path / "config.yaml"

        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 0
        assert path.exists()

    def test_init_existing(self, tmp_path):
        """Should refuse to overwrite without --force."""
        path = tmp_path / "config.yaml"
        path.write_text("agent: {}\n")

        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 2
        assert path.read_text() == "agent: {}\n"

    def test_validate_valid(self, config_file):
        """Should accept a complete configuration."""
        result = runner.invoke(app, ["config", "validate", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_validate_missing_ids(self, tmp_path):
        """Should fail when the project id is missing."""
        path = tmp_path / "config.yaml"
        path.write_text("agent:\n  interval: 30s\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == 2
        assert "PROJECT_ID is required" in result.output

    def test_validate_invalid_value(self, tmp_path):
        """Should fail for an invalid interval."""
        path = tmp_path / "config.yaml"
        path.write_text("agent:\n  interval: soon\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == 2

    def test_show_hides_token(self, config_file, monkeypatch):
        """Should report the token as set without printing it."""
        monkeypatch.setenv("LATITUDESH_AUTH_TOKEN", "very-secret-value")

        result = runner.invoke(app, ["config", "show", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "very-secret-value" not in result.output
        assert "Set" in result.output


class TestSyncCommand:
    """Tests for lsh-agent sync."""

    def test_requires_root(self, config_file):
        """Should exit 6 for non-root users."""
        with patch("os.geteuid", return_value=1000):
            result = runner.invoke(app, ["sync", "--config", str(config_file)])

        assert result.exit_code == 6

    def test_dry_run_skips_root_check(self, config_file, components):
        """Should allow dry-run without root."""
        components.reconciler.run_cycle.return_value = Mock(success=True)

        with patch("os.geteuid", return_value=1000):
            result = runner.invoke(app, ["sync", "--dry-run", "--config", str(config_file)])

        assert result.exit_code == 0

    def test_success(self, config_file, components):
        """Should exit 0 when the cycle succeeds."""
        components.reconciler.run_cycle.return_value = Mock(success=True)

        with patch("os.geteuid", return_value=0):
            result = runner.invoke(app, ["sync", "--config", str(config_file)])

        assert result.exit_code == 0
        components.reconciler.run_cycle.assert_called_once_with("manual")
        components.client.close.assert_called_once()

    def test_failure(self, config_file, components):
        """Should exit 1 when the cycle fails."""
        components.reconciler.run_cycle.return_value = Mock(success=False)

        with patch("os.geteuid", return_value=0):
            result = runner.invoke(app, ["sync", "--config", str(config_file)])

        assert result.exit_code == 1

    def test_missing_ids(self, tmp_path, components):
        """Should exit 2 before building anything when ids are missing."""
        path = tmp_path / "config.yaml"
        path.write_text("{}\n")

        with patch("os.geteuid", return_value=0):
            result = runner.invoke(app, ["sync", "--config", str(path)])

        assert result.exit_code == 2
        components.reconciler.run_cycle.assert_not_called()

    def test_disabled(self, config_file, components, monkeypatch):
        """Should exit 0 without a cycle when synchronization is disabled."""
        monkeypatch.setenv("FIREWALL_ENABLED", "false")

        with patch("os.geteuid", return_value=0):
            result = runner.invoke(app, ["sync", "--config", str(config_file)])

        assert result.exit_code == 0
        components.reconciler.run_cycle.assert_not_called()


class TestRunCommand:
    """Tests for lsh-agent run."""

    def test_runs_loop(self, config_file, components):
        """Should health-check, run the loop and clean up."""
        with patch("os.geteuid", return_value=0), \
             patch("lsh_agent.commands.agent.ReconciliationLoop") as loop_cls:
            loop = loop_cls.return_value
            loop.cycles_run = 3
            loop.skipped_triggers = 0

            result = runner.invoke(app, ["run", "--config", str(config_file)])

        assert result.exit_code == 0
        components.client.health_check.assert_called_once()
        assert loop_cls.call_args.kwargs["interval"] == 30
        loop.install_signal_handlers.assert_called_once()
        loop.run_forever.assert_called_once()
        loop.restore_signal_handlers.assert_called_once()
        components.client.close.assert_called_once()
        assert components.audit.log_operation.call_count == 2

    def test_disabled(self, config_file, components, monkeypatch):
        """Should exit 0 without starting the loop when disabled."""
        monkeypatch.setenv("FIREWALL_ENABLED", "false")

        with patch("os.geteuid", return_value=0), \
             patch("lsh_agent.commands.agent.ReconciliationLoop") as loop_cls:
            result = runner.invoke(app, ["run", "--config", str(config_file)])

        assert result.exit_code == 0
        loop_cls.assert_not_called()


class TestPlanCommand:
    """Tests for lsh-agent plan."""

    def test_shows_changes(self, config_file, components):
        """Should list planned additions and removals."""
        components.reconciler.compute_plan.return_value = ReconciliationPlan(
            to_add=(CanonicalRule("any", "tcp", "22"),),
            to_remove=(CanonicalRule("10.0.0.0/8", "udp", "53"),),
        )

        result = runner.invoke(app, ["plan", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "1 to add, 1 to remove" in result.output

    def test_up_to_date(self, config_file, components):
        """Should report when nothing would change."""
        components.reconciler.compute_plan.return_value = ReconciliationPlan()

        result = runner.invoke(app, ["plan", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "up to date" in result.output


class TestStatusCommand:
    """Tests for lsh-agent status."""

    def test_shows_rules(self, config_file, components):
        """Should print raw status and the managed rules."""
        components.ufw.status_numbered.return_value = "Status: active\n[ 1] 22/tcp ALLOW IN Anywhere\n"
        components.ufw.status.return_value = parse_ufw_status(
            "Status: active\n\n"
            "To                         Action      From\n"
            "--                         ------      ----\n"
            "22/tcp                     ALLOW       Anywhere\n"
            "OpenSSH                    ALLOW       Anywhere\n"
        )

        result = runner.invoke(app, ["status", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Managed Allow Rules" in result.output
        assert "1 rule line(s) not managed" in result.output

    def test_inactive(self, config_file, components):
        """Should warn when ufw is inactive."""
        components.ufw.status_numbered.return_value = "Status: inactive\n"
        components.ufw.status.return_value = parse_ufw_status("Status: inactive\n")

        result = runner.invoke(app, ["status", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "UFW is inactive" in result.output


class TestServiceCommands:
    """Tests for service install/uninstall."""

    @pytest.fixture(autouse=True)
    def quiet_audit(self):
        with patch("lsh_agent.commands.service.get_audit_logger", return_value=AuditLogger(enabled=False)):
            yield

    def test_install_dry_run(self):
        """Should preview the install without root."""
        with patch("os.geteuid", return_value=1000):
            result = runner.invoke(app, ["service", "install", "--dry-run"])

        assert result.exit_code == 0
        assert "lsh-agent.service" in result.output

    def test_install_requires_root(self):
        """Should exit 6 for non-root users."""
        with patch("os.geteuid", return_value=1000):
            result = runner.invoke(app, ["service", "install"])

        assert result.exit_code == 6

    def test_uninstall_dry_run(self):
        """Should preview removal without root."""
        with patch("os.geteuid", return_value=1000):
            result = runner.invoke(app, ["service", "uninstall", "--dry-run"])

        assert result.exit_code == 0
