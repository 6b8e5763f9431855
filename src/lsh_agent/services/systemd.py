"""Systemd service abstraction.

Provides a safe interface for installing and managing the agent's
systemd unit.
"""

from pathlib import Path
from typing import Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from lsh_agent.core.context import ExecutionContext
from lsh_agent.core.executor import CommandExecutor
from lsh_agent.core.exceptions import ExecutionError, ServiceError


# Standard systemd paths
SYSTEMD_SYSTEM_DIR = Path("/etc/systemd/system")

AGENT_SERVICE_NAME = "lsh-agent.service"
UNIT_TEMPLATE = "systemd/lsh-agent.service.j2"


def _get_template_env() -> Environment:
    """Get Jinja2 template environment."""
    return Environment(
        loader=PackageLoader("lsh_agent", "templates"),
        autoescape=select_autoescape(),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_agent_unit(
    exec_path: str,
    config_path: Path,
    env_file: Path,
    description: str = "Latitude.sh Firewall Agent",
) -> str:
    """Render the agent's systemd unit file.

    Args:
        exec_path: Absolute path of the lsh-agent executable
        config_path: Configuration file passed with --config
        env_file: Optional EnvironmentFile with secrets and overrides
        description: Unit description

    Returns:
        Unit file content
    """
    template = _get_template_env().get_template(UNIT_TEMPLATE)
    return template.render(
        description=description,
        exec_path=exec_path,
        config_path=str(config_path),
        env_file=str(env_file),
    )


class SystemdService:
    """Safe interface for managing systemd services.

    All operations respect dry-run mode and log appropriately.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        unit_dir: Path = SYSTEMD_SYSTEM_DIR,
    ) -> None:
        """Initialize systemd service manager.

        Args:
            ctx: Execution context
            executor: Command executor
            unit_dir: Directory unit files are written to
        """
        self.ctx = ctx
        self.executor = executor
        self.unit_dir = unit_dir

    def is_active(self, service: str) -> bool:
        """Check if a service is active (running)."""
        if self.ctx.dry_run:
            return False

        result = self.executor.run(
            ["systemctl", "is-active", "--quiet", service],
            check=False,
        )
        return result.success

    def is_enabled(self, service: str) -> bool:
        """Check if a service is enabled."""
        if self.ctx.dry_run:
            return False

        result = self.executor.run(
            ["systemctl", "is-enabled", "--quiet", service],
            check=False,
        )
        return result.success

    def stop(self, service: str, *, description: Optional[str] = None) -> None:
        """Stop a service.

        Raises:
            ServiceError: If service fails to stop
        """
        desc = description or f"Stopping {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl stop {service}")
            return

        try:
            self.executor.run(["systemctl", "stop", service])
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to stop {service}",
                service=service,
                details=e.details,
            ) from e

    def enable(
        self,
        service: str,
        *,
        start: bool = False,
        description: Optional[str] = None,
    ) -> None:
        """Enable a service to start on boot.

        Args:
            service: Service name
            start: Also start the service now
            description: Optional description for logging

        Raises:
            ServiceError: If systemctl fails
        """
        desc = description or f"Enabling {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            cmd = "systemctl enable --now" if start else "systemctl enable"
            self.ctx.console.dry_run_msg(f"{cmd} {service}")
            return

        args = ["systemctl", "enable"]
        if start:
            args.append("--now")
        args.append(service)

        try:
            self.executor.run(args)
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to enable {service}",
                service=service,
                hint=f"Check logs: journalctl -xeu {service}",
                details=e.details,
            ) from e

    def disable(self, service: str, *, description: Optional[str] = None) -> None:
        """Disable a service from starting on boot."""
        desc = description or f"Disabling {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl disable {service}")
            return

        self.executor.run(["systemctl", "disable", service], check=False)

    def daemon_reload(self) -> None:
        """Reload systemd daemon configuration."""
        self.ctx.console.step("Reloading systemd daemon")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg("systemctl daemon-reload")
            return

        self.executor.run(["systemctl", "daemon-reload"])

    def install_service(
        self,
        name: str,
        content: str,
        *,
        enable: bool = True,
        start: bool = False,
    ) -> Path:
        """Install a systemd service unit file.

        Writes the unit, reloads the daemon and optionally enables/starts it.

        Args:
            name: Service name (e.g., "lsh-agent" or "lsh-agent.service")
            content: Content of the service file
            enable: Whether to enable the service after installation
            start: Whether to start the service after installation

        Returns:
            Path to the created service file
        """
        if not name.endswith(".service"):
            name = f"{name}.service"

        service_path = self.unit_dir / name

        try:
            self.executor.write_file(
                service_path,
                content,
                description=f"Installing service {name}",
                permissions=0o644,
            )
        except OSError as e:
            raise ServiceError(
                f"Cannot write unit file {service_path}",
                service=name,
                hint="Run with sudo",
                details=[str(e)],
            ) from e

        self.daemon_reload()

        if enable:
            self.enable(name, start=start)

        return service_path

    def remove_service(self, name: str) -> bool:
        """Stop, disable and remove a unit file.

        Returns:
            True if service was removed, False if it didn't exist
        """
        if not name.endswith(".service"):
            name = f"{name}.service"

        service_path = self.unit_dir / name
        self.ctx.console.step(f"Removing service {name}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Would stop and disable {name}")
            self.ctx.console.dry_run_msg(f"Would remove {service_path}")
            return service_path.exists()

        if not service_path.exists():
            return False

        if self.is_active(name):
            self.stop(name)

        if self.is_enabled(name):
            self.disable(name)

        service_path.unlink()
        self.daemon_reload()

        return True
