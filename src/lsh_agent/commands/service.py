"""Systemd unit management commands.

Commands:
- lsh-agent service install
- lsh-agent service uninstall
"""

import os
import shutil
import sys
from pathlib import Path
from typing import Annotated, Optional

import typer

from lsh_agent.core import (
    AgentError,
    AuditEventType,
    AuditResult,
    CommandExecutor,
    ExecutionContext,
    console,
    create_context,
    get_audit_logger,
)
from lsh_agent.core.config import DEFAULT_CONFIG_PATH, LEGACY_ENV_FILE
from lsh_agent.services.systemd import AGENT_SERVICE_NAME, SystemdService, render_agent_unit


app = typer.Typer(
    name="service",
    help="Install or remove the lsh-agent systemd service.",
    no_args_is_help=True,
)


def _check_root(ctx: ExecutionContext) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with: sudo lsh-agent service ...")
        raise typer.Exit(6)


def _handle_error(error: AgentError) -> None:
    """Handle an AgentError by printing formatted error and exiting."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def _agent_executable() -> str:
    """Absolute path of the installed lsh-agent entry point."""
    found = shutil.which("lsh-agent")
    if found:
        return found
    return str(Path(sys.executable).parent / "lsh-agent")


@app.command("install")
def install(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done"),
    ] = False,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help=f"Config file the service uses. Default: {DEFAULT_CONFIG_PATH}"),
    ] = None,
    start: Annotated[
        bool,
        typer.Option("--start/--no-start", help="Start the service after installing"),
    ] = True,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
) -> None:
    """Install and enable the lsh-agent systemd service.

    [bold]Examples:[/bold]

        sudo lsh-agent service install
        lsh-agent service install --dry-run -v
    """
    ctx = create_context(dry_run=dry_run, verbose=verbose, config=config)
    _check_root(ctx)

    executor = CommandExecutor(ctx)
    systemd = SystemdService(ctx, executor)
    audit = get_audit_logger()

    content = render_agent_unit(
        exec_path=_agent_executable(),
        config_path=ctx.config_path,
        env_file=LEGACY_ENV_FILE,
    )
    if ctx.is_verbose:
        ctx.console.code(content, language="ini", title=AGENT_SERVICE_NAME)

    try:
        path = systemd.install_service(AGENT_SERVICE_NAME, content, enable=True, start=start)
    except AgentError as e:
        audit.log_failure(AuditEventType.SERVICE_INSTALL, "service", AGENT_SERVICE_NAME, e.message)
        _handle_error(e)

    if ctx.dry_run:
        audit.log_dry_run(AuditEventType.SERVICE_INSTALL, "service", AGENT_SERVICE_NAME)
        return

    audit.log_success(AuditEventType.SERVICE_INSTALL, "service", AGENT_SERVICE_NAME, message=str(path))
    ctx.console.success(f"Installed {path}")
    if not start:
        ctx.console.hint(f"Start it with: systemctl start {AGENT_SERVICE_NAME}")


@app.command("uninstall")
def uninstall(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done"),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
) -> None:
    """Stop, disable and remove the lsh-agent systemd service.

    The ufw rules the agent applied are left in place.
    """
    ctx = create_context(dry_run=dry_run, verbose=verbose)
    _check_root(ctx)

    executor = CommandExecutor(ctx)
    systemd = SystemdService(ctx, executor)
    audit = get_audit_logger()

    try:
        removed = systemd.remove_service(AGENT_SERVICE_NAME)
    except AgentError as e:
        audit.log_failure(AuditEventType.SERVICE_REMOVE, "service", AGENT_SERVICE_NAME, e.message)
        _handle_error(e)

    if ctx.dry_run:
        audit.log_dry_run(AuditEventType.SERVICE_REMOVE, "service", AGENT_SERVICE_NAME)
        return

    if removed:
        audit.log_operation(
            AuditEventType.SERVICE_REMOVE,
            AuditResult.SUCCESS,
            target_type="service",
            target_name=AGENT_SERVICE_NAME,
            operation="uninstall",
        )
        ctx.console.success(f"Removed {AGENT_SERVICE_NAME}")
    else:
        ctx.console.info(f"{AGENT_SERVICE_NAME} is not installed")
