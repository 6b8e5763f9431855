"""Agent commands: run, sync, plan, status.

Commands:
- lsh-agent run     Reconcile on a fixed interval until SIGTERM/SIGINT
- lsh-agent sync    One reconciliation cycle
- lsh-agent plan    Show what a cycle would change
- lsh-agent status  Show ufw rules and which ones the agent owns
"""

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer

from lsh_agent.core import (
    AgentError,
    AuditEventType,
    AuditLogger,
    AuditResult,
    CommandExecutor,
    ExecutionContext,
    configure_audit_logger,
    console,
    create_context,
)
from lsh_agent.core.config import DEFAULT_CONFIG_PATH
from lsh_agent.services.latitude import ApiRuleSource, LatitudeClient
from lsh_agent.services.reconciler import Reconciler, ReconciliationLoop
from lsh_agent.services.ufw import UfwService


ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        dir_okay=False,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
]

QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only show warnings and errors"),
]

NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]


@dataclass
class AgentComponents:
    """Wired-up services for one agent invocation."""
    ctx: ExecutionContext
    audit: AuditLogger
    client: LatitudeClient
    ufw: UfwService
    reconciler: Reconciler
    stop_event: threading.Event


def _get_context(
    *,
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create context and apply the configured log level."""
    ctx = create_context(
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )
    ctx.apply_logging_config(explicit_verbosity=bool(verbose or quiet))
    return ctx


def _check_root(ctx: ExecutionContext) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with: sudo lsh-agent ...")
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


def build_components(
    ctx: ExecutionContext,
    stop_event: Optional[threading.Event] = None,
) -> AgentComponents:
    """Create the client, ufw service and reconciler from configuration."""
    app_config = ctx.config
    firewall = app_config.firewall
    stop_event = stop_event or threading.Event()

    audit = configure_audit_logger(
        log_path=app_config.logging.audit_log,
        enabled=app_config.logging.audit_enabled,
    )

    executor = CommandExecutor(
        ctx,
        use_sudo=firewall.use_sudo,
        default_timeout=firewall.command_timeout_seconds,
    )
    ufw = UfwService(
        ctx,
        executor,
        ufw_binary=firewall.ufw_binary,
        stop_event=stop_event,
        timeout=firewall.command_timeout_seconds,
    )
    client = LatitudeClient(
        ctx,
        api_endpoint=app_config.latitude.api_endpoint,
        public_ip=app_config.latitude.public_ip,
        bearer_token=app_config.bearer_token,
        timeout=app_config.latitude.request_timeout_seconds,
        stop_event=stop_event,
    )
    reconciler = Reconciler(
        ApiRuleSource(client, firewall.output_file),
        ufw,
        console=ctx.console,
        audit=audit,
        case_sensitive=firewall.case_sensitive,
        stop_event=stop_event,
        dry_run=ctx.dry_run,
    )

    return AgentComponents(
        ctx=ctx,
        audit=audit,
        client=client,
        ufw=ufw,
        reconciler=reconciler,
        stop_event=stop_event,
    )


def _log_startup(ctx: ExecutionContext) -> None:
    app_config = ctx.config
    ctx.console.info("Starting Latitude.sh agent")
    ctx.console.verbose(f"Project ID: {app_config.latitude.project_id}")
    ctx.console.verbose(f"Firewall ID: {app_config.latitude.firewall_id}")
    ctx.console.verbose(f"API endpoint: {app_config.latitude.api_endpoint}")
    ctx.console.verbose(f"Interval: {app_config.agent.interval}")
    if not app_config.bearer_token:
        ctx.console.warn("LATITUDESH_AUTH_TOKEN is not set, requests are sent unauthenticated")


# =============================================================================
# run
# =============================================================================

def run(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Run the agent until stopped.

    Reconciles the ufw allow-list with the Latitude.sh firewall policy at
    startup and then every [bold]agent.interval[/bold]. SIGTERM or SIGINT
    lets the current rule change finish, reloads ufw if needed, and exits.

    [bold]Examples:[/bold]

        sudo lsh-agent run
        sudo lsh-agent run -c /etc/lsh-agent/config.yaml -v
    """
    ctx = _get_context(verbose=verbose, quiet=quiet, no_color=no_color, config=config)
    _check_root(ctx)

    try:
        app_config = ctx.config
        app_config.validate_runtime()
        _log_startup(ctx)

        if not app_config.firewall.enabled:
            ctx.console.warn("Firewall synchronization is disabled (firewall.enabled: false), nothing to do")
            raise typer.Exit(0)

        components = build_components(ctx)
        components.audit.log_operation(
            AuditEventType.AGENT_START,
            AuditResult.SUCCESS,
            target_type="agent",
            target_name="lsh-agent",
            operation="run",
            parameters={"interval": app_config.agent.interval},
        )

        # Non-fatal: the loop retries on every tick anyway
        components.client.health_check()

        loop = ReconciliationLoop(
            components.reconciler,
            interval=app_config.agent.interval_seconds,
            stop_event=components.stop_event,
            console=ctx.console,
        )
        loop.install_signal_handlers()
        try:
            loop.run_forever()
        finally:
            loop.restore_signal_handlers()
            components.client.close()
            components.audit.log_operation(
                AuditEventType.AGENT_STOP,
                AuditResult.SUCCESS,
                target_type="agent",
                target_name="lsh-agent",
                operation="run",
                parameters={
                    "cycles_run": loop.cycles_run,
                    "skipped_triggers": loop.skipped_triggers,
                },
            )

        ctx.console.info("Agent stopped")

    except AgentError as e:
        _handle_error(e)


# =============================================================================
# sync
# =============================================================================

def sync(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done"),
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Run a single reconciliation cycle.

    Exits 0 if the firewall now matches the policy, 1 otherwise.

    [bold]Examples:[/bold]

        sudo lsh-agent sync
        lsh-agent sync --dry-run
    """
    ctx = _get_context(dry_run=dry_run, verbose=verbose, quiet=quiet, no_color=no_color, config=config)
    _check_root(ctx)

    try:
        app_config = ctx.config
        app_config.validate_runtime()

        if not app_config.firewall.enabled:
            ctx.console.warn("Firewall synchronization is disabled (firewall.enabled: false)")
            raise typer.Exit(0)

        components = build_components(ctx)
        try:
            outcome = components.reconciler.run_cycle("manual")
        finally:
            components.client.close()

    except AgentError as e:
        _handle_error(e)

    raise typer.Exit(0 if outcome.success else 1)


# =============================================================================
# plan
# =============================================================================

def plan(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show the changes the next cycle would make.

    Fetches the policy and reads ufw, but changes nothing.

    [bold]Examples:[/bold]

        sudo lsh-agent plan
    """
    ctx = _get_context(dry_run=True, verbose=verbose, no_color=no_color, config=config)

    try:
        ctx.config.validate_runtime()
        components = build_components(ctx)
        try:
            reconciliation_plan = components.reconciler.compute_plan()
        finally:
            components.client.close()

    except AgentError as e:
        _handle_error(e)

    if reconciliation_plan.is_empty:
        ctx.console.success("Firewall rules are up to date, nothing to change")
        return

    rows = [["add", rule.source, rule.protocol, rule.port] for rule in reconciliation_plan.to_add]
    rows += [["remove", rule.source, rule.protocol, rule.port] for rule in reconciliation_plan.to_remove]
    ctx.console.table(
        "Planned Changes",
        ["Action", "From", "Protocol", "Port"],
        rows,
    )
    ctx.console.info(
        f"{len(reconciliation_plan.to_add)} to add, {len(reconciliation_plan.to_remove)} to remove"
    )


# =============================================================================
# status
# =============================================================================

def status(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show ufw rules and the ones managed by the agent.

    [bold]Examples:[/bold]

        sudo lsh-agent status
    """
    ctx = _get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        components = build_components(ctx)
        components.ufw.check_binary()

        numbered = components.ufw.status_numbered()
        ctx.console.print()
        ctx.console.print("[bold]ufw status numbered[/bold]")
        ctx.console.raw(numbered.rstrip())
        ctx.console.print()

        ufw_status = components.ufw.status()

    except AgentError as e:
        _handle_error(e)

    if not ufw_status.active:
        ctx.console.warn("UFW is inactive")
        return

    rows = [[rule.source, rule.protocol, rule.port] for rule in ufw_status.rules]
    ctx.console.table("Managed Allow Rules", ["From", "Protocol", "Port"], rows)

    if ufw_status.ignored:
        ctx.console.info(f"{len(ufw_status.ignored)} rule line(s) not managed by the agent")
        for line in ufw_status.ignored:
            ctx.console.verbose(f"  {line}")
