"""Main CLI entry point using Typer.

This module defines the root CLI application and global options.
Command groups are registered from submodules.
"""

from pathlib import Path
from typing import Optional, Annotated

import typer
from rich.console import Console

from lsh_agent import __version__
from lsh_agent.core.context import ExecutionContext, create_context
from lsh_agent.core.output import console as app_console
from lsh_agent.core.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    get_example_config,
    init_config,
)
from lsh_agent.core.exceptions import AgentError, PrerequisiteError


# Create the main Typer app
app = typer.Typer(
    name="lsh-agent",
    help="Latitude.sh agent - keeps the ufw allow-list in sync with your firewall policy.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)

# Import sub-commands
from lsh_agent.commands import agent as agent_commands
from lsh_agent.commands.service import app as service_app

# Register agent commands
app.command("run")(agent_commands.run)
app.command("sync")(agent_commands.sync)
app.command("plan")(agent_commands.plan)
app.command("status")(agent_commands.status)

# Register command groups
app.add_typer(config_app, name="config")
app.add_typer(service_app, name="service")


# Type aliases for common options
VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Overwrite an existing file.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"lsh-agent version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Latitude.sh agent - firewall rule reconciliation for UFW.

    Fetches this server's firewall policy from the Latitude.sh API and
    adds or removes ufw allow rules until the two match.

    [bold]Examples:[/bold]
        lsh-agent config init
        sudo lsh-agent sync --dry-run
        sudo lsh-agent run
        sudo lsh-agent service install
    """
    pass


def get_context(
    verbose: int = 0,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Create execution context from CLI options."""
    return create_context(
        verbose=verbose,
        no_color=no_color,
        config=config,
    )


def handle_error(error: AgentError) -> None:
    """Handle an AgentError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.details:
        for detail in error.details:
            app_console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


# ============================================================================
# Config commands
# ============================================================================

@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show current configuration.

    Displays the effective configuration: file values with legacy env
    file and environment overrides applied. The API token is not shown.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        app_config = ctx.config

        ctx.console.print()
        ctx.console.print(f"[bold]Configuration file:[/bold] {ctx.config_path}")
        ctx.console.print(f"[bold]File exists:[/bold] {ctx.config_path.exists()}")
        ctx.console.print()

        ctx.console.yaml(app_config.config.to_yaml(), title="Configuration")

        # Show secrets status (not values)
        ctx.console.summary("Secrets (from environment)", {
            "LATITUDESH_AUTH_TOKEN": "Set" if app_config.bearer_token else "Not set",
        })

    except AgentError as e:
        handle_error(e)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Initialize a new configuration file.

    Creates a configuration file with sensible defaults and comments.
    """
    ctx = get_context(no_color=no_color, config=config)
    config_path = ctx.config_path

    try:
        init_config(config_path, force=force)
        ctx.console.success(f"Configuration file created: {config_path}")
        ctx.console.info("Set latitude.project_id and latitude.firewall_id, then run: lsh-agent sync --dry-run")
        ctx.console.hint("Set the API token via the LATITUDESH_AUTH_TOKEN environment variable")

    except AgentError as e:
        handle_error(e)
    except PermissionError:
        handle_error(PrerequisiteError(
            f"Cannot write configuration file: {config_path}",
            hint="Run with sudo",
        ))


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Validate configuration.

    Checks that the configuration file is valid YAML, that all values
    pass validation, and that the agent has what it needs to start.
    """
    ctx = get_context(verbose=verbose, no_color=no_color, config=config)

    try:
        # This will raise ConfigurationError if invalid
        app_config = AppConfig(config_path=ctx.config_path)
        app_config.validate_runtime()

        ctx.console.success(f"Configuration is valid: {ctx.config_path}")

        if ctx.is_verbose:
            ctx.console.yaml(app_config.config.to_yaml())

        # Check for missing recommended settings
        warnings = []

        if not app_config.bearer_token:
            warnings.append("LATITUDESH_AUTH_TOKEN is not set")

        if not app_config.latitude.public_ip:
            warnings.append("latitude.public_ip is not set (PUBLIC_IP)")

        if not app_config.firewall.enabled:
            warnings.append("Firewall synchronization is disabled")

        if warnings:
            ctx.console.print()
            for warning in warnings:
                ctx.console.warn(warning)

    except AgentError as e:
        handle_error(e)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print example configuration file.

    Outputs a complete example configuration with comments.
    """
    ctx = get_context(no_color=no_color)
    ctx.console.raw(get_example_config())
