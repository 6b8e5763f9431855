"""Execution context for commands.

The ExecutionContext holds the current state and flags that affect
how commands are executed. It is passed to all commands and used by
the executor, services and output systems.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Any

from lsh_agent.core.config import AppConfig, DEFAULT_CONFIG_PATH
from lsh_agent.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Execution context passed to all commands.

    Attributes:
        dry_run: If True, show what would happen without executing
        verbosity: Output verbosity level (0-3)
        no_color: If True, disable colored output
        timestamps: If True, prefix console lines with an ISO timestamp
        config_path: Path to configuration file
    """

    # Runtime flags
    dry_run: bool = False
    verbosity: int = 1
    no_color: bool = False
    timestamps: bool = False

    # Configuration
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Internal state (initialized lazily)
    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    # Command-specific context
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Configure console after initialization."""
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
            timestamps=self.timestamps,
        )

    @property
    def config(self) -> AppConfig:
        """Get application configuration (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        """Get console for output."""
        return self._console

    @property
    def is_verbose(self) -> bool:
        """Check if verbose output is enabled."""
        return self.verbosity >= Verbosity.VERBOSE

    def apply_logging_config(self, explicit_verbosity: bool = False) -> None:
        """Reconfigure the console from the loaded logging section.

        The configured level only applies when no -v/-q flag was given.
        """
        logging_config = self.config.logging
        if not explicit_verbosity:
            self.verbosity = Verbosity.from_level(logging_config.level)
        self.timestamps = self.timestamps or logging_config.timestamps
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
            timestamps=self.timestamps,
        )


def create_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    timestamps: bool = False,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        dry_run: Preview changes without executing
        verbose: Increase verbosity (can be repeated)
        quiet: Suppress non-essential output
        no_color: Disable colored output
        config: Path to configuration file
        timestamps: Prefix output lines with timestamps

    Returns:
        Configured execution context
    """
    # Calculate verbosity level
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        verbosity=verbosity,
        no_color=no_color,
        timestamps=timestamps,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
