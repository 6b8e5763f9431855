"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Legacy env file and environment variable overrides
- Configuration initialization and display
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lsh_agent.core.exceptions import AgentError, ConfigurationError, PrerequisiteError
from lsh_agent.core.output import LOG_LEVELS
from lsh_agent.core.validation import (
    parse_duration,
    validate_duration,
    validate_ip_address,
    validate_path,
    validate_url,
)


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/lsh-agent/config.yaml")
LEGACY_ENV_FILE = Path("/etc/lsh-agent/env")
DEFAULT_AUDIT_LOG = Path("/var/log/lsh-agent/audit.log")
DEFAULT_API_ENDPOINT = "https://api.latitude.sh/agent/ping"


class AgentSection(BaseModel):
    """General agent settings."""

    interval: str = "30s"

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        return validate_duration(v)

    @property
    def interval_seconds(self) -> float:
        return parse_duration(self.interval)


class LatitudeConfig(BaseModel):
    """Latitude.sh API settings.

    The bearer token is not part of this model; it only comes from
    the environment (LATITUDESH_AUTH_TOKEN).
    """

    api_endpoint: str = DEFAULT_API_ENDPOINT
    project_id: str = ""
    firewall_id: str = ""
    public_ip: str = ""
    request_timeout: str = "30s"

    @field_validator("api_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        return validate_url(v)

    @field_validator("public_ip")
    @classmethod
    def validate_public_ip(cls, v: str) -> str:
        if v:
            return validate_ip_address(v)
        return v

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        return validate_duration(v)

    @property
    def request_timeout_seconds(self) -> float:
        return parse_duration(self.request_timeout)


class FirewallConfig(BaseModel):
    """UFW synchronization settings."""

    enabled: bool = True
    ufw_binary: Path = Path("/usr/sbin/ufw")
    case_sensitive: bool = False
    use_sudo: bool = False
    command_timeout: str = "60s"
    output_file: Path = Path("/tmp/lsh_firewall.json")

    @field_validator("ufw_binary", "output_file")
    @classmethod
    def validate_absolute(cls, v: Path) -> Path:
        validate_path(str(v))
        return v

    @field_validator("command_timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        return validate_duration(v)

    @property
    def command_timeout_seconds(self) -> float:
        return parse_duration(self.command_timeout)


class LoggingConfig(BaseModel):
    """Console and audit log settings."""

    level: str = "info"
    audit_log: Path = DEFAULT_AUDIT_LOG
    audit_enabled: bool = True
    timestamps: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of: {sorted(LOG_LEVELS)}")
        return level


class MachineConfig(BaseModel):
    """Root configuration model, loaded from /etc/lsh-agent/config.yaml.

    Secrets are NOT stored in this file - they come from environment variables.
    """

    agent: AgentSection = Field(default_factory=AgentSection)
    latitude: LatitudeConfig = Field(default_factory=LatitudeConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, path: Path) -> "MachineConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: lsh-agent config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MachineConfig":
        """Build configuration from a plain mapping.

        Raises:
            ConfigurationError: If any value fails validation
        """
        try:
            return cls(**data)
        except (PydanticValidationError, AgentError) as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "MachineConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Overrides read from the legacy env file and the process environment.

    Process environment wins over the env file; both win over YAML.
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
    )

    auth_token: Optional[str] = Field(None, alias="LATITUDESH_AUTH_TOKEN")
    project_id: Optional[str] = Field(None, alias="PROJECT_ID")
    firewall_id: Optional[str] = Field(None, alias="FIREWALL_ID")
    public_ip: Optional[str] = Field(None, alias="PUBLIC_IP")
    agent_interval: Optional[str] = Field(None, alias="AGENT_INTERVAL")
    log_level: Optional[str] = Field(None, alias="LOG_LEVEL")
    ufw_binary: Optional[str] = Field(None, alias="UFW_BINARY")
    firewall_enabled: Optional[bool] = Field(None, alias="FIREWALL_ENABLED")

    @classmethod
    def load(cls, env_file: Optional[Path] = LEGACY_ENV_FILE) -> "EnvOverrides":
        """Read overrides, tolerating a missing env file."""
        try:
            return cls(_env_file=env_file if env_file and env_file.exists() else None)
        except PydanticValidationError as e:
            raise ConfigurationError(
                "Invalid value in environment overrides",
                details=[str(e)],
            ) from e

    def apply(self, config: MachineConfig) -> MachineConfig:
        """Return a new configuration with overrides applied."""
        data = config.model_dump()

        if self.project_id:
            data["latitude"]["project_id"] = self.project_id
        if self.firewall_id:
            data["latitude"]["firewall_id"] = self.firewall_id
        if self.public_ip:
            data["latitude"]["public_ip"] = self.public_ip
        if self.agent_interval:
            data["agent"]["interval"] = self.agent_interval
        if self.log_level:
            data["logging"]["level"] = self.log_level
        if self.ufw_binary:
            data["firewall"]["ufw_binary"] = self.ufw_binary
        if self.firewall_enabled is not None:
            data["firewall"]["enabled"] = self.firewall_enabled

        return MachineConfig.from_dict(data)


class AppConfig:
    """Application configuration combining config file and overrides.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[MachineConfig] = None,
        env_file: Optional[Path] = LEGACY_ENV_FILE,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
            env_file: Legacy KEY=value file read before the environment
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._env = EnvOverrides.load(env_file)
        base = config or MachineConfig.load_or_default(self.config_path)
        self._config = self._env.apply(base)

    @property
    def config(self) -> MachineConfig:
        """Get the machine configuration."""
        return self._config

    @property
    def agent(self) -> AgentSection:
        """Shortcut to agent config."""
        return self._config.agent

    @property
    def latitude(self) -> LatitudeConfig:
        """Shortcut to Latitude.sh API config."""
        return self._config.latitude

    @property
    def firewall(self) -> FirewallConfig:
        """Shortcut to firewall config."""
        return self._config.firewall

    @property
    def logging(self) -> LoggingConfig:
        """Shortcut to logging config."""
        return self._config.logging

    @property
    def bearer_token(self) -> Optional[str]:
        return self._env.auth_token

    def validate_runtime(self) -> None:
        """Check the settings the agent cannot start without.

        Raises:
            ConfigurationError: If project or firewall id is missing
            PrerequisiteError: If the ufw binary does not exist
        """
        if not self.latitude.project_id:
            raise ConfigurationError(
                "PROJECT_ID is required",
                hint="Set latitude.project_id in the config file or PROJECT_ID in the environment",
            )
        if not self.latitude.firewall_id:
            raise ConfigurationError(
                "FIREWALL_ID is required",
                hint="Set latitude.firewall_id in the config file or FIREWALL_ID in the environment",
            )
        if self.firewall.enabled and not self.firewall.ufw_binary.exists():
            raise PrerequisiteError(
                f"UFW binary not found at {self.firewall.ufw_binary}",
                hint="Install ufw (apt-get install ufw) or set firewall.ufw_binary",
            )


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# Latitude.sh Agent Configuration
# Secrets are loaded from environment variables, NOT stored here:
#   LATITUDESH_AUTH_TOKEN

agent:
  interval: 30s  # how often the firewall is reconciled

latitude:
  api_endpoint: https://api.latitude.sh/agent/ping
  project_id: ""   # or PROJECT_ID
  firewall_id: ""  # or FIREWALL_ID
  public_ip: ""    # or PUBLIC_IP
  request_timeout: 30s

firewall:
  enabled: true
  ufw_binary: /usr/sbin/ufw
  case_sensitive: false  # compare rules without folding case
  use_sudo: false        # prefix ufw commands with sudo
  command_timeout: 60s
  output_file: /tmp/lsh_firewall.json  # last fetched policy snapshot

logging:
  level: info  # debug, info, warn, error
  audit_log: /var/log/lsh-agent/audit.log
  audit_enabled: true
  timestamps: true
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
