"""Core framework components for the Latitude.sh agent."""

from lsh_agent.core.exceptions import (
    AgentError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    ServiceError,
    FirewallError,
    FetchError,
    ParseError,
    CommandError,
    CycleCancelled,
)

from lsh_agent.core.context import ExecutionContext, create_context
from lsh_agent.core.output import console, Console, Verbosity
from lsh_agent.core.config import AppConfig, MachineConfig
from lsh_agent.core.audit import (
    AuditLogger,
    AuditEvent,
    AuditEventType,
    AuditResult,
    configure_audit_logger,
    get_audit_logger,
)
from lsh_agent.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "AgentError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "ServiceError",
    "FirewallError",
    "FetchError",
    "ParseError",
    "CommandError",
    "CycleCancelled",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "MachineConfig",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "configure_audit_logger",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
