"""Custom exceptions for the Latitude.sh agent.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class AgentError(Exception):
    """Base exception for all agent errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AgentError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Missing required configuration values (project/firewall id)
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(AgentError):
    """Input validation errors.

    Raised when:
    - Invalid URL
    - Invalid duration string
    - Invalid IP address
    """
    exit_code = 3


class ExecutionError(AgentError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Shell command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(AgentError):
    """Missing prerequisites.

    Raised when:
    - ufw binary not found
    - Insufficient permissions
    """
    exit_code = 6


class ServiceError(AgentError):
    """Systemd service errors.

    Raised when:
    - Unit file cannot be written
    - Enable/start/stop fails
    """
    exit_code = 13

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.service = service


class FirewallError(AgentError):
    """Firewall (UFW) errors not tied to a single rule."""
    exit_code = 15


# Reconciliation cycle errors

class FetchError(AgentError):
    """Desired-state source unreachable or returned a non-success status.

    The cycle aborts before any rule change and is retried on the
    next scheduled tick.
    """
    exit_code = 20

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if status_code is not None:
            details.append(f"HTTP status: {status_code}")
        super().__init__(message, hint=hint, details=details)
        self.url = url
        self.status_code = status_code


class ParseError(AgentError):
    """Malformed desired-state JSON or unrecognizable probe output.

    Carries an excerpt of the offending payload for diagnosis.
    """
    exit_code = 21

    EXCERPT_LENGTH = 200

    def __init__(
        self,
        message: str,
        *,
        payload: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        excerpt = None
        if payload is not None:
            excerpt = payload[: self.EXCERPT_LENGTH]
            if len(payload) > self.EXCERPT_LENGTH:
                excerpt += "..."
            details.append(f"Payload: {excerpt!r}")
        super().__init__(message, hint=hint, details=details)
        self.excerpt = excerpt


class CommandError(ExecutionError):
    """A single add/remove/reload invocation exited non-zero.

    Isolated to that rule: logged and counted, the cycle continues.
    """
    exit_code = 22

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(
            message,
            command=command,
            return_code=return_code,
            stderr=stderr,
            hint=hint,
            details=details,
        )
        self.rule = rule


class CycleCancelled(AgentError):
    """Stop was requested while an external call was in flight."""
    exit_code = 23
