"""Command execution with cancellation support.

Provides:
- Safe command execution with output capture
- Dry-run mode support (read-only probes still run)
- Cooperative cancellation of long-running probes
- Atomic file writes
"""

import os
import shlex
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from lsh_agent.core.context import ExecutionContext
from lsh_agent.core.exceptions import CycleCancelled, ExecutionError


# How often a cancellable child process is polled for completion
POLL_INTERVAL = 0.1


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows what would happen
    - Output capture for processing
    - Timeout support
    - Optional sudo prefix
    - Kill-on-stop for read-only commands
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        *,
        use_sudo: bool = False,
        default_timeout: Optional[float] = None,
    ) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
            use_sudo: Prefix every command with sudo
            default_timeout: Timeout applied when run() is given none
        """
        self.ctx = ctx
        self.use_sudo = use_sudo
        self.default_timeout = default_timeout

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        read_only: bool = False,
        timeout: Optional[float] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CommandResult:
        """Execute a shell command safely.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            read_only: Command changes nothing, so it also runs in dry-run
            timeout: Command timeout in seconds
            env: Additional environment variables
            cwd: Working directory
            cancel_event: When set while the command runs, the child is
                killed and CycleCancelled raised

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
            CycleCancelled: If cancel_event was set before completion
        """
        if self.use_sudo and command[:1] != ["sudo"]:
            command = ["sudo"] + command

        if timeout is None:
            timeout = self.default_timeout

        # Log what we're doing
        if description:
            self.ctx.console.step(description)

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        # Dry-run mode
        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(
                command=command,
                return_code=0,
                stdout="",
                stderr="",
            )

        # Prepare environment
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            if cancel_event is None:
                result = subprocess.run(
                    command,
                    capture_output=capture,
                    text=True,
                    timeout=timeout,
                    env=run_env,
                    cwd=cwd,
                )
                return_code = result.returncode
                stdout = result.stdout if capture else ""
                stderr = result.stderr if capture else ""
            else:
                return_code, stdout, stderr = self._run_cancellable(
                    command,
                    capture=capture,
                    timeout=timeout,
                    env=run_env,
                    cwd=cwd,
                    cancel_event=cancel_event,
                )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                details=[str(e)],
            ) from e

        cmd_result = CommandResult(
            command=command,
            return_code=return_code,
            stdout=stdout or "",
            stderr=stderr or "",
        )

        # Check for errors
        if check and return_code != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=return_code,
                stderr=cmd_result.stderr if capture else None,
            )

        return cmd_result

    def _run_cancellable(
        self,
        command: list[str],
        *,
        capture: bool,
        timeout: Optional[float],
        env: Optional[dict[str, str]],
        cwd: Optional[Path],
        cancel_event: threading.Event,
    ) -> tuple[int, str, str]:
        """Run a child process, killing it if cancel_event gets set."""
        if cancel_event.is_set():
            raise CycleCancelled(f"Stop requested before running: {shlex.join(command)}")

        pipe = subprocess.PIPE if capture else None
        deadline = time.monotonic() + timeout if timeout else None

        proc = subprocess.Popen(
            command,
            stdout=pipe,
            stderr=pipe,
            text=True,
            env=env,
            cwd=cwd,
        )
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
                return proc.returncode, stdout or "", stderr or ""
            except subprocess.TimeoutExpired:
                pass

            if cancel_event.is_set():
                proc.kill()
                proc.communicate()
                raise CycleCancelled(
                    f"Stop requested, killed: {shlex.join(command)}",
                )
            if deadline is not None and time.monotonic() >= deadline:
                proc.kill()
                proc.communicate()
                raise subprocess.TimeoutExpired(command, timeout)

    def write_file(
        self,
        path: Path,
        content: str,
        *,
        description: Optional[str] = None,
        permissions: int = 0o644,
    ) -> None:
        """Write content to a file atomically.

        Args:
            path: Destination path
            content: File content
            description: Human-readable description
            permissions: File permissions
        """
        desc = description or f"Write {path}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Write {len(content)} bytes to {path}")
            if self.ctx.is_verbose:
                # Show content preview
                preview = content[:500] + "..." if len(content) > 500 else content
                self.ctx.console.raw(preview)
            return

        # Create parent directory if needed
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, permissions)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
