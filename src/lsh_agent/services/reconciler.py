"""Reconciliation cycle and periodic loop.

One cycle: fetch desired -> probe current -> diff -> apply -> commit
-> report. The loop runs a cycle at startup and then on a fixed-rate
schedule; a trigger that arrives while a cycle is running is dropped.
"""

import signal
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from rich.markup import escape

from lsh_agent.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from lsh_agent.core.exceptions import AgentError, CycleCancelled
from lsh_agent.core.output import Console, console as default_console
from lsh_agent.services.applier import ApplyReport, PacketFilter, RuleApplier
from lsh_agent.services.diff import ReconciliationPlan, diff
from lsh_agent.services.rules import CanonicalRule, RuleSet


class RuleSource(Protocol):
    """Supplies the desired rules for this host."""

    def fetch(self) -> list[CanonicalRule]:
        ...


class LoopState(Enum):
    """Reconciliation loop state."""
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleOutcome:
    """Result of one reconciliation cycle."""
    trigger: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration: float = 0.0
    plan: Optional[ReconciliationPlan] = None
    report: Optional[ApplyReport] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True if the cycle finished with every change applied."""
        if self.error is not None or self.cancelled:
            return False
        return self.report is None or self.report.success

    def counts(self) -> dict[str, int]:
        if self.report is None:
            return {"added": 0, "removed": 0, "skipped": 0, "failed": 0}
        return self.report.counts()

    def details(self) -> dict[str, Any]:
        """Summary fields for console and audit output."""
        details: dict[str, Any] = {"Trigger": self.trigger}
        if self.plan is not None:
            details["Planned"] = f"+{len(self.plan.to_add)} / -{len(self.plan.to_remove)}"
        counts = self.counts()
        details["Added"] = counts["added"]
        details["Removed"] = counts["removed"]
        details["Skipped"] = counts["skipped"]
        details["Failed"] = counts["failed"]
        if self.report is not None and self.report.changes_made:
            details["Reloaded"] = "yes" if self.report.committed else "no"
        if self.cancelled:
            details["Cancelled"] = "yes"
        if self.error:
            details["Error"] = self.error
        details["Duration"] = f"{self.duration:.2f}s"
        return details


class Reconciler:
    """Runs single reconciliation cycles."""

    def __init__(
        self,
        source: RuleSource,
        packet_filter: PacketFilter,
        *,
        console: Optional[Console] = None,
        audit: Optional[AuditLogger] = None,
        case_sensitive: bool = False,
        stop_event: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize the reconciler.

        Args:
            source: Desired-rule source
            packet_filter: Packet filter holding the current rules
            console: Console for output
            audit: Audit logger receiving per-cycle summaries
            case_sensitive: Compare rules without case folding
            stop_event: Shared stop event
            dry_run: Report changes without making them
        """
        self.source = source
        self.packet_filter = packet_filter
        self.console = console or default_console
        self.audit = audit or get_audit_logger()
        self.case_sensitive = case_sensitive
        self.stop_event = stop_event or threading.Event()
        self.dry_run = dry_run

    def desired_rules(self) -> RuleSet:
        return RuleSet.build(self.source.fetch(), case_sensitive=self.case_sensitive)

    def current_rules(self) -> RuleSet:
        return self.packet_filter.list_rules(self.case_sensitive)

    def compute_plan(self) -> ReconciliationPlan:
        """Fetch desired, probe current and diff them. Changes nothing."""
        desired = self.desired_rules()
        current = self.current_rules()
        self.console.verbose(f"Desired rules: {len(desired)}, current owned rules: {len(current)}")
        return diff(current, desired)

    def run_cycle(self, trigger: str = "manual") -> CycleOutcome:
        """Run one full reconciliation cycle.

        Errors are captured in the outcome, never raised.
        """
        outcome = CycleOutcome(trigger=trigger)
        started = time.monotonic()

        with self.audit.correlation("firewall_sync"):
            try:
                self._run(outcome)
            except CycleCancelled as e:
                outcome.cancelled = True
                self.console.warn(f"Reconciliation cancelled: {e}")
            except AgentError as e:
                outcome.error = e.message
                self.console.error(f"Reconciliation failed: {e.message}")
                for detail in e.details:
                    self.console.verbose(f"  {detail}")
                if e.hint:
                    self.console.hint(e.hint)
            except Exception as e:
                outcome.error = f"{type(e).__name__}: {e}"
                self.console.error(f"Unexpected error during reconciliation: {outcome.error}")

            outcome.duration = time.monotonic() - started
            self._report(outcome)

        return outcome

    def _run(self, outcome: CycleOutcome) -> None:
        plan = self.compute_plan()
        outcome.plan = plan

        if plan.is_empty:
            self.console.info("Firewall rules are up to date")
            return

        self.console.info(
            f"Applying firewall changes: {len(plan.to_add)} to add, {len(plan.to_remove)} to remove"
        )
        applier = RuleApplier(
            self.packet_filter,
            console=self.console,
            audit=self.audit,
            case_sensitive=self.case_sensitive,
            stop_event=self.stop_event,
            dry_run=self.dry_run,
        )
        report = applier.apply(plan)
        outcome.report = report
        outcome.cancelled = report.cancelled

        if report.commit_error is not None:
            outcome.error = f"Firewall reload failed: {report.commit_error}"
        elif report.committed and not self.dry_run:
            self._show_final_status()

    def _show_final_status(self) -> None:
        """Log the resulting numbered ufw status at verbose level."""
        if not self.console.is_verbose:
            return
        try:
            status = self.packet_filter.status_numbered()
        except AgentError as e:
            self.console.warn(f"Could not read final firewall status: {e.message}")
            return
        self.console.verbose("Final firewall status:")
        for line in status.splitlines():
            self.console.verbose(f"  {escape(line)}")

    def _audit_result(self, outcome: CycleOutcome) -> AuditResult:
        changed = outcome.report is not None and outcome.report.changes_made
        if outcome.error is not None:
            return AuditResult.FAILURE
        if outcome.cancelled:
            return AuditResult.PARTIAL if changed else AuditResult.SKIPPED
        if not outcome.success:
            return AuditResult.PARTIAL
        return AuditResult.DRY_RUN if self.dry_run else AuditResult.SUCCESS

    def _report(self, outcome: CycleOutcome) -> None:
        self.console.operation_summary("Firewall sync", outcome.success, outcome.details())

        parameters: dict[str, Any] = {
            "trigger": outcome.trigger,
            "started_at": outcome.started_at.isoformat(),
            "duration_seconds": round(outcome.duration, 3),
            **outcome.counts(),
            "committed": bool(outcome.report and outcome.report.committed),
            "cancelled": outcome.cancelled,
        }
        if outcome.report is not None and outcome.report.commit_error:
            parameters["commit_error"] = outcome.report.commit_error

        self.audit.log_operation(
            AuditEventType.FIREWALL_SYNC,
            self._audit_result(outcome),
            target_type="firewall",
            target_name="ufw",
            operation="sync",
            parameters=parameters,
            error=outcome.error,
        )


class ReconciliationLoop:
    """Periodic driver for Reconciler with skip-if-running semantics.

    Schedule is fixed-rate: ticks fall at ``start + k * interval``; ticks
    that fall due while a cycle runs are dropped, not replayed.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        interval: float,
        stop_event: Optional[threading.Event] = None,
        console: Optional[Console] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        self.reconciler = reconciler
        self.interval = interval
        self.stop_event = stop_event or reconciler.stop_event
        self.console = console or reconciler.console
        self._clock = clock

        self._lock = threading.Lock()
        self._state = LoopState.IDLE
        self._previous_handlers: dict[int, Any] = {}

        self.cycles_run = 0
        self.skipped_triggers = 0
        self.last_outcome: Optional[CycleOutcome] = None

    @property
    def state(self) -> LoopState:
        return self._state

    def trigger(self, trigger: str = "tick") -> Optional[CycleOutcome]:
        """Run a cycle now unless one is already running.

        Returns:
            The cycle outcome, or None if the trigger was dropped
        """
        if not self._lock.acquire(blocking=False):
            self.skipped_triggers += 1
            self.console.warn(f"Reconciliation already running, skipping {trigger} trigger")
            return None

        try:
            self._state = LoopState.RUNNING
            outcome = self.reconciler.run_cycle(trigger)
            self.cycles_run += 1
            self.last_outcome = outcome
            return outcome
        finally:
            self._state = LoopState.IDLE
            self._lock.release()

    def run_forever(self) -> None:
        """Run a startup cycle, then tick until stop() is called."""
        self.console.info(f"Starting reconciliation loop (interval: {self.interval:g}s)")

        if self.stop_event.is_set():
            self.console.info("Stop already requested, skipping startup cycle")
        else:
            self.trigger("startup")

        start = self._clock()
        tick = 1
        while not self.stop_event.is_set():
            wait = start + tick * self.interval - self._clock()
            if wait > 0 and self.stop_event.wait(wait):
                break
            if self.stop_event.is_set():
                break

            self.trigger("tick")

            # Next tick strictly in the future; anything in between is dropped
            due = int((self._clock() - start) // self.interval) + 1
            missed = max(due - tick - 1, 0)
            if missed:
                self.skipped_triggers += missed
                self.console.warn(f"Cycle overran the interval, dropped {missed} tick(s)")
            tick = max(tick + 1, due)

        self.console.info("Reconciliation loop stopped")

    def stop(self) -> None:
        """Request shutdown; the running cycle stops at the next safe point."""
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        """Map SIGTERM and SIGINT to stop(). Main thread only."""
        def _handler(signum: int, frame: Any) -> None:
            self.console.info(f"Received {signal.Signals(signum).name}, shutting down")
            self.stop()

        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, _handler)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
