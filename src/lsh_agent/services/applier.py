"""Apply a reconciliation plan to the packet filter.

Ordering and failure rules:
- All additions are issued before any removal
- Each add is preceded by a membership re-check; a rule that has
  appeared in the meantime is skipped
- A failing add/remove is recorded and the remaining rules still run
- One commit (ufw reload) follows if anything changed; no rollback
- A stop request is honoured between rules, never mid-command
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from lsh_agent.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from lsh_agent.core.exceptions import AgentError, CommandError, CycleCancelled
from lsh_agent.core.output import Console, console as default_console
from lsh_agent.services.diff import ReconciliationPlan
from lsh_agent.services.rules import CanonicalRule, RuleSet


class PacketFilter(Protocol):
    """Operations the reconciler needs from a packet filter."""

    def list_rules(self, case_sensitive: bool = False) -> RuleSet:
        ...

    def add_rule(self, rule: CanonicalRule) -> None:
        ...

    def remove_rule(self, rule: CanonicalRule) -> None:
        ...

    def commit(self) -> None:
        ...

    def status_numbered(self) -> str:
        ...


@dataclass
class RuleFailure:
    """A rule operation that exited non-zero."""
    rule: CanonicalRule
    operation: str
    error: str


@dataclass
class ApplyReport:
    """Outcome of applying one plan."""
    added: list[CanonicalRule] = field(default_factory=list)
    removed: list[CanonicalRule] = field(default_factory=list)
    skipped: list[CanonicalRule] = field(default_factory=list)
    failures: list[RuleFailure] = field(default_factory=list)
    changes_made: bool = False
    committed: bool = False
    commit_error: Optional[str] = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        """True if every rule operation and the commit succeeded."""
        return not self.failures and self.commit_error is None

    def counts(self) -> dict[str, Any]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "skipped": len(self.skipped),
            "failed": len(self.failures),
        }


class RuleApplier:
    """Issues add/remove/commit operations for a ReconciliationPlan."""

    def __init__(
        self,
        packet_filter: PacketFilter,
        *,
        console: Optional[Console] = None,
        audit: Optional[AuditLogger] = None,
        case_sensitive: bool = False,
        stop_event: Optional[threading.Event] = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize the applier.

        Args:
            packet_filter: Packet filter to mutate
            console: Console for output
            audit: Audit logger receiving one event per change
            case_sensitive: Case policy for the add re-check
            stop_event: Checked between rules; set to stop issuing changes
            dry_run: Record audit events as dry-run
        """
        self.packet_filter = packet_filter
        self.console = console or default_console
        self.audit = audit or get_audit_logger()
        self.case_sensitive = case_sensitive
        self.stop_event = stop_event or threading.Event()
        self.dry_run = dry_run

    def apply(self, plan: ReconciliationPlan) -> ApplyReport:
        """Apply the plan and commit if anything changed.

        Args:
            plan: Rules to add and remove

        Returns:
            ApplyReport describing what happened
        """
        report = ApplyReport()

        for rule in plan.to_add:
            if self._should_stop(report):
                break
            try:
                present = self._already_present(rule)
            except CycleCancelled:
                report.cancelled = True
                break
            if present:
                self.console.info(f"Rule already present, skipping: {rule}")
                report.skipped.append(rule)
                continue
            self._apply_one(report, rule, "add")

        if not report.cancelled:
            for rule in plan.to_remove:
                if self._should_stop(report):
                    break
                self._apply_one(report, rule, "remove")

        if report.cancelled:
            self.console.warn("Stop requested, remaining rule changes were not applied")

        if report.changes_made:
            self._commit(report)

        return report

    def _should_stop(self, report: ApplyReport) -> bool:
        if self.stop_event.is_set():
            report.cancelled = True
        return report.cancelled

    def _already_present(self, rule: CanonicalRule) -> bool:
        """Re-list the packet filter and check for the rule.

        A failed re-check is logged and treated as absent.
        """
        try:
            current = self.packet_filter.list_rules(self.case_sensitive)
        except CycleCancelled:
            raise
        except AgentError as e:
            self.console.warn(f"Could not re-check rule before adding ({e}), adding anyway")
            return False
        return current.contains(rule)

    def _apply_one(self, report: ApplyReport, rule: CanonicalRule, operation: str) -> None:
        if operation == "add":
            self.console.step(f"Adding rule: {rule}")
            mutate = self.packet_filter.add_rule
            event_type = AuditEventType.FIREWALL_RULE_ADD
        else:
            self.console.step(f"Removing rule: {rule}")
            mutate = self.packet_filter.remove_rule
            event_type = AuditEventType.FIREWALL_RULE_REMOVE

        try:
            mutate(rule)
        except CommandError as e:
            self.console.error(f"Failed to {operation} rule {rule}: {e}")
            if e.command:
                self.console.verbose(f"Command: {e.command}")
            for detail in e.details:
                self.console.verbose(f"  {detail}")
            report.failures.append(RuleFailure(rule=rule, operation=operation, error=str(e)))
            self.audit.log_operation(
                event_type,
                AuditResult.FAILURE,
                target_type="firewall_rule",
                target_name=rule.key(self.case_sensitive),
                operation=operation,
                parameters=rule.to_dict(),
                error=str(e),
            )
            return

        if operation == "add":
            report.added.append(rule)
        else:
            report.removed.append(rule)
        report.changes_made = True

        self.audit.log_operation(
            event_type,
            AuditResult.DRY_RUN if self.dry_run else AuditResult.SUCCESS,
            target_type="firewall_rule",
            target_name=rule.key(self.case_sensitive),
            operation=operation,
            parameters=rule.to_dict(),
        )

    def _commit(self, report: ApplyReport) -> None:
        self.console.step("Reloading firewall")
        try:
            self.packet_filter.commit()
        except CommandError as e:
            report.commit_error = str(e)
            self.console.error(f"Firewall reload failed: {e}")
            self.audit.log_operation(
                AuditEventType.FIREWALL_RELOAD,
                AuditResult.FAILURE,
                target_type="firewall",
                target_name="ufw",
                operation="reload",
                error=str(e),
            )
            return

        report.committed = True
        self.audit.log_operation(
            AuditEventType.FIREWALL_RELOAD,
            AuditResult.DRY_RUN if self.dry_run else AuditResult.SUCCESS,
            target_type="firewall",
            target_name="ufw",
            operation="reload",
        )
