"""Service abstractions for the policy API, ufw and the reconciliation engine."""

from lsh_agent.services.applier import ApplyReport, PacketFilter, RuleApplier, RuleFailure
from lsh_agent.services.diff import ReconciliationPlan, diff
from lsh_agent.services.latitude import ApiRuleSource, LatitudeClient
from lsh_agent.services.reconciler import CycleOutcome, LoopState, Reconciler, ReconciliationLoop
from lsh_agent.services.rules import CanonicalRule, RuleSet, normalize, normalize_record, parse_firewall_document
from lsh_agent.services.systemd import SystemdService
from lsh_agent.services.ufw import UfwService, parse_ufw_status

__all__ = [
    "ApplyReport",
    "PacketFilter",
    "RuleApplier",
    "RuleFailure",
    "ReconciliationPlan",
    "diff",
    "ApiRuleSource",
    "LatitudeClient",
    "CycleOutcome",
    "LoopState",
    "Reconciler",
    "ReconciliationLoop",
    "CanonicalRule",
    "RuleSet",
    "normalize",
    "normalize_record",
    "parse_firewall_document",
    "SystemdService",
    "UfwService",
    "parse_ufw_status",
]
