"""Set difference between the current and desired rule sets."""

from dataclasses import dataclass
from typing import Any

from lsh_agent.services.rules import CanonicalRule, RuleSet


@dataclass(frozen=True)
class ReconciliationPlan:
    """Rules to add and remove, each sorted by canonical key."""
    to_add: tuple[CanonicalRule, ...] = ()
    to_remove: tuple[CanonicalRule, ...] = ()

    @property
    def is_empty(self) -> bool:
        """Check if nothing needs to change."""
        return not self.to_add and not self.to_remove

    @property
    def total(self) -> int:
        return len(self.to_add) + len(self.to_remove)

    def summary(self) -> dict[str, Any]:
        return {
            "to_add": len(self.to_add),
            "to_remove": len(self.to_remove),
        }


def diff(current: RuleSet, desired: RuleSet) -> ReconciliationPlan:
    """Compute the changes that turn ``current`` into ``desired``.

    An empty desired set removes every current rule.

    Args:
        current: Rules active in the packet filter
        desired: Rules the control plane wants

    Returns:
        ReconciliationPlan with to_add = desired - current and
        to_remove = current - desired

    Raises:
        ValueError: If the two sets were built with different case policies
    """
    if current.case_sensitive != desired.case_sensitive:
        raise ValueError(
            "Cannot diff rule sets with different case policies "
            f"(current={current.case_sensitive}, desired={desired.case_sensitive})"
        )

    current_keys = current.keys()
    desired_keys = desired.keys()

    return ReconciliationPlan(
        to_add=tuple(desired[key] for key in sorted(desired_keys - current_keys)),
        to_remove=tuple(current[key] for key in sorted(current_keys - desired_keys)),
    )
