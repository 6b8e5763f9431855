"""Tests for the rule set diff."""

import pytest

from lsh_agent.services.diff import ReconciliationPlan, diff
from lsh_agent.services.rules import CanonicalRule, RuleSet


SSH = CanonicalRule("any", "tcp", "22")
HTTP = CanonicalRule("any", "tcp", "80")
HTTPS = CanonicalRule("any", "tcp", "443")
DNS = CanonicalRule("10.0.0.0/8", "udp", "53")


class TestDiff:
    """Tests for diff()."""

    def test_identical_sets(self):
        """Should produce an empty plan for equal sets."""
        current = RuleSet.build([SSH, HTTP])
        desired = RuleSet.build([HTTP, SSH])

        plan = diff(current, desired)

        assert plan.is_empty
        assert plan.total == 0

    def test_adds_missing(self):
        """Should add desired rules not in current."""
        plan = diff(RuleSet.build([SSH]), RuleSet.build([SSH, HTTPS]))

        assert plan.to_add == (HTTPS,)
        assert plan.to_remove == ()

    def test_removes_extra(self):
        """Should remove current rules not desired."""
        plan = diff(RuleSet.build([SSH, HTTP]), RuleSet.build([SSH]))

        assert plan.to_add == ()
        assert plan.to_remove == (HTTP,)

    def test_empty_desired_removes_everything(self):
        """Should flush every current rule when desired is empty."""
        plan = diff(RuleSet.build([SSH, HTTP]), RuleSet.build([]))

        assert plan.to_add == ()
        assert set(plan.to_remove) == {SSH, HTTP}

    def test_add_and_remove_disjoint(self):
        """Should never plan to add and remove the same key."""
        current = RuleSet.build([SSH, HTTP, DNS])
        desired = RuleSet.build([SSH, HTTPS])

        plan = diff(current, desired)

        added = {r.key() for r in plan.to_add}
        removed = {r.key() for r in plan.to_remove}
        assert added.isdisjoint(removed)
        assert added == {HTTPS.key()}
        assert removed == {HTTP.key(), DNS.key()}

    def test_sorted_by_key(self):
        """Should order each side by canonical key."""
        plan = diff(RuleSet.build([]), RuleSet.build([HTTPS, SSH, HTTP]))

        assert [r.key() for r in plan.to_add] == sorted(r.key() for r in (SSH, HTTP, HTTPS))

    def test_case_variants_match(self):
        """Should treat case-variant sources as the same rule by default."""
        current = RuleSet.build([CanonicalRule("FE80::1", "tcp", "22")])
        desired = RuleSet.build([CanonicalRule("fe80::1", "tcp", "22")])

        assert diff(current, desired).is_empty

    def test_case_sensitive_variants_differ(self):
        """Should plan a swap for case variants under a case-sensitive policy."""
        current = RuleSet.build([CanonicalRule("FE80::1", "tcp", "22")], case_sensitive=True)
        desired = RuleSet.build([CanonicalRule("fe80::1", "tcp", "22")], case_sensitive=True)

        plan = diff(current, desired)

        assert plan.to_add == (CanonicalRule("fe80::1", "tcp", "22"),)
        assert plan.to_remove == (CanonicalRule("FE80::1", "tcp", "22"),)

    def test_mismatched_case_policy(self):
        """Should refuse to diff sets with different case policies."""
        with pytest.raises(ValueError, match="case policies"):
            diff(RuleSet.build([SSH]), RuleSet.build([SSH], case_sensitive=True))


class TestReconciliationPlan:
    """Tests for ReconciliationPlan helpers."""

    def test_summary(self):
        """Should count additions and removals."""
        plan = ReconciliationPlan(to_add=(SSH, HTTP), to_remove=(DNS,))
        assert plan.summary() == {"to_add": 2, "to_remove": 1}
        assert plan.total == 3
        assert not plan.is_empty

    def test_default_is_empty(self):
        """Should be empty by default."""
        assert ReconciliationPlan().is_empty
