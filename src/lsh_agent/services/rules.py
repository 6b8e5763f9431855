"""Canonical firewall rule model.

Rules arrive from two places - the control-plane policy JSON and the
``ufw status`` listing - in slightly different shapes. Both are mapped
into CanonicalRule so they can be compared by a single key:

    From: <from>, Protocol: <protocol>, Port: <port>

Absent or blank fields become the literal ``any``, and ufw's
``Anywhere`` sentinel is folded into ``any`` as well.
"""

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Union

from lsh_agent.core.exceptions import ParseError


ANY = "any"

# ufw prints an unrestricted source or destination as "Anywhere"
UNRESTRICTED = "anywhere"


def is_any(value: str) -> bool:
    """Check whether a canonical field means 'no restriction'."""
    return value.strip().lower() == ANY


@dataclass(frozen=True)
class CanonicalRule:
    """One allow rule: traffic from ``source`` to ``port``/``protocol``.

    Stored values keep their original casing; case folding happens only
    when building the comparison key.
    """
    source: str = ANY
    protocol: str = ANY
    port: str = ANY

    def key(self, case_sensitive: bool = False) -> str:
        """Canonical key used for set membership."""
        key = f"From: {self.source}, Protocol: {self.protocol}, Port: {self.port}"
        return key if case_sensitive else key.lower()

    def to_dict(self) -> dict[str, str]:
        """Convert to the wire shape ({from, protocol, port})."""
        return {
            "from": self.source,
            "protocol": self.protocol,
            "port": self.port,
        }

    def display(self) -> str:
        """Form used when listing received policy rules."""
        return f"From: {self.source}, To: any, Protocol: {self.protocol}, Port: {self.port}"

    def __str__(self) -> str:
        """Human-readable representation."""
        target = self.port if is_any(self.protocol) else f"{self.port}/{self.protocol}"
        return f"ALLOW {target} from {self.source}"


def _clean(value: Any) -> str:
    if value is None:
        return ANY
    text = value if isinstance(value, str) else str(value)
    text = text.strip()
    if not text or text.lower() == UNRESTRICTED:
        return ANY
    return text


def normalize(
    raw_from: Any = None,
    raw_protocol: Any = None,
    raw_port: Any = None,
) -> CanonicalRule:
    """Map a raw rule into a CanonicalRule. Never fails.

    Args:
        raw_from: Source address/CIDR, possibly blank or "Anywhere"
        raw_protocol: Transport protocol, possibly blank
        raw_port: Port or lo:hi range, possibly a JSON number

    Returns:
        CanonicalRule with explicit "any" defaults
    """
    return CanonicalRule(
        source=_clean(raw_from),
        protocol=_clean(raw_protocol).lower(),
        port=_clean(raw_port),
    )


def normalize_record(record: Mapping[str, Any]) -> CanonicalRule:
    """Normalize a {from, protocol, port} mapping."""
    return normalize(
        record.get("from"),
        record.get("protocol"),
        record.get("port"),
    )


def parse_firewall_document(payload: Union[str, bytes, Mapping[str, Any]]) -> list[CanonicalRule]:
    """Parse the desired-state document into canonical rules.

    Expected shape::

        {"firewall": {"rules": [{"from": "...", "protocol": "...", "port": "..."}]}}

    A missing or null ``firewall``/``rules``, ``"firewall": []`` and an
    empty rules array all yield an empty list.

    Raises:
        ParseError: If the payload is not JSON or has the wrong shape
    """
    text: Optional[str] = None
    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(
                f"Invalid JSON in firewall response: {e}",
                payload=text,
            ) from e
    else:
        document = payload

    if not isinstance(document, Mapping):
        raise ParseError(
            "Firewall response must be a JSON object",
            payload=text,
        )

    firewall = document.get("firewall")
    if firewall is None:
        return []
    if isinstance(firewall, list):
        if firewall:
            raise ParseError(
                "Unexpected non-empty array for 'firewall'",
                payload=text,
            )
        return []
    if not isinstance(firewall, Mapping):
        raise ParseError(
            f"'firewall' must be an object, got {type(firewall).__name__}",
            payload=text,
        )

    records = firewall.get("rules")
    if records is None:
        return []
    if not isinstance(records, list):
        raise ParseError(
            f"'firewall.rules' must be an array, got {type(records).__name__}",
            payload=text,
        )

    rules = []
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            raise ParseError(
                f"Rule #{index} must be an object, got {type(record).__name__}",
                payload=text,
            )
        rules.append(normalize_record(record))
    return rules


class RuleSet(Mapping[str, CanonicalRule]):
    """Read-only mapping of canonical key -> CanonicalRule.

    Built fresh on every cycle; never mutated after construction.
    """

    def __init__(
        self,
        entries: Optional[Mapping[str, CanonicalRule]] = None,
        *,
        case_sensitive: bool = False,
    ) -> None:
        self._rules: dict[str, CanonicalRule] = dict(entries or {})
        self.case_sensitive = case_sensitive

    @classmethod
    def build(
        cls,
        rules: Iterable[CanonicalRule],
        *,
        case_sensitive: bool = False,
    ) -> "RuleSet":
        """Build a set from rules; the first of any duplicates is kept."""
        entries: dict[str, CanonicalRule] = {}
        for rule in rules:
            entries.setdefault(rule.key(case_sensitive), rule)
        return cls(entries, case_sensitive=case_sensitive)

    def __getitem__(self, key: str) -> CanonicalRule:
        return self._rules[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({len(self)} rules, case_sensitive={self.case_sensitive})"

    def contains(self, rule: CanonicalRule) -> bool:
        """Check membership of a rule under this set's case policy."""
        return rule.key(self.case_sensitive) in self._rules

    def rules(self) -> list[CanonicalRule]:
        """Rules ordered by canonical key."""
        return [self._rules[key] for key in sorted(self._rules)]
