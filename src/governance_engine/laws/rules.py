"""
Rule Registry - Which laws exist, who may propose and vote, and how they pass

The registry is an immutable table keyed by (law kind, governance kind). It is
pure data: adding a law or a governance structure means adding table entries
(in code or in a JSON file), never new control flow.

Fun fact: The Magna Carta of 1215 was itself a rule table - 63 clauses, most
of them saying who could do what to whom, and with whose consent.
"""

import json
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, Field

from governance_engine.kernel.errors import UnknownLaw
from governance_engine.laws.models import (
    GovernanceKind,
    GovernanceRule,
    LawKind,
    PassingCondition,
    normalize_governance_kind,
    normalize_law_kind,
)

_DURATION_PATTERN = re.compile(r"^(\d+)([hdms])$")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """
    Parse a compact duration such as "24h", "30m", "2d", "45s" or "0h"

    Raises:
        ValueError: If the string is not <digits><unit>
    """
    match = _DURATION_PATTERN.match(value.strip().lower())
    if not match:
        raise ValueError(f"Invalid duration {value!r}: expected e.g. '24h', '30m', '2d'")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


class LawDefinition(BaseModel):
    """
    A law kind and its rules under every governance kind that allows it

    Attributes:
        law_kind: Normalized law kind key
        label: Short display name
        description: What passing the law does
        required_metadata_fields: Keys every proposal of this kind must carry
        rules: governance kind → rule
    """

    law_kind: str
    label: str
    description: str = ""
    required_metadata_fields: frozenset[str] = frozenset()
    rules: dict[str, GovernanceRule] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def governance_kinds(self) -> list[str]:
        return sorted(self.rules)


class RuleRegistry:
    """
    Immutable lookup of governance rules

    Example:
        >>> registry = default_registry()
        >>> rule = registry.get_rule("DECLARE_WAR", "democracy")
        >>> rule.passing_condition
        <PassingCondition.MAJORITY: 'MAJORITY'>
    """

    def __init__(self, definitions: Iterable[LawDefinition]) -> None:
        self._definitions: dict[str, LawDefinition] = {}
        for definition in definitions:
            if definition.law_kind in self._definitions:
                raise ValueError(f"Law {definition.law_kind} defined twice")
            self._definitions[definition.law_kind] = definition

    @classmethod
    def from_definitions(cls, definitions: Iterable[LawDefinition]) -> "RuleRegistry":
        return cls(definitions)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuleRegistry":
        """
        Build a registry from the JSON table shape

        Shape:
            {"laws": {"DECLARE_WAR": {"label": ..., "description": ...,
                "required_metadata_fields": [...],
                "rules": {"monarchy": {"propose_ranks": [0], "vote_ranks": [0, 1],
                    "voting_window": "24h", "can_fast_track": true,
                    "passing_condition": "SOVEREIGN_ONLY", "cooldown": "24h"}}}}}
        """
        laws = data.get("laws")
        if not isinstance(laws, dict):
            raise ValueError("Rule table must contain a 'laws' object")

        definitions = []
        for raw_kind, entry in laws.items():
            law_kind = normalize_law_kind(raw_kind)
            required = frozenset(entry.get("required_metadata_fields", []))
            rules: dict[str, GovernanceRule] = {}
            for raw_governance, rule in entry.get("rules", {}).items():
                governance_kind = normalize_governance_kind(raw_governance)
                cooldown = rule.get("cooldown")
                rules[governance_kind] = GovernanceRule(
                    law_kind=law_kind,
                    governance_kind=governance_kind,
                    propose_ranks=frozenset(rule["propose_ranks"]),
                    vote_ranks=frozenset(rule["vote_ranks"]),
                    voting_window=parse_duration(rule["voting_window"]),
                    can_fast_track=rule.get("can_fast_track", False),
                    passing_condition=PassingCondition(rule["passing_condition"]),
                    required_metadata_fields=required,
                    cooldown=parse_duration(cooldown) if cooldown else None,
                    description=rule.get("description", entry.get("description", "")),
                )
            definitions.append(
                LawDefinition(
                    law_kind=law_kind,
                    label=entry.get("label", law_kind.replace("_", " ").title()),
                    description=entry.get("description", ""),
                    required_metadata_fields=required,
                    rules=rules,
                )
            )
        return cls(definitions)

    @classmethod
    def from_json(cls, path: str | Path) -> "RuleRegistry":
        """Load a rule table from a JSON file"""
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def get_rule(self, law_kind: str, governance_kind: str | None) -> GovernanceRule:
        """
        Look up the rule for a law under a governance kind

        Raises:
            UnknownLaw: If the law kind is unknown or not available under the
                governance kind
        """
        law_kind = normalize_law_kind(law_kind)
        governance_kind = normalize_governance_kind(governance_kind)
        definition = self._definitions.get(law_kind)
        if definition is None:
            raise UnknownLaw(law_kind)
        rule = definition.rules.get(governance_kind)
        if rule is None:
            raise UnknownLaw(law_kind, governance_kind)
        return rule

    def get_definition(self, law_kind: str) -> LawDefinition:
        law_kind = normalize_law_kind(law_kind)
        definition = self._definitions.get(law_kind)
        if definition is None:
            raise UnknownLaw(law_kind)
        return definition

    def list_laws(self, governance_kind: str | None) -> list[LawDefinition]:
        """Definitions that have a rule under the governance kind"""
        governance_kind = normalize_governance_kind(governance_kind)
        return [
            definition
            for definition in self._definitions.values()
            if governance_kind in definition.rules
        ]

    def list_proposable(self, governance_kind: str | None, actor_rank: int) -> list[str]:
        """Law kinds an actor of this rank may propose under the governance kind"""
        governance_kind = normalize_governance_kind(governance_kind)
        return [
            definition.law_kind
            for definition in self._definitions.values()
            if governance_kind in definition.rules
            and actor_rank in definition.rules[governance_kind].propose_ranks
        ]

    def law_kinds(self) -> list[str]:
        return list(self._definitions)

    def governance_kinds(self) -> set[str]:
        """Every governance kind at least one law has a rule for"""
        return {
            governance_kind
            for definition in self._definitions.values()
            for governance_kind in definition.rules
        }

    def __contains__(self, law_kind: object) -> bool:
        return isinstance(law_kind, str) and normalize_law_kind(law_kind) in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)


MONARCHY = GovernanceKind.MONARCHY.value
DEMOCRACY = GovernanceKind.DEMOCRACY.value

# Rank tiers: 0 = sovereign, 1 = officials/nobles, 10 = ordinary members
BUILTIN_RULE_TABLE: dict[str, Any] = {
    "laws": {
        LawKind.DECLARE_WAR.value: {
            "label": "Declare War",
            "description": "Open a conflict against another community",
            "required_metadata_fields": ["target_community_id"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0, 1],
                    "voting_window": "24h",
                    "can_fast_track": True,
                    "passing_condition": "SOVEREIGN_ONLY",
                },
                DEMOCRACY: {
                    "propose_ranks": [0, 1, 10],
                    "vote_ranks": [0, 1, 10],
                    "voting_window": "48h",
                    "can_fast_track": False,
                    "passing_condition": "MAJORITY",
                },
            },
        },
        LawKind.PROPOSE_HEIR.value: {
            "label": "Propose Heir",
            "description": "Name the successor to the sovereign",
            "required_metadata_fields": ["target_user_id"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0, 1],
                    "voting_window": "12h",
                    "can_fast_track": True,
                    "passing_condition": "SOVEREIGN_ONLY",
                },
            },
        },
        LawKind.CHANGE_GOVERNANCE.value: {
            "label": "Change Governance",
            "description": "Switch the community to another ruling structure",
            "required_metadata_fields": ["new_governance_type"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0, 1],
                    "voting_window": "48h",
                    "can_fast_track": True,
                    "passing_condition": "SOVEREIGN_ONLY",
                },
                DEMOCRACY: {
                    "propose_ranks": [0, 1],
                    "vote_ranks": [0, 1, 10],
                    "voting_window": "48h",
                    "can_fast_track": False,
                    "passing_condition": "SUPERMAJORITY",
                },
            },
        },
        LawKind.MESSAGE_OF_THE_DAY.value: {
            "label": "Message of the Day",
            "description": "Broadcast an announcement to the community",
            "required_metadata_fields": ["title", "content"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0],
                    "voting_window": "0h",
                    "can_fast_track": False,
                    "passing_condition": "SOVEREIGN_ONLY",
                    "cooldown": "24h",
                },
            },
        },
        LawKind.WORK_TAX.value: {
            "label": "Work Tax",
            "description": "Set the share of work income paid to the treasury",
            "required_metadata_fields": ["tax_rate"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0],
                    "voting_window": "0h",
                    "can_fast_track": False,
                    "passing_condition": "SOVEREIGN_ONLY",
                },
                DEMOCRACY: {
                    "propose_ranks": [0, 1],
                    "vote_ranks": [0, 1, 10],
                    "voting_window": "36h",
                    "can_fast_track": False,
                    "passing_condition": "MAJORITY",
                },
            },
        },
        LawKind.IMPORT_TARIFF.value: {
            "label": "Import Tariff",
            "description": "Set the tariff on goods sold by merchants from other communities",
            "required_metadata_fields": ["tariff_rate"],
            "rules": {
                MONARCHY: {
                    "propose_ranks": [0],
                    "vote_ranks": [0],
                    "voting_window": "0h",
                    "can_fast_track": False,
                    "passing_condition": "SOVEREIGN_ONLY",
                },
            },
        },
    }
}


def default_registry() -> RuleRegistry:
    """Registry built from the shipped rule table"""
    return RuleRegistry.from_dict(BUILTIN_RULE_TABLE)
