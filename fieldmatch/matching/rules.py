"""Mapping rules from semantic field types to backing-store field names.

A :class:`RuleTable` is immutable. Administration helpers return a new table
with a bumped ``version`` so readers holding the previous table keep a
consistent view for the rest of their match cycle.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Sequence, Tuple, Union

from ..models import DetectedField

logger = logging.getLogger(__name__)

RulePattern = Union[str, Pattern[str]]

REGEX_PREFIX = "re:"
_RULE_ATTRIBUTES: Dict[str, str] = {
    "patterns": "patterns",
    "backing_field_names": "backingFieldNames",
    "backingFieldNames": "backingFieldNames",
    "priority": "priority",
}
"""Keyword arguments accepted by :meth:`RuleTable.with_updates` and their JSON keys."""
INFERRED_TYPE_BONUS = 5
ELEMENT_KIND_BONUS = 8
DEFAULT_MIN_SCORE = 3

_KIND_RULE_TYPES: Dict[str, str] = {
    "email": "email",
    "tel": "phone",
}
"""Element kinds that map directly onto a rule type."""

_INFERRED_RULE_TYPES: Dict[str, Tuple[str, ...]] = {
    "name": ("firstName", "lastName", "fullName"),
    "zip": ("zipCode",),
    "birthday": ("birthDate",),
}
"""Classifier types whose rule counterpart is spelled differently."""


def rule_types_for(inferred_type: str) -> Tuple[str, ...]:
    """Rule types a classifier-inferred type stands for."""

    return (inferred_type, *_INFERRED_RULE_TYPES.get(inferred_type, ()))



def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, re.Pattern)):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise ValueError(f"Expected a list of rule values, got {value!r}")

@dataclass(frozen=True, slots=True)
class MappingRule:
    field_type: str
    patterns: Tuple[RulePattern, ...]
    backing_field_names: Tuple[str, ...]
    priority: int = 1

    def __post_init__(self) -> None:
        if not self.field_type:
            raise ValueError("Mapping rule must have a field type")
        if self.priority <= 0:
            raise ValueError(f"Rule priority must be positive, got {self.priority!r}")
        object.__setattr__(self, "patterns", tuple(self.patterns))
        object.__setattr__(self, "backing_field_names", tuple(self.backing_field_names))

    def matching_patterns(self, text: str) -> int:
        """Number of patterns that match the lowercase signal ``text``."""

        hits = 0
        for pattern in self.patterns:
            if isinstance(pattern, str):
                if pattern.lower() in text:
                    hits += 1
            elif pattern.search(text):
                hits += 1
        return hits

    @classmethod
    def from_dict(cls, field_type: str, payload: Mapping[str, Any]) -> "MappingRule":
        patterns: List[RulePattern] = []
        for raw in _as_list(payload.get("patterns")):
            if isinstance(raw, re.Pattern):
                patterns.append(raw)
                continue
            if not isinstance(raw, str) or not raw:
                continue
            if raw.startswith(REGEX_PREFIX):
                try:
                    patterns.append(re.compile(raw[len(REGEX_PREFIX):], re.IGNORECASE))
                except re.error as exc:
                    raise ValueError(f"Invalid pattern {raw!r} for rule {field_type!r}: {exc}") from exc
            else:
                patterns.append(raw)
        try:
            priority = int(payload.get("priority", 1))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid priority for rule {field_type!r}: {payload.get('priority')!r}") from exc
        return cls(
            field_type=field_type,
            patterns=tuple(patterns),
            backing_field_names=tuple(
                str(name) for name in _as_list(payload.get("backingFieldNames") or payload.get("databaseFields"))
            ),
            priority=priority,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [
                pattern if isinstance(pattern, str) else f"{REGEX_PREFIX}{pattern.pattern}"
                for pattern in self.patterns
            ],
            "backingFieldNames": list(self.backing_field_names),
            "priority": self.priority,
        }


class RuleTable:
    """Immutable, versioned collection of :class:`MappingRule` objects."""

    __slots__ = ("_rules", "_version")

    def __init__(self, rules: Iterable[MappingRule] = (), *, version: int = 1) -> None:
        ordered: Dict[str, MappingRule] = {}
        for rule in rules:
            ordered[rule.field_type] = rule
        self._rules: Mapping[str, MappingRule] = MappingProxyType(ordered)
        self._version = version

    @property
    def version(self) -> int:
        return self._version

    def __iter__(self) -> Iterator[MappingRule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, field_type: object) -> bool:
        return field_type in self._rules

    def get(self, field_type: str) -> Optional[MappingRule]:
        return self._rules.get(field_type)

    def field_types(self) -> List[str]:
        return list(self._rules)

    def backing_fields_for(self, field_types: Iterable[str]) -> List[str]:
        names: List[str] = []
        for field_type in field_types:
            rule = self._rules.get(field_type)
            if rule is None:
                continue
            for name in rule.backing_field_names:
                if name not in names:
                    names.append(name)
        return names

    def with_rule(self, rule: MappingRule) -> "RuleTable":
        """Return a table where ``rule`` is added or replaces the existing one."""

        rules = dict(self._rules)
        rules[rule.field_type] = rule
        return RuleTable(rules.values(), version=self._version + 1)

    def with_updates(self, field_type: str, **changes: Any) -> "RuleTable":
        rule = self._rules.get(field_type)
        if rule is None:
            raise KeyError(field_type)
        payload = rule.to_dict()
        payload["patterns"] = list(rule.patterns)
        for attribute, value in changes.items():
            if attribute == "field_type":
                continue
            key = _RULE_ATTRIBUTES.get(attribute)
            if key is None:
                raise ValueError(f"Unknown mapping rule attribute {attribute!r}")
            payload[key] = value
        return self.with_rule(MappingRule.from_dict(field_type, payload))

    def without_rule(self, field_type: str) -> "RuleTable":
        if field_type not in self._rules:
            raise KeyError(field_type)
        rules = [rule for rule in self._rules.values() if rule.field_type != field_type]
        return RuleTable(rules, version=self._version + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {rule.field_type: rule.to_dict() for rule in self}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "RuleTable":
        rules = payload.get("rules", payload)
        version = int(payload.get("version", 1)) if "rules" in payload else 1
        return cls(
            (MappingRule.from_dict(field_type, raw) for field_type, raw in rules.items() if isinstance(raw, Mapping)),
            version=version,
        )

    @classmethod
    def from_json(cls, path: str | Path) -> "RuleTable":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError(f"Rule file {path} must contain a JSON object")
        table = cls.from_mapping(data)
        logger.info("Loaded %d mapping rules from %s", len(table), path)
        return table


def _rx(expression: str) -> Pattern[str]:
    return re.compile(expression, re.IGNORECASE)


DEFAULT_RULES: Tuple[MappingRule, ...] = (
    MappingRule(
        "email",
        (_rx(r"email"), _rx(r"e-?mail"), _rx(r"mail"), _rx(r"@")),
        ("email", "contact_email", "work_email", "personal_email"),
        priority=10,
    ),
    MappingRule(
        "phone",
        (_rx(r"phone"), _rx(r"tel"), _rx(r"mobile"), _rx(r"cell"), _rx(r"contact")),
        ("phone", "mobile", "telephone", "contact_phone"),
        priority=9,
    ),
    MappingRule(
        "firstName",
        (_rx(r"first.*name"), _rx(r"given.*name"), _rx(r"fname"), _rx(r"firstname")),
        ("first_name", "given_name", "name"),
        priority=8,
    ),
    MappingRule(
        "lastName",
        (_rx(r"last.*name"), _rx(r"family.*name"), _rx(r"surname"), _rx(r"lname"), _rx(r"lastname")),
        ("last_name", "family_name", "surname"),
        priority=8,
    ),
    MappingRule(
        "fullName",
        (_rx(r"full.*name"), _rx(r"complete.*name"), _rx(r"name")),
        ("full_name", "name", "display_name"),
        priority=7,
    ),
    MappingRule(
        "address",
        (_rx(r"address"), _rx(r"street"), _rx(r"addr"), _rx(r"location")),
        ("address", "street_address", "home_address"),
        priority=6,
    ),
    MappingRule("city", (_rx(r"city"), _rx(r"town"), _rx(r"locality")), ("city", "locality", "town"), priority=6),
    MappingRule(
        "state",
        (_rx(r"state"), _rx(r"province"), _rx(r"region")),
        ("state", "province", "region"),
        priority=6,
    ),
    MappingRule(
        "zipCode",
        (_rx(r"zip"), _rx(r"postal"), _rx(r"postcode")),
        ("zip_code", "postal_code", "postcode"),
        priority=6,
    ),
    MappingRule("country", (_rx(r"country"), _rx(r"nation")), ("country", "nationality"), priority=6),
    MappingRule(
        "birthDate",
        (_rx(r"birth"), _rx(r"birthday"), _rx(r"born"), _rx(r"dob")),
        ("birth_date", "date_of_birth", "birthday"),
        priority=5,
    ),
    MappingRule(
        "website",
        (_rx(r"website"), _rx(r"url"), _rx(r"web"), _rx(r"site"), _rx(r"homepage"), _rx(r"link")),
        ("website", "url", "homepage", "web_url", "site_url"),
        priority=7,
    ),
    MappingRule(
        "company",
        (
            _rx(r"company"),
            _rx(r"organization"),
            _rx(r"business"),
            _rx(r"employer"),
            _rx(r"firm"),
            _rx(r"corporation"),
            _rx(r"org"),
        ),
        ("company", "organization", "employer", "business_name", "company_name"),
        priority=7,
    ),
)

DEFAULT_RULE_TABLE = RuleTable(DEFAULT_RULES)


def load_rule_table(path: Optional[str] = None) -> RuleTable:
    """Return the rule table from ``path`` or the built-in defaults."""

    if not path:
        return DEFAULT_RULE_TABLE
    return RuleTable.from_json(path)


class RuleMatcher:
    """Score a field against every rule and keep the best mapped type."""

    def __init__(self, table: RuleTable = DEFAULT_RULE_TABLE, *, min_score: int = DEFAULT_MIN_SCORE) -> None:
        self.table = table
        self._min_score = min_score

    def scores(self, field: DetectedField) -> Dict[str, int]:
        text = field.identifiers.signal_text()
        kind_type = _KIND_RULE_TYPES.get(field.element_kind)
        inferred = set(rule_types_for(field.inferred_type))

        scores: Dict[str, int] = {}
        for rule in self.table:
            score = rule.priority * rule.matching_patterns(text)
            if rule.field_type in inferred:
                score += INFERRED_TYPE_BONUS
            if kind_type == rule.field_type:
                score += ELEMENT_KIND_BONUS
            scores[rule.field_type] = score
        return scores

    def infer_type(self, field: DetectedField) -> Optional[str]:
        best_type: Optional[str] = None
        best_score = 0
        for field_type, score in self.scores(field).items():
            if score > best_score:
                best_type, best_score = field_type, score
        if best_score <= self._min_score:
            return None
        return best_type

    def group_fields(self, fields: Sequence[DetectedField]) -> Tuple[Dict[str, List[DetectedField]], List[DetectedField]]:
        """Partition ``fields`` by mapped type; unmapped fields are returned separately."""

        grouped: Dict[str, List[DetectedField]] = {}
        unmatched: List[DetectedField] = []
        for field in fields:
            field_type = self.infer_type(field)
            if field_type is None:
                unmatched.append(field)
                continue
            grouped.setdefault(field_type, []).append(field)
        return grouped, unmatched


__all__ = [
    "DEFAULT_RULES",
    "DEFAULT_RULE_TABLE",
    "MappingRule",
    "RuleMatcher",
    "RuleTable",
    "load_rule_table",
    "rule_types_for",
]
