"""Tests for mapping rules, the immutable rule table and rule-based grouping."""
from __future__ import annotations

import json

import pytest

from fieldmatch.matching.rules import DEFAULT_RULE_TABLE, MappingRule, RuleMatcher, RuleTable, load_rule_table
from fieldmatch.models import DetectedField, FieldIdentifiers


def _field(ref: str, kind: str = "text", inferred: str = "custom", **identifiers) -> DetectedField:
    return DetectedField(ref=ref, identifiers=FieldIdentifiers(**identifiers), element_kind=kind, inferred_type=inferred)


def test_default_table_has_all_rule_types():
    assert set(DEFAULT_RULE_TABLE.field_types()) == {
        "email",
        "phone",
        "firstName",
        "lastName",
        "fullName",
        "address",
        "city",
        "state",
        "zipCode",
        "country",
        "birthDate",
        "website",
        "company",
    }
    assert DEFAULT_RULE_TABLE.get("email").priority == 10


def test_matcher_scores_priority_times_pattern_hits_plus_bonuses():
    matcher = RuleMatcher()
    field = _field("#e", kind="email", inferred="email", name="email")

    scores = matcher.scores(field)

    # "email", "e-?mail" and "mail" match: 3 * 10, +5 inferred type, +8 element kind
    assert scores["email"] == 43
    assert matcher.infer_type(field) == "email"


def test_group_fields_partitions_and_reports_unmatched():
    fields = [
        _field("#fn", name="first_name", label="First name", inferred="name"),
        _field("#tel", kind="tel", name="mobile", inferred="phone"),
        _field("#misc", name="favourite_colour"),
    ]

    grouped, unmatched = RuleMatcher().group_fields(fields)

    assert [field.ref for field in grouped["firstName"]] == ["#fn"]
    assert [field.ref for field in grouped["phone"]] == ["#tel"]
    assert [field.ref for field in unmatched] == ["#misc"]


def test_weak_signals_stay_unmatched():
    # A lone "nation" hit scoring exactly the minimum is rejected.
    field = _field("#n", label="Nation", inferred="custom")

    assert RuleMatcher().scores(field)["country"] == 6
    assert RuleMatcher(min_score=6).infer_type(field) is None


def test_rule_table_updates_return_new_versions():
    table = RuleTable([MappingRule("email", ("email",), ("email",), priority=10)])
    updated = table.with_rule(MappingRule("nickname", ("nick",), ("nickname",), priority=2))
    reprioritized = updated.with_updates("email", priority=4)
    trimmed = reprioritized.without_rule("nickname")

    assert table.version == 1 and len(table) == 1
    assert updated.version == 2 and "nickname" in updated
    assert reprioritized.get("email").priority == 4
    assert table.get("email").priority == 10
    assert trimmed.version == 4 and "nickname" not in trimmed

    with pytest.raises(KeyError):
        table.without_rule("missing")
    with pytest.raises(KeyError):
        table.with_updates("missing", priority=1)


def test_rule_priority_must_be_positive():
    with pytest.raises(ValueError):
        MappingRule("email", ("email",), ("email",), priority=0)


def test_rules_load_from_json_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(
        json.dumps(
            {
                "version": 7,
                "rules": {
                    "email": {"patterns": ["re:e-?mail"], "backingFieldNames": ["email"], "priority": 10},
                    "nickname": {"patterns": ["nick"], "databaseFields": ["nickname"], "priority": 2},
                },
            }
        ),
        encoding="utf-8",
    )

    table = load_rule_table(str(path))

    assert table.version == 7
    assert table.backing_fields_for(["email", "nickname", "unknown"]) == ["email", "nickname"]
    assert table.get("email").matching_patterns("your e-mail") == 1
    assert table.to_dict()["email"]["patterns"] == ["re:e-?mail"]


def test_load_rule_table_without_path_returns_defaults():
    assert load_rule_table(None) is DEFAULT_RULE_TABLE
