import json

import pytest

from bookops.models import Account
from bookops.rules import (
    AssignmentRule,
    CONTINUITY,
    GEO_FIRST,
    SMART_BALANCE,
    TIER_BALANCE,
    RuleScope,
    apply_weight_overrides,
    collect_modifiers,
    default_rules,
    load_rules_file,
    load_weight_overrides,
    parse_scope,
    rule_from_record,
    rules_from_records,
    territory_map,
)


def test_rule_from_record_parses_json_columns():
    record = {
        "id": 7,
        "name": "Geo",
        "rule_type": "geo_first",
        "priority": 1,
        "enabled": True,
        "scoring_weights": json.dumps({"territoryMatch": 60, "distancePenalty": -10}),
        "conditions": json.dumps({"territoryMappings": {"NorCal": "West", "Blank": ""}}),
        "conditional_modifiers": json.dumps([
            {"condition": "rep_current_arr > average_arr * 1.5", "action": "multiply_score", "value": 0.5}
        ]),
        "account_scope": "customers",
    }
    rule, problems = rule_from_record(record)

    assert problems == []
    assert rule.rule_type == GEO_FIRST
    assert rule.rule_id == "7"
    assert rule.weight("territoryMatch") == 60.0
    assert rule.territory_mappings == {"NorCal": "West"}
    assert rule.scope.segment == "customers"
    assert len(rule.modifiers) == 1


def test_rule_from_record_substitutes_defaults_for_bad_config():
    record = {
        "name": "Broken",
        "rule_type": "CONTINUITY",
        "priority": 0,
        "enabled": "false",
        "scoring_weights": {"continuityBonus": "lots"},
        "conditional_modifiers": [{"condition": "nonsense", "action": "disqualify"}],
        "account_scope": "martians",
    }
    rule, problems = rule_from_record(record)

    assert rule.priority == 1
    assert rule.enabled is False
    assert rule.weight("continuityBonus") == 75.0
    assert rule.scope == RuleScope()
    assert rule.modifiers == ()
    assert len(problems) == 4


def test_parse_scope_mapping():
    scope = parse_scope({"segment": "all", "tiers": [1, 2], "min_arr": 1000, "cre_only": True})
    assert scope.applies_to(Account("a1", arr=5000, tier=1, cre_count=1))
    assert not scope.applies_to(Account("a2", arr=5000, tier=3, cre_count=1))
    assert not scope.applies_to(Account("a3", arr=500, tier=1, cre_count=1))
    assert not scope.applies_to(Account("a4", arr=5000, tier=2))


def test_load_rules_file_accepts_wrapped_list(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": [
        {"rule_type": "SMART_BALANCE", "priority": 2},
        {"rule_type": "TIER_BALANCE", "priority": 3, "enabled": False},
    ]}))
    rules, problems = load_rules_file(path)
    assert [r.rule_type for r in rules] == [SMART_BALANCE, TIER_BALANCE]
    assert rules[1].enabled is False
    assert problems == []


def test_default_rules_are_priority_ordered():
    rules = default_rules()
    assert [r.priority for r in rules] == [1, 2, 3, 4, 5]
    assert {r.rule_type for r in rules} == {GEO_FIRST, CONTINUITY, SMART_BALANCE, "CRE_BALANCE", TIER_BALANCE}


def test_territory_map_prefers_stronger_priority():
    rules = [
        AssignmentRule(GEO_FIRST, priority=3, territory_mappings={"NorCal": "Central", "Texas": "South"}),
        AssignmentRule(GEO_FIRST, priority=1, territory_mappings={"NorCal": "West"}),
        AssignmentRule(GEO_FIRST, priority=2, enabled=False, territory_mappings={"Texas": "East"}),
    ]
    assert territory_map(rules) == {"NorCal": "West", "Texas": "South"}


def test_collect_modifiers_skips_disabled_rules():
    rules, _ = rules_from_records([
        {"rule_type": "GEO_FIRST", "conditional_modifiers": [{"condition": "account_arr > 1", "action": "add_penalty", "value": 1}]},
        {"rule_type": "CONTINUITY", "enabled": False, "conditional_modifiers": [{"condition": "account_arr > 1", "action": "disqualify"}]},
    ])
    mods = collect_modifiers(rules)
    assert [m.action for m in mods] == ["add_penalty"]


def test_weight_overrides_merge_over_configured_weights(tmp_path):
    path = tmp_path / "rule_weights.json"
    path.write_text(json.dumps({"weights": {"GEO_FIRST": {"territoryMatch": 80.0}}, "meta": {}}))
    overrides = load_weight_overrides(path)

    rules = [AssignmentRule(GEO_FIRST, weights={"territoryMatch": 50.0, "distancePenalty": -5.0}), AssignmentRule(CONTINUITY)]
    tuned = apply_weight_overrides(rules, overrides)

    assert tuned[0].weights == {"territoryMatch": 80.0, "distancePenalty": -5.0}
    assert tuned[1] is rules[1]
    assert rules[0].weights["territoryMatch"] == 50.0


def test_missing_weights_file_means_no_overrides(tmp_path):
    assert load_weight_overrides(tmp_path / "missing.json") == {}
