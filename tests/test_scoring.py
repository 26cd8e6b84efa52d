import pytest

from bookops.models import Account, Rep
from bookops.rules import (
    AssignmentRule,
    RuleScope,
    CONTINUITY,
    CRE_BALANCE,
    GEO_FIRST,
    SMART_BALANCE,
    TIER_BALANCE,
    default_rules,
)
from bookops.scoring import ScoreCalculator, priority_multiplier


def _calc(**kwargs):
    return ScoreCalculator(target_arr=kwargs.pop("target_arr", 2_000_000.0), **kwargs)


@pytest.mark.parametrize("priority,expected", [(1, 1.0), (2, 0.5), (3, 1 / 3), (7, 1 / 7)])
def test_priority_multiplier_is_reciprocal(priority, expected):
    assert priority_multiplier(priority) == pytest.approx(expected)
    assert AssignmentRule(GEO_FIRST, priority=priority).priority_multiplier == pytest.approx(expected)


def test_priority_multiplier_rejects_zero():
    with pytest.raises(ValueError):
        priority_multiplier(0)


def test_geo_continuity_balance_example_sums_weighted_subscores():
    rules = [
        AssignmentRule(GEO_FIRST, priority=1, weights={"territoryMatch": 50}),
        AssignmentRule(CONTINUITY, priority=2, weights={"continuityBonus": 75}),
        AssignmentRule(SMART_BALANCE, priority=3, weights={"balanceImpact": 30}),
    ]
    account = Account("a1", arr=100_000, territory="West", current_owner_id="r1")
    rep = Rep("r1", region="West")

    breakdown = _calc().breakdown(account, rep, rules)

    assert breakdown.total == pytest.approx(50 + 37.5 + 10)
    assert breakdown.geo_match is True
    assert breakdown.continuity_match is True


def test_geo_mismatch_uses_distance_penalty():
    rule = AssignmentRule(GEO_FIRST, priority=1)
    account = Account("a1", territory="East")
    assert _calc().score(account, Rep("r1", region="West"), [rule]) == pytest.approx(-20.0)


def test_territory_mapping_resolves_region():
    rule = AssignmentRule(GEO_FIRST, priority=1, territory_mappings={"NorCal": "West"})
    account = Account("a1", territory="NorCal")
    calc = _calc()
    assert calc.score(account, Rep("r1", region="West"), [rule]) == pytest.approx(50.0)
    assert calc.geo_match(account, Rep("r2", region="East"), rule) is False


def test_smart_balance_is_clamped_deficit():
    rule = AssignmentRule(SMART_BALANCE, priority=1, weights={"balanceImpact": 40})
    account = Account("a1")
    calc = _calc()
    assert calc.score(account, Rep("r1", current_arr=500_000), [rule]) == pytest.approx(30.0)
    assert calc.score(account, Rep("r2", current_arr=3_000_000), [rule]) == pytest.approx(0.0)


def test_cre_balance_rewards_headroom_and_penalizes_overflow():
    rule = AssignmentRule(CRE_BALANCE, priority=1)
    account = Account("a1", cre_risk=True)
    calc = _calc(max_cre_per_rep=3)
    assert calc.score(account, Rep("r1", cre_count=1), [rule]) == pytest.approx(40.0)
    assert calc.score(account, Rep("r2", cre_count=3), [rule]) == pytest.approx(0.0)
    assert calc.score(account, Rep("r3", cre_count=5), [rule]) == pytest.approx(-40.0)


def test_tier_balance_table():
    rule = AssignmentRule(TIER_BALANCE, priority=1)
    calc = _calc()
    assert calc.score(Account("a1", tier=1), Rep("s", is_strategic=True), [rule]) == 60.0
    assert calc.score(Account("a2", tier=3), Rep("n"), [rule]) == 40.0
    assert calc.score(Account("a3", tier=1), Rep("n"), [rule]) == 20.0
    assert calc.score(Account("a4"), Rep("s", is_strategic=True), [rule]) == 20.0


def test_disabled_and_out_of_scope_rules_do_not_contribute():
    rules = [
        AssignmentRule(GEO_FIRST, priority=1, enabled=False),
        AssignmentRule(TIER_BALANCE, priority=1, scope=RuleScope(segment="prospects")),
    ]
    account = Account("a1", arr=10_000, territory="West")
    assert _calc().score(account, Rep("r1", region="West"), rules) == 0.0


def test_unknown_rule_type_is_skipped_and_reported_once():
    rules = [AssignmentRule("ROUND_ROBIN", priority=1, name="rr"), AssignmentRule(TIER_BALANCE, priority=2)]
    calc = _calc()
    account = Account("a1", tier=3)

    first = calc.score(account, Rep("r1"), rules)
    calc.score(account, Rep("r2"), rules)

    assert first == pytest.approx(20.0)
    assert len(calc.warnings) == 1
    assert "ROUND_ROBIN" in calc.warnings[0]


def test_missing_weight_falls_back_to_default():
    rule = AssignmentRule(CONTINUITY, priority=1, weights={"unrelated": 1.0})
    account = Account("a1", current_owner_id="r1")
    calc = _calc()
    assert calc.score(account, Rep("r1"), [rule]) == pytest.approx(75.0)
    calc.score(account, Rep("r1"), [rule])
    assert len(calc.warnings) == 1 and "continuityBonus" in calc.warnings[0]


def test_stock_rules_carry_their_weights():
    calc = _calc()
    account = Account("a1", arr=50_000, territory="West", current_owner_id="r1", cre_risk=True)
    for rep in (Rep("r1", region="West"), Rep("r2", region="East", cre_count=5)):
        calc.score(account, rep, default_rules())
    assert calc.warnings == []


def test_default_rules_score_owner_in_region_highest():
    account = Account("a1", arr=50_000, territory="West", current_owner_id="r1")
    calc = _calc()
    rules = default_rules()
    owner = calc.score(account, Rep("r1", region="West"), rules)
    other = calc.score(account, Rep("r2", region="East"), rules)
    assert owner > other
