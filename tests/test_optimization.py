from datetime import date

import optuna
import pytest

from bookops import optimization
from bookops.metrics import OptimizationMetrics
from bookops.models import Account, Rep
from bookops.rules import AssignmentRule, TIER_BALANCE, default_rules


class DummyTrial:
    """Minimal Optuna-like trial for deterministic testing."""

    def __init__(self, suggestions: dict[str, float]):
        self._suggestions = suggestions
        self.requested: list[str] = []

    def suggest_float(self, name: str, low: float, high: float) -> float:
        value = self._suggestions[name]
        if not (low <= value <= high):  # pragma: no cover
            raise AssertionError(f"{name} suggestion {value} outside [{low}, {high}]")
        self.requested.append(name)
        return value


SUGGESTIONS = {
    "GEO_FIRST.territoryMatch": 80.0,
    "GEO_FIRST.distancePenalty": -30.0,
    "CONTINUITY.continuityBonus": 20.0,
    "SMART_BALANCE.balanceImpact": 60.0,
    "CRE_BALANCE.balanceWeight": 10.0,
}


def _book():
    accounts = [
        Account("a1", arr=300_000.0, territory="West", current_owner_id="w"),
        Account("a2", arr=200_000.0, territory="East", current_owner_id="w"),
        Account("a3", arr=100_000.0, territory="East", cre_risk=True),
    ]
    reps = [Rep("w", region="West"), Rep("e", region="East")]
    return accounts, reps


def _metrics(**overrides):
    base = dict(
        arr_balance_score=80.0, arr_cv=0.2, geo_alignment_pct=50.0, continuity_pct=100.0,
        p1_rate=0.0, p2_rate=0.0, p3_rate=0.0, p4_rate=0.0, reps_in_band=0, total_reps=2,
        cre_variance=0.0, total_arr=0.0, avg_arr_per_rep=0.0, min_arr_per_rep=0.0, max_arr_per_rep=0.0,
        assigned_accounts=3, unassigned_accounts=0,
    )
    base.update(overrides)
    return OptimizationMetrics(**base)


def test_suggest_weights_only_for_tunable_rule_types():
    trial = DummyTrial(SUGGESTIONS)
    weights = optimization.suggest_weights(trial, ["GEO_FIRST", "TIER_BALANCE", "GEO_FIRST"])
    assert weights == {"GEO_FIRST": {"territoryMatch": 80.0, "distancePenalty": -30.0}}
    assert len(trial.requested) == 2


def test_params_to_weights_nests_flat_names():
    nested = optimization.params_to_weights(SUGGESTIONS)
    assert nested["GEO_FIRST"] == {"territoryMatch": 80.0, "distancePenalty": -30.0}
    assert nested["CRE_BALANCE"] == {"balanceWeight": 10.0}


def test_combined_score_weights_metrics_and_penalties():
    m = _metrics(unassigned_accounts=2, warning_counts={"cre_risk": 1, "continuity_broken": 4})
    expected = 0.5 * 80.0 + 0.3 * 50.0 + 0.2 * 100.0 - 5.0 * 2 - 0.5 * 1
    assert optimization.combined_score(m) == pytest.approx(expected)
    assert optimization.combined_score(m, {"geo": 0.0}) == pytest.approx(expected - 15.0)


def test_objective_matches_manual_evaluation_and_leaves_reps_untouched():
    accounts, reps = _book()
    rules = default_rules()

    value = optimization.objective(DummyTrial(SUGGESTIONS), accounts, reps, rules, as_of=date(2025, 1, 1))

    weights = optimization.params_to_weights(SUGGESTIONS)
    manual = optimization.evaluate_weights(weights, accounts, reps, rules, as_of=date(2025, 1, 1))
    assert value == pytest.approx(optimization.combined_score(manual))
    assert all(r.current_arr == 0.0 and r.account_count == 0 for r in reps)


def test_objective_prunes_when_nothing_is_tunable():
    accounts, reps = _book()
    with pytest.raises(optuna.exceptions.TrialPruned):
        optimization.objective(DummyTrial({}), accounts, reps, [AssignmentRule(TIER_BALANCE)])
