from datetime import date

import pytest

from bookops.allocation import AllocationResult, AssignmentAllocator
from bookops.config import AllocationConfig, ThresholdConfig
from bookops.metrics import BalanceMetricsReporter, coefficient_of_variation
from bookops.models import Account, Rep
from bookops.rules import default_rules


def test_coefficient_of_variation_is_population_cv():
    assert coefficient_of_variation([2.6, 1.0]) == pytest.approx(0.8 / 1.8)
    assert coefficient_of_variation([]) == 0.0
    assert coefficient_of_variation([0.0, 0.0]) == 0.0


def test_cutoff_flags_over_and_under():
    reps = {"r1": Rep("r1", current_arr=2_600_000.0), "r2": Rep("r2", current_arr=1_000_000.0)}
    result = AllocationResult(reps=reps)
    metrics = BalanceMetricsReporter(AllocationConfig(hard_cutoff_arr=2_500_000.0)).summarize(result, [])

    assert metrics.cutoff_flags() == {"r1": "over", "r2": "under"}
    bands = dict(zip(metrics.rep_loads["rep_id"], metrics.rep_loads["band_status"]))
    assert bands == {"r1": "over", "r2": "below"}
    assert metrics.arr_balance_score == pytest.approx(100.0 - 100.0 * 0.8 / 1.8)
    assert metrics.reps_in_band == 0


def test_inactive_reps_are_left_out_of_loads():
    reps = {"r1": Rep("r1", current_arr=1.0), "r2": Rep("r2", is_active=False)}
    metrics = BalanceMetricsReporter().summarize(AllocationResult(reps=reps), [])
    assert metrics.rep_loads["rep_id"].tolist() == ["r1"]


def test_summary_rates_after_allocation():
    accounts = [
        Account("a1", arr=100_000.0, territory="West", current_owner_id="w"),
        Account("a2", arr=100_000.0, territory="East", current_owner_id="w"),
    ]
    reps = [Rep("w", region="West"), Rep("e", region="East")]
    result = AssignmentAllocator(as_of=date(2025, 1, 1)).allocate(accounts, reps, default_rules())

    metrics = BalanceMetricsReporter().summarize(result, accounts, default_rules())

    assert result.assignments == {"a1": "w", "a2": "e"}
    assert metrics.geo_alignment_pct == pytest.approx(100.0)
    assert metrics.continuity_pct == pytest.approx(50.0)
    assert metrics.p1_rate == pytest.approx(50.0)
    assert metrics.p2_rate == pytest.approx(50.0)
    assert metrics.assigned_accounts == 2 and metrics.unassigned_accounts == 0
    assert metrics.warning_counts == {"continuity_broken": 1}
    assert metrics.biggest_gainer["rep_id"] == "e"
    assert metrics.biggest_loser["rep_id"] == "w"
    assert metrics.arr_cv == pytest.approx(0.0)


def test_regional_imbalance_and_tier_concentration():
    reps = {
        "w1": Rep("w1", region="West", current_arr=3_000_000.0),
        "e1": Rep("e1", region="East", current_arr=1_000_000.0),
    }
    accounts = [Account(f"t{i}", tier=1) for i in range(3)]
    result = AllocationResult(assignments={a.account_id: "w1" for a in accounts}, reps=reps)
    reporter = BalanceMetricsReporter(thresholds=ThresholdConfig(tier1_concentration=2))

    metrics = reporter.summarize(result, accounts)

    assert len(metrics.regional_imbalances) == 2
    assert any(line.startswith("West") and "above" in line for line in metrics.regional_imbalances)
    assert metrics.tier_concentration == [{"rep_id": "w1", "tier": 1, "count": 3, "limit": 2}]


def test_to_dict_excludes_frames():
    reps = {"r1": Rep("r1", current_arr=5.0)}
    out = BalanceMetricsReporter().summarize(AllocationResult(reps=reps), []).to_dict()
    assert "rep_loads" not in out and "region_summary" not in out
    assert out["total_reps"] == 1
