import pandas as pd
import pytest

from bookops.config import AllocationConfig
from bookops.thresholds import calculate_thresholds, derived_allocation_config, normal_rep_count


def _reps():
    return pd.DataFrame({
        "rep_id": ["r1", "r2", "s1", "x1", "n1"],
        "region": ["West", "East", "West", "East", None],
        "is_active": [True, True, True, False, True],
        "is_strategic_rep": [False, False, True, False, False],
    })


def _accounts():
    return pd.DataFrame({
        "sfdc_account_id": [f"a{i}" for i in range(10)],
        "calculated_arr": [100_000.0] * 10,
        "calculated_atr": [10_000.0] * 10,
        "cre_count": [1, 0, 0, 1, 0, 0, 0, 0, 0, 0],
        "expansion_tier": ["Tier 1", "1", 2, "Tier 2", None, None, 3, 4, 4, "Tier 2"],
        "renewal_quarter": ["Q1 2025", "q1", "Q2", "Q3", None, "Q4", "Q4", "Q4", "Q2", "Q1"],
    })


def test_normal_rep_count_excludes_strategic_inactive_and_regionless():
    assert normal_rep_count(_reps()) == 2


def test_calculate_thresholds_targets_and_ranges():
    table = calculate_thresholds(_accounts(), _reps(), AllocationConfig(arr_variance=0.25, account_variance=0.15))
    rows = table.set_index("metric")

    assert rows.loc["arr", "target"] == pytest.approx(500_000.0)
    assert rows.loc["arr", "min"] == pytest.approx(375_000.0)
    assert rows.loc["arr", "max"] == pytest.approx(625_000.0)

    assert rows.loc["accounts", "target"] == pytest.approx(5.0)
    assert rows.loc["accounts", "min"] == 4.0
    assert rows.loc["accounts", "max"] == 6.0

    assert rows.loc["cre", "target"] == pytest.approx(1.0)
    assert rows.loc["atr", "target"] == pytest.approx(50_000.0)
    assert rows.loc["tier1", "total"] == 2
    assert rows.loc["tier2", "total"] == 3
    assert rows.loc["q1_renewals", "total"] == 3
    assert rows.loc["q4_renewals", "total"] == 3
    assert set(table["based_on_reps"]) == {2}
    assert set(table["based_on_accounts"]) == {10}


def test_exact_integer_bounds_are_not_widened():
    accounts = pd.DataFrame({"sfdc_account_id": [f"a{i}" for i in range(8)], "calculated_arr": [1.0] * 8})
    reps = pd.DataFrame({"rep_id": ["r1", "r2"], "region": ["West", "East"]})
    rows = calculate_thresholds(accounts, reps, AllocationConfig(account_variance=0.25)).set_index("metric")
    assert rows.loc["accounts", "min"] == 3.0
    assert rows.loc["accounts", "max"] == 5.0


def test_no_normal_reps_raises():
    reps = pd.DataFrame({"rep_id": ["s1"], "region": ["West"], "is_strategic_rep": [True]})
    with pytest.raises(ValueError):
        calculate_thresholds(_accounts(), reps)


def test_derived_allocation_config_takes_arr_target():
    table = calculate_thresholds(_accounts(), _reps())
    cfg = derived_allocation_config(table, AllocationConfig(target_arr=1.0, hard_cutoff_arr=9.0))
    assert cfg.target_arr == pytest.approx(500_000.0)
    assert cfg.hard_cutoff_arr == 9.0
