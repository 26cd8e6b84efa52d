from datetime import date

import pandas as pd
import pytest

from bookops.models import Account, AggregateState, Rep, accounts_from_frame, reps_from_frame


def test_account_rejects_negative_arr_and_bad_tier():
    with pytest.raises(ValueError):
        Account("a1", arr=-1.0)
    with pytest.raises(ValueError):
        Account("a2", tier=5)


def test_account_flags():
    assert Account("a1", cre_count=2).is_cre
    assert Account("a2", cre_risk=True).is_cre
    assert not Account("a3").is_cre
    assert Account("c1", parent_id="p1").is_child
    assert not Account("p1", parent_id="p1").is_child


def test_rep_eligibility_and_pool():
    assert Rep("r1").is_eligible
    assert not Rep("r2", is_active=False).is_eligible
    assert not Rep("r3", include_in_assignments=False).is_eligible
    assert Rep("r4", is_strategic=True).pool == "strategic"


def test_aggregate_state_averages():
    state = AggregateState.from_reps([Rep("r1", current_arr=10, account_count=1), Rep("r2", current_arr=30, account_count=3)], 50.0)
    assert state.average_arr == 20.0
    assert state.average_account_count == 2.0
    assert AggregateState.from_reps([]).average_arr == 0.0


def test_accounts_from_frame_parses_canonical_columns():
    df = pd.DataFrame({
        "sfdc_account_id": ["001", "002", None],
        "calculated_arr": [1000.0, None, 5.0],
        "expansion_tier": ["Tier 1", None, 2],
        "cre_count": [0, 2, 0],
        "owner_id": ["r1", None, "r1"],
        "ultimate_parent_id": [None, "001", None],
        "owner_change_date": ["2024-06-01", None, None],
        "exclude_from_reassignment": ["yes", "no", None],
    })
    accounts = accounts_from_frame(df)

    assert [a.account_id for a in accounts] == ["001", "002"]
    first, second = accounts
    assert first.tier == 1 and first.owner_since == date(2024, 6, 1) and first.is_locked
    assert second.arr == 0.0 and second.is_cre and second.is_child and second.current_owner_id is None


def test_reps_from_frame_defaults():
    df = pd.DataFrame({
        "rep_id": ["r1", "r2"],
        "name": ["Ann", "Bo"],
        "region": ["West", None],
        "is_active": [True, "false"],
        "is_strategic_rep": [None, "true"],
    })
    reps = reps_from_frame(df)
    assert reps[0].is_active and not reps[0].is_strategic and reps[0].include_in_assignments
    assert not reps[1].is_active and reps[1].is_strategic and reps[1].region is None
    assert all(r.current_arr == 0.0 for r in reps)
