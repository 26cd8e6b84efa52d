import pytest

from bookops.allocation import AllocationResult
from bookops.config import AllocationConfig, SuggestionConfig
from bookops.models import Account, Rep
from bookops.suggestions import (
    SuggestedMove,
    batches,
    build_problem_summary,
    parse_suggestions,
    review_frame,
    run_suggestion_batches,
)


def _state():
    accounts = [
        Account("a1", arr=1_000_000.0),
        Account("a2", arr=2_000_000.0),
        Account("a3", arr=400_000.0, is_locked=True),
        Account("b1", arr=500_000.0),
        Account("c1", arr=2_000_000.0),
    ]
    reps = {
        "r1": Rep("r1", region="West", current_arr=3_400_000.0, account_count=3),
        "r2": Rep("r2", region="East", current_arr=500_000.0, account_count=1),
        "r3": Rep("r3", region="East", current_arr=2_000_000.0, account_count=1),
        "gone": Rep("gone", is_active=False),
    }
    assignments = {"a1": "r1", "a2": "r1", "a3": "r1", "b1": "r2", "c1": "r3"}
    return AllocationResult(assignments=assignments, reps=reps), accounts


def test_problem_summary_lists_deficits_and_movable_accounts():
    result, accounts = _state()
    summary = build_problem_summary(result, accounts, AllocationConfig(target_arr=2_000_000.0, arr_variance=0.25))

    assert [e["rep_id"] for e in summary["under_target"]] == ["r2"]
    assert summary["under_target"][0]["deficit"] == pytest.approx(1_500_000.0)
    assert [e["rep_id"] for e in summary["over_target"]] == ["r1"]
    over = summary["over_target"][0]
    assert over["surplus"] == pytest.approx(1_400_000.0)
    assert [m["account_id"] for m in over["movable_accounts"]] == ["a1", "a2"]
    assert summary["total_deficit"] == pytest.approx(1_500_000.0)


def test_movable_accounts_are_capped_per_rep():
    result, accounts = _state()
    summary = build_problem_summary(result, accounts, suggestions=SuggestionConfig(max_accounts_per_rep=1))
    assert [m["account_id"] for m in summary["over_target"][0]["movable_accounts"]] == ["a1"]


def test_parse_suggestions_validates_and_orders_by_priority():
    payload = {"suggestions": [
        {"accountId": "a2", "fromRepId": "r1", "toRepId": "r2", "reasoning": "balance", "priority": 2},
        {"account_id": "a1", "to_rep_id": "r2", "rationale": "closer", "priority": 1, "arr": 1000000},
        {"account_id": "zz", "to_rep_id": "r2"},
        {"account_id": "a1", "to_rep_id": "nobody"},
        {"account_id": "a1"},
        "junk",
    ]}
    moves, rejected = parse_suggestions(payload, known_accounts={"a1", "a2"}, known_reps={"r1", "r2"})

    assert [m.account_id for m in moves] == ["a1", "a2"]
    assert moves[1].from_rep_id == "r1" and moves[1].rationale == "balance"
    assert moves[0].arr == 1_000_000.0
    assert len(rejected) == 4


def test_parse_suggestions_rejects_bad_payload():
    with pytest.raises(ValueError):
        parse_suggestions("not a list")


def test_batches_split_and_validate():
    assert batches(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
    with pytest.raises(ValueError):
        batches([1], 0)


def _fetch(chunk):
    return [{"account_id": item, "to_rep_id": "r2", "priority": i} for i, item in enumerate(chunk)]


def test_run_suggestion_batches_reports_progress():
    progress = []
    run = run_suggestion_batches(["a", "b", "c", "d", "e"], _fetch, batch_size=2, on_progress=lambda d, t: progress.append((d, t)))

    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert run.batches_completed == 3 and not run.cancelled
    assert len(run.moves) == 5
    assert [m.priority for m in run.moves] == sorted(m.priority for m in run.moves)


def test_run_suggestion_batches_cancels_between_batches():
    calls = []

    def fetch(chunk):
        calls.append(list(chunk))
        return _fetch(chunk)

    checks = iter([False, True, True])
    run = run_suggestion_batches(list("abcde"), fetch, batch_size=2, should_cancel=lambda: next(checks))

    assert run.cancelled
    assert run.batches_completed == 1
    assert calls == [["a", "b"]]
    assert [m.account_id for m in run.moves] == ["a", "b"]


def test_review_frame_shows_impact_without_changing_state():
    result, accounts = _state()
    move = SuggestedMove(account_id="a1", from_rep_id="r1", to_rep_id="r2", rationale="balance", priority=1)

    frame = review_frame([move], result, accounts)

    row = frame.iloc[0]
    assert row["from_arr_after"] == pytest.approx(2_400_000.0)
    assert row["to_arr_after"] == pytest.approx(1_500_000.0)
    assert row["status"] == "pending_review"
    assert result.assignments["a1"] == "r1"
    assert result.reps["r1"].current_arr == 3_400_000.0
