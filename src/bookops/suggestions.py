"""Contract with the external rebalancing-suggestion service.

The engine hands out a compact problem summary (reps under target, reps over
the preferred maximum and the accounts that could move) and reads back a
list of proposed moves. Moves are advisory: nothing here changes an
assignment. A manager applies them explicitly.

Long runs are split into batches; progress is reported after each batch and
cancellation is honoured between batches only.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

import pandas as pd

from bookops.allocation import AllocationResult
from bookops.config import AllocationConfig, SuggestionConfig
from bookops.models import Account


@dataclass(frozen=True)
class SuggestedMove:
    account_id: str
    from_rep_id: str | None
    to_rep_id: str
    rationale: str
    priority: int = 99
    arr: float | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SuggestionRun:
    moves: List[SuggestedMove] = field(default_factory=list)
    batches_completed: int = 0
    total_batches: int = 0
    cancelled: bool = False
    rejected: List[str] = field(default_factory=list)


def build_problem_summary(
    result: AllocationResult,
    accounts: Sequence[Account],
    allocation: AllocationConfig | None = None,
    suggestions: SuggestionConfig | None = None,
) -> Dict[str, Any]:
    """Summarize which reps need ARR and which books could give some up."""
    allocation = allocation or AllocationConfig()
    suggestions = suggestions or SuggestionConfig()
    by_id = {a.account_id: a for a in accounts}
    book: Dict[str, List[Account]] = {}
    for account_id, rep_id in result.assignments.items():
        if account_id in by_id:
            book.setdefault(rep_id, []).append(by_id[account_id])

    target = allocation.target_arr
    preferred_min = allocation.preferred_min()
    preferred_max = allocation.preferred_max()
    under, over = [], []
    for rep in sorted(result.reps.values(), key=lambda r: r.rep_id):
        if not rep.is_eligible:
            continue
        entry = {
            "rep_id": rep.rep_id,
            "name": rep.name,
            "region": rep.region,
            "pool": rep.pool,
            "arr": round(rep.current_arr, 2),
            "account_count": rep.account_count,
            "cre_count": rep.cre_count,
        }
        if rep.current_arr < preferred_min:
            entry["deficit"] = round(target - rep.current_arr, 2)
            under.append(entry)
        elif rep.current_arr > preferred_max:
            entry["surplus"] = round(rep.current_arr - target, 2)
            movable = sorted(
                (a for a in book.get(rep.rep_id, []) if not a.is_locked),
                key=lambda a: (a.arr, a.account_id),
            )[: suggestions.max_accounts_per_rep]
            entry["movable_accounts"] = [
                {"account_id": a.account_id, "arr": a.arr, "territory": a.territory, "tier": a.tier, "cre": a.is_cre}
                for a in movable
            ]
            over.append(entry)

    under.sort(key=lambda e: (-e["deficit"], e["rep_id"]))
    over.sort(key=lambda e: (-e["surplus"], e["rep_id"]))
    return {
        "target_arr": target,
        "preferred_min": preferred_min,
        "preferred_max": preferred_max,
        "max_cre_per_rep": allocation.max_cre_per_rep,
        "under_target": under,
        "over_target": over,
        "total_deficit": round(sum(e["deficit"] for e in under), 2),
    }


def _pick(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in record and record[key] not in (None, ""):
            return record[key]
    return None


def parse_suggestions(
    payload: Any,
    known_accounts: Iterable[str] | None = None,
    known_reps: Iterable[str] | None = None,
) -> tuple[List[SuggestedMove], List[str]]:
    """Parse the service response into moves ordered by priority.

    Accepts either a list of moves or a mapping with a ``suggestions`` list.
    Entries missing an account or target rep, or naming unknown ids, are
    rejected with a message rather than raising.
    """
    if isinstance(payload, Mapping):
        payload = payload.get("suggestions", [])
    if not isinstance(payload, list):
        raise ValueError("Suggestion payload must be a list or contain a 'suggestions' list")

    accounts = set(known_accounts) if known_accounts is not None else None
    reps = set(known_reps) if known_reps is not None else None
    moves: List[SuggestedMove] = []
    rejected: List[str] = []
    for i, item in enumerate(payload):
        if not isinstance(item, Mapping):
            rejected.append(f"#{i}: not an object")
            continue
        account_id = _pick(item, "account_id", "accountId", "sfdc_account_id")
        to_rep = _pick(item, "to_rep_id", "toRepId", "new_owner_id", "suggested_rep_id")
        if account_id is None or to_rep is None:
            rejected.append(f"#{i}: missing account or target rep")
            continue
        account_id, to_rep = str(account_id), str(to_rep)
        if accounts is not None and account_id not in accounts:
            rejected.append(f"#{i}: unknown account {account_id}")
            continue
        if reps is not None and to_rep not in reps:
            rejected.append(f"#{i}: unknown rep {to_rep}")
            continue
        from_rep = _pick(item, "from_rep_id", "fromRepId", "current_owner_id")
        try:
            priority = int(_pick(item, "priority") or 99)
        except (TypeError, ValueError):
            priority = 99
        arr = _pick(item, "arr", "account_arr")
        moves.append(
            SuggestedMove(
                account_id=account_id,
                from_rep_id=None if from_rep is None else str(from_rep),
                to_rep_id=to_rep,
                rationale=str(_pick(item, "rationale", "reason", "reasoning") or ""),
                priority=priority,
                arr=None if arr is None else float(arr),
            )
        )
    for msg in rejected:
        print(f"[WARN] Rejected suggestion {msg}")
    moves.sort(key=lambda m: m.priority)
    return moves, rejected


def batches(items: Sequence[Any], batch_size: int) -> List[List[Any]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


def run_suggestion_batches(
    items: Sequence[Any],
    fetch: Callable[[List[Any]], Any],
    batch_size: int = 50,
    on_progress: Callable[[int, int], None] | None = None,
    should_cancel: Callable[[], bool] | None = None,
    known_accounts: Iterable[str] | None = None,
    known_reps: Iterable[str] | None = None,
) -> SuggestionRun:
    """Send ``items`` to ``fetch`` in batches and collect the parsed moves.

    ``should_cancel`` is checked before each batch starts; a batch already in
    flight always completes.
    """
    chunks = batches(items, batch_size)
    known_accounts = None if known_accounts is None else set(known_accounts)
    known_reps = None if known_reps is None else set(known_reps)
    run = SuggestionRun(total_batches=len(chunks))
    for chunk in chunks:
        if should_cancel is not None and should_cancel():
            run.cancelled = True
            print(f"[INFO] Suggestion run cancelled after {run.batches_completed}/{run.total_batches} batches")
            break
        moves, rejected = parse_suggestions(fetch(chunk), known_accounts, known_reps)
        run.moves.extend(moves)
        run.rejected.extend(rejected)
        run.batches_completed += 1
        if on_progress is not None:
            on_progress(run.batches_completed, run.total_batches)
    run.moves.sort(key=lambda m: m.priority)
    return run


def move_impact(move: SuggestedMove, result: AllocationResult, accounts: Sequence[Account]) -> Dict[str, Any]:
    """ARR of both books if ``move`` were applied; the result is not modified."""
    arr = next((a.arr for a in accounts if a.account_id == move.account_id), move.arr or 0.0)
    source_id = result.assignments.get(move.account_id, move.from_rep_id)
    source = result.reps.get(source_id or "")
    target = result.reps.get(move.to_rep_id)
    return {
        "account_id": move.account_id,
        "arr": arr,
        "from_rep_id": source_id,
        "from_arr_after": None if source is None else source.current_arr - arr,
        "to_rep_id": move.to_rep_id,
        "to_arr_after": None if target is None else target.current_arr + arr,
    }


def review_frame(moves: Sequence[SuggestedMove], result: AllocationResult, accounts: Sequence[Account]) -> pd.DataFrame:
    """Tabulate moves with their impact for manual review."""
    rows = []
    for move in moves:
        row = {**move.to_dict(), **move_impact(move, result, accounts)}
        row["status"] = "pending_review"
        rows.append(row)
    return pd.DataFrame(
        rows,
        columns=[
            "priority", "account_id", "arr", "from_rep_id", "to_rep_id", "rationale",
            "from_arr_after", "to_arr_after", "status",
        ],
    )
