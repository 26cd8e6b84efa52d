"""Sequential account-to-rep allocation.

Accounts are processed one at a time. Each account is scored against every
eligible rep, the best candidate wins, and the winner's running totals are
updated before the next account is scored, so SMART_BALANCE, CRE_BALANCE and
the capacity multiplier always see the committed book.

Processing order (see :func:`order_accounts`):
  1. locked accounts, committed to their current owner;
  2. remaining accounts by the strongest priority among enabled rules whose
     scope covers them, then by descending ARR, then by account id;
  3. child accounts without split ownership, which follow their parent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Sequence

from bookops.capacity import CapacityAdjuster
from bookops.config import AllocationConfig
from bookops.models import (
    Account,
    AggregateState,
    AssignmentRecord,
    AssignmentWarning,
    Rep,
    ScoredCandidate,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    WARN_CAPACITY_EXCEEDED,
    WARN_CONFIGURATION,
    WARN_CONTINUITY_BROKEN,
    WARN_CRE_RISK,
    WARN_CROSS_REGION,
    WARN_STRATEGIC_OVERFLOW,
    WARN_UNASSIGNED,
)
from bookops.modifiers import ConditionalModifier, ModifierEngine, resolve_region
from bookops.rules import AssignmentRule, enabled_rules, territory_map
from bookops.scoring import ScoreCalculator

_NO_RULE_PRIORITY = 10**6


def priority_level(geo_match: bool, continuity_match: bool) -> str:
    """P1 continuity+geo, P2 geo only, P3 continuity only, P4 fallback."""
    if geo_match and continuity_match:
        return "P1"
    if geo_match:
        return "P2"
    if continuity_match:
        return "P3"
    return "P4"


_LEVEL_REASONS = {
    "P1": "Geo match with continuity",
    "P2": "Geo match",
    "P3": "Continuity",
    "P4": "Best available score",
}


def order_accounts(accounts: Iterable[Account], rules: Sequence[AssignmentRule]) -> List[Account]:
    """Deterministic processing order: rule-scope priority, ARR desc, account id."""
    active = enabled_rules(rules)

    def key(account: Account):
        best = min((r.priority for r in active if r.scope.applies_to(account)), default=_NO_RULE_PRIORITY)
        return (best, -account.arr, account.account_id)

    return sorted(accounts, key=key)


@dataclass
class AllocationResult:
    assignments: Dict[str, str] = field(default_factory=dict)
    warnings: List[AssignmentWarning] = field(default_factory=list)
    records: List[AssignmentRecord] = field(default_factory=list)
    reps: Dict[str, Rep] = field(default_factory=dict)
    unassigned: List[str] = field(default_factory=list)

    def warn(
        self,
        severity: str,
        warning_type: str,
        account_id: str | None,
        reason: str,
        rep_id: str | None = None,
        **details,
    ) -> None:
        self.warnings.append(AssignmentWarning(severity, warning_type, account_id, reason, rep_id, dict(details)))

    def add_configuration_warnings(self, messages: Iterable[str]) -> None:
        seen = {w.reason for w in self.warnings if w.warning_type == WARN_CONFIGURATION}
        for msg in messages:
            if msg not in seen:
                seen.add(msg)
                self.warn(SEVERITY_LOW, WARN_CONFIGURATION, None, msg)

    def warnings_of(self, warning_type: str) -> List[AssignmentWarning]:
        return [w for w in self.warnings if w.warning_type == warning_type]


class AssignmentAllocator:
    """Assign every account to the best-scoring eligible rep."""

    def __init__(
        self,
        config: AllocationConfig | None = None,
        as_of: date | None = None,
        modifier_engine: ModifierEngine | None = None,
        capacity: CapacityAdjuster | None = None,
    ):
        self.config = config or AllocationConfig()
        self.as_of = as_of or date.today()
        self.modifier_engine = modifier_engine or ModifierEngine()
        self.capacity = capacity or CapacityAdjuster(self.config.saturation_ratio)

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------
    def _eligible_pool(self, account: Account, pool: List[Rep]) -> List[Rep]:
        """Apply the hard caps; a cap that would empty the pool is soft-breached."""
        cfg = self.config
        if account.is_cre:
            under_cap = [r for r in pool if r.cre_count < cfg.max_cre_per_rep]
            if under_cap:
                pool = under_cap
        if cfg.enforce_arr_cutoff and cfg.hard_cutoff_arr > 0:
            fits = [r for r in pool if r.current_arr + account.arr <= cfg.hard_cutoff_arr]
            if fits:
                pool = fits
        return pool

    def score_candidate(
        self,
        account: Account,
        rep: Rep,
        rules: Sequence[AssignmentRule],
        modifiers: Sequence[ConditionalModifier],
        state: AggregateState,
        scorer: ScoreCalculator,
    ) -> ScoredCandidate:
        breakdown = scorer.breakdown(account, rep, rules)
        raw = breakdown.total
        adjusted, disqualified = self.modifier_engine.evaluate(account, rep, raw, state, modifiers)
        return ScoredCandidate(
            account=account,
            rep=rep,
            raw_score=raw,
            adjusted_score=adjusted,
            capacity_multiplier=self.capacity.capacity_multiplier(rep, self.config.target_arr),
            geo_match=breakdown.geo_match,
            continuity_match=breakdown.continuity_match,
            disqualified=disqualified,
        )

    @staticmethod
    def _selection_key(candidate: ScoredCandidate):
        is_owner = candidate.account.current_owner_id == candidate.rep.rep_id
        return (
            -round(candidate.final_score, 9),
            0 if is_owner else 1,
            candidate.rep.current_arr,
            candidate.rep.rep_id,
        )

    def select(self, candidates: Sequence[ScoredCandidate]) -> ScoredCandidate:
        """Highest final score; ties go to the current owner, then the lighter book, then rep id."""
        viable = [c for c in candidates if not c.disqualified] or list(candidates)
        return min(viable, key=self._selection_key)

    # ------------------------------------------------------------------
    # Commit and warnings
    # ------------------------------------------------------------------
    def _owner_held_long(self, account: Account) -> tuple[bool, int | None]:
        if account.owner_since is None:
            return True, None
        days = (self.as_of - account.owner_since).days
        return days > self.config.continuity_days, days

    def _commit(
        self,
        account: Account,
        rep: Rep,
        result: AllocationResult,
        tmap: Dict[str, str],
        record: AssignmentRecord,
    ) -> None:
        cfg = self.config
        rep.current_arr += account.arr
        rep.account_count += 1
        if account.is_cre:
            rep.cre_count += 1
        result.assignments[account.account_id] = rep.rep_id
        result.records.append(record)

        owner = account.current_owner_id
        if owner and owner != rep.rep_id:
            held_long, days = self._owner_held_long(account)
            if held_long:
                result.warn(
                    SEVERITY_MEDIUM,
                    WARN_CONTINUITY_BROKEN,
                    account.account_id,
                    f"Moved from {owner} to {rep.rep_id}",
                    rep.rep_id,
                    previous_owner_id=owner,
                    days_owned=days,
                )

        target_region = resolve_region(account.territory, tmap)
        if target_region is not None and rep.region != target_region:
            result.warn(
                SEVERITY_LOW,
                WARN_CROSS_REGION,
                account.account_id,
                f"Territory {account.territory} ({target_region}) assigned to {rep.region or 'unknown'} rep",
                rep.rep_id,
                account_region=target_region,
                rep_region=rep.region,
            )

        if account.is_cre and rep.cre_count > cfg.max_cre_per_rep:
            result.warn(
                SEVERITY_HIGH,
                WARN_STRATEGIC_OVERFLOW if rep.is_strategic else WARN_CRE_RISK,
                account.account_id,
                f"Rep {rep.rep_id} now holds {rep.cre_count} CRE accounts (cap {cfg.max_cre_per_rep})",
                rep.rep_id,
                cre_count=rep.cre_count,
                cap=cfg.max_cre_per_rep,
            )

        if cfg.enforce_arr_cutoff and cfg.hard_cutoff_arr > 0 and rep.current_arr > cfg.hard_cutoff_arr:
            result.warn(
                SEVERITY_HIGH,
                WARN_CAPACITY_EXCEEDED,
                account.account_id,
                f"Rep {rep.rep_id} ARR {rep.current_arr:,.0f} exceeds cutoff {cfg.hard_cutoff_arr:,.0f}",
                rep.rep_id,
                rep_arr=rep.current_arr,
                cutoff=cfg.hard_cutoff_arr,
            )

    def _assign(
        self,
        account: Account,
        eligible: List[Rep],
        rules: Sequence[AssignmentRule],
        modifiers: Sequence[ConditionalModifier],
        scorer: ScoreCalculator,
        tmap: Dict[str, str],
        result: AllocationResult,
    ) -> None:
        if not eligible:
            result.unassigned.append(account.account_id)
            result.warn(SEVERITY_HIGH, WARN_UNASSIGNED, account.account_id, "No active reps available")
            return

        pool = self._eligible_pool(account, eligible)
        state = AggregateState.from_reps(eligible, self.config.target_arr, tmap)
        candidates = [self.score_candidate(account, rep, rules, modifiers, state, scorer) for rep in pool]
        best = self.select(candidates)

        level = priority_level(best.geo_match, best.continuity_match)
        reason = f"{_LEVEL_REASONS[level]} (score {best.final_score:.2f})"
        if best.disqualified:
            reason += "; every candidate was disqualified"
        record = AssignmentRecord(
            account_id=account.account_id,
            rep_id=best.rep.rep_id,
            previous_owner_id=account.current_owner_id,
            raw_score=best.raw_score,
            adjusted_score=best.adjusted_score,
            capacity_multiplier=best.capacity_multiplier,
            final_score=best.final_score,
            priority_level=level,
            reason=reason,
        )
        self._commit(account, best.rep, result, tmap, record)

    def _assign_fixed(
        self,
        account: Account,
        rep: Rep,
        reason: str,
        scorer: ScoreCalculator,
        tmap: Dict[str, str],
        result: AllocationResult,
    ) -> None:
        geo = scorer.geo_match(account, rep)
        continuity = account.current_owner_id == rep.rep_id
        record = AssignmentRecord(
            account_id=account.account_id,
            rep_id=rep.rep_id,
            previous_owner_id=account.current_owner_id,
            priority_level=priority_level(geo, continuity),
            reason=reason,
        )
        self._commit(account, rep, result, tmap, record)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def allocate(
        self,
        accounts: Sequence[Account],
        reps: Sequence[Rep],
        rules: Sequence[AssignmentRule],
        modifiers: Sequence[ConditionalModifier] = (),
        preserve_order: bool = False,
    ) -> AllocationResult:
        """Allocate ``accounts`` across ``reps``; rep running totals are updated in place.

        With ``preserve_order`` the given account order is used as is,
        otherwise :func:`order_accounts` decides it.
        """
        result = AllocationResult(reps={r.rep_id: r for r in reps})
        tmap = territory_map(rules)
        scorer = ScoreCalculator(self.config.target_arr, self.config.max_cre_per_rep, tmap)
        eligible = [r for r in reps if r.is_eligible]
        by_id = {a.account_id: a for a in accounts}

        ordered = list(accounts) if preserve_order else order_accounts(accounts, rules)
        locked: List[Account] = []
        main: List[Account] = []
        children: List[Account] = []
        for account in ordered:
            if account.is_locked:
                locked.append(account)
            elif account.is_child and not account.has_split_ownership and account.parent_id in by_id:
                children.append(account)
            else:
                main.append(account)

        orphaned: List[Account] = []
        for account in locked:
            owner = result.reps.get(account.current_owner_id or "")
            if owner is not None and owner.is_active:
                self._assign_fixed(account, owner, "Locked to current owner", scorer, tmap, result)
            else:
                print(f"[WARN] Locked account {account.account_id} has no active owner; scoring it instead")
                orphaned.append(account)

        for account in orphaned + main:
            self._assign(account, eligible, rules, modifiers, scorer, tmap, result)

        for account in children:
            parent_rep = result.reps.get(result.assignments.get(account.parent_id, ""))
            if parent_rep is not None and parent_rep.is_active:
                self._assign_fixed(account, parent_rep, f"Follows parent {account.parent_id}", scorer, tmap, result)
            else:
                self._assign(account, eligible, rules, modifiers, scorer, tmap, result)

        result.add_configuration_warnings(scorer.warnings)
        print(
            f"[INFO] Allocated {len(result.assignments):,} of {len(accounts):,} accounts "
            f"across {len(eligible):,} reps ({len(result.warnings):,} warnings)"
        )
        return result
