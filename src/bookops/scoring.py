"""Priority-weighted rule scoring for (account, rep) pairs."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Sequence

from bookops.models import Account, Rep
from bookops.modifiers import resolve_region
from bookops.rules import (
    AssignmentRule,
    CONTINUITY,
    CRE_BALANCE,
    DEFAULT_WEIGHTS,
    GEO_FIRST,
    SMART_BALANCE,
    TIER_BALANCE,
)

# TIER_BALANCE table
TIER_STRATEGIC_POINTS = 60.0
TIER_NORMAL_POINTS = 40.0
TIER_OTHER_POINTS = 20.0


def priority_multiplier(priority: int) -> float:
    """Weight applied to a rule's sub-score: 1/priority."""
    if priority < 1:
        raise ValueError(f"Rule priority must be >= 1, got {priority}")
    return 1.0 / priority


@dataclass
class RuleContribution:
    rule_type: str
    label: str
    sub_score: float
    multiplier: float

    @property
    def weighted(self) -> float:
        return self.sub_score * self.multiplier


@dataclass
class ScoreBreakdown:
    contributions: List[RuleContribution] = field(default_factory=list)
    geo_match: bool = False
    continuity_match: bool = False

    @property
    def total(self) -> float:
        return float(sum(c.weighted for c in self.contributions))


class ScoreCalculator:
    """Sum of rule sub-scores, each scaled by 1/priority.

    Only enabled rules whose scope covers the account contribute. Rules of an
    unknown type are skipped and missing weight keys fall back to the rule
    type's default; both are reported once through :attr:`warnings`.
    """

    def __init__(
        self,
        target_arr: float,
        max_cre_per_rep: int = 3,
        territory_map: Mapping[str, str] | None = None,
    ):
        self.target_arr = float(target_arr)
        self.max_cre_per_rep = int(max_cre_per_rep)
        self.territory_map = dict(territory_map or {})
        self.warnings: List[str] = []
        self._reported: set[tuple[str, str]] = set()

    def _weight(self, rule: AssignmentRule, key: str) -> float:
        if key not in rule.weights:
            marker = (rule.label(), key)
            if marker not in self._reported:
                self._reported.add(marker)
                default = DEFAULT_WEIGHTS[rule.rule_type][key]
                msg = f"Rule '{rule.label()}' has no '{key}' weight; using default {default}"
                print(f"[WARN] {msg}")
                self.warnings.append(msg)
        value = rule.weight(key)
        return 0.0 if value is None else value

    def geo_match(self, account: Account, rep: Rep, rule: AssignmentRule | None = None) -> bool:
        mapping = self.territory_map
        if rule is not None and rule.territory_mappings:
            mapping = {**mapping, **rule.territory_mappings}
        target = resolve_region(account.territory, mapping)
        return target is not None and rep.region is not None and rep.region == target

    def _geo(self, account: Account, rep: Rep, rule: AssignmentRule) -> float:
        if self.geo_match(account, rep, rule):
            return self._weight(rule, "territoryMatch")
        return self._weight(rule, "distancePenalty")

    def _continuity(self, account: Account, rep: Rep, rule: AssignmentRule) -> float:
        if account.current_owner_id is not None and account.current_owner_id == rep.rep_id:
            return self._weight(rule, "continuityBonus")
        return 0.0

    def _balance(self, account: Account, rep: Rep, rule: AssignmentRule) -> float:
        if self.target_arr <= 0:
            return 0.0
        deficit = (self.target_arr - rep.current_arr) / self.target_arr
        return self._weight(rule, "balanceImpact") * min(1.0, max(0.0, deficit))

    def _cre(self, account: Account, rep: Rep, rule: AssignmentRule) -> float:
        remaining = self.max_cre_per_rep - rep.cre_count
        if remaining > 0:
            return self._weight(rule, "balanceWeight") * remaining
        if remaining == 0:
            return 0.0
        return self._weight(rule, "overloadPenalty") * (-remaining)

    def _tier(self, account: Account, rep: Rep, rule: AssignmentRule) -> float:
        if account.tier == 1 and rep.is_strategic:
            return TIER_STRATEGIC_POINTS
        if account.tier in (3, 4) and not rep.is_strategic:
            return TIER_NORMAL_POINTS
        return TIER_OTHER_POINTS

    def breakdown(self, account: Account, rep: Rep, rules: Sequence[AssignmentRule]) -> ScoreBreakdown:
        handlers = {
            GEO_FIRST: self._geo,
            CONTINUITY: self._continuity,
            SMART_BALANCE: self._balance,
            CRE_BALANCE: self._cre,
            TIER_BALANCE: self._tier,
        }
        result = ScoreBreakdown()
        for rule in rules:
            if not rule.enabled or not rule.scope.applies_to(account):
                continue
            handler = handlers.get(rule.rule_type)
            if handler is None:
                marker = (rule.label(), "__type__")
                if marker not in self._reported:
                    self._reported.add(marker)
                    msg = f"Skipping rule '{rule.label()}' with unknown type '{rule.rule_type}'"
                    print(f"[WARN] {msg}")
                    self.warnings.append(msg)
                continue
            sub = float(handler(account, rep, rule))
            result.contributions.append(
                RuleContribution(rule.rule_type, rule.label(), sub, priority_multiplier(rule.priority))
            )
            if rule.rule_type == GEO_FIRST and self.geo_match(account, rep, rule):
                result.geo_match = True
            elif rule.rule_type == CONTINUITY and account.current_owner_id == rep.rep_id:
                result.continuity_match = True
        return result

    def score(self, account: Account, rep: Rep, rules: Sequence[AssignmentRule]) -> float:
        return self.breakdown(account, rep, rules).total
