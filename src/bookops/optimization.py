"""What-if tuning of rule weights.

Every trial is an independent full allocation run on copies of the reps, so
trials never share running workload state.
"""
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Sequence

import optuna
import numpy as np

from bookops.allocation import AssignmentAllocator
from bookops.config import AllocationConfig
from bookops.metrics import BalanceMetricsReporter, OptimizationMetrics
from bookops.models import Account, Rep
from bookops.modifiers import ConditionalModifier
from bookops.rules import AssignmentRule, WEIGHT_BOUNDS, apply_weight_overrides

# Relative importance of the run-level metrics in the tuning objective.
OBJECTIVE_WEIGHTS = {
    'balance': 0.50,
    'geo': 0.30,
    'continuity': 0.20,
}
# Points lost per unassigned account and per high-severity warning.
UNASSIGNED_PENALTY = 5.0
HIGH_WARNING_PENALTY = 0.5


def clone_reps(reps: Iterable[Rep]) -> List[Rep]:
    return [replace(r) for r in reps]


def suggest_weights(trial, rule_types: Iterable[str]) -> Dict[str, Dict[str, float]]:
    """Draw one weight per tunable key of each rule type present."""
    weights: Dict[str, Dict[str, float]] = {}
    for rule_type in sorted(set(rule_types)):
        bounds = WEIGHT_BOUNDS.get(rule_type)
        if not bounds:
            continue
        weights[rule_type] = {
            key: trial.suggest_float(f'{rule_type}.{key}', low, high)
            for key, (low, high) in bounds.items()
        }
    return weights


def params_to_weights(params: Dict[str, float]) -> Dict[str, Dict[str, float]]:
    """Turn flat ``RULE.key`` trial params back into nested weights."""
    out: Dict[str, Dict[str, float]] = {}
    for name, value in params.items():
        rule_type, _, key = name.partition('.')
        if key:
            out.setdefault(rule_type, {})[key] = float(value)
    return out


def evaluate_weights(
    weights: Dict[str, Dict[str, float]],
    accounts: Sequence[Account],
    reps: Sequence[Rep],
    rules: Sequence[AssignmentRule],
    modifiers: Sequence[ConditionalModifier] = (),
    config: AllocationConfig | None = None,
    as_of: date | None = None,
) -> OptimizationMetrics:
    config = config or AllocationConfig()
    tuned = apply_weight_overrides(rules, weights)
    allocator = AssignmentAllocator(config, as_of=as_of)
    result = allocator.allocate(accounts, clone_reps(reps), tuned, modifiers)
    return BalanceMetricsReporter(config).summarize(result, accounts, tuned)


def combined_score(metrics: OptimizationMetrics, objective_weights: Dict[str, float] | None = None) -> float:
    """Higher is better: weighted balance/geo/continuity minus breach penalties."""
    w = {**OBJECTIVE_WEIGHTS, **(objective_weights or {})}
    high = sum(
        count for wtype, count in metrics.warning_counts.items()
        if wtype in ('cre_risk', 'strategic_overflow', 'capacity_exceeded', 'unassigned')
    )
    score = (
        w['balance'] * metrics.arr_balance_score
        + w['geo'] * metrics.geo_alignment_pct
        + w['continuity'] * metrics.continuity_pct
        - UNASSIGNED_PENALTY * metrics.unassigned_accounts
        - HIGH_WARNING_PENALTY * high
    )
    return float(score) if np.isfinite(score) else -1e9


def objective(
    trial,
    accounts,
    reps,
    rules,
    modifiers=(),
    config=None,
    objective_weights=None,
    as_of=None,
):
    """Optuna objective (maximize) for rule weight tuning."""
    rule_types = [r.rule_type for r in rules if r.enabled]
    weights = suggest_weights(trial, rule_types)
    if not weights:
        raise optuna.exceptions.TrialPruned()
    metrics = evaluate_weights(weights, accounts, reps, rules, modifiers, config, as_of)
    return combined_score(metrics, objective_weights)
