"""Conditional score modifiers.

Conditions come from the rule editor as short comparison strings such as
``"rep_current_arr > average_arr * 1.2"``. They are parsed into a
:class:`Condition` drawn from a fixed vocabulary and evaluated natively; no
expression is ever executed.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence

from bookops.models import Account, AggregateState, Rep

# Condition kinds
REGION_MISMATCH = "region_mismatch"
ARR_ABOVE_AVERAGE = "arr_above_average"
ACCOUNT_COUNT_AT_LEAST = "account_count_at_least"
ACCOUNT_ARR_ABOVE = "account_arr_above"
NOT_CURRENT_OWNER = "not_current_owner"

CONDITION_KINDS = frozenset({
    REGION_MISMATCH,
    ARR_ABOVE_AVERAGE,
    ACCOUNT_COUNT_AT_LEAST,
    ACCOUNT_ARR_ABOVE,
    NOT_CURRENT_OWNER,
})

# Actions
MULTIPLY_SCORE = "multiply_score"
SET_SCORE = "set_score"
ADD_PENALTY = "add_penalty"
DISQUALIFY = "disqualify"

ACTIONS = frozenset({MULTIPLY_SCORE, SET_SCORE, ADD_PENALTY, DISQUALIFY})

_NUM = r"([0-9]+(?:\.[0-9]+)?)"
_PATTERNS = [
    (re.compile(r"^rep_region\s*!=\s*target_region$"), REGION_MISMATCH),
    (re.compile(rf"^rep_current_arr\s*>\s*average_arr\s*\*\s*{_NUM}$"), ARR_ABOVE_AVERAGE),
    (re.compile(rf"^rep_account_count\s*>=\s*{_NUM}$"), ACCOUNT_COUNT_AT_LEAST),
    (re.compile(rf"^account_arr\s*>\s*{_NUM}$"), ACCOUNT_ARR_ABOVE),
    (re.compile(r"^is_current_owner\s*==\s*false$"), NOT_CURRENT_OWNER),
]


def resolve_region(territory: str | None, territory_map: Mapping[str, str] | None) -> str | None:
    """Region an account territory belongs to; unmapped territories stand for themselves."""
    if not territory:
        return None
    if territory_map and territory in territory_map:
        return territory_map[territory]
    return territory


@dataclass(frozen=True)
class Condition:
    kind: str
    parameter: float | None = None

    def evaluate(self, account: Account, rep: Rep, state: AggregateState) -> bool:
        if self.kind == REGION_MISMATCH:
            target = resolve_region(account.territory, state.territory_map)
            return target is not None and rep.region != target
        if self.kind == ARR_ABOVE_AVERAGE:
            return rep.current_arr > state.average_arr * (1.0 if self.parameter is None else self.parameter)
        if self.kind == ACCOUNT_COUNT_AT_LEAST:
            return rep.account_count >= (0.0 if self.parameter is None else self.parameter)
        if self.kind == ACCOUNT_ARR_ABOVE:
            return account.arr > (0.0 if self.parameter is None else self.parameter)
        if self.kind == NOT_CURRENT_OWNER:
            return account.current_owner_id != rep.rep_id
        raise ValueError(f"Unknown condition kind '{self.kind}'")


def parse_condition(text: str) -> Condition:
    """Parse a condition string from the rule editor into a :class:`Condition`."""
    norm = " ".join(str(text).strip().lower().split())
    for pattern, kind in _PATTERNS:
        match = pattern.match(norm)
        if match:
            param = float(match.group(1)) if match.groups() else None
            return Condition(kind=kind, parameter=param)
    raise ValueError(f"Unsupported modifier condition '{text}'")


@dataclass(frozen=True)
class ConditionalModifier:
    condition: Condition
    action: str
    value: float | None = None

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"Unknown modifier action '{self.action}'")
        if self.action != DISQUALIFY and self.value is None:
            raise ValueError(f"Modifier action '{self.action}' requires a value")


def parse_modifier(record: Mapping[str, Any]) -> ConditionalModifier:
    """Build a modifier from a ``{"condition", "action", "value"}`` mapping."""
    condition = record.get("condition")
    if isinstance(condition, Condition):
        cond = condition
    else:
        cond = parse_condition(str(condition or ""))
    action = str(record.get("action") or "").strip().lower()
    raw_value = record.get("value")
    value = None if action == DISQUALIFY or raw_value is None else float(raw_value)
    return ConditionalModifier(condition=cond, action=action, value=value)


def parse_modifiers(records: Iterable[Mapping[str, Any]] | None, source: str = "") -> tuple[List[ConditionalModifier], List[str]]:
    """Parse modifier records, dropping (and reporting) the ones that do not parse."""
    modifiers: List[ConditionalModifier] = []
    problems: List[str] = []
    for record in records or []:
        try:
            modifiers.append(parse_modifier(record))
        except (ValueError, TypeError) as exc:
            where = f" in {source}" if source else ""
            msg = f"Dropped modifier{where}: {exc}"
            print(f"[WARN] {msg}")
            problems.append(msg)
    return modifiers, problems


class ModifierEngine:
    """Applies conditional modifiers to a raw candidate score."""

    def evaluate(
        self,
        account: Account,
        rep: Rep,
        raw_score: float,
        state: AggregateState,
        modifiers: Sequence[ConditionalModifier],
    ) -> tuple[float, bool]:
        """Return ``(adjusted_score, disqualified)``.

        Modifiers run in list order. A matching disqualify pins the score to 0
        and ends evaluation for this candidate.
        """
        score = float(raw_score)
        for modifier in modifiers:
            if not modifier.condition.evaluate(account, rep, state):
                continue
            if modifier.action == DISQUALIFY:
                return 0.0, True
            if modifier.action == MULTIPLY_SCORE:
                score *= float(modifier.value)
            elif modifier.action == SET_SCORE:
                score = float(modifier.value)
            elif modifier.action == ADD_PENALTY:
                score -= float(modifier.value)
        return score, False

    def apply_modifiers(
        self,
        account: Account,
        rep: Rep,
        raw_score: float,
        state: AggregateState,
        modifiers: Sequence[ConditionalModifier],
    ) -> float:
        score, _ = self.evaluate(account, rep, raw_score, state, modifiers)
        return score
