"""Assignment rule configuration and helpers."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence
import json

from bookops.config import WEIGHTS_PATH
from bookops.models import Account
from bookops.modifiers import ConditionalModifier, parse_modifiers
from bookops.schema import (
    COL_RULE_ID,
    COL_RULE_NAME,
    COL_RULE_TYPE,
    COL_PRIORITY,
    COL_ENABLED,
    COL_WEIGHTS,
    COL_CONDITIONS,
    COL_MODIFIERS,
    COL_SCOPE,
)

GEO_FIRST = "GEO_FIRST"
CONTINUITY = "CONTINUITY"
SMART_BALANCE = "SMART_BALANCE"
CRE_BALANCE = "CRE_BALANCE"
TIER_BALANCE = "TIER_BALANCE"

# Documented defaults per rule type; a missing weight key falls back here.
DEFAULT_WEIGHTS: Dict[str, Dict[str, float]] = {
    GEO_FIRST: {"territoryMatch": 50.0, "distancePenalty": -20.0},
    CONTINUITY: {"continuityBonus": 75.0},
    SMART_BALANCE: {"balanceImpact": 50.0},
    CRE_BALANCE: {"balanceWeight": 20.0, "overloadPenalty": -20.0},
    # Fixed scoring table, not configurable.
    TIER_BALANCE: {},
}

# Search bounds used by the weight tuner.
WEIGHT_BOUNDS: Dict[str, Dict[str, tuple[float, float]]] = {
    GEO_FIRST: {"territoryMatch": (10.0, 100.0), "distancePenalty": (-60.0, 0.0)},
    CONTINUITY: {"continuityBonus": (0.0, 150.0)},
    SMART_BALANCE: {"balanceImpact": (0.0, 100.0)},
    CRE_BALANCE: {"balanceWeight": (0.0, 50.0)},
}

SCOPE_ALL = "all"
SCOPE_CUSTOMERS = "customers"
SCOPE_PROSPECTS = "prospects"


@dataclass(frozen=True)
class RuleScope:
    """Which accounts a rule applies to."""

    segment: str = SCOPE_ALL
    tiers: tuple[int, ...] = ()
    territories: tuple[str, ...] = ()
    min_arr: float | None = None
    max_arr: float | None = None
    cre_only: bool = False

    def applies_to(self, account: Account) -> bool:
        if self.segment == SCOPE_CUSTOMERS and account.arr <= 0:
            return False
        if self.segment == SCOPE_PROSPECTS and account.arr > 0:
            return False
        if self.tiers and account.tier not in self.tiers:
            return False
        if self.territories and account.territory not in self.territories:
            return False
        if self.min_arr is not None and account.arr < self.min_arr:
            return False
        if self.max_arr is not None and account.arr > self.max_arr:
            return False
        if self.cre_only and not account.is_cre:
            return False
        return True


@dataclass(frozen=True)
class AssignmentRule:
    rule_type: str
    priority: int = 1
    enabled: bool = True
    weights: Mapping[str, float] = field(default_factory=dict)
    scope: RuleScope = field(default_factory=RuleScope)
    territory_mappings: Mapping[str, str] = field(default_factory=dict)
    modifiers: tuple[ConditionalModifier, ...] = ()
    name: str | None = None
    rule_id: str | None = None

    @property
    def priority_multiplier(self) -> float:
        return 1.0 / self.priority

    def weight(self, key: str) -> float | None:
        """Configured weight, else the rule type default, else None."""
        if key in self.weights and self.weights[key] is not None:
            return float(self.weights[key])
        default = DEFAULT_WEIGHTS.get(self.rule_type, {}).get(key)
        return None if default is None else float(default)

    def label(self) -> str:
        return self.name or self.rule_id or self.rule_type


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        text = value.decode("utf-8") if isinstance(value, bytes) else value
        if not text.strip():
            return default
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Bare scope strings such as "all" are stored unquoted.
            return text.strip()
    return value


def parse_scope(value: Any) -> RuleScope:
    """Build a :class:`RuleScope` from a segment string or a mapping."""
    value = _json_field(value, SCOPE_ALL)
    if isinstance(value, str):
        segment = value.strip().lower() or SCOPE_ALL
        if segment not in (SCOPE_ALL, SCOPE_CUSTOMERS, SCOPE_PROSPECTS):
            raise ValueError(f"Unknown account scope '{value}'")
        return RuleScope(segment=segment)
    if isinstance(value, Mapping):
        segment = str(value.get("segment") or SCOPE_ALL).lower()
        if segment not in (SCOPE_ALL, SCOPE_CUSTOMERS, SCOPE_PROSPECTS):
            raise ValueError(f"Unknown account scope '{segment}'")
        min_arr = value.get("min_arr")
        max_arr = value.get("max_arr")
        return RuleScope(
            segment=segment,
            tiers=tuple(int(t) for t in value.get("tiers") or ()),
            territories=tuple(str(t) for t in value.get("territories") or ()),
            min_arr=None if min_arr is None else float(min_arr),
            max_arr=None if max_arr is None else float(max_arr),
            cre_only=bool(value.get("cre_only", False)),
        )
    raise ValueError(f"Unsupported account scope {value!r}")


def rule_from_record(record: Mapping[str, Any]) -> tuple[AssignmentRule, List[str]]:
    """Parse an ``assignment_rules`` row.

    Configuration problems never raise: the offending piece is replaced by
    its default and a message is returned alongside the rule.
    """
    problems: List[str] = []
    rule_type = str(record.get(COL_RULE_TYPE) or "").strip().upper()
    label = str(record.get(COL_RULE_NAME) or record.get(COL_RULE_ID) or rule_type)

    raw_priority = record.get(COL_PRIORITY)
    try:
        priority = 1 if raw_priority is None else int(raw_priority)
    except (TypeError, ValueError):
        priority = 1
        problems.append(f"Rule '{label}': invalid priority {record.get(COL_PRIORITY)!r}; using 1")
    if priority < 1:
        problems.append(f"Rule '{label}': priority {priority} below 1; using 1")
        priority = 1

    weights: Dict[str, float] = {}
    raw_weights = _json_field(record.get(COL_WEIGHTS), {})
    if not isinstance(raw_weights, Mapping):
        problems.append(f"Rule '{label}': scoring weights are not a mapping; using defaults")
        raw_weights = {}
    for key, val in raw_weights.items():
        try:
            weights[str(key)] = float(val)
        except (TypeError, ValueError):
            problems.append(f"Rule '{label}': weight '{key}'={val!r} is not numeric; using default")

    conditions = _json_field(record.get(COL_CONDITIONS), {})
    mappings: Dict[str, str] = {}
    if isinstance(conditions, Mapping):
        raw_map = conditions.get("territoryMappings") or {}
        if isinstance(raw_map, Mapping):
            mappings = {str(k): str(v) for k, v in raw_map.items() if v}

    try:
        scope = parse_scope(record.get(COL_SCOPE))
    except (ValueError, TypeError) as exc:
        problems.append(f"Rule '{label}': {exc}; applying to all accounts")
        scope = RuleScope()

    raw_mods = _json_field(record.get(COL_MODIFIERS), [])
    if not isinstance(raw_mods, list):
        problems.append(f"Rule '{label}': conditional modifiers are not a list; ignoring")
        raw_mods = []
    modifiers, mod_problems = parse_modifiers(raw_mods, source=f"rule '{label}'")
    problems.extend(mod_problems)

    enabled = record.get(COL_ENABLED, True)
    if isinstance(enabled, str):
        enabled = enabled.strip().lower() in {"1", "true", "t", "yes", "y"}
    rule = AssignmentRule(
        rule_type=rule_type,
        priority=priority,
        enabled=True if enabled is None else bool(enabled),
        weights=weights,
        scope=scope,
        territory_mappings=mappings,
        modifiers=tuple(modifiers),
        name=record.get(COL_RULE_NAME),
        rule_id=None if record.get(COL_RULE_ID) is None else str(record.get(COL_RULE_ID)),
    )
    for msg in problems:
        if not msg.startswith("Dropped modifier"):
            print(f"[WARN] {msg}")
    return rule, problems


def rules_from_records(records: Sequence[Mapping[str, Any]]) -> tuple[List[AssignmentRule], List[str]]:
    rules: List[AssignmentRule] = []
    problems: List[str] = []
    for record in records:
        rule, issues = rule_from_record(record)
        rules.append(rule)
        problems.extend(issues)
    return rules, problems


def load_rules_file(path: Path) -> tuple[List[AssignmentRule], List[str]]:
    """Load rules from a JSON file holding a list of rule rows."""
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, Mapping):
        data = data.get("rules", [])
    if not isinstance(data, list):
        raise ValueError(f"Rules file {path} must hold a list of rules")
    return rules_from_records(data)


def default_rules() -> List[AssignmentRule]:
    """The stock rule stack used when no rules are configured."""

    return [
        AssignmentRule(GEO_FIRST, priority=1, name="Geography", weights=dict(DEFAULT_WEIGHTS[GEO_FIRST])),
        AssignmentRule(CONTINUITY, priority=2, name="Continuity", weights=dict(DEFAULT_WEIGHTS[CONTINUITY])),
        AssignmentRule(SMART_BALANCE, priority=3, name="Balance", weights=dict(DEFAULT_WEIGHTS[SMART_BALANCE])),
        AssignmentRule(CRE_BALANCE, priority=4, name="CRE Balance", weights=dict(DEFAULT_WEIGHTS[CRE_BALANCE])),
        AssignmentRule(TIER_BALANCE, priority=5, name="Tier Balance", weights=dict(DEFAULT_WEIGHTS[TIER_BALANCE])),
    ]


def enabled_rules(rules: Sequence[AssignmentRule]) -> List[AssignmentRule]:
    return [r for r in rules if r.enabled]


def territory_map(rules: Sequence[AssignmentRule]) -> Dict[str, str]:
    """Merge territory mappings of enabled GEO_FIRST rules; stronger priority wins."""
    merged: Dict[str, str] = {}
    geo = sorted(
        (r for r in rules if r.enabled and r.rule_type == GEO_FIRST),
        key=lambda r: r.priority,
        reverse=True,
    )
    for rule in geo:
        merged.update(rule.territory_mappings)
    return merged


def collect_modifiers(rules: Sequence[AssignmentRule]) -> List[ConditionalModifier]:
    """Flatten modifiers of enabled rules, keeping rule order then list order."""
    out: List[ConditionalModifier] = []
    for rule in rules:
        if rule.enabled:
            out.extend(rule.modifiers)
    return out


def load_weight_overrides(path: Path = WEIGHTS_PATH) -> Mapping[str, Mapping[str, float]]:
    """Read tuned weights written by the weight tuner, if any."""
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"[WARN] Failed to read weight overrides from {path}: {exc}")
        return {}
    weights = data.get("weights") if isinstance(data, Mapping) else None
    if isinstance(weights, Mapping):
        return weights
    return {}


def _deep_update(target: MutableMapping[str, Any], update: Mapping[str, Any]) -> MutableMapping[str, Any]:
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), MutableMapping):
            _deep_update(target[key], value)  # type: ignore[index]
        else:
            target[key] = value
    return target


def apply_weight_overrides(
    rules: Sequence[AssignmentRule],
    overrides: Mapping[str, Mapping[str, float]],
) -> List[AssignmentRule]:
    """Return copies of ``rules`` with tuned weights merged over configured ones."""
    if not overrides:
        return list(rules)
    out: List[AssignmentRule] = []
    for rule in rules:
        update = overrides.get(rule.rule_type)
        if not update:
            out.append(rule)
            continue
        merged: Dict[str, Any] = _deep_update(dict(rule.weights), update)
        out.append(replace(rule, weights={k: float(v) for k, v in merged.items()}))
    return out
