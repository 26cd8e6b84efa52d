"""Record types shared by the scoring, allocation and reporting stages."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping

import pandas as pd

from bookops.schema import (
    COL_ACCOUNT_ID,
    COL_ACCOUNT_NAME,
    COL_ARR,
    COL_ATR,
    COL_TERRITORY,
    COL_TIER,
    COL_CRE_COUNT,
    COL_CRE_RISK,
    COL_OWNER_ID,
    COL_NEW_OWNER_ID,
    COL_PARENT_ID,
    COL_IS_PARENT,
    COL_SPLIT_OWNERSHIP,
    COL_OWNER_CHANGE_DATE,
    COL_LOCKED,
    COL_REP_ID,
    COL_REP_NAME,
    COL_REGION,
    COL_IS_ACTIVE,
    COL_INCLUDE,
    COL_IS_STRATEGIC,
    COL_FLM,
    COL_SLM,
    canonicalize_id,
    parse_tier,
)

# Warning severities
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"

# Warning types
WARN_CONTINUITY_BROKEN = "continuity_broken"
WARN_CROSS_REGION = "cross_region"
WARN_CRE_RISK = "cre_risk"
WARN_STRATEGIC_OVERFLOW = "strategic_overflow"
WARN_CAPACITY_EXCEEDED = "capacity_exceeded"
WARN_UNASSIGNED = "unassigned"
WARN_CONFIGURATION = "configuration"


@dataclass(frozen=True)
class Account:
    account_id: str
    arr: float = 0.0
    name: str | None = None
    atr: float = 0.0
    territory: str | None = None
    tier: int | None = None
    cre_count: int = 0
    cre_risk: bool = False
    current_owner_id: str | None = None
    proposed_owner_id: str | None = None
    parent_id: str | None = None
    is_parent: bool = False
    has_split_ownership: bool = False
    owner_since: date | None = None
    is_locked: bool = False

    def __post_init__(self) -> None:
        if self.arr < 0:
            raise ValueError(f"Account {self.account_id} has negative ARR ({self.arr})")
        if self.tier is not None and self.tier not in (1, 2, 3, 4):
            raise ValueError(f"Account {self.account_id} has invalid tier {self.tier!r}")

    @property
    def is_cre(self) -> bool:
        return bool(self.cre_risk) or self.cre_count > 0

    @property
    def is_child(self) -> bool:
        return bool(self.parent_id) and self.parent_id != self.account_id


@dataclass
class Rep:
    """A rep plus the running workload totals mutated during allocation."""

    rep_id: str
    name: str | None = None
    region: str | None = None
    is_active: bool = True
    include_in_assignments: bool = True
    is_strategic: bool = False
    flm: str | None = None
    slm: str | None = None
    current_arr: float = 0.0
    account_count: int = 0
    cre_count: int = 0

    @property
    def is_eligible(self) -> bool:
        return self.is_active and self.include_in_assignments

    @property
    def pool(self) -> str:
        return "strategic" if self.is_strategic else "normal"


@dataclass(frozen=True)
class AggregateState:
    """Fleet-level averages observed by modifier conditions."""

    average_arr: float = 0.0
    average_account_count: float = 0.0
    target_arr: float = 0.0
    territory_map: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_reps(
        cls,
        reps: Iterable[Rep],
        target_arr: float = 0.0,
        territory_map: Mapping[str, str] | None = None,
    ) -> "AggregateState":
        reps = list(reps)
        mapping = dict(territory_map or {})
        if not reps:
            return cls(target_arr=target_arr, territory_map=mapping)
        return cls(
            average_arr=sum(r.current_arr for r in reps) / len(reps),
            average_account_count=sum(r.account_count for r in reps) / len(reps),
            target_arr=target_arr,
            territory_map=mapping,
        )


@dataclass
class ScoredCandidate:
    account: Account
    rep: Rep
    raw_score: float
    adjusted_score: float
    capacity_multiplier: float = 1.0
    geo_match: bool = False
    continuity_match: bool = False
    disqualified: bool = False

    @property
    def final_score(self) -> float:
        # Scales negative scores too: a lighter rep (higher multiplier) sinks further.
        return self.adjusted_score * self.capacity_multiplier


@dataclass
class AssignmentWarning:
    severity: str
    warning_type: str
    account_id: str | None
    reason: str
    rep_id: str | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AssignmentRecord:
    account_id: str
    rep_id: str
    previous_owner_id: str | None
    raw_score: float = 0.0
    adjusted_score: float = 0.0
    capacity_multiplier: float = 1.0
    final_score: float = 0.0
    priority_level: str = "P4"
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    try:
        if pd.isna(value):
            return default
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes", "y"}
    return bool(value)


def _as_str(value) -> str | None:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    text = str(value).strip()
    return text or None


def _as_float(value) -> float:
    num = pd.to_numeric(value, errors="coerce")
    return 0.0 if pd.isna(num) else float(num)


def accounts_from_frame(df: pd.DataFrame) -> List[Account]:
    """Build :class:`Account` records from a canonical accounts frame."""
    if df.empty:
        return []
    ids = canonicalize_id(df[COL_ACCOUNT_ID])
    owners = canonicalize_id(df[COL_OWNER_ID]) if COL_OWNER_ID in df.columns else pd.Series(None, index=df.index)
    parents = canonicalize_id(df[COL_PARENT_ID]) if COL_PARENT_ID in df.columns else pd.Series(None, index=df.index)
    proposed = canonicalize_id(df[COL_NEW_OWNER_ID]) if COL_NEW_OWNER_ID in df.columns else pd.Series(None, index=df.index)
    since = (
        pd.to_datetime(df[COL_OWNER_CHANGE_DATE], errors="coerce")
        if COL_OWNER_CHANGE_DATE in df.columns
        else pd.Series(pd.NaT, index=df.index)
    )

    accounts: List[Account] = []
    for idx, row in df.iterrows():
        account_id = _as_str(ids[idx])
        if account_id is None:
            print(f"[WARN] Skipping account row {idx} without an id")
            continue
        owner_since = since[idx]
        accounts.append(
            Account(
                account_id=account_id,
                arr=max(0.0, _as_float(row.get(COL_ARR))),
                name=_as_str(row.get(COL_ACCOUNT_NAME)),
                atr=_as_float(row.get(COL_ATR)),
                territory=_as_str(row.get(COL_TERRITORY)),
                tier=parse_tier(row.get(COL_TIER)),
                cre_count=int(_as_float(row.get(COL_CRE_COUNT))),
                cre_risk=_as_bool(row.get(COL_CRE_RISK)),
                current_owner_id=_as_str(owners[idx]),
                proposed_owner_id=_as_str(proposed[idx]),
                parent_id=_as_str(parents[idx]),
                is_parent=_as_bool(row.get(COL_IS_PARENT)),
                has_split_ownership=_as_bool(row.get(COL_SPLIT_OWNERSHIP)),
                owner_since=None if pd.isna(owner_since) else owner_since.date(),
                is_locked=_as_bool(row.get(COL_LOCKED)),
            )
        )
    return accounts


def reps_from_frame(df: pd.DataFrame) -> List[Rep]:
    """Build :class:`Rep` records (with zeroed running totals) from a reps frame."""
    if df.empty:
        return []
    ids = canonicalize_id(df[COL_REP_ID])
    reps: List[Rep] = []
    for idx, row in df.iterrows():
        rep_id = _as_str(ids[idx])
        if rep_id is None:
            print(f"[WARN] Skipping rep row {idx} without an id")
            continue
        reps.append(
            Rep(
                rep_id=rep_id,
                name=_as_str(row.get(COL_REP_NAME)),
                region=_as_str(row.get(COL_REGION)),
                is_active=_as_bool(row.get(COL_IS_ACTIVE), default=True),
                include_in_assignments=_as_bool(row.get(COL_INCLUDE), default=True),
                is_strategic=_as_bool(row.get(COL_IS_STRATEGIC)),
                flm=_as_str(row.get(COL_FLM)),
                slm=_as_str(row.get(COL_SLM)),
            )
        )
    return reps
