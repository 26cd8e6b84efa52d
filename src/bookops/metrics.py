"""Post-allocation balance statistics.

Everything here is a read-only aggregation over an :class:`AllocationResult`;
rep running totals are never touched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import numpy as np
import pandas as pd
from scipy.stats import variation

from bookops.allocation import AllocationResult
from bookops.config import AllocationConfig, ThresholdConfig
from bookops.models import Account
from bookops.modifiers import resolve_region
from bookops.rules import AssignmentRule, territory_map

CUTOFF_OVER = "over"
CUTOFF_UNDER = "under"

BAND_BELOW = "below"
BAND_IN = "in_band"
BAND_OVER = "over"


def coefficient_of_variation(values) -> float:
    """Population CV (std / mean); 0.0 for empty or zero-mean input."""
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0 or not np.isfinite(arr).all():
        return 0.0
    if np.isclose(arr.mean(), 0.0):
        return 0.0
    return float(variation(arr))


def _pct(part: int, whole: int) -> float:
    return 100.0 * part / whole if whole else 0.0


@dataclass
class OptimizationMetrics:
    arr_balance_score: float
    arr_cv: float
    geo_alignment_pct: float
    continuity_pct: float
    p1_rate: float
    p2_rate: float
    p3_rate: float
    p4_rate: float
    reps_in_band: int
    total_reps: int
    cre_variance: float
    total_arr: float
    avg_arr_per_rep: float
    min_arr_per_rep: float
    max_arr_per_rep: float
    assigned_accounts: int
    unassigned_accounts: int
    warning_counts: Dict[str, int] = field(default_factory=dict)
    regional_imbalances: List[str] = field(default_factory=list)
    tier_concentration: List[Dict[str, Any]] = field(default_factory=list)
    biggest_gainer: Dict[str, Any] | None = None
    biggest_loser: Dict[str, Any] | None = None
    rep_loads: pd.DataFrame = field(default_factory=pd.DataFrame, repr=False)
    region_summary: pd.DataFrame = field(default_factory=pd.DataFrame, repr=False)

    def cutoff_flags(self) -> Dict[str, str]:
        if self.rep_loads.empty:
            return {}
        return dict(zip(self.rep_loads["rep_id"], self.rep_loads["cutoff_status"]))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly summary (frames excluded)."""
        out: Dict[str, Any] = {}
        for key, value in self.__dict__.items():
            if isinstance(value, pd.DataFrame):
                continue
            out[key] = value
        return out


class BalanceMetricsReporter:
    """Summarize the final assignment state for review."""

    def __init__(self, config: AllocationConfig | None = None, thresholds: ThresholdConfig | None = None):
        self.config = config or AllocationConfig()
        self.thresholds = thresholds or ThresholdConfig()

    def rep_loads(self, result: AllocationResult, accounts: Sequence[Account]) -> pd.DataFrame:
        cfg = self.config
        by_id = {a.account_id: a for a in accounts}
        tier_counts: Dict[str, Dict[int, int]] = {}
        for account_id, rep_id in result.assignments.items():
            tier = by_id[account_id].tier if account_id in by_id else None
            if tier is not None:
                counts = tier_counts.setdefault(rep_id, {})
                counts[tier] = counts.get(tier, 0) + 1

        rows = []
        for rep in result.reps.values():
            if not rep.is_eligible:
                continue
            tiers = tier_counts.get(rep.rep_id, {})
            rows.append({
                "rep_id": rep.rep_id,
                "name": rep.name,
                "region": rep.region,
                "pool": rep.pool,
                "flm": rep.flm,
                "arr": float(rep.current_arr),
                "account_count": int(rep.account_count),
                "cre_count": int(rep.cre_count),
                "tier1_count": tiers.get(1, 0),
                "tier2_count": tiers.get(2, 0),
            })
        df = pd.DataFrame(
            rows,
            columns=[
                "rep_id", "name", "region", "pool", "flm", "arr",
                "account_count", "cre_count", "tier1_count", "tier2_count",
            ],
        )
        if df.empty:
            df["cutoff_status"] = pd.Series(dtype=str)
            df["band_status"] = pd.Series(dtype=str)
            return df

        df["cutoff_status"] = np.where(df["arr"] > cfg.hard_cutoff_arr, CUTOFF_OVER, CUTOFF_UNDER)
        df["band_status"] = np.select(
            [df["arr"] < cfg.preferred_min(), df["arr"] > cfg.preferred_max()],
            [BAND_BELOW, BAND_OVER],
            default=BAND_IN,
        )
        return df.sort_values("rep_id").reset_index(drop=True)

    def region_summary(self, loads: pd.DataFrame) -> tuple[pd.DataFrame, List[str]]:
        if loads.empty:
            return pd.DataFrame(columns=["region", "reps", "accounts", "arr", "arr_per_rep"]), []
        summary = (
            loads.assign(region=loads["region"].fillna("Unassigned"))
            .groupby("region", as_index=False)
            .agg(reps=("rep_id", "count"), accounts=("account_count", "sum"), arr=("arr", "sum"))
        )
        summary["arr_per_rep"] = summary["arr"] / summary["reps"]
        mean = float(summary["arr_per_rep"].mean())
        summary["variance_pct"] = (summary["arr_per_rep"] - mean) / mean * 100.0 if mean > 0 else 0.0

        limit = self.thresholds.regional_variance * 100.0
        imbalances = []
        for row in summary.itertuples(index=False):
            if abs(row.variance_pct) > limit:
                direction = "above" if row.variance_pct > 0 else "below"
                imbalances.append(
                    f"{row.region}: ARR per rep {abs(row.variance_pct):.1f}% {direction} the regional mean"
                )
        return summary, imbalances

    def _tier_concentration(self, loads: pd.DataFrame) -> List[Dict[str, Any]]:
        flags = []
        if loads.empty:
            return flags
        t = self.thresholds
        for row in loads.itertuples(index=False):
            if row.tier1_count > t.tier1_concentration:
                flags.append({"rep_id": row.rep_id, "tier": 1, "count": int(row.tier1_count), "limit": t.tier1_concentration})
            if row.tier2_count > t.tier2_concentration:
                flags.append({"rep_id": row.rep_id, "tier": 2, "count": int(row.tier2_count), "limit": t.tier2_concentration})
        return flags

    @staticmethod
    def _movement(result: AllocationResult, accounts: Sequence[Account]) -> tuple[Dict[str, Any] | None, Dict[str, Any] | None]:
        before: Dict[str, float] = {}
        after: Dict[str, float] = {}
        by_id = {a.account_id: a for a in accounts}
        for account in accounts:
            if account.current_owner_id:
                before[account.current_owner_id] = before.get(account.current_owner_id, 0.0) + account.arr
        for account_id, rep_id in result.assignments.items():
            if account_id in by_id:
                after[rep_id] = after.get(rep_id, 0.0) + by_id[account_id].arr
        if not before:
            return None, None
        deltas = pd.Series({rid: after.get(rid, 0.0) - before.get(rid, 0.0) for rid in set(before) | set(after)})
        deltas = deltas.sort_index()
        gainer = loser = None
        if deltas.max() > 0:
            rid = deltas.idxmax()
            gainer = {"rep_id": rid, "arr_before": before.get(rid, 0.0), "arr_after": after.get(rid, 0.0), "delta": float(deltas[rid])}
        if deltas.min() < 0:
            rid = deltas.idxmin()
            loser = {"rep_id": rid, "arr_before": before.get(rid, 0.0), "arr_after": after.get(rid, 0.0), "delta": float(deltas[rid])}
        return gainer, loser

    def summarize(
        self,
        result: AllocationResult,
        accounts: Sequence[Account],
        rules: Sequence[AssignmentRule] = (),
    ) -> OptimizationMetrics:
        loads = self.rep_loads(result, accounts)
        regions, imbalances = self.region_summary(loads)
        tmap = territory_map(rules)
        by_id = {a.account_id: a for a in accounts}
        reps = result.reps

        assigned = [(by_id[aid], reps.get(rid)) for aid, rid in result.assignments.items() if aid in by_id]
        geo_hits = sum(
            1 for account, rep in assigned
            if rep is not None and rep.region is not None
            and resolve_region(account.territory, tmap) == rep.region
        )
        with_owner = [(a, rep) for a, rep in assigned if a.current_owner_id]
        kept = sum(1 for a, rep in with_owner if rep is not None and rep.rep_id == a.current_owner_id)

        levels = pd.Series([r.priority_level for r in result.records], dtype=object)
        n_records = len(levels)
        level_counts = levels.value_counts().to_dict() if n_records else {}

        arr_values = loads["arr"].to_numpy(dtype=float) if not loads.empty else np.array([], dtype=float)
        cv = coefficient_of_variation(arr_values)
        gainer, loser = self._movement(result, accounts)

        warning_counts: Dict[str, int] = {}
        for w in result.warnings:
            warning_counts[w.warning_type] = warning_counts.get(w.warning_type, 0) + 1

        return OptimizationMetrics(
            arr_balance_score=float(np.clip(100.0 - cv * 100.0, 0.0, 100.0)),
            arr_cv=cv,
            geo_alignment_pct=_pct(geo_hits, len(assigned)),
            continuity_pct=_pct(kept, len(with_owner)),
            p1_rate=_pct(level_counts.get("P1", 0), n_records),
            p2_rate=_pct(level_counts.get("P2", 0), n_records),
            p3_rate=_pct(level_counts.get("P3", 0), n_records),
            p4_rate=_pct(level_counts.get("P4", 0), n_records),
            reps_in_band=int((loads["band_status"] == BAND_IN).sum()) if not loads.empty else 0,
            total_reps=int(len(loads)),
            cre_variance=coefficient_of_variation(loads["cre_count"]) if not loads.empty else 0.0,
            total_arr=float(arr_values.sum()),
            avg_arr_per_rep=float(arr_values.mean()) if arr_values.size else 0.0,
            min_arr_per_rep=float(arr_values.min()) if arr_values.size else 0.0,
            max_arr_per_rep=float(arr_values.max()) if arr_values.size else 0.0,
            assigned_accounts=len(result.assignments),
            unassigned_accounts=len(result.unassigned),
            warning_counts=warning_counts,
            regional_imbalances=imbalances,
            tier_concentration=self._tier_concentration(loads),
            biggest_gainer=gainer,
            biggest_loser=loser,
            rep_loads=loads,
            region_summary=regions,
        )
