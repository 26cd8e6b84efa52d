"""Balance thresholds derived from the book itself.

Totals are split evenly across active normal reps that have a region
(strategic reps carry their own books), then widened by a variance
percentage into ``[floor(target * (1 - v)), ceil(target * (1 + v))]``.
"""
from __future__ import annotations

import math
from dataclasses import replace
from typing import Dict

import pandas as pd

from bookops.config import AllocationConfig, ThresholdConfig
from bookops.schema import (
    COL_ARR,
    COL_ATR,
    COL_CRE_COUNT,
    COL_TIER,
    COL_IS_ACTIVE,
    COL_IS_STRATEGIC,
    COL_REGION,
    COL_REP_ID,
    parse_tier,
)

COL_RENEWAL_QUARTER = "renewal_quarter"


def _bool_column(df: pd.DataFrame, col: str, default: bool) -> pd.Series:
    if col not in df.columns:
        return pd.Series(default, index=df.index)
    s = df[col]
    if s.dtype == object:
        s = s.map(lambda v: str(v).strip().lower() in {"1", "true", "t", "yes", "y"} if pd.notna(v) else default)
    return s.fillna(default).astype(bool)


def normal_rep_count(reps: pd.DataFrame) -> int:
    """Active, non-strategic reps with a region."""
    if reps.empty:
        return 0
    active = _bool_column(reps, COL_IS_ACTIVE, True)
    strategic = _bool_column(reps, COL_IS_STRATEGIC, False)
    if COL_REGION in reps.columns:
        has_region = reps[COL_REGION].notna() & (reps[COL_REGION].astype(str).str.strip() != "")
    else:
        has_region = pd.Series(False, index=reps.index)
    mask = active & ~strategic & has_region
    skipped = reps.loc[active & ~strategic & ~has_region]
    if not skipped.empty:
        ids = ", ".join(skipped[COL_REP_ID].astype(str)) if COL_REP_ID in skipped.columns else str(len(skipped))
        print(f"[WARN] Excluding reps without a region from thresholds: {ids}")
    return int(mask.sum())


def _row(metric: str, total: float, reps: int, variance: float, integral: bool = True) -> Dict[str, float]:
    target = total / reps
    low = target * (1.0 - variance)
    high = target * (1.0 + variance)
    return {
        "metric": metric,
        "total": float(total),
        "target": float(target),
        "min": float(math.floor(round(low, 9))) if integral else float(low),
        "max": float(math.ceil(round(high, 9))) if integral else float(high),
        "variance": float(variance),
    }


def calculate_thresholds(
    accounts: pd.DataFrame,
    reps: pd.DataFrame,
    allocation: AllocationConfig | None = None,
    thresholds: ThresholdConfig | None = None,
) -> pd.DataFrame:
    """Per-rep targets and min/max ranges for ARR, accounts, CRE, ATR, tiers and renewals."""
    allocation = allocation or AllocationConfig()
    thresholds = thresholds or ThresholdConfig()
    n_reps = normal_rep_count(reps)
    if n_reps == 0:
        raise ValueError("No active normal reps found for threshold calculation")

    arr = pd.to_numeric(accounts.get(COL_ARR, pd.Series(dtype=float)), errors="coerce").fillna(0.0)
    atr = pd.to_numeric(accounts.get(COL_ATR, pd.Series(dtype=float)), errors="coerce").fillna(0.0)
    cre = pd.to_numeric(accounts.get(COL_CRE_COUNT, pd.Series(dtype=float)), errors="coerce").fillna(0.0)
    tiers = accounts[COL_TIER].map(parse_tier) if COL_TIER in accounts.columns else pd.Series(dtype=object)

    rows = [
        _row("arr", arr.sum(), n_reps, allocation.arr_variance, integral=False),
        _row("accounts", len(accounts), n_reps, allocation.account_variance),
        _row("cre", cre.sum(), n_reps, thresholds.cre_variance),
        _row("atr", atr.sum(), n_reps, thresholds.atr_variance),
        _row("tier1", int((tiers == 1).sum()), n_reps, thresholds.tier_variance),
        _row("tier2", int((tiers == 2).sum()), n_reps, thresholds.tier_variance),
    ]
    if COL_RENEWAL_QUARTER in accounts.columns:
        quarters = accounts[COL_RENEWAL_QUARTER].astype(str).str.strip().str.upper()
        for q in ("Q1", "Q2", "Q3", "Q4"):
            count = int(quarters.str.startswith(q).sum())
            rows.append(_row(f"{q.lower()}_renewals", count, n_reps, thresholds.renewal_variance))

    out = pd.DataFrame(rows)
    out["based_on_accounts"] = len(accounts)
    out["based_on_reps"] = n_reps
    return out


def derived_allocation_config(thresholds_table: pd.DataFrame, base: AllocationConfig) -> AllocationConfig:
    """Copy of ``base`` whose target ARR comes from the calculated thresholds."""
    arr_row = thresholds_table.loc[thresholds_table["metric"] == "arr"]
    if arr_row.empty:
        return base
    return replace(base, target_arr=float(arr_row["target"].iloc[0]))
