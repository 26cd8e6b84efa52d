"""
Canonical column names and schema helpers for book assignment runs.

Use these constants instead of hardcoded strings. The `unify_columns` helper
renames common export aliases (Salesforce reports, dashboard CSVs) to the
canonical names used by the persistence layer and the engine.
"""
from typing import Dict, List
import re

import pandas as pd

# Account columns
COL_ACCOUNT_ID = "sfdc_account_id"
COL_ACCOUNT_NAME = "account_name"
COL_ARR = "calculated_arr"
COL_ATR = "calculated_atr"
COL_TERRITORY = "sales_territory"
COL_TIER = "expansion_tier"
COL_CRE_COUNT = "cre_count"
COL_CRE_RISK = "cre_risk"
COL_OWNER_ID = "owner_id"
COL_NEW_OWNER_ID = "new_owner_id"
COL_PARENT_ID = "ultimate_parent_id"
COL_IS_PARENT = "is_parent"
COL_SPLIT_OWNERSHIP = "has_split_ownership"
COL_OWNER_CHANGE_DATE = "owner_change_date"
COL_LOCKED = "exclude_from_reassignment"

# Rep columns
COL_REP_ID = "rep_id"
COL_REP_NAME = "name"
COL_REGION = "region"
COL_IS_ACTIVE = "is_active"
COL_INCLUDE = "include_in_assignments"
COL_IS_STRATEGIC = "is_strategic_rep"
COL_FLM = "flm"
COL_SLM = "slm"

# Rule columns
COL_RULE_ID = "id"
COL_RULE_NAME = "name"
COL_RULE_TYPE = "rule_type"
COL_PRIORITY = "priority"
COL_ENABLED = "enabled"
COL_WEIGHTS = "scoring_weights"
COL_CONDITIONS = "conditions"
COL_MODIFIERS = "conditional_modifiers"
COL_SCOPE = "account_scope"


# Aliases mapping: alias -> canonical
ALIASES: Dict[str, str] = {
    # Account identity
    "account_id": COL_ACCOUNT_ID,
    "account id": COL_ACCOUNT_ID,
    "sfdc account id": COL_ACCOUNT_ID,
    "account name": COL_ACCOUNT_NAME,

    # Revenue
    "arr": COL_ARR,
    "atr": COL_ATR,

    # Territory / segmentation
    "territory": COL_TERRITORY,
    "sales territory": COL_TERRITORY,
    "geo": COL_TERRITORY,
    "tier": COL_TIER,

    # Ownership
    "owner": COL_OWNER_ID,
    "current_owner_id": COL_OWNER_ID,
    "parent_id": COL_PARENT_ID,
    "locked": COL_LOCKED,

    # Reps
    "rep id": COL_REP_ID,
    "rep name": COL_REP_NAME,
    "strategic": COL_IS_STRATEGIC,
}


def unify_columns(df: pd.DataFrame, extra_aliases: Dict[str, str] | None = None) -> pd.DataFrame:
    """
    Rename common alias columns to their canonical names (returns copy).

    Args:
        df: input DataFrame
        extra_aliases: optional additional alias mapping

    Returns:
        DataFrame with standardized columns
    """
    mapping = {**ALIASES}
    if extra_aliases:
        mapping.update({k.lower(): v for k, v in extra_aliases.items() if isinstance(k, str) and isinstance(v, str)})

    lower_cols = {c.lower(): c for c in df.columns}
    renames: Dict[str, str] = {}
    for alias_lower, canonical in mapping.items():
        if alias_lower in lower_cols and canonical not in df.columns and canonical not in renames.values():
            renames[lower_cols[alias_lower]] = canonical

    if renames:
        return df.rename(columns=renames)
    return df


def canonicalize_id(series: pd.Series) -> pd.Series:
    """Normalize identifier values without losing leading zeros."""
    s = series.astype(str).str.strip()
    s = s.str.replace(r"\.0$", "", regex=True)
    return s.mask(s.str.lower().isin({"", "nan", "none", "<na>"}))


_TIER_RE = re.compile(r"([1-4])")


def parse_tier(value) -> int | None:
    """Map 'Tier 2', '2', 2.0 style inputs to an int tier, or None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, (int, float)):
        tier = int(value)
        return tier if 1 <= tier <= 4 else None
    match = _TIER_RE.search(str(value))
    return int(match.group(1)) if match else None


REQUIRED_ACCOUNT_COLUMNS: List[str] = [
    COL_ACCOUNT_ID,
    COL_ARR,
]

REQUIRED_REP_COLUMNS: List[str] = [
    COL_REP_ID,
    COL_REGION,
]

# Output column order for the assignments table.
ASSIGNMENT_COLUMNS: List[str] = [
    COL_ACCOUNT_ID,
    COL_ACCOUNT_NAME,
    COL_OWNER_ID,
    COL_NEW_OWNER_ID,
    "rep_name",
    "rep_region",
    COL_ARR,
    "raw_score",
    "adjusted_score",
    "capacity_multiplier",
    "final_score",
    "priority_level",
    "assignment_reason",
]

WARNING_COLUMNS: List[str] = [
    "severity",
    "warning_type",
    COL_ACCOUNT_ID,
    COL_REP_ID,
    "reason",
    "details",
]
