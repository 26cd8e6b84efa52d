"""
Input validation schemas using Pandera.
"""
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Iterable, Tuple
import pandas as pd
import pandera.pandas as pa

from bookops.schema import (
    COL_ACCOUNT_ID,
    COL_ARR,
    COL_ATR,
    COL_CRE_COUNT,
    COL_TIER,
    COL_REP_ID,
    COL_REGION,
    COL_RULE_TYPE,
    COL_PRIORITY,
    parse_tier,
)


def _valid_tier(s: pd.Series) -> pd.Series:
    return s.isna() | s.map(parse_tier).notna()


def get_accounts_schema():
    return pa.DataFrameSchema({
        COL_ACCOUNT_ID: pa.Column(str, coerce=True, nullable=False, unique=True),
        COL_ARR: pa.Column(float, pa.Check.ge(0), coerce=True, nullable=True),
        COL_ATR: pa.Column(float, coerce=True, nullable=True, required=False),
        COL_CRE_COUNT: pa.Column(float, pa.Check.ge(0), coerce=True, nullable=True, required=False),
        COL_TIER: pa.Column(
            object,
            pa.Check(_valid_tier, error="tier must be 1-4 or empty"),
            nullable=True,
            required=False,
        ),
    }, coerce=True)


def get_reps_schema():
    return pa.DataFrameSchema({
        COL_REP_ID: pa.Column(str, coerce=True, nullable=False, unique=True),
        COL_REGION: pa.Column(str, nullable=True),
    }, coerce=True)


def get_rules_schema():
    return pa.DataFrameSchema({
        COL_RULE_TYPE: pa.Column(str, nullable=False),
        COL_PRIORITY: pa.Column(int, coerce=True, nullable=False),
    })


def _validate(df: pd.DataFrame, schema, label: str, raise_error: bool) -> pd.DataFrame:
    try:
        return schema.validate(df, lazy=True)
    except pa.errors.SchemaErrors as err:
        print(f"[WARN] {label} validation failed with {len(err.failure_cases)} errors.")
        print(err.failure_cases.head())
        if raise_error:
            raise
        return df


def validate_accounts(df: pd.DataFrame, raise_error: bool = True) -> pd.DataFrame:
    """Validates the accounts snapshot against the schema."""
    return _validate(df, get_accounts_schema(), "Accounts", raise_error)


def validate_reps(df: pd.DataFrame, raise_error: bool = True) -> pd.DataFrame:
    """Validates the sales reps snapshot against the schema."""
    return _validate(df, get_reps_schema(), "Sales reps", raise_error)


def validate_rules(df: pd.DataFrame, raise_error: bool = False) -> pd.DataFrame:
    """Rule problems are configuration errors, so this only warns by default."""
    if df.empty:
        return df
    return _validate(df, get_rules_schema(), "Assignment rules", raise_error)


def ensure_columns(df: pd.DataFrame, required: Iterable[str]) -> Tuple[bool, list[str]]:
    missing = [c for c in required if c not in df.columns]
    return (len(missing) == 0, missing)


def ensure_non_negative(df: pd.DataFrame, cols: Iterable[str]) -> Tuple[bool, list[str]]:
    bad = []
    for c in cols:
        if c in df.columns:
            s = pd.to_numeric(df[c], errors="coerce")
            if (s < 0).any():
                bad.append(c)
    return (len(bad) == 0, bad)


def write_validation_log(summary: str, details: Iterable[str] = (), root: Path | None = None) -> Path:
    """Append one entry to today's input validation log under reports/logs/."""
    stamp = datetime.now()
    out_dir = (root or Path.cwd()) / "reports" / "logs"
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"input_validation_{stamp:%Y%m%d}.log"
    lines = [f"[{stamp:%Y-%m-%d %H:%M:%S}] {summary}"]
    lines += [f"  * {item}" for item in details]
    with path.open("a", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
    return path
