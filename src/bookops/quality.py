"""Output quality schemas using Pandera."""

import pandera.pandas as pa
from pandera.typing import Series
import pandas as pd
from typing import Optional


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------
class AssignmentsSchema(pa.DataFrameModel):
    """One row per assigned account."""

    sfdc_account_id: Series[str] = pa.Field(unique=True)
    new_owner_id: Series[str] = pa.Field()
    owner_id: Series[str] = pa.Field(nullable=True)
    calculated_arr: Series[float] = pa.Field(ge=0)
    capacity_multiplier: Series[float] = pa.Field(ge=0.5, le=1.5)
    final_score: Series[float] = pa.Field()
    priority_level: Series[str] = pa.Field(isin=["P1", "P2", "P3", "P4"])

    class Config:
        coerce = True
        strict = False  # Allow rep name/region and score breakdown columns


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------
class WarningsSchema(pa.DataFrameModel):
    """Warning records surfaced with every run."""

    severity: Series[str] = pa.Field(isin=["high", "medium", "low"])
    warning_type: Series[str] = pa.Field()
    reason: Series[str] = pa.Field()

    class Config:
        coerce = True
        strict = False


# ---------------------------------------------------------------------------
# Rep loads
# ---------------------------------------------------------------------------
class RepLoadsSchema(pa.DataFrameModel):
    """Final workload per rep."""

    rep_id: Series[str] = pa.Field(unique=True)
    arr: Series[float] = pa.Field(ge=0)
    account_count: Series[int] = pa.Field(ge=0)
    cre_count: Series[int] = pa.Field(ge=0)
    cutoff_status: Series[str] = pa.Field(isin=["over", "under"])
    band_status: Series[str] = pa.Field(isin=["below", "in_band", "over"])

    class Config:
        coerce = True
        strict = False


# ---------------------------------------------------------------------------
# Validation Helper
# ---------------------------------------------------------------------------
def validate_outputs(
    assignments_path: Optional[str] = None,
    warnings_path: Optional[str] = None,
    rep_loads_path: Optional[str] = None,
    raise_error: bool = False
) -> bool:
    """
    Validate output files against schemas.

    Args:
        assignments_path: Path to assignments CSV
        warnings_path: Path to warnings CSV
        rep_loads_path: Path to rep loads CSV
        raise_error: If True, raise SchemaError on failure. If False, print warning.

    Returns:
        True if all provided files are valid, False otherwise.
    """
    all_valid = True
    checks = [
        ("Assignments", assignments_path, AssignmentsSchema, {"sfdc_account_id": str, "new_owner_id": str, "owner_id": str}),
        ("Warnings", warnings_path, WarningsSchema, None),
        ("Rep loads", rep_loads_path, RepLoadsSchema, {"rep_id": str}),
    ]
    for label, path, schema, dtypes in checks:
        if not path:
            continue
        try:
            df = pd.read_csv(path, dtype=dtypes)
            if df.empty:
                print(f"[OK] {label} empty: {path}")
                continue
            schema.validate(df)
            print(f"[OK] {label} valid: {path}")
        except (pa.errors.SchemaError, ValueError) as e:
            print(f"[WARN] {label} invalid: {path}")
            print(e)
            all_valid = False
            if raise_error:
                raise
    return all_valid
