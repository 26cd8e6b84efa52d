"""Load and assemble the inputs of an allocation run."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import pandas as pd
import pandera.pandas as pa

import bookops.data_access as da
from bookops.models import Account, Rep, accounts_from_frame, reps_from_frame
from bookops.modifiers import ConditionalModifier
from bookops.rules import (
    AssignmentRule,
    apply_weight_overrides,
    collect_modifiers,
    default_rules,
    load_rules_file,
    load_weight_overrides,
    rules_from_records,
)
from bookops.schema import (
    COL_ACCOUNT_ID,
    COL_ARR,
    COL_REP_ID,
    REQUIRED_ACCOUNT_COLUMNS,
    REQUIRED_REP_COLUMNS,
    canonicalize_id,
    unify_columns,
)
from bookops.validation import (
    ensure_columns,
    ensure_non_negative,
    validate_accounts,
    validate_reps,
    validate_rules,
    write_validation_log,
)

ROOT = Path(__file__).resolve().parents[3]


@dataclass
class RunInputs:
    accounts_df: pd.DataFrame
    reps_df: pd.DataFrame
    accounts: List[Account]
    reps: List[Rep]
    rules: List[AssignmentRule]
    modifiers: List[ConditionalModifier]
    problems: List[str] = field(default_factory=list)


def check_env():
    """Checks for database connection env vars."""
    if os.getenv("BOOKOPS_DB_URL"):
        return True
    required = ["BOOKOPS_DB_HOST", "BOOKOPS_DB_NAME"]
    missing = [k for k in required if not os.getenv(k)]
    if missing:
        print(f"[WARN] Missing environment variables: {missing}. Ensure .env is configured.")
        return False
    return True


def read_table(path: Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found at {path}")
    if path.suffix.lower() == ".parquet":
        return pd.read_parquet(path)
    return pd.read_csv(path, dtype={COL_ACCOUNT_ID: str, COL_REP_ID: str})


def _log_problems(message: str, details=()) -> None:
    path = write_validation_log(message, details, root=ROOT)
    print(f"[WARN] {message} (logged to {path})")


def prepare_frames(accounts_df: pd.DataFrame, reps_df: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Canonicalize column names and ids, then validate both frames.

    Rejections are appended to the input validation log before raising.
    """
    accounts_df = unify_columns(accounts_df)
    reps_df = unify_columns(reps_df)

    problems = []
    ok, missing = ensure_columns(accounts_df, REQUIRED_ACCOUNT_COLUMNS)
    if not ok:
        problems.append(f"Accounts input is missing required columns: {missing}")
    ok, missing = ensure_columns(reps_df, REQUIRED_REP_COLUMNS)
    if not ok:
        problems.append(f"Reps input is missing required columns: {missing}")
    ok, bad = ensure_non_negative(accounts_df, [COL_ARR])
    if not ok:
        problems.append(f"Negative values found in {bad}")
    if problems:
        _log_problems("Input frames rejected", problems)
        raise ValueError("; ".join(problems))

    accounts_df = accounts_df.copy()
    reps_df = reps_df.copy()
    accounts_df[COL_ACCOUNT_ID] = canonicalize_id(accounts_df[COL_ACCOUNT_ID])
    reps_df[COL_REP_ID] = canonicalize_id(reps_df[COL_REP_ID])
    try:
        return validate_accounts(accounts_df), validate_reps(reps_df)
    except pa.errors.SchemaErrors as err:
        cases = err.failure_cases
        _log_problems(
            f"Schema validation failed with {len(cases)} errors",
            [f"{row.get('column')}: {row.get('check')} ({row.get('failure_case')})" for row in cases.head(50).to_dict(orient="records")],
        )
        raise


def assemble_inputs(
    accounts_df: pd.DataFrame,
    reps_df: pd.DataFrame,
    rules: List[AssignmentRule],
    problems: Optional[List[str]] = None,
    use_tuned_weights: bool = False,
) -> RunInputs:
    accounts_df, reps_df = prepare_frames(accounts_df, reps_df)
    if problems:
        _log_problems(f"{len(problems)} rule configuration problems", problems)
    if not rules:
        print("[INFO] No assignment rules configured; using the default rule stack.")
        rules = default_rules()
    if use_tuned_weights:
        overrides = load_weight_overrides()
        if overrides:
            print(f"[INFO] Applying tuned weights for {sorted(overrides)}")
        rules = apply_weight_overrides(rules, overrides)
    return RunInputs(
        accounts_df=accounts_df,
        reps_df=reps_df,
        accounts=accounts_from_frame(accounts_df),
        reps=reps_from_frame(reps_df),
        rules=list(rules),
        modifiers=collect_modifiers(rules),
        problems=list(problems or []),
    )


def load_inputs_from_db(build_id: Optional[str] = None, engine=None, use_tuned_weights: bool = False) -> RunInputs:
    """Read the run snapshot once from the database."""
    engine = engine or da.get_engine()
    snapshot = da.load_snapshot(engine, build_id=build_id)
    validate_rules(snapshot.rules)
    rules, problems = rules_from_records(snapshot.rule_records())
    return assemble_inputs(snapshot.accounts, snapshot.reps, rules, problems, use_tuned_weights)


def load_inputs_from_files(
    accounts_path: Path,
    reps_path: Path,
    rules_path: Optional[Path] = None,
    use_tuned_weights: bool = False,
) -> RunInputs:
    """Read accounts and reps from CSV/Parquet, rules from JSON."""
    accounts_df = read_table(accounts_path)
    reps_df = read_table(reps_path)
    rules: List[AssignmentRule] = []
    problems: List[str] = []
    if rules_path is not None:
        rules, problems = load_rules_file(rules_path)
    print(f"[INFO] Loaded {len(accounts_df):,} accounts and {len(reps_df):,} reps from files")
    return assemble_inputs(accounts_df, reps_df, rules, problems, use_tuned_weights)
