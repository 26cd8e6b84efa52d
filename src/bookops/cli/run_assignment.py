"""Main CLI entry point for an assignment run."""
import argparse
import json
from datetime import date
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

import bookops.data_access as da
from bookops.allocation import AllocationResult, AssignmentAllocator
from bookops.config import AppConfig, AllocationConfig, CONFIG_PATH, load_config
from bookops.etl.loader import RunInputs, check_env, load_inputs_from_db, load_inputs_from_files
from bookops.metrics import BalanceMetricsReporter, OptimizationMetrics
from bookops.quality import validate_outputs
from bookops.reporting.visuals import build_visuals
from bookops.schema import (
    ASSIGNMENT_COLUMNS,
    COL_ACCOUNT_ID,
    COL_ACCOUNT_NAME,
    COL_ARR,
    COL_NEW_OWNER_ID,
    COL_OWNER_ID,
    WARNING_COLUMNS,
)
from bookops.thresholds import calculate_thresholds, derived_allocation_config

ROOT = Path(__file__).resolve().parents[3]


def run_allocation(
    inputs: RunInputs,
    app_config: AppConfig,
    as_of: date | None = None,
    auto_target: bool = False,
) -> tuple[AllocationResult, OptimizationMetrics, AllocationConfig]:
    """Allocate, attach configuration warnings and summarize one run."""
    allocation = app_config.allocation
    if auto_target:
        table = calculate_thresholds(inputs.accounts_df, inputs.reps_df, allocation, app_config.thresholds)
        allocation = derived_allocation_config(table, allocation)
        print(f"[INFO] Using calculated target ARR {allocation.target_arr:,.0f}")

    allocator = AssignmentAllocator(allocation, as_of=as_of)
    result = allocator.allocate(inputs.accounts, inputs.reps, inputs.rules, inputs.modifiers)
    result.add_configuration_warnings(inputs.problems)
    metrics = BalanceMetricsReporter(allocation, app_config.thresholds).summarize(
        result, inputs.accounts, inputs.rules
    )
    return result, metrics, allocation


def assignments_frame(result: AllocationResult, inputs: RunInputs) -> pd.DataFrame:
    accounts = {a.account_id: a for a in inputs.accounts}
    rows: List[Dict[str, Any]] = []
    for record in result.records:
        account = accounts.get(record.account_id)
        rep = result.reps.get(record.rep_id)
        rows.append({
            COL_ACCOUNT_ID: record.account_id,
            COL_ACCOUNT_NAME: account.name if account else None,
            COL_OWNER_ID: record.previous_owner_id,
            COL_NEW_OWNER_ID: record.rep_id,
            "rep_name": rep.name if rep else None,
            "rep_region": rep.region if rep else None,
            COL_ARR: account.arr if account else 0.0,
            "raw_score": record.raw_score,
            "adjusted_score": record.adjusted_score,
            "capacity_multiplier": record.capacity_multiplier,
            "final_score": record.final_score,
            "priority_level": record.priority_level,
            "assignment_reason": record.reason,
        })
    return pd.DataFrame(rows, columns=ASSIGNMENT_COLUMNS)


def warnings_frame(result: AllocationResult) -> pd.DataFrame:
    rows = []
    for w in result.warnings:
        row = w.to_dict()
        row[COL_ACCOUNT_ID] = row.pop("account_id")
        rows.append(row)
    return pd.DataFrame(rows, columns=WARNING_COLUMNS)


def write_outputs(
    out_dir: Path,
    assignments: pd.DataFrame,
    warnings: pd.DataFrame,
    metrics: OptimizationMetrics,
) -> Dict[str, Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    paths = {
        "assignments": out_dir / "assignments.csv",
        "warnings": out_dir / "assignment_warnings.csv",
        "rep_loads": out_dir / "rep_loads.csv",
        "regions": out_dir / "region_summary.csv",
        "metrics": out_dir / "metrics.json",
    }
    assignments.to_csv(paths["assignments"], index=False)
    warnings.assign(
        details=warnings["details"].map(lambda d: json.dumps(d, default=str))
    ).to_csv(paths["warnings"], index=False)
    metrics.rep_loads.to_csv(paths["rep_loads"], index=False)
    metrics.region_summary.to_csv(paths["regions"], index=False)
    with paths["metrics"].open("w", encoding="utf-8") as f:
        json.dump(metrics.to_dict(), f, indent=4, default=str)
    return paths


def print_summary(metrics: OptimizationMetrics, allocation: AllocationConfig) -> None:
    print("\n--- Assignment Complete ---")
    print(f"Assigned: {metrics.assigned_accounts:,} | Unassigned: {metrics.unassigned_accounts:,}")
    print(f"ARR balance score: {metrics.arr_balance_score:.1f} (CV {metrics.arr_cv:.3f})")
    print(f"Geo alignment: {metrics.geo_alignment_pct:.1f}% | Continuity: {metrics.continuity_pct:.1f}%")
    print(
        f"P1 {metrics.p1_rate:.1f}% | P2 {metrics.p2_rate:.1f}% | "
        f"P3 {metrics.p3_rate:.1f}% | P4 {metrics.p4_rate:.1f}%"
    )
    print(
        f"Reps in band ({allocation.preferred_min():,.0f} - {allocation.preferred_max():,.0f}): "
        f"{metrics.reps_in_band}/{metrics.total_reps}"
    )
    over = [rid for rid, status in metrics.cutoff_flags().items() if status == "over"]
    if over:
        print(f"[WARN] Reps over the {allocation.hard_cutoff_arr:,.0f} cutoff: {', '.join(over)}")
    for line in metrics.regional_imbalances:
        print(f"[WARN] Regional imbalance: {line}")
    for flag in metrics.tier_concentration:
        print(f"[WARN] Rep {flag['rep_id']} holds {flag['count']} tier-{flag['tier']} accounts (limit {flag['limit']})")
    if metrics.warning_counts:
        print("Warnings:")
        for wtype, count in sorted(metrics.warning_counts.items()):
            print(f"  - {wtype}: {count}")


def load_run_inputs(args: argparse.Namespace) -> RunInputs:
    if args.accounts or args.reps:
        if not (args.accounts and args.reps):
            raise ValueError("--accounts and --reps must be given together")
        return load_inputs_from_files(
            Path(args.accounts),
            Path(args.reps),
            Path(args.rules) if args.rules else None,
            use_tuned_weights=args.use_tuned_weights,
        )
    check_env()
    return load_inputs_from_db(build_id=args.build_id, use_tuned_weights=args.use_tuned_weights)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the account-to-rep assignment engine")
    parser.add_argument("--accounts", type=str, default=None, help="Accounts CSV/Parquet (default: read from the database)")
    parser.add_argument("--reps", type=str, default=None, help="Sales reps CSV/Parquet")
    parser.add_argument("--rules", type=str, default=None, help="Assignment rules JSON (default rule stack when omitted)")
    parser.add_argument("--build-id", type=str, default=None, help="Build id to read and write")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--out-dir", type=str, default=None, help="Output directory (default: reports/assignments)")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Run date for continuity checks (YYYY-MM-DD)")
    parser.add_argument("--auto-target", action="store_true", help="Derive the target ARR from the book instead of config")
    parser.add_argument("--use-tuned-weights", action="store_true", help="Apply artifacts/weights/rule_weights.json")
    parser.add_argument("--skip-visuals", action="store_true", help="Skip generating visuals")
    parser.add_argument("--strict", action="store_true", help="Fail on output validation errors")
    parser.add_argument("--commit", action="store_true", help="Persist assignments and warnings to the database")
    return parser.parse_args(argv)


def main(argv=None) -> Dict[str, Path]:
    args = parse_args(argv)
    app_config = load_config(Path(args.config)) if args.config else load_config(CONFIG_PATH)

    inputs = load_run_inputs(args)
    result, metrics, allocation = run_allocation(inputs, app_config, as_of=args.as_of, auto_target=args.auto_target)

    assignments = assignments_frame(result, inputs)
    warnings = warnings_frame(result)
    out_dir = Path(args.out_dir) if args.out_dir else ROOT / "reports" / "assignments"
    paths = write_outputs(out_dir, assignments, warnings, metrics)
    print(f"Saved assignments to {paths['assignments']}")

    if args.skip_visuals:
        print("[INFO] Skipping visualization rendering (--skip-visuals)")
    else:
        figures = build_visuals(metrics.rep_loads, ROOT, allocation)
        print(f"Saved {len(figures)} PNG charts.")

    print("Validating outputs...")
    validate_outputs(
        assignments_path=str(paths["assignments"]),
        warnings_path=str(paths["warnings"]),
        rep_loads_path=str(paths["rep_loads"]),
        raise_error=args.strict,
    )

    if args.commit:
        da.persist_results(assignments, warnings, build_id=args.build_id)
    else:
        print("[INFO] Dry run; pass --commit to persist assignments")

    print_summary(metrics, allocation)
    return paths


if __name__ == "__main__":
    main()
