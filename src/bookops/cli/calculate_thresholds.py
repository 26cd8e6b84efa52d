"""Calculate per-rep balance thresholds from the current book."""
import argparse
from pathlib import Path

import pandas as pd

import bookops.data_access as da
from bookops.config import CONFIG_PATH, load_config
from bookops.etl.loader import check_env, prepare_frames, read_table
from bookops.thresholds import calculate_thresholds

ROOT = Path(__file__).resolve().parents[3]


def run_thresholds(accounts_df: pd.DataFrame, reps_df: pd.DataFrame, out_path: Path, config_path: Path = CONFIG_PATH) -> pd.DataFrame:
    app_config = load_config(config_path)
    accounts_df, reps_df = prepare_frames(accounts_df, reps_df)
    table = calculate_thresholds(accounts_df, reps_df, app_config.allocation, app_config.thresholds)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(out_path, index=False)

    print("\n--- Balance Thresholds ---")
    print(f"Based on {int(table['based_on_accounts'].iloc[0]):,} accounts and {int(table['based_on_reps'].iloc[0])} reps")
    for row in table.itertuples(index=False):
        print(f"  - {row.metric}: target {row.target:,.2f} | range [{row.min:,.2f}, {row.max:,.2f}]")
    print(f"\nSaved thresholds to {out_path}")
    return table


def main(argv=None) -> pd.DataFrame:
    parser = argparse.ArgumentParser(description="Calculate balance thresholds for the rep book")
    parser.add_argument("--accounts", type=str, default=None, help="Accounts CSV/Parquet (default: read from the database)")
    parser.add_argument("--reps", type=str, default=None, help="Sales reps CSV/Parquet")
    parser.add_argument("--build-id", type=str, default=None, help="Build id to read from the database")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--out", type=str, default=None, help="Output CSV path (default: reports/thresholds.csv)")
    args = parser.parse_args(argv)

    if args.accounts and args.reps:
        accounts_df = read_table(Path(args.accounts))
        reps_df = read_table(Path(args.reps))
    else:
        check_env()
        snapshot = da.load_snapshot(build_id=args.build_id)
        accounts_df, reps_df = snapshot.accounts, snapshot.reps

    out_path = Path(args.out) if args.out else ROOT / "reports" / "thresholds.csv"
    config_path = Path(args.config) if args.config else CONFIG_PATH
    return run_thresholds(accounts_df, reps_df, out_path, config_path)


if __name__ == "__main__":
    main()
