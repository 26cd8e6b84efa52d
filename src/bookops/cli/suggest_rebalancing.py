"""Prepare rebalancing requests and review the moves that come back.

Without ``--review`` a run is allocated and its problem summary is written,
split into request batches for the suggestion service. With ``--review`` the
service responses are parsed and tabulated for a manager; no assignment is
changed either way.
"""
import argparse
import json
from datetime import date
from pathlib import Path

from bookops.cli.run_assignment import load_run_inputs, run_allocation
from bookops.config import CONFIG_PATH, load_config
from bookops.suggestions import batches, build_problem_summary, parse_suggestions, review_frame

ROOT = Path(__file__).resolve().parents[3]


def write_requests(summary: dict, out_dir: Path, batch_size: int) -> list[Path]:
    """Write the full summary plus one request file per batch of donor reps."""
    out_dir.mkdir(parents=True, exist_ok=True)
    summary_path = out_dir / "problem_summary.json"
    with summary_path.open("w", encoding="utf-8") as f:
        json.dump(summary, f, indent=4, default=str)

    paths = [summary_path]
    shared = {k: v for k, v in summary.items() if k != "over_target"}
    for i, chunk in enumerate(batches(summary["over_target"], batch_size), start=1):
        path = out_dir / f"request_{i:03d}.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump({**shared, "over_target": chunk}, f, indent=4, default=str)
        paths.append(path)
    return paths


def main(argv=None):
    parser = argparse.ArgumentParser(description="Build rebalancing requests or review returned suggestions")
    parser.add_argument("--accounts", type=str, default=None, help="Accounts CSV/Parquet (default: read from the database)")
    parser.add_argument("--reps", type=str, default=None, help="Sales reps CSV/Parquet")
    parser.add_argument("--rules", type=str, default=None, help="Assignment rules JSON")
    parser.add_argument("--build-id", type=str, default=None, help="Build id to read from the database")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Run date for continuity checks (YYYY-MM-DD)")
    parser.add_argument("--use-tuned-weights", action="store_true", help="Apply artifacts/weights/rule_weights.json")
    parser.add_argument("--out-dir", type=str, default=None, help="Output directory (default from config)")
    parser.add_argument("--review", type=str, nargs="*", default=None, help="Suggestion response JSON file(s) to review")
    args = parser.parse_args(argv)

    app_config = load_config(Path(args.config) if args.config else CONFIG_PATH)
    out_dir = Path(args.out_dir) if args.out_dir else ROOT / app_config.suggestions.output_dir

    inputs = load_run_inputs(args)
    result, _metrics, allocation = run_allocation(inputs, app_config, as_of=args.as_of)

    if args.review is None:
        summary = build_problem_summary(result, inputs.accounts, allocation, app_config.suggestions)
        paths = write_requests(summary, out_dir, app_config.suggestions.batch_size)
        print(
            f"[INFO] {len(summary['under_target'])} reps under target, "
            f"{len(summary['over_target'])} above the preferred max"
        )
        print(f"Saved problem summary and {len(paths) - 1} request batch(es) to {out_dir}")
        return paths

    known_accounts = [a.account_id for a in inputs.accounts]
    known_reps = list(result.reps)
    moves = []
    for response in args.review:
        with Path(response).open("r", encoding="utf-8") as f:
            payload = json.load(f)
        parsed, rejected = parse_suggestions(payload, known_accounts, known_reps)
        moves.extend(parsed)
        print(f"[INFO] {response}: {len(parsed)} moves, {len(rejected)} rejected")
    moves.sort(key=lambda m: m.priority)

    review = review_frame(moves, result, inputs.accounts)
    out_dir.mkdir(parents=True, exist_ok=True)
    review_path = out_dir / "suggestion_review.csv"
    review.to_csv(review_path, index=False)
    print(f"Saved {len(review)} suggested moves for review to {review_path}")
    return [review_path]


if __name__ == "__main__":
    main()
