import json
from datetime import date, datetime, timezone
from functools import partial
from pathlib import Path

import optuna

from bookops.config import CONFIG_PATH, WEIGHTS_PATH, load_config
from bookops.etl.loader import check_env, load_inputs_from_db, load_inputs_from_files
from bookops.optimization import (
    combined_score,
    evaluate_weights,
    objective,
    params_to_weights,
)
from bookops.rules import WEIGHT_BOUNDS


ROOT = Path(__file__).resolve().parents[3]


def run_tuning(
    inputs,
    n_trials: int = 100,
    seed: int | None = None,
    as_of: date | None = None,
    config_path: Path = CONFIG_PATH,
    out_path: str | None = None,
):
    app_config = load_config(config_path)
    allocation = app_config.allocation

    rule_types = sorted({r.rule_type for r in inputs.rules if r.enabled})
    if not any(WEIGHT_BOUNDS.get(t) for t in rule_types):
        print("Error: no enabled rule has tunable weights.")
        return None
    print(f"Tuning weights for {rule_types} over {n_trials} independent runs...")

    baseline = evaluate_weights({}, inputs.accounts, inputs.reps, inputs.rules, inputs.modifiers, allocation, as_of)
    baseline_value = combined_score(baseline)

    study = optuna.create_study(direction='maximize', sampler=optuna.samplers.TPESampler(seed=seed))
    study.optimize(
        partial(
            objective,
            accounts=inputs.accounts,
            reps=inputs.reps,
            rules=inputs.rules,
            modifiers=inputs.modifiers,
            config=allocation,
            as_of=as_of,
        ),
        n_trials=n_trials,
        show_progress_bar=True,
    )

    best = params_to_weights(study.best_params)
    tuned = evaluate_weights(best, inputs.accounts, inputs.reps, inputs.rules, inputs.modifiers, allocation, as_of)

    out_path = Path(out_path) if out_path else WEIGHTS_PATH
    out_path.parent.mkdir(parents=True, exist_ok=True)
    meta = {
        'n_trials': n_trials,
        'seed': seed,
        'target_arr': allocation.target_arr,
        'baseline_objective': baseline_value,
        'best_objective_value': study.best_value,
        'arr_balance_score': tuned.arr_balance_score,
        'geo_alignment_pct': tuned.geo_alignment_pct,
        'continuity_pct': tuned.continuity_pct,
        'unassigned_accounts': tuned.unassigned_accounts,
        'run_timestamp_utc': datetime.now(tz=timezone.utc).isoformat(timespec='seconds'),
    }
    payload = {'weights': best, 'meta': meta}

    # Merge with existing weights so rule types not tuned here survive
    old = {}
    if out_path.exists():
        try:
            with out_path.open('r', encoding='utf-8') as f:
                old = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"[WARN] Ignoring unreadable weights file {out_path}: {e}")
            old = {}
    if isinstance(old.get('weights'), dict):
        merged = dict(old['weights'])
        merged.update(payload['weights'])
        payload['weights'] = merged

    with out_path.open('w', encoding='utf-8') as f:
        json.dump(payload, f, indent=4)

    print("\n--- Tuning Complete ---")
    print(f"Baseline objective: {baseline_value:.4f}")
    print(f"Best objective value: {study.best_value:.4f}")
    for rule_type, weights in best.items():
        for k, v in weights.items():
            print(f"  - {rule_type}.{k}: {v:.4f}")
    print(f"ARR balance: {baseline.arr_balance_score:.1f} -> {tuned.arr_balance_score:.1f}")
    print(f"Geo alignment: {baseline.geo_alignment_pct:.1f}% -> {tuned.geo_alignment_pct:.1f}%")
    print(f"Continuity: {baseline.continuity_pct:.1f}% -> {tuned.continuity_pct:.1f}%")
    print(f"\nSaved tuned weights to {out_path}")
    return payload


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Tune assignment rule weights with Optuna over independent allocation runs")
    parser.add_argument("--accounts", type=str, default=None, help="Accounts CSV/Parquet (default: read from the database)")
    parser.add_argument("--reps", type=str, default=None, help="Sales reps CSV/Parquet")
    parser.add_argument("--rules", type=str, default=None, help="Assignment rules JSON")
    parser.add_argument("--build-id", type=str, default=None, help="Build id to read from the database")
    parser.add_argument("--n-trials", type=int, default=100, help="Number of trials")
    parser.add_argument("--seed", type=int, default=None, help="Sampler seed")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Run date for continuity checks (YYYY-MM-DD)")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--out", type=str, default=None, help="Custom output path for rule_weights.json")
    args = parser.parse_args(argv)

    if args.accounts and args.reps:
        inputs = load_inputs_from_files(Path(args.accounts), Path(args.reps), Path(args.rules) if args.rules else None)
    else:
        check_env()
        inputs = load_inputs_from_db(build_id=args.build_id)

    return run_tuning(
        inputs,
        n_trials=args.n_trials,
        seed=args.seed,
        as_of=args.as_of,
        config_path=Path(args.config) if args.config else CONFIG_PATH,
        out_path=args.out,
    )


if __name__ == '__main__':
    main()
