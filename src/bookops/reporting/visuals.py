"""Visualization functions for assignment runs."""
from pathlib import Path
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from bookops.config import AllocationConfig


def save_fig(filename: str, root_path: Path) -> Path:
    """Saves the current matplotlib figure to reports/figures."""
    out_dir = root_path / "reports" / "figures"
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / filename
    plt.tight_layout()
    plt.savefig(out_path, dpi=120)
    plt.close()
    return out_path


def build_visuals(rep_loads: pd.DataFrame, root_path: Path, config: AllocationConfig | None = None) -> list[Path]:
    """Rep ARR bars against the preferred band and hard cutoff, plus region and CRE views."""
    config = config or AllocationConfig()
    saved: list[Path] = []
    if rep_loads.empty:
        print("[INFO] Skipping visuals: no rep loads to plot.")
        return saved

    # 1: ARR per rep with band and cutoff
    loads = rep_loads.sort_values("arr", ascending=False)
    colors = loads["cutoff_status"].map({"over": "tab:red"}).fillna("tab:blue")
    plt.figure(figsize=(max(6, 0.35 * len(loads)), 4))
    plt.bar(loads["rep_id"].astype(str), loads["arr"], color=colors.tolist())
    plt.axhspan(config.preferred_min(), config.preferred_max(), color="tab:green", alpha=0.15, label="Preferred band")
    plt.axhline(config.target_arr, color="tab:green", linestyle="--", linewidth=1, label="Target")
    if config.hard_cutoff_arr > 0:
        plt.axhline(config.hard_cutoff_arr, color="tab:red", linestyle=":", linewidth=1, label="Hard cutoff")
    plt.xticks(rotation=90)
    plt.title("ARR per Rep")
    plt.ylabel("ARR ($)")
    plt.legend(loc="upper right")
    saved.append(save_fig("vis1_rep_arr.png", root_path))

    # 2: Distribution of rep ARR
    plt.figure()
    plt.hist(loads["arr"], bins=min(20, max(5, len(loads))))
    plt.axvline(config.target_arr, color="tab:green", linestyle="--")
    plt.title("Distribution of Rep ARR")
    plt.xlabel("ARR ($)")
    plt.ylabel("Number of Reps")
    saved.append(save_fig("vis2_rep_arr_hist.png", root_path))

    # 3: ARR per rep by region
    if "region" in loads.columns and loads["region"].notna().any():
        plt.figure()
        per_rep = loads.groupby(loads["region"].fillna("Unassigned"))["arr"].mean().sort_values(ascending=False)
        per_rep.plot(kind="bar")
        plt.title("Average ARR per Rep by Region")
        plt.ylabel("ARR ($)")
        saved.append(save_fig("vis3_region_arr.png", root_path))
    else:
        print("[INFO] Skipping region chart: no regions.")

    # 4: CRE load per rep
    if "cre_count" in loads.columns and loads["cre_count"].sum() > 0:
        plt.figure()
        loads.set_index("rep_id")["cre_count"].sort_values(ascending=False).plot(kind="bar")
        plt.title("CRE Accounts per Rep")
        plt.ylabel("CRE Accounts")
        saved.append(save_fig("vis4_rep_cre.png", root_path))
    else:
        print("[INFO] Skipping CRE chart: no CRE accounts assigned.")

    return saved
