import pandas as pd

from bookops.config import AllocationConfig
from bookops.reporting.visuals import build_visuals


def test_build_visuals_writes_figures(tmp_path):
    loads = pd.DataFrame({
        "rep_id": ["r1", "r2", "r3"],
        "region": ["West", "East", None],
        "arr": [2_600_000.0, 1_000_000.0, 1_900_000.0],
        "cre_count": [1, 0, 2],
        "cutoff_status": ["over", "under", "under"],
    })
    saved = build_visuals(loads, tmp_path, AllocationConfig())

    assert [p.name for p in saved] == [
        "vis1_rep_arr.png",
        "vis2_rep_arr_hist.png",
        "vis3_region_arr.png",
        "vis4_rep_cre.png",
    ]
    assert all(p.exists() and p.parent == tmp_path / "reports" / "figures" for p in saved)


def test_build_visuals_skips_empty_loads(tmp_path):
    assert build_visuals(pd.DataFrame(), tmp_path) == []
    assert not (tmp_path / "reports").exists()
