import numpy as np
import pandas as pd
import pytest

from bookops.schema import (
    COL_ACCOUNT_ID,
    COL_ARR,
    COL_OWNER_ID,
    COL_TERRITORY,
    canonicalize_id,
    parse_tier,
    unify_columns,
)


def test_unify_columns_renames_aliases_case_insensitively():
    df = pd.DataFrame({"Account ID": ["1"], "ARR": [10.0], "Territory": ["West"], "Owner": ["r1"]})
    out = unify_columns(df)
    assert list(out.columns) == [COL_ACCOUNT_ID, COL_ARR, COL_TERRITORY, COL_OWNER_ID]


def test_unify_columns_keeps_existing_canonical_column():
    df = pd.DataFrame({COL_ARR: [1.0], "arr": [2.0]})
    out = unify_columns(df)
    assert out[COL_ARR].tolist() == [1.0]
    assert "arr" in out.columns


def test_unify_columns_extra_aliases():
    df = pd.DataFrame({"Acct": ["1"]})
    assert COL_ACCOUNT_ID in unify_columns(df, {"ACCT": COL_ACCOUNT_ID}).columns


def test_canonicalize_id_keeps_leading_zeros_and_masks_blanks():
    s = pd.Series(["001", 1002.0, " 77 ", "", None, "nan"])
    out = canonicalize_id(s)
    assert out.iloc[:3].tolist() == ["001", "1002", "77"]
    assert out.iloc[3:].isna().all()


@pytest.mark.parametrize(
    "value,expected",
    [("Tier 2", 2), ("1", 1), (3.0, 3), (np.int64(4), 4), (None, None), (np.nan, None), ("Tier 9", None), (0, None)],
)
def test_parse_tier(value, expected):
    assert parse_tier(value) == expected
