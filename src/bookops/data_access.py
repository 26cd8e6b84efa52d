"""
Data access layer for the book-ops database.

Loads connection settings from environment (.env) and exposes helpers to read
the run snapshot (accounts, sales reps, assignment rules) and to write the
allocation result. The write is a single transaction: assignments, warnings
and the accounts' new owners either all land or none do.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd
from dotenv import load_dotenv
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from bookops.schema import (
    COL_ACCOUNT_ID,
    COL_NEW_OWNER_ID,
    ASSIGNMENT_COLUMNS,
    WARNING_COLUMNS,
    unify_columns,
)

load_dotenv()

ACCOUNTS_TABLE = "accounts"
REPS_TABLE = "sales_reps"
RULES_TABLE = "assignment_rules"
ASSIGNMENTS_TABLE = "assignments"
WARNINGS_TABLE = "assignment_warnings"


class PersistenceError(RuntimeError):
    """Snapshot read or result write failed; nothing was committed."""


def _build_connection_url() -> str:
    url = (os.getenv("BOOKOPS_DB_URL") or "").strip()
    if url:
        return url

    host = (os.getenv("BOOKOPS_DB_HOST") or "").strip()
    database = (os.getenv("BOOKOPS_DB_NAME") or "").strip()
    user = (os.getenv("BOOKOPS_DB_USER") or "").strip()
    pwd = (os.getenv("BOOKOPS_DB_PASSWORD") or "").strip()
    port = (os.getenv("BOOKOPS_DB_PORT") or "5432").strip()

    if not host or not database:
        raise RuntimeError("Missing BOOKOPS_DB_URL or BOOKOPS_DB_HOST/BOOKOPS_DB_NAME environment variables")

    from urllib.parse import quote_plus
    auth = f"{quote_plus(user)}:{quote_plus(pwd)}@" if user else ""
    print(f"[DEBUG] Connecting to {host}:{port}/{database}")
    return f"postgresql://{auth}{host}:{port}/{database}"


def get_engine(url: Optional[str] = None):
    """Create and return a SQLAlchemy engine.

    If `url` is provided, it overrides the environment settings.
    """
    return create_engine(url or _build_connection_url())


@dataclass
class Snapshot:
    accounts: pd.DataFrame
    reps: pd.DataFrame
    rules: pd.DataFrame

    def rule_records(self) -> List[Dict[str, Any]]:
        if self.rules.empty:
            return []
        clean = self.rules.astype(object).where(pd.notna(self.rules), None)
        return clean.to_dict(orient="records")


def _read(sql: str, conn, params: Optional[dict] = None) -> pd.DataFrame:
    return pd.read_sql(text(sql), conn, params=params)


def load_snapshot(engine=None, build_id: Optional[str] = None) -> Snapshot:
    """Read accounts, reps and rules once, inside one connection.

    Raises :class:`PersistenceError` when any read fails.
    """
    engine = engine or get_engine()
    account_sql = f"SELECT * FROM {ACCOUNTS_TABLE}"
    params = None
    if build_id is not None:
        account_sql += " WHERE build_id = :build_id"
        params = {"build_id": build_id}
    try:
        with engine.connect() as conn:
            accounts = _read(account_sql, conn, params)
            reps = _read(f"SELECT * FROM {REPS_TABLE}", conn)
            rules = _read(f"SELECT * FROM {RULES_TABLE} ORDER BY priority", conn)
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to read run snapshot: {exc}") from exc
    print(f"[INFO] Loaded snapshot: {len(accounts):,} accounts, {len(reps):,} reps, {len(rules):,} rules")
    return Snapshot(unify_columns(accounts), unify_columns(reps), rules)


def persist_results(
    assignments: pd.DataFrame,
    warnings: pd.DataFrame,
    engine=None,
    build_id: Optional[str] = None,
) -> None:
    """Write assignments and warnings atomically.

    Prior rows for the same ``build_id`` are replaced and
    ``accounts.new_owner_id`` is reset and rewritten for that build only, all in
    one transaction. Any failure rolls everything back and raises :class:`PersistenceError`.
    """
    engine = engine or get_engine()
    out_assign = assignments.reindex(columns=ASSIGNMENT_COLUMNS).copy()
    out_warn = warnings.reindex(columns=WARNING_COLUMNS).copy()
    out_warn["details"] = out_warn["details"].map(
        lambda d: json.dumps(d, default=str) if isinstance(d, (dict, list)) else d
    )
    out_assign["build_id"] = build_id
    out_warn["build_id"] = build_id

    if build_id is None:
        scope, params = "build_id IS NULL", {}
    else:
        scope, params = "build_id = :build_id", {"build_id": build_id}
    updates = [
        {"new_owner": row[COL_NEW_OWNER_ID], "account_id": row[COL_ACCOUNT_ID], **params}
        for row in out_assign[[COL_ACCOUNT_ID, COL_NEW_OWNER_ID]].to_dict(orient="records")
    ]
    try:
        with engine.begin() as conn:
            for table in (ASSIGNMENTS_TABLE, WARNINGS_TABLE):
                if _table_exists(conn, table):
                    conn.execute(text(f"DELETE FROM {table} WHERE {scope}"), params)
            out_assign.to_sql(ASSIGNMENTS_TABLE, conn, if_exists="append", index=False)
            out_warn.to_sql(WARNINGS_TABLE, conn, if_exists="append", index=False)
            # Unassigned accounts of this build must not keep an earlier owner.
            conn.execute(text(f"UPDATE {ACCOUNTS_TABLE} SET {COL_NEW_OWNER_ID} = NULL WHERE {scope}"), params)
            if updates:
                conn.execute(
                    text(
                        f"UPDATE {ACCOUNTS_TABLE} SET {COL_NEW_OWNER_ID} = :new_owner "
                        f"WHERE {COL_ACCOUNT_ID} = :account_id AND {scope}"
                    ),
                    updates,
                )
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to persist assignments; nothing was committed: {exc}") from exc
    print(f"[OK] Persisted {len(out_assign):,} assignments and {len(out_warn):,} warnings")


def _table_exists(conn, table: str) -> bool:
    return inspect(conn).has_table(table)

