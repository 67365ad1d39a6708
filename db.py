# db.py

import sqlite3
from typing import Any, Dict, List, Optional

import config
from logger import get_logger


log = get_logger("db")


def _table_columns(cur: sqlite3.Cursor, table: str) -> set[str]:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}

def _ensure_column(cur: sqlite3.Cursor, table: str, column: str, col_type: str) -> None:
    cols = _table_columns(cur, table)
    if column not in cols:
        log.info(f"DB MIGRATION: adding column {table}.{column} {col_type}")
        cur.execute(f'ALTER TABLE {table} ADD COLUMN "{column}" {col_type}')


# ---------- Local Run History DB ----------
def state_conn() -> sqlite3.Connection:
    # read through the module so tests can point it at a temp file
    conn = sqlite3.connect(config.STATE_DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn

def init_state_db() -> None:
    conn = state_conn()
    cur = conn.cursor()

    cur.execute("""
    CREATE TABLE IF NOT EXISTS planning_runs (
        run_id TEXT PRIMARY KEY,
        zko_id INTEGER,
        operator TEXT,
        start_ts TEXT,
        end_ts TEXT,
        final_state TEXT,
        pallets_count INTEGER,
        reconciliation_status TEXT,
        error_summary TEXT
    )
    """)

    # ---- MIGRATIONS / SAFE UPGRADES ----
    _ensure_column(cur, "planning_runs", "strategy", "TEXT")

    cur.execute("CREATE INDEX IF NOT EXISTS idx_planning_runs_zko ON planning_runs(zko_id, start_ts)")

    conn.commit()
    conn.close()


def mark_run(run_id: str, zko_id: int, operator: str, start_ts: str, strategy: Optional[str] = None) -> None:
    conn = state_conn()
    conn.execute("""
    INSERT INTO planning_runs (run_id, zko_id, operator, start_ts, final_state, strategy)
    VALUES (?, ?, ?, ?, 'RUNNING', ?)
    """, (run_id, zko_id, operator, start_ts, strategy))
    conn.commit()
    conn.close()

def update_run_state(run_id: str, state: str) -> None:
    conn = state_conn()
    conn.execute("UPDATE planning_runs SET final_state=? WHERE run_id=?", (state, run_id))
    conn.commit()
    conn.close()

def close_run(
    run_id: str,
    end_ts: str,
    final_state: str,
    pallets_count: Optional[int] = None,
    reconciliation_status: Optional[str] = None,
    error_summary: Optional[str] = None,
) -> None:
    conn = state_conn()
    conn.execute("""
    UPDATE planning_runs
    SET end_ts=?, final_state=?, pallets_count=?, reconciliation_status=?, error_summary=?
    WHERE run_id=?
    """, (end_ts, final_state, pallets_count, reconciliation_status, error_summary, run_id))
    conn.commit()
    conn.close()

def get_run(run_id: str) -> Optional[Dict[str, Any]]:
    conn = state_conn()
    row = conn.execute("SELECT * FROM planning_runs WHERE run_id=?", (run_id,)).fetchone()
    conn.close()
    return dict(row) if row else None

def recent_runs(limit: int = 50, zko_id: Optional[int] = None) -> List[Dict[str, Any]]:
    conn = state_conn()
    if zko_id is None:
        rows = conn.execute(
            "SELECT * FROM planning_runs ORDER BY start_ts DESC LIMIT ?", (limit,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM planning_runs WHERE zko_id=? ORDER BY start_ts DESC LIMIT ?", (zko_id, limit)
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]
