# db.py

import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Dict, Iterable, Optional

from config import STATE_DB_PATH
from models import Cafe24Token
from logger import get_logger


log = get_logger("db")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _table_columns(cur: sqlite3.Cursor, table: str) -> set[str]:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}

def _ensure_column(cur: sqlite3.Cursor, table: str, column: str, col_type: str) -> None:
    cols = _table_columns(cur, table)
    if column not in cols:
        log.info(f"DB MIGRATION: adding column {table}.{column} {col_type}")
        cur.execute(f'ALTER TABLE {table} ADD COLUMN "{column}" {col_type}')


class StateDB:
    """Local SQLite state: the Cafe24 token and the shipment upload ledger."""

    def __init__(self, path: str = STATE_DB_PATH):
        self.path = path

    def conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> None:
        conn = self.conn()
        cur = conn.cursor()

        cur.execute("""
        CREATE TABLE IF NOT EXISTS cafe24_tokens (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            access_token TEXT,
            refresh_token TEXT,
            expires_at REAL,
            token_type TEXT,
            updated_ts TEXT
        )
        """)

        cur.execute("""
        CREATE TABLE IF NOT EXISTS upload_runs (
            run_id TEXT PRIMARY KEY,
            start_ts TEXT,
            end_ts TEXT,
            env TEXT,
            file_name TEXT,
            dry_run INTEGER,
            shipment_count INTEGER,
            matched_count INTEGER,
            unmatched_count INTEGER,
            succeeded_count INTEGER,
            failed_count INTEGER,
            log_file_path TEXT
        )
        """)

        cur.execute("""
        CREATE TABLE IF NOT EXISTS upload_run_items (
            run_id TEXT,
            source_row INTEGER,
            tracking_no TEXT,
            order_id TEXT,
            receiver_name TEXT,
            match_type TEXT,
            method TEXT,
            status TEXT,
            error TEXT,
            updated_ts TEXT,
            PRIMARY KEY (run_id, source_row, tracking_no)
        )
        """)

        # ---- MIGRATIONS / SAFE UPGRADES ----
        _ensure_column(cur, "upload_runs", "dry_run", "INTEGER")

        conn.executescript("""
        CREATE INDEX IF NOT EXISTS idx_upload_runs_start_ts ON upload_runs(start_ts);
        CREATE INDEX IF NOT EXISTS idx_upload_run_items_run_id ON upload_run_items(run_id);
        CREATE INDEX IF NOT EXISTS idx_upload_run_items_order_id ON upload_run_items(order_id);
        """)

        conn.commit()
        conn.close()

    # ---------- Run ledger ----------
    def mark_run(self, run_id: str, start_ts: str, env: str, file_name: str,
                 log_file_path: str, dry_run: bool = False) -> None:
        conn = self.conn()
        conn.execute("""
        INSERT INTO upload_runs (
            run_id, start_ts, env, file_name, dry_run,
            shipment_count, matched_count, unmatched_count, succeeded_count, failed_count,
            log_file_path
        ) VALUES (?, ?, ?, ?, ?, 0, 0, 0, 0, 0, ?)
        """, (run_id, start_ts, env, file_name, int(dry_run), log_file_path))
        conn.commit()
        conn.close()

    def close_run(self, run_id: str, end_ts: str, shipments: int, matched: int,
                  unmatched: int, succeeded: int, failed: int) -> None:
        conn = self.conn()
        conn.execute("""
        UPDATE upload_runs
        SET end_ts=?, shipment_count=?, matched_count=?, unmatched_count=?,
            succeeded_count=?, failed_count=?
        WHERE run_id=?
        """, (end_ts, shipments, matched, unmatched, succeeded, failed, run_id))
        conn.commit()
        conn.close()

    def record_items(self, run_id: str, items: Iterable[Dict[str, Any]]) -> int:
        """
        Upsert per-row outcomes. Each item needs source_row and tracking_no;
        order_id, receiver_name, match_type, method, status and error are optional.
        """
        now = _now()
        rows = [
            (
                run_id,
                int(it.get("source_row") or 0),
                str(it.get("tracking_no") or ""),
                it.get("order_id"),
                it.get("receiver_name"),
                it.get("match_type"),
                it.get("method"),
                it.get("status"),
                it.get("error"),
                now,
            )
            for it in items
        ]
        if not rows:
            return 0

        conn = self.conn()
        conn.executemany("""
        INSERT INTO upload_run_items (
            run_id, source_row, tracking_no, order_id, receiver_name,
            match_type, method, status, error, updated_ts
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(run_id, source_row, tracking_no) DO UPDATE SET
            order_id=COALESCE(excluded.order_id, upload_run_items.order_id),
            receiver_name=COALESCE(excluded.receiver_name, upload_run_items.receiver_name),
            match_type=COALESCE(excluded.match_type, upload_run_items.match_type),
            method=COALESCE(excluded.method, upload_run_items.method),
            status=excluded.status,
            error=excluded.error,
            updated_ts=excluded.updated_ts
        """, rows)
        conn.commit()
        conn.close()
        return len(rows)

    def recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        conn = self.conn()
        rows = conn.execute(
            "SELECT * FROM upload_runs ORDER BY start_ts DESC LIMIT ?", (limit,)
        ).fetchall()
        conn.close()
        return [dict(r) for r in rows]

    def get_run(self, run_id: str) -> Optional[Dict[str, Any]]:
        conn = self.conn()
        row = conn.execute("SELECT * FROM upload_runs WHERE run_id=?", (run_id,)).fetchone()
        conn.close()
        return dict(row) if row else None

    def run_items(self, run_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self.conn()
        if status:
            rows = conn.execute(
                "SELECT * FROM upload_run_items WHERE run_id=? AND status=? ORDER BY source_row",
                (run_id, status),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM upload_run_items WHERE run_id=? ORDER BY source_row", (run_id,)
            ).fetchall()
        conn.close()
        return [dict(r) for r in rows]


class SqliteTokenStore:
    """Single-row token store on top of StateDB."""

    def __init__(self, state_db: StateDB):
        self.state_db = state_db

    def get_token(self) -> Optional[Cafe24Token]:
        conn = self.state_db.conn()
        row = conn.execute(
            "SELECT access_token, refresh_token, expires_at, token_type FROM cafe24_tokens WHERE id=1"
        ).fetchone()
        conn.close()
        if not row or not row["access_token"]:
            return None
        return Cafe24Token(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"] or "",
            expires_at=float(row["expires_at"] or 0),
            token_type=row["token_type"] or "Bearer",
        )

    def save_token(self, token: Cafe24Token) -> None:
        conn = self.state_db.conn()
        conn.execute("""
        INSERT INTO cafe24_tokens (id, access_token, refresh_token, expires_at, token_type, updated_ts)
        VALUES (1, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            access_token=excluded.access_token,
            refresh_token=excluded.refresh_token,
            expires_at=excluded.expires_at,
            token_type=excluded.token_type,
            updated_ts=excluded.updated_ts
        """, (token.access_token, token.refresh_token, token.expires_at, token.token_type, _now()))
        conn.commit()
        conn.close()
        log.info("Cafe24 token saved")

    def clear(self) -> None:
        conn = self.state_db.conn()
        conn.execute("DELETE FROM cafe24_tokens")
        conn.commit()
        conn.close()
        log.info("Cafe24 token cleared")
