"""SQLite helpers for the harvester.

Holds the run ledger (``sync_runs``) and a local mirror of the ``incidents``
table used by the SQLite sync backend and offline replays.
"""
from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

INCIDENT_COLUMNS: Sequence[str] = (
    "incident_id",
    "preset_label",
    "incident_type",
    "structure_type",
    "address",
    "street_address",
    "city",
    "state",
    "zipcode",
    "county",
    "latitude",
    "longitude",
    "reported_at",
    "sla_due",
    "ai_score",
    "assigned_agent",
    "contractor",
    "commission_pct",
    "owner_name",
    "phone",
    "damage_description",
    "family_note",
    "description",
    "stage",
)

_COLUMN_TYPES: Dict[str, str] = {
    "incident_id": "TEXT PRIMARY KEY",
    "ai_score": "INTEGER",
    "commission_pct": "REAL",
}


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Return a connection to ``db_path``, creating the parent directory.

    ``check_same_thread`` is disabled so the webhook thread can reuse the
    helper; callers serialise access themselves.
    """

    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create tables if missing. Safe to call repeatedly."""

    incident_columns = ",\n            ".join(
        f"{name} {_COLUMN_TYPES.get(name, 'TEXT')}" for name in INCIDENT_COLUMNS
    )
    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS sync_runs (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            trigger         TEXT NOT NULL,
            status          TEXT NOT NULL,
            started_at      TEXT NOT NULL,
            ended_at        TEXT,
            listed          INTEGER NOT NULL DEFAULT 0,
            rows_written    INTEGER NOT NULL DEFAULT 0,
            skipped         INTEGER NOT NULL DEFAULT 0,
            degraded        INTEGER NOT NULL DEFAULT 0,
            storage_ok      INTEGER,
            error_summary   TEXT,
            summary_json    TEXT
        );
        """,
        f"""
        CREATE TABLE IF NOT EXISTS incidents (
            {incident_columns},
            synced_at TEXT NOT NULL
        );
        """,
    )
    with conn:
        for statement in statements:
            conn.execute(statement)


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def create_run(conn: sqlite3.Connection, *, trigger: str) -> int:
    with conn:
        cursor = conn.execute(
            "INSERT INTO sync_runs (trigger, status, started_at) VALUES (?, 'running', ?)",
            (trigger, _now_iso()),
        )
    return int(cursor.lastrowid)


def finish_run(
    conn: sqlite3.Connection,
    run_id: int,
    *,
    status: str,
    summary: Dict[str, Any],
    error_summary: Optional[str] = None,
) -> None:
    storage_ok = summary.get("storage_ok")
    with conn:
        conn.execute(
            """
            UPDATE sync_runs
               SET status = ?, ended_at = ?, listed = ?, rows_written = ?,
                   skipped = ?, degraded = ?, storage_ok = ?, error_summary = ?,
                   summary_json = ?
             WHERE id = ?
            """,
            (
                status,
                _now_iso(),
                int(summary.get("listed") or 0),
                int(summary.get("rows_written") or 0),
                int(summary.get("skipped") or 0),
                int(summary.get("degraded_contacts") or 0),
                None if storage_ok is None else int(bool(storage_ok)),
                error_summary,
                json.dumps(summary, default=str, sort_keys=True),
                run_id,
            ),
        )


def get_run(conn: sqlite3.Connection, run_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM sync_runs WHERE id = ?", (run_id,)).fetchone()
    return dict(row) if row is not None else None


def latest_run_id(conn: sqlite3.Connection) -> Optional[int]:
    row = conn.execute("SELECT id FROM sync_runs ORDER BY id DESC LIMIT 1").fetchone()
    return int(row["id"]) if row is not None else None


def upsert_incidents(conn: sqlite3.Connection, records: Sequence[Dict[str, Any]]) -> int:
    """Insert or fully replace incident rows keyed by ``incident_id``."""

    if not records:
        return 0
    columns = list(INCIDENT_COLUMNS) + ["synced_at"]
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{name} = excluded.{name}" for name in columns if name != "incident_id")
    sql = (
        f"INSERT INTO incidents ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(incident_id) DO UPDATE SET {updates}"
    )
    synced_at = _now_iso()
    with conn:
        conn.executemany(
            sql,
            [
                tuple(record.get(name) for name in INCIDENT_COLUMNS) + (synced_at,)
                for record in records
            ],
        )
    return len(records)


def fetch_incidents(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM incidents ORDER BY incident_id").fetchall()
    return [dict(row) for row in rows]


__all__ = [
    "INCIDENT_COLUMNS",
    "get_connection",
    "initialize_schema",
    "create_run",
    "finish_run",
    "get_run",
    "latest_run_id",
    "upsert_incidents",
    "fetch_incidents",
]
