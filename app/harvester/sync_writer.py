from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

import requests

from . import db
from .config import Settings
from .error_codes import StorageWriteError
from .logging_utils import _sync_event
from .normalizer import CONFLICT_KEY, NormalizedRow
from .utils import log_line

UPSERT_TIMEOUT_SECONDS = 60


@dataclass
class SyncResult:
    ok: bool
    rows: int
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "rows": self.rows,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class SyncWriter(Protocol):
    def upsert(self, rows: Sequence[NormalizedRow]) -> SyncResult:
        ...


def _failure(rows: int, exc: StorageWriteError) -> SyncResult:
    _sync_event(
        "error",
        phase="storage",
        error_code=exc.error_code,
        http_status=exc.http_status,
        error=str(exc),
    )
    return SyncResult(
        ok=False,
        rows=rows,
        status_code=exc.http_status,
        error_code=exc.error_code,
        error_message=str(exc),
    )


def build_http_session(settings: Settings) -> requests.Session:
    """Return a requests session carrying the Supabase REST credentials."""

    session = requests.Session()
    session.headers.update(
        {
            "apikey": settings.supabase_key,
            "Authorization": f"Bearer {settings.supabase_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }
    )
    return session


class SupabaseSyncWriter:
    """Batch upsert through the Supabase (PostgREST) REST endpoint.

    ``on_conflict=incident_id`` with ``resolution=merge-duplicates`` makes the
    call insert new incidents and replace existing ones in place.
    """

    def __init__(self, settings: Settings, *, session: Optional[requests.Session] = None) -> None:
        self.base_url = settings.supabase_url.rstrip("/")
        self.table = settings.supabase_table
        self.session = session or build_http_session(settings)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.table}"

    def upsert(self, rows: Sequence[NormalizedRow]) -> SyncResult:
        if not rows:
            return SyncResult(ok=True, rows=0)

        payload = [row.as_record() for row in rows]
        log_line(f"[STORAGE] Upserting {len(payload)} rows into {self.table}...")
        try:
            try:
                response = self.session.post(
                    self.endpoint,
                    params={"on_conflict": CONFLICT_KEY},
                    json=payload,
                    timeout=UPSERT_TIMEOUT_SECONDS,
                )
            except requests.RequestException as exc:
                raise StorageWriteError(f"Storage request failed: {exc}") from exc

            if response.status_code >= 400:
                raise StorageWriteError(
                    f"HTTP {response.status_code}: {response.text[:500]}",
                    http_status=response.status_code,
                )
        except StorageWriteError as exc:
            return _failure(len(payload), exc)

        _sync_event(
            "storage",
            backend="supabase",
            table=self.table,
            rows=len(payload),
            http_status=response.status_code,
        )
        return SyncResult(ok=True, rows=len(payload), status_code=response.status_code)


class SqliteSyncWriter:
    """Upsert into the local SQLite mirror with the same replace semantics."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def upsert(self, rows: Sequence[NormalizedRow]) -> SyncResult:
        if not rows:
            return SyncResult(ok=True, rows=0)

        records = [row.as_record() for row in rows]
        conn = db.get_connection(self.db_path)
        try:
            try:
                db.initialize_schema(conn)
                written = db.upsert_incidents(conn, records)
            except sqlite3.Error as exc:
                raise StorageWriteError(f"SQLite upsert failed: {exc}") from exc
        except StorageWriteError as exc:
            return _failure(len(records), exc)
        finally:
            conn.close()

        _sync_event("storage", backend="sqlite", path=str(self.db_path), rows=written)
        return SyncResult(ok=True, rows=written)


def build_writer(settings: Settings, *, session: Optional[requests.Session] = None) -> SyncWriter:
    if settings.sync_backend == "sqlite":
        return SqliteSyncWriter(settings.db_path)
    if settings.sync_backend == "supabase":
        return SupabaseSyncWriter(settings, session=session)
    raise ValueError(f"Unknown sync backend: {settings.sync_backend!r}")


__all__ = [
    "SyncResult",
    "SyncWriter",
    "SupabaseSyncWriter",
    "SqliteSyncWriter",
    "build_writer",
    "build_http_session",
]
