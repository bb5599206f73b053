from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from . import db
from .config import Settings, load_settings
from .config_validation import validate_settings
from .logging_utils import _sync_event
from .utils import load_json_file, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(settings: Optional[Settings] = None, entrypoint: str = "health") -> HealthResult:
    settings = settings or load_settings()
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_settings(settings, "cli" if entrypoint == "cli" else "health")
        checks["config"] = {"ok": True, "backend": settings.sync_backend}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    try:
        conn = db.get_connection(settings.db_path)
        try:
            db.initialize_schema(conn)
            conn.execute("SELECT COUNT(*) FROM sync_runs")
        finally:
            conn.close()
        checks["database"] = {"ok": True, "path": str(settings.db_path)}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"ok": False, "error": str(exc)}

    last = load_json_file(settings.summary_file, default=None)
    if isinstance(last, dict):
        checks["last_run"] = {
            "ok": last.get("status") == "completed",
            "run_id": last.get("run_id"),
            "status": last.get("status"),
            "rows_written": last.get("rows_written"),
            "skipped": last.get("skipped"),
        }

    # A failed previous run is reported but does not make the service unhealthy.
    overall_ok = all(
        check.get("ok", False) for name, check in checks.items() if name != "last_run"
    )

    _sync_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
