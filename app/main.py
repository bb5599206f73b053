from __future__ import annotations

import threading
from typing import Any, Callable, Dict

from flask import Flask, Response, jsonify, request

from app.harvester import config, db
from app.harvester.config_validation import validate_settings
from app.harvester.healthcheck import run_health_checks
from app.harvester.logging_utils import _sync_event
from app.harvester.run import run_sync
from app.harvester.utils import load_json_file, log_line

app = Flask(__name__)

# One sync at a time: the portal session and browser are per run.
_SYNC_LOCK = threading.Lock()


def _get_webhook_token() -> str | None:
    token = request.headers.get("X-Webhook-Token")
    if not token:
        token = request.args.get("token")
    return token


def _parse_webhook_payload() -> dict[str, object]:
    payload: dict[str, object] = {}
    payload.update(request.args or {})

    if request.is_json:
        payload.update(request.get_json(silent=True) or {})
    else:
        payload.update(request.form or {})

    return payload


def _spawn(target: Callable[[], None]) -> None:
    threading.Thread(target=target, daemon=True).start()


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, database and last run."""

    result = run_health_checks(config.load_settings(), entrypoint="health")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status


@app.get("/api/runs/latest")
def api_runs_latest() -> Response:
    """Return the latest run from the SQLite run ledger."""

    settings = config.load_settings()
    conn = db.get_connection(settings.db_path)
    try:
        db.initialize_schema(conn)
        run_id = db.latest_run_id(conn)
        run = db.get_run(conn, run_id) if run_id is not None else None
    finally:
        conn.close()

    if run is None:
        return jsonify({"ok": False, "error": "no runs"}), 404

    payload: Dict[str, Any] = {
        "ok": True,
        "run": {
            "id": run["id"],
            "trigger": run["trigger"],
            "status": run["status"],
            "started_at": run["started_at"],
            "ended_at": run["ended_at"],
            "listed": run["listed"],
            "rows_written": run["rows_written"],
            "skipped": run["skipped"],
            "degraded": run["degraded"],
            "error_summary": run["error_summary"],
        },
        "last_summary": load_json_file(settings.summary_file, default=None),
    }
    return jsonify(payload)


@app.post("/webhook/sync")
def webhook_sync() -> Response:
    if not config.WEBHOOK_SHARED_SECRET:
        return jsonify({"ok": False, "error": "webhook_disabled"}), 404

    token = _get_webhook_token()
    if token != config.WEBHOOK_SHARED_SECRET:
        _sync_event(
            "error",
            phase="webhook",
            context="sync",
            error="invalid_token",
            remote_addr=request.remote_addr,
        )
        return jsonify({"ok": False, "error": "invalid_token"}), 403

    payload = _parse_webhook_payload()
    single_page = str(payload.get("single_page") or "").strip().lower() in {"1", "true", "yes"}

    try:
        settings = validate_settings(config.load_settings(), "webhook")
    except ValueError as exc:
        _sync_event(
            "error",
            phase="webhook",
            context="sync",
            error="config_invalid",
            message=str(exc),
        )
        return jsonify({"ok": False, "error": "config_invalid", "details": str(exc)}), 500

    if single_page:
        settings = settings.with_overrides(paginate=False)

    if not _SYNC_LOCK.acquire(blocking=False):
        return jsonify({"ok": False, "error": "sync_in_progress"}), 409

    def _run() -> None:
        try:
            run_sync(settings, trigger="webhook")
        except Exception as exc:  # noqa: BLE001
            log_line(f"[WEBHOOK] Sync failed: {exc}")
        finally:
            _SYNC_LOCK.release()

    _sync_event(
        "state",
        phase="webhook",
        context="sync",
        single_page=single_page,
        remote_addr=request.remote_addr,
    )
    try:
        _spawn(_run)
    except Exception:
        _SYNC_LOCK.release()
        raise

    return jsonify({"ok": True, "entrypoint": "webhook", "status": "started"}), 202


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8080)
