"""Playwright-driven incident sync for the fire-notification client portal.

Workflow:

- Sign in through the portal UI (retried as a whole sequence).
- Open the incident list and capture the ``/api/incident`` listing JSON,
  page by page.
- For each incident, open its detail view and capture the assessment,
  comments and (after opening the Contact panel) contact-notes JSON.
- Normalize each incident into an ``incidents`` row and upsert the batch once
  at the end, keyed by ``incident_id``.

A failure on one incident only drops that incident's row. A login failure
aborts the run before anything is written.
"""

from __future__ import annotations

import argparse
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, Iterable, Iterator, List, Optional, Tuple

from playwright.sync_api import Page, sync_playwright

from . import config, db
from .config import Settings, load_settings
from .config_validation import validate_settings
from .detail import DetailCorrelator
from .error_codes import error_code_for
from .listing import IncidentSummary, ListingTraversal
from .logging_utils import _sync_event
from .normalizer import NormalizedRow, normalize
from .responses import ResponseMatcher
from .session import SessionManager
from .sync_writer import SyncWriter, build_writer
from .telemetry import RunTelemetry
from .utils import append_json_line, ensure_dirs, log_line, save_json_file, setup_run_logger

BrowserFactory = Callable[[Settings], ContextManager[Page]]

PAGE_CONTENT_SNIPPET = 1000


def _short_error_message(exc: BaseException, max_length: int = 200) -> str:
    message = f"{type(exc).__name__}: {exc}"
    if len(message) > max_length:
        return message[: max_length - 3] + "..."
    return message


@contextmanager
def open_browser(settings: Settings) -> Iterator[Page]:
    """Launch Chromium and yield a single page; the browser closes on every exit path."""

    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=settings.headless, args=list(config.BROWSER_ARGS))
        try:
            context = browser.new_context(
                user_agent=config.UA,
                locale="en-US",
                viewport=dict(config.VIEWPORT),
                ignore_https_errors=True,
            )
            page = context.new_page()
            page.set_default_navigation_timeout(settings.nav_timeout_seconds * 1000)
            page.set_default_timeout(settings.nav_timeout_seconds * 1000)
            yield page
        finally:
            log_line("[RUN] Closing browser...")
            try:
                browser.close()
            except Exception as exc:  # noqa: BLE001
                log_line(f"[RUN][WARN] Error closing browser: {exc}")
            else:
                log_line("[RUN] Browser closed.")


def dump_error_artifacts(page: Optional[Page], settings: Settings, label: str) -> None:
    """Best-effort page HTML snippet and screenshot for a failed run."""

    if page is None:
        return
    try:
        if page.is_closed():
            return
        content = page.content()
        log_line(f"[RUN] Page content on error: {content[:PAGE_CONTENT_SNIPPET]}")
    except Exception as exc:  # noqa: BLE001
        log_line(f"[RUN][WARN] Unable to read page content: {exc}")
        return

    path = settings.debug_dir / f"{label}_{time.strftime('%Y%m%d_%H%M%S')}.png"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        page.screenshot(path=str(path), full_page=True)
        log_line(f"[RUN] Saved error screenshot to {path}")
    except Exception as exc:  # noqa: BLE001
        log_line(f"[RUN][WARN] Unable to save screenshot: {exc}")


def process_incidents(
    summaries: Iterable[IncidentSummary],
    correlator: DetailCorrelator,
    *,
    state: str = config.DEFAULT_STATE,
    telemetry: Optional[RunTelemetry] = None,
    fixtures_path: Optional[Path] = None,
) -> Tuple[List[NormalizedRow], Dict[str, Any]]:
    """Fetch and normalize each incident in order, isolating per-incident failures."""

    rows: List[NormalizedRow] = []
    skipped: List[Dict[str, Any]] = []
    degraded = 0

    for summary in summaries:
        incident_id = summary.incident_id
        log_line(f"[RUN] Processing incident -> {incident_id}")
        try:
            detail = correlator.fetch_detail(incident_id)
        except Exception as exc:  # noqa: BLE001
            code = error_code_for(exc)
            log_line(f"[RUN] Skipping incident {incident_id}: {_short_error_message(exc)}")
            _sync_event(
                "skip",
                incident_id=incident_id,
                error_code=code,
                error=_short_error_message(exc),
            )
            skipped.append({"incident_id": incident_id, "error_code": code})
            if telemetry is not None:
                telemetry.record(incident_id, "skipped", error_code=code)
            continue

        row = normalize(
            summary,
            detail.assessments,
            detail.comments,
            detail.contacts,
            state=state,
        )
        rows.append(row)
        if detail.contact_degraded:
            degraded += 1
        if telemetry is not None:
            telemetry.record(
                incident_id, "normalized", contact_degraded=detail.contact_degraded
            )
        if fixtures_path is not None:
            append_json_line(
                fixtures_path,
                {
                    "incident": summary.raw,
                    "assessments": list(detail.assessments),
                    "comments": list(detail.comments),
                    "contacts": list(detail.contacts),
                },
            )
        log_line(f"[RUN] Row built for incident {incident_id}.")

    return rows, {"skipped": skipped, "degraded_contacts": degraded}


def harvest(
    page: Page,
    settings: Settings,
    *,
    writer: SyncWriter,
    telemetry: Optional[RunTelemetry] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Run login, listing, detail capture and the final upsert on ``page``."""

    session = SessionManager(page, settings, sleep=sleep)
    log_line("[RUN] Logging in...")
    session.login()
    session.require_authenticated()

    matcher = ResponseMatcher(page, timeout_ms=settings.response_timeout_seconds * 1000)
    traversal = ListingTraversal(page, matcher, settings, sleep=sleep)
    # Materialize before detail navigation invalidates the listing page.
    summaries = list(traversal.fetch_listing())
    log_line(f"[RUN] Total incidents found: {len(summaries)}")

    fixtures_path = None
    if settings.record_fixtures:
        fixtures_path = settings.fixtures_dir / f"captures_{time.strftime('%Y%m%d_%H%M%S')}.jsonl"

    correlator = DetailCorrelator(page, matcher, settings, sleep=sleep)
    rows, details = process_incidents(
        summaries,
        correlator,
        state=settings.default_state,
        telemetry=telemetry,
        fixtures_path=fixtures_path,
    )

    summary: Dict[str, Any] = {
        "listed": len(summaries),
        "rows_built": len(rows),
        "rows_written": 0,
        "skipped": len(details["skipped"]),
        "skipped_ids": [entry["incident_id"] for entry in details["skipped"]],
        "degraded_contacts": details["degraded_contacts"],
        "storage_ok": None,
    }

    if not rows:
        log_line("[RUN] No rows to upsert.")
        return summary

    result = writer.upsert(rows)
    summary["storage"] = result.as_dict()
    summary["storage_ok"] = result.ok
    if result.ok:
        summary["rows_written"] = result.rows
        log_line(f"[RUN] Upserted {result.rows} rows successfully.")
    else:
        log_line(f"[RUN] Storage error ({result.error_code}): {result.error_message}")
    return summary


def run_sync(
    settings: Optional[Settings] = None,
    *,
    trigger: str = "cli",
    writer: Optional[SyncWriter] = None,
    browser_factory: BrowserFactory = open_browser,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Public entrypoint: validate settings, drive one sync run and record it."""

    settings = validate_settings(
        settings or load_settings(), "webhook" if trigger == "webhook" else "cli"
    )
    ensure_dirs(settings)
    log_path = setup_run_logger(settings.log_dir)

    conn = db.get_connection(settings.db_path)
    db.initialize_schema(conn)
    run_id = db.create_run(conn, trigger=trigger)
    telemetry = RunTelemetry(settings.runs_dir, trigger)
    writer = writer or build_writer(settings)

    _sync_event("run", phase="start", run_id=run_id, trigger=trigger, backend=settings.sync_backend)

    summary: Dict[str, Any] = {"run_id": run_id, "trigger": trigger, "log_path": str(log_path)}
    try:
        with browser_factory(settings) as page:
            try:
                summary.update(
                    harvest(page, settings, writer=writer, telemetry=telemetry, sleep=sleep)
                )
            except Exception:
                dump_error_artifacts(page, settings, "run_failure")
                raise
    except Exception as exc:  # noqa: BLE001
        summary.update({"status": "failed", "error": _short_error_message(exc), "rows_written": 0})
        log_line(f"[RUN] Sync failed: {_short_error_message(exc)}")
        _sync_event("error", phase="run", run_id=run_id, error_code=error_code_for(exc))
        try:
            db.finish_run(conn, run_id, status="failed", summary=summary, error_summary=summary["error"])
        except Exception as db_exc:  # noqa: BLE001
            log_line(f"[DB][WARN] Unable to mark run failed: {db_exc}")
        try:
            save_json_file(settings.summary_file, summary)
        except Exception as summary_exc:  # noqa: BLE001
            log_line(f"[RUN][WARN] Unable to write summary: {summary_exc}")
        telemetry.finalize(summary)
        conn.close()
        raise

    summary["status"] = "completed"
    summary["telemetry_path"] = str(telemetry.finalize(summary))
    try:
        db.finish_run(conn, run_id, status="completed", summary=summary)
    except Exception as exc:  # noqa: BLE001
        log_line(f"[DB][WARN] Unable to mark run completed: {exc}")
    finally:
        conn.close()
    try:
        save_json_file(settings.summary_file, summary)
    except Exception as exc:  # noqa: BLE001
        log_line(f"[RUN][WARN] Unable to write summary: {exc}")

    _sync_event(
        "run",
        phase="end",
        run_id=run_id,
        listed=summary.get("listed"),
        rows_written=summary.get("rows_written"),
        skipped=summary.get("skipped"),
        degraded_contacts=summary.get("degraded_contacts"),
        storage_ok=summary.get("storage_ok"),
    )
    log_line(
        f"[RUN] Done: {summary.get('rows_written', 0)} rows written, "
        f"{summary.get('skipped', 0)} incidents skipped."
    )
    return summary


def _cli_entrypoint(argv: Optional[List[str]] = None) -> int:  # pragma: no cover
    parser = argparse.ArgumentParser(description="Sync portal incidents into storage")
    parser.add_argument(
        "--single-page",
        action="store_true",
        help="Capture only the first listing page.",
    )
    parser.add_argument("--max-pages", type=int, default=None)
    parser.add_argument("--headed", action="store_true", help="Run the browser with a window.")
    parser.add_argument("--backend", choices=list(config.SYNC_BACKENDS), default=None)
    args = parser.parse_args(argv)

    settings = load_settings().with_overrides(
        paginate=False if args.single_page else None,
        max_pages=args.max_pages,
        headless=False if args.headed else None,
        sync_backend=args.backend,
    )
    try:
        run_sync(settings, trigger="cli")
    except Exception:  # noqa: BLE001
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(_cli_entrypoint())

__all__ = ["run_sync", "harvest", "process_incidents", "open_browser", "_cli_entrypoint"]
