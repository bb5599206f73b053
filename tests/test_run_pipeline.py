from __future__ import annotations

import json
from pathlib import Path

import pytest

from app.harvester import db, healthcheck, run
from app.harvester.detail import IncidentDetail
from app.harvester.error_codes import AuthFailure
from app.harvester.listing import IncidentSummary
from app.harvester.run import run_sync
from app.harvester.utils import load_json_file
from tests.fakes import (
    PortalScenario,
    RecordingWriter,
    browser_factory_for,
    build_portal,
    fast_settings,
    incident_entry,
    no_sleep,
)

DETAILS = {
    "1": {
        "assessments": [{"ownerInfo": {"name": "Jane Doe"}, "lastSale": {"buyer": "John Smith"}}],
        "comments": [{"description": "Crew on scene"}],
        "contactNotes": [{"contact": "480-555-0000"}],
    },
    "2": {"contactNotes": [{"contact": "602.555.1111"}]},
    "3": {},
}


def _pages():
    return [
        [
            incident_entry("1", searchableContent="Smoke reported"),
            incident_entry("2", searchableContent="Kitchen fire", commentCount=4, paged=True),
        ],
        [incident_entry("3", searchableContent="Brush fire near 602-555-2222")],
    ]


def _run(tmp_path: Path, scenario: PortalScenario, writer=None, **overrides):
    settings = fast_settings(tmp_path, **overrides)
    page = build_portal(settings, scenario)
    writer = writer or RecordingWriter()
    summary = run_sync(
        settings,
        trigger="tests",
        writer=writer,
        browser_factory=browser_factory_for(page),
        sleep=no_sleep,
    )
    return summary, writer, page, settings


def _ledger(settings):
    conn = db.get_connection(settings.db_path)
    try:
        return db.get_run(conn, db.latest_run_id(conn))
    finally:
        conn.close()


def test_full_run_writes_one_row_per_incident(tmp_path: Path) -> None:
    summary, writer, page, settings = _run(tmp_path, PortalScenario(pages=_pages(), details=DETAILS))

    assert len(writer.calls) == 1
    rows = writer.calls[0]
    assert [row.incident_id for row in rows] == ["1", "2", "3"]
    assert rows[0].owner_name == "Jane Doe / John Smith"
    assert rows[0].phone == "480-555-0000"
    assert rows[1].phone == "602.555.1111"
    assert rows[1].ai_score == 95
    assert rows[1].family_note == "PAGED - Urgent Follow-Up"
    assert rows[2].phone == "602-555-2222"

    assert summary["status"] == "completed"
    assert summary["listed"] == 3
    assert summary["rows_written"] == 3
    assert summary["skipped"] == 0
    assert summary["storage_ok"] is True

    ledger = _ledger(settings)
    assert ledger["status"] == "completed"
    assert ledger["trigger"] == "tests"
    assert ledger["rows_written"] == 3

    assert load_json_file(settings.summary_file)["rows_written"] == 3
    telemetry = json.loads(Path(summary["telemetry_path"]).read_text(encoding="utf-8"))
    assert telemetry["outcomes"] == {"normalized": 3}
    assert page.visits[0] == settings.sign_in_url
    assert page.visits[1] == settings.listing_url


def test_failed_login_aborts_without_storage_calls(tmp_path: Path) -> None:
    settings = fast_settings(tmp_path)
    page = build_portal(settings, PortalScenario(pages=_pages(), details=DETAILS, login="banner"))
    writer = RecordingWriter()

    with pytest.raises(AuthFailure):
        run_sync(
            settings,
            trigger="tests",
            writer=writer,
            browser_factory=browser_factory_for(page),
            sleep=no_sleep,
        )

    assert writer.calls == []
    assert settings.listing_url not in page.visits
    assert page.screenshots
    ledger = _ledger(settings)
    assert ledger["status"] == "failed"
    assert ledger["rows_written"] == 0
    assert "AuthFailure" in ledger["error_summary"]


def test_incident_without_contact_button_is_skipped(tmp_path: Path) -> None:
    summary, writer, _, settings = _run(
        tmp_path,
        PortalScenario(pages=_pages(), details=DETAILS, missing_contact_button=["2"]),
    )

    assert [row.incident_id for row in writer.calls[0]] == ["1", "3"]
    assert summary["skipped"] == 1
    assert summary["skipped_ids"] == ["2"]
    assert summary["rows_written"] == 2
    assert _ledger(settings)["skipped"] == 1


def test_silent_contact_panel_still_produces_row(tmp_path: Path) -> None:
    summary, writer, _, _ = _run(
        tmp_path,
        PortalScenario(pages=_pages(), details=DETAILS, silent_contact=["2"]),
    )

    rows = {row.incident_id: row for row in writer.calls[0]}
    assert set(rows) == {"1", "2", "3"}
    assert rows["2"].phone is None
    assert summary["degraded_contacts"] == 1
    assert summary["skipped"] == 0


def test_non_json_contact_body_still_produces_row(tmp_path: Path) -> None:
    summary, writer, _, _ = _run(
        tmp_path,
        PortalScenario(pages=_pages(), details=DETAILS, malformed_contact=["1"]),
    )

    rows = {row.incident_id: row for row in writer.calls[0]}
    assert set(rows) == {"1", "2", "3"}
    assert rows["1"].phone is None
    assert rows["1"].owner_name == "Jane Doe / John Smith"
    assert rows["2"].phone == "602.555.1111"
    assert summary["degraded_contacts"] == 1
    assert summary["skipped"] == 0


def test_failed_run_overwrites_last_summary(tmp_path: Path) -> None:
    _, _, _, settings = _run(tmp_path, PortalScenario(pages=_pages(), details=DETAILS))
    assert load_json_file(settings.summary_file)["status"] == "completed"

    page = build_portal(settings, PortalScenario(pages=_pages(), details=DETAILS, login="banner"))
    with pytest.raises(AuthFailure):
        run_sync(
            settings,
            trigger="tests",
            writer=RecordingWriter(),
            browser_factory=browser_factory_for(page),
            sleep=no_sleep,
        )

    last = load_json_file(settings.summary_file)
    assert last["status"] == "failed"
    assert last["rows_written"] == 0
    assert "AuthFailure" in last["error"]

    result = healthcheck.run_health_checks(settings, entrypoint="health")
    assert result.checks["last_run"]["status"] == "failed"
    assert result.checks["last_run"]["ok"] is False
    assert result.ok

def test_storage_failure_is_recorded_in_summary(tmp_path: Path) -> None:
    summary, writer, _, settings = _run(
        tmp_path,
        PortalScenario(pages=_pages(), details=DETAILS),
        writer=RecordingWriter(ok=False),
    )

    assert len(writer.calls) == 1
    assert summary["status"] == "completed"
    assert summary["storage_ok"] is False
    assert summary["rows_written"] == 0
    assert summary["storage"]["status_code"] == 500
    assert _ledger(settings)["storage_ok"] == 0


def test_empty_listing_skips_storage(tmp_path: Path) -> None:
    summary, writer, _, _ = _run(tmp_path, PortalScenario(pages=[[]]))

    assert writer.calls == []
    assert summary["listed"] == 0
    assert summary["storage_ok"] is None


def test_single_page_mode_ignores_later_pages(tmp_path: Path) -> None:
    summary, writer, _, _ = _run(
        tmp_path, PortalScenario(pages=_pages(), details=DETAILS), paginate=False
    )

    assert [row.incident_id for row in writer.calls[0]] == ["1", "2"]
    assert summary["listed"] == 2


def test_record_fixtures_writes_capture_lines(tmp_path: Path) -> None:
    _, _, _, settings = _run(
        tmp_path, PortalScenario(pages=_pages(), details=DETAILS), record_fixtures=True
    )

    files = list(settings.fixtures_dir.glob("captures_*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]
    assert [line["incident"]["IncidentId"] for line in lines] == ["1", "2", "3"]
    assert lines[0]["contacts"] == [{"contact": "480-555-0000"}]


def test_invalid_config_fails_before_browser(tmp_path: Path) -> None:
    settings = fast_settings(tmp_path, sync_backend="supabase")
    opened: list[bool] = []

    def _factory(_settings):
        opened.append(True)
        raise AssertionError("browser should not open")

    with pytest.raises(ValueError):
        run_sync(settings, writer=RecordingWriter(), browser_factory=_factory, sleep=no_sleep)

    assert opened == []


def test_process_incidents_isolates_failures() -> None:
    class _Correlator:
        def fetch_detail(self, incident_id: str) -> IncidentDetail:
            if incident_id == "bad":
                raise RuntimeError("unexpected payload")
            return IncidentDetail(incident_id=incident_id)

    summaries = [
        IncidentSummary.from_payload(incident_entry(incident_id))
        for incident_id in ("a", "bad", "c")
    ]

    rows, details = run.process_incidents(summaries, _Correlator())

    assert [row.incident_id for row in rows] == ["a", "c"]
    assert details["skipped"] == [{"incident_id": "bad", "error_code": "internal_error"}]
