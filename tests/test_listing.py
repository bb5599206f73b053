from __future__ import annotations

from pathlib import Path

import pytest

from app.harvester import listing
from app.harvester.error_codes import CorrelationTimeout
from app.harvester.listing import IncidentSummary, ListingTraversal, parse_listing
from app.harvester.responses import CapturedResponse, ResponseMatcher
from app.harvester.selectors import PORTAL_SELECTORS
from tests.fakes import PortalScenario, build_portal, fast_settings, incident_entry, no_sleep


def _traversal(tmp_path: Path, pages, **overrides):
    settings = fast_settings(tmp_path, **overrides)
    page = build_portal(settings, PortalScenario(pages=pages))
    matcher = ResponseMatcher(page, timeout_ms=1000)
    return ListingTraversal(page, matcher, settings, sleep=no_sleep), page, settings


def test_single_page_yields_every_entry_in_order(tmp_path: Path) -> None:
    entries = [incident_entry(str(n)) for n in (101, 102, 103, 104)]
    traversal, page, settings = _traversal(tmp_path, [entries, [incident_entry("999")]])

    summaries = list(traversal.fetch_listing(paginate=False))

    assert [s.incident_id for s in summaries] == ["101", "102", "103", "104"]
    assert page.visits == [settings.listing_url]
    assert page.clicks == []


def test_pagination_walks_pages_until_controls_run_out(tmp_path: Path) -> None:
    pages = [
        [incident_entry("1"), incident_entry("2")],
        [incident_entry("3")],
        [incident_entry("4"), incident_entry("5")],
    ]
    traversal, page, _ = _traversal(tmp_path, pages)

    summaries = list(traversal.fetch_listing())

    assert [s.incident_id for s in summaries] == ["1", "2", "3", "4", "5"]
    assert page.clicks == [PORTAL_SELECTORS.page_button(2), PORTAL_SELECTORS.page_button(3)]


def test_pagination_respects_max_pages(tmp_path: Path) -> None:
    pages = [[incident_entry("1")], [incident_entry("2")], [incident_entry("3")]]
    traversal, page, _ = _traversal(tmp_path, pages, max_pages=2)

    summaries = list(traversal.fetch_listing())

    assert [s.incident_id for s in summaries] == ["1", "2"]
    assert page.clicks == [PORTAL_SELECTORS.page_button(2)]


def test_entries_without_id_are_skipped(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    lines: list[str] = []
    monkeypatch.setattr(listing, "log_line", lines.append)
    broken = incident_entry("x")
    broken.pop("IncidentId")
    traversal, _, _ = _traversal(tmp_path, [[incident_entry("1"), broken, incident_entry("2")]])

    summaries = list(traversal.fetch_listing(paginate=False))

    assert [s.incident_id for s in summaries] == ["1", "2"]
    warnings = [line for line in lines if "[WARN]" in line]
    assert warnings == ["[LISTING][WARN] Skipping listing entry 1: missing IncidentId"]


def test_first_page_failure_is_fatal_after_retries(tmp_path: Path) -> None:
    traversal, page, settings = _traversal(tmp_path, [[incident_entry("1")]], max_attempts=3)
    page.routes[settings.listing_url] = []

    with pytest.raises(CorrelationTimeout):
        list(traversal.fetch_listing())

    assert page.visits == [settings.listing_url] * 3


def test_later_page_failure_stops_pagination(tmp_path: Path) -> None:
    pages = [[incident_entry("1")], [incident_entry("2")]]
    traversal, page, _ = _traversal(tmp_path, pages, max_attempts=2)
    page.click_handlers[PORTAL_SELECTORS.page_button(2)] = lambda p: []

    summaries = list(traversal.fetch_listing())

    assert [s.incident_id for s in summaries] == ["1"]
    assert page.clicks == [PORTAL_SELECTORS.page_button(2)] * 2


def test_summary_from_payload_coerces_fields() -> None:
    summary = IncidentSummary.from_payload(
        {"IncidentId": 42, "commentCount": "3", "paged": 1, "cityName": "Mesa"}
    )

    assert summary.incident_id == "42"
    assert summary.comment_count == 3
    assert summary.paged is True
    assert summary.city_name == "Mesa"
    assert summary.raw["commentCount"] == "3"

    garbage = IncidentSummary.from_payload({"IncidentId": "7", "commentCount": "lots"})
    assert garbage.comment_count == 0
    assert garbage.paged is False


def test_parse_listing_handles_missing_array() -> None:
    captured = CapturedResponse(url="u", status=200, method="GET", payload={"total": 0})

    assert parse_listing(captured) == []
