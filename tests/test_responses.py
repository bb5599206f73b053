from __future__ import annotations

import pytest

from app.harvester.error_codes import CorrelationTimeout, ResponseDecodeError
from app.harvester.responses import CapturedResponse, ResponseMatcher, ResponsePredicate
from tests.fakes import PORTAL_ORIGIN, FakePage, FakeResponse


def _listing_predicate() -> ResponsePredicate:
    return ResponsePredicate(
        url_contains="/api/incident",
        url_excludes=("comments", "contact"),
        status=200,
        name="listing",
    )


def test_predicate_matches_url_status_and_method() -> None:
    predicate = ResponsePredicate(url_contains="/api/incident/7/contact", method="GET", status=200)

    assert predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident/7/contact"))
    assert not predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident/7/contact", status=304))
    assert not predicate.matches(
        FakeResponse(f"{PORTAL_ORIGIN}/api/incident/7/contact", method="OPTIONS")
    )
    assert not predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident/8/contact"))


def test_predicate_excludes_sibling_endpoints() -> None:
    predicate = _listing_predicate()

    assert predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident?page=1"))
    assert not predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident/1/comments"))
    assert not predicate.matches(FakeResponse(f"{PORTAL_ORIGIN}/api/incident/1/contact"))


def test_predicate_never_raises_on_odd_objects() -> None:
    assert ResponsePredicate(url_contains="/api").matches(object()) is False


def test_capture_only_sees_responses_after_arming() -> None:
    page = FakePage()
    stale = FakeResponse(f"{PORTAL_ORIGIN}/api/incident?page=1", {"incidents": [{"IncidentId": "old"}]})
    fresh = FakeResponse(f"{PORTAL_ORIGIN}/api/incident?page=1", {"incidents": [{"IncidentId": "new"}]})
    page.emit([stale])
    page.routes["https://portal/list"] = [fresh]

    matcher = ResponseMatcher(page, timeout_ms=1000)
    captured = matcher.capture(_listing_predicate(), lambda: page.goto("https://portal/list"))

    assert captured.payload == {"incidents": [{"IncidentId": "new"}]}
    assert captured.status == 200
    assert captured.method == "GET"


def test_capture_all_resolves_each_predicate_independently() -> None:
    page = FakePage()
    page.routes["https://portal/detail"] = [
        FakeResponse(f"{PORTAL_ORIGIN}/api/incident/5/comments", {"comments": [{"description": "c"}]}),
        FakeResponse(f"{PORTAL_ORIGIN}/api/assessment/incident/5", {"assessments": [{"id": 1}]}),
    ]
    matcher = ResponseMatcher(page, timeout_ms=1000)

    assessment, comments = matcher.capture_all(
        [
            ResponsePredicate(url_contains="/api/assessment/incident/5", name="assessment"),
            ResponsePredicate(url_contains="/api/incident/5/comments", name="comments"),
        ],
        lambda: page.goto("https://portal/detail"),
    )

    assert assessment.collection("assessments") == [{"id": 1}]
    assert comments.collection("comments") == [{"description": "c"}]
    assert page.armed == 2


def test_capture_timeout_raises_correlation_timeout() -> None:
    page = FakePage()
    matcher = ResponseMatcher(page, timeout_ms=50)
    predicate = ResponsePredicate(url_contains="/api/incident/9/contact", name="contact")

    with pytest.raises(CorrelationTimeout) as info:
        matcher.capture(predicate, lambda: None)

    assert info.value.predicate is predicate
    assert "50ms" in str(info.value)


def test_capture_rejects_non_json_payload() -> None:
    page = FakePage()
    page.routes["https://portal/list"] = [
        FakeResponse(f"{PORTAL_ORIGIN}/api/incident", ValueError("Expecting value"))
    ]
    matcher = ResponseMatcher(page, timeout_ms=50)

    with pytest.raises(ResponseDecodeError):
        matcher.capture(_listing_predicate(), lambda: page.goto("https://portal/list"))


def test_collection_tolerates_missing_or_malformed_keys() -> None:
    captured = CapturedResponse(url="u", status=200, method="GET", payload={"incidents": "nope"})

    assert captured.collection("incidents") == []
    assert captured.collection("absent") == []
    assert CapturedResponse(url="u", status=200, method="GET", payload=[1, 2]).collection("x") == []
