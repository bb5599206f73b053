"""Per-incident detail capture.

Each incident's detail view fires three independent JSON calls: the property
assessment and the comment thread on navigation, and the contact notes once
the Contact panel is opened. The correlator ties those back to one
:class:`IncidentDetail`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from playwright.sync_api import Error as PWError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PWTimeout

from .config import Settings
from .error_codes import CorrelationTimeout, MissingUIElement, ResponseDecodeError, TransientUIError
from .logging_utils import _sync_event
from .responses import ResponseMatcher, ResponsePredicate
from .retry_policy import StepOutcome, StepPolicy, run_step, with_retry
from .selectors import API_PATHS, PORTAL_SELECTORS, ApiPaths, PortalSelectors
from .utils import log_line


@dataclass(frozen=True)
class IncidentDetail:
    incident_id: str
    assessments: Tuple[Dict[str, Any], ...] = ()
    comments: Tuple[Dict[str, Any], ...] = ()
    contacts: Tuple[Dict[str, Any], ...] = ()
    contact_degraded: bool = False

    @property
    def comment_text(self) -> str:
        return "".join(
            f"[ {entry.get('description')} ]\n"
            for entry in self.comments
            if isinstance(entry, dict)
        )


def _dicts(items: list) -> Tuple[Dict[str, Any], ...]:
    return tuple(item for item in items if isinstance(item, dict))


class DetailCorrelator:
    def __init__(
        self,
        page: Page,
        matcher: ResponseMatcher,
        settings: Settings,
        *,
        selectors: PortalSelectors = PORTAL_SELECTORS,
        api: ApiPaths = API_PATHS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.page = page
        self.matcher = matcher
        self.settings = settings
        self.selectors = selectors
        self.api = api
        self._sleep = sleep

    def assessment_predicate(self, incident_id: str) -> ResponsePredicate:
        return ResponsePredicate(
            url_contains=f"{self.api.assessment}{incident_id}",
            url_excludes=self.api.detail_excludes,
            name="assessment",
        )

    def comments_predicate(self, incident_id: str) -> ResponsePredicate:
        return ResponsePredicate(
            url_contains=f"{self.api.incident}{incident_id}{self.api.comments_suffix}",
            name="comments",
        )

    def contact_predicate(self, incident_id: str) -> ResponsePredicate:
        return ResponsePredicate(
            url_contains=f"{self.api.incident}{incident_id}{self.api.contact_suffix}",
            method="GET",
            status=200,
            name="contact",
        )

    def fetch_detail(self, incident_id: str) -> IncidentDetail:
        """Capture the detail collections for ``incident_id``, retrying the whole visit."""

        return with_retry(
            lambda: self._fetch_once(incident_id),
            max_attempts=self.settings.max_attempts,
            delay_seconds=self.settings.retry_delay_seconds,
            label=f"detail:{incident_id}",
            sleep=self._sleep,
        )

    def _fetch_once(self, incident_id: str) -> IncidentDetail:
        url = self.settings.detail_url(incident_id)
        log_line(f"[DETAIL] Navigating to incident detail {incident_id}")

        def _navigate() -> None:
            self.page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.settings.nav_timeout_seconds * 1000,
            )

        try:
            assessment, comments = self.matcher.capture_all(
                [self.assessment_predicate(incident_id), self.comments_predicate(incident_id)],
                _navigate,
            )
        except (PWTimeout, PWError) as exc:
            raise TransientUIError(f"Detail navigation for {incident_id} failed: {exc}") from exc

        contact = self._capture_contacts(incident_id)

        detail = IncidentDetail(
            incident_id=incident_id,
            assessments=_dicts(assessment.collection("assessments")),
            comments=_dicts(comments.collection("comments")),
            contacts=contact.value,
            contact_degraded=contact.degraded,
        )
        _sync_event(
            "detail",
            incident_id=incident_id,
            assessments=len(detail.assessments),
            comments=len(detail.comments),
            contacts=len(detail.contacts),
            contact_degraded=detail.contact_degraded,
        )
        return detail

    def _locate_contact_button(self, incident_id: str) -> Locator:
        sel = self.selectors
        button = self.page.locator(
            "button",
            has_text=sel.contact_button_text,
            has=self.page.locator(sel.contact_badge),
        ).first
        try:
            button.wait_for(
                state="attached",
                timeout=self.settings.selector_timeout_seconds * 1000,
            )
        except PWTimeout as exc:
            raise MissingUIElement(f"Contact button not found for incident {incident_id}") from exc
        return button

    def _capture_contacts(self, incident_id: str) -> StepOutcome[Tuple[Dict[str, Any], ...]]:
        predicate = self.contact_predicate(incident_id)

        def _open_panel() -> Tuple[Dict[str, Any], ...]:
            button = self._locate_contact_button(incident_id)
            try:
                captured = self.matcher.capture(
                    predicate,
                    lambda: button.click(timeout=self.settings.selector_timeout_seconds * 1000),
                )
            except PWTimeout as exc:
                raise TransientUIError(f"Contact button click timed out: {exc}") from exc
            return _dicts(captured.collection("contactNotes"))

        outcome = run_step(
            _open_panel,
            policy=StepPolicy.DEGRADE,
            default=(),
            degrade_on=(CorrelationTimeout, ResponseDecodeError),
            max_attempts=self.settings.contact_attempts,
            delay_seconds=self.settings.retry_delay_seconds,
            label=f"contact:{incident_id}",
            sleep=self._sleep,
        )
        if outcome.degraded:
            log_line(f"[DETAIL] No usable contact response for {incident_id}; continuing without contacts.")
        return outcome


__all__ = ["IncidentDetail", "DetailCorrelator"]
