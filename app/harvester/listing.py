from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PWTimeout

from .config import Settings
from .error_codes import HarvestError, TransientUIError
from .logging_utils import _sync_event
from .responses import CapturedResponse, ResponseMatcher, ResponsePredicate
from .retry_policy import with_retry
from .selectors import API_PATHS, PORTAL_SELECTORS, ApiPaths, PortalSelectors
from .utils import log_line


@dataclass(frozen=True)
class IncidentSummary:
    """One entry of the portal's incident listing."""

    incident_id: str
    preset_label: Optional[str] = None
    incident_type_name: Optional[str] = None
    structure_type_name: Optional[str] = None
    address_raw: Optional[str] = None
    street_address: Optional[str] = None
    city_name: Optional[str] = None
    county_short_name: Optional[str] = None
    latitude: Any = None
    longitude: Any = None
    created_at: Optional[str] = None
    comment_count: int = 0
    paged: bool = False
    searchable_content: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, entry: Dict[str, Any]) -> "IncidentSummary":
        try:
            comment_count = int(entry.get("commentCount") or 0)
        except (TypeError, ValueError):
            comment_count = 0
        return cls(
            incident_id=str(entry.get("IncidentId")),
            preset_label=entry.get("presetLabel"),
            incident_type_name=entry.get("incidentTypeName"),
            structure_type_name=entry.get("structureTypeName"),
            address_raw=entry.get("addressRaw"),
            street_address=entry.get("streetAddress"),
            city_name=entry.get("cityName"),
            county_short_name=entry.get("countyShortName"),
            latitude=entry.get("latitude"),
            longitude=entry.get("longitude"),
            created_at=entry.get("createdAt"),
            comment_count=comment_count,
            paged=bool(entry.get("paged")),
            searchable_content=entry.get("searchableContent"),
            raw=dict(entry),
        )


def parse_listing(captured: CapturedResponse) -> List[IncidentSummary]:
    """Decode the ``incidents`` array, skipping entries without an id."""

    summaries: List[IncidentSummary] = []
    for index, entry in enumerate(captured.collection("incidents")):
        if not isinstance(entry, dict) or entry.get("IncidentId") in (None, ""):
            log_line(f"[LISTING][WARN] Skipping listing entry {index}: missing IncidentId")
            _sync_event("listing", kind="entry_skipped", index=index, reason="missing_id")
            continue
        summaries.append(IncidentSummary.from_payload(entry))
    return summaries


class ListingTraversal:
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
        self.predicate = ResponsePredicate(
            url_contains=api.listing,
            url_excludes=api.detail_excludes,
            status=200,
            name="listing",
        )
        self._sleep = sleep

    def _retry(self, step: Callable[[], List[IncidentSummary]], label: str) -> List[IncidentSummary]:
        return with_retry(
            step,
            max_attempts=self.settings.max_attempts,
            delay_seconds=self.settings.retry_delay_seconds,
            label=label,
            sleep=self._sleep,
        )

    def _open_first_page(self) -> List[IncidentSummary]:
        def _navigate() -> None:
            self.page.goto(
                self.settings.listing_url,
                wait_until="domcontentloaded",
                timeout=self.settings.nav_timeout_seconds * 1000,
            )

        try:
            captured = self.matcher.capture(self.predicate, _navigate)
        except (PWTimeout, PWError) as exc:
            raise TransientUIError(f"Listing navigation failed: {exc}") from exc
        return parse_listing(captured)

    def _page_control(self, page_number: int):
        control = self.page.locator(self.selectors.page_button(page_number)).first
        if not control.count():
            return None
        return control

    def _open_page(self, page_number: int) -> List[IncidentSummary]:
        control = self._page_control(page_number)
        if control is None:
            raise TransientUIError(f"Pagination control for page {page_number} vanished")
        try:
            captured = self.matcher.capture(
                self.predicate,
                lambda: control.click(timeout=self.settings.selector_timeout_seconds * 1000),
            )
        except (PWTimeout, PWError) as exc:
            raise TransientUIError(f"Pagination click for page {page_number} failed: {exc}") from exc
        return parse_listing(captured)

    def fetch_listing(self, paginate: Optional[bool] = None) -> Iterator[IncidentSummary]:
        """Yield incident summaries page by page.

        The generator drives the page as it goes, so callers must exhaust it
        before navigating elsewhere.
        """

        paginate = self.settings.paginate if paginate is None else paginate

        log_line(f"[LISTING] Loading incident list from {self.settings.listing_url}")
        first = self._retry(self._open_first_page, "listing_page_1")
        _sync_event("listing", page=1, incidents=len(first))
        yield from first

        if not paginate:
            return

        page_number = 2
        while page_number <= self.settings.max_pages:
            if self._page_control(page_number) is None:
                log_line(f"[LISTING] No control for page {page_number}; listing complete.")
                return
            try:
                batch = self._retry(
                    lambda n=page_number: self._open_page(n),
                    f"listing_page_{page_number}",
                )
            except HarvestError as exc:
                log_line(
                    f"[LISTING][WARN] Stopping pagination at page {page_number}: {exc}"
                )
                _sync_event(
                    "error",
                    phase="listing",
                    page=page_number,
                    error_code=exc.error_code,
                    error=str(exc),
                )
                return
            _sync_event("listing", page=page_number, incidents=len(batch))
            yield from batch
            page_number += 1

        log_line(f"[LISTING] Reached max_pages={self.settings.max_pages}; stopping.")


__all__ = ["IncidentSummary", "ListingTraversal", "parse_listing"]
