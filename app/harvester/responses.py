"""Correlate UI actions with the portal's internal network responses.

A wait is always armed before its triggering action runs (``expect_response``
wraps the action), so a response emitted as a side effect of a navigation or
click cannot slip past unobserved.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from playwright.sync_api import Error as PWError
from playwright.sync_api import Page, Response
from playwright.sync_api import TimeoutError as PWTimeout

from .error_codes import CorrelationTimeout, ResponseDecodeError
from .logging_utils import _sync_event


@dataclass(frozen=True)
class ResponsePredicate:
    """Match a response by URL substring, excluded substrings, method and status."""

    url_contains: str
    url_excludes: Tuple[str, ...] = ()
    method: Optional[str] = None
    status: Optional[int] = None
    name: str = ""

    def matches(self, response: Any) -> bool:
        try:
            url = response.url
            if self.url_contains not in url:
                return False
            if any(fragment in url for fragment in self.url_excludes):
                return False
            if self.status is not None and response.status != self.status:
                return False
            if self.method is not None:
                method = response.request.method
                if str(method).upper() != self.method.upper():
                    return False
            return True
        except Exception:  # noqa: BLE001
            return False

    def describe(self) -> str:
        parts = [f"url~{self.url_contains!r}"]
        if self.url_excludes:
            parts.append(f"not~{list(self.url_excludes)!r}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        return (self.name + " " if self.name else "") + " ".join(parts)


@dataclass(frozen=True)
class CapturedResponse:
    url: str
    status: int
    method: str
    payload: Any

    def collection(self, key: str) -> list:
        """Return ``payload[key]`` as a list, ``[]`` when absent or malformed."""

        if not isinstance(self.payload, dict):
            return []
        value = self.payload.get(key)
        if isinstance(value, list):
            return value
        return []


def _decode(response: Response, predicate: ResponsePredicate) -> CapturedResponse:
    try:
        payload = response.json()
    except (PWError, ValueError) as exc:
        raise ResponseDecodeError(
            f"Response for {predicate.describe()} is not JSON: {exc}"
        ) from exc

    try:
        method = response.request.method
    except Exception:  # noqa: BLE001
        method = "?"

    captured = CapturedResponse(
        url=response.url,
        status=response.status,
        method=str(method),
        payload=payload,
    )
    _sync_event(
        "capture",
        predicate=predicate.name or predicate.url_contains,
        url=captured.url,
        status=captured.status,
        method=captured.method,
    )
    return captured


class ResponseMatcher:
    """Wait for responses on ``page`` that satisfy :class:`ResponsePredicate` values."""

    def __init__(self, page: Page, *, timeout_ms: int) -> None:
        self.page = page
        self.timeout_ms = int(timeout_ms)

    def capture(
        self,
        predicate: ResponsePredicate,
        action: Optional[Callable[[], Any]] = None,
        *,
        timeout_ms: Optional[int] = None,
    ) -> CapturedResponse:
        """Arm ``predicate``, run ``action`` and return the first matching response."""

        return self.capture_all([predicate], action, timeout_ms=timeout_ms)[0]

    def capture_all(
        self,
        predicates: Sequence[ResponsePredicate],
        action: Optional[Callable[[], Any]] = None,
        *,
        timeout_ms: Optional[int] = None,
    ) -> List[CapturedResponse]:
        """Arm every predicate at once, run ``action``, then collect each match.

        Each predicate resolves on its own first matching response; results
        are returned in the order of ``predicates``. The first predicate to
        time out raises :class:`CorrelationTimeout` and cancels the rest.
        """

        timeout = self.timeout_ms if timeout_ms is None else int(timeout_ms)
        captured: List[CapturedResponse] = []

        with ExitStack() as stack:
            pending = [
                (predicate, stack.enter_context(
                    self.page.expect_response(predicate.matches, timeout=timeout)
                ))
                for predicate in predicates
            ]
            if action is not None:
                action()

            for predicate, info in pending:
                try:
                    response = info.value
                except PWTimeout as exc:
                    _sync_event(
                        "error",
                        phase="capture",
                        predicate=predicate.describe(),
                        timeout_ms=timeout,
                        error="correlation_timeout",
                    )
                    raise CorrelationTimeout(
                        f"No response matching {predicate.describe()} within {timeout}ms",
                        predicate=predicate,
                    ) from exc
                captured.append(_decode(response, predicate))

        return captured


__all__ = ["ResponsePredicate", "CapturedResponse", "ResponseMatcher"]
