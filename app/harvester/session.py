"""Login state machine for the portal.

States move ``UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED`` on success.
Any failed attempt lands in ``FAILED`` and, while the retry budget lasts, the
whole sign-in sequence restarts from ``UNAUTHENTICATED``.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Optional

from playwright.sync_api import Error as PWError
from playwright.sync_api import Page
from playwright.sync_api import TimeoutError as PWTimeout

from .config import Settings
from .error_codes import AuthFailure, TransientUIError
from .logging_utils import _sync_event
from .retry_policy import with_retry
from .selectors import PORTAL_SELECTORS, PortalSelectors
from .utils import log_line

POLL_INTERVAL_MS = 250


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class SessionManager:
    def __init__(
        self,
        page: Page,
        settings: Settings,
        *,
        selectors: PortalSelectors = PORTAL_SELECTORS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.page = page
        self.settings = settings
        self.selectors = selectors
        self._sleep = sleep
        self._clock = clock
        self.state = SessionState.UNAUTHENTICATED
        self.attempts = 0
        self.indicator: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    def _transition(self, state: SessionState, **fields: object) -> None:
        previous = self.state
        self.state = state
        _sync_event(
            "session",
            from_state=previous.value,
            to_state=state.value,
            attempt=self.attempts,
            **fields,
        )

    def login(self) -> None:
        """Authenticate, retrying the whole sign-in sequence on failure."""

        if self.is_authenticated:
            return
        try:
            with_retry(
                self._attempt_login,
                max_attempts=self.settings.max_attempts,
                delay_seconds=self.settings.retry_delay_seconds,
                label="login",
                sleep=self._sleep,
            )
        except Exception:
            log_line("[SESSION] Login failed after exhausting retries.")
            raise
        log_line(f"[SESSION] Login successful ({self.indicator}).")

    def require_authenticated(self) -> None:
        if not self.is_authenticated:
            raise AuthFailure(f"Session is not authenticated (state={self.state.value})")

    def _attempt_login(self) -> None:
        self.attempts += 1
        if self.state is not SessionState.UNAUTHENTICATED:
            self._transition(SessionState.UNAUTHENTICATED, reason="restart")
        self._transition(SessionState.AUTHENTICATING)
        try:
            self._submit_credentials()
            self.indicator = self._await_outcome()
        except (PWTimeout, PWError) as exc:
            self._transition(SessionState.FAILED, reason="navigation_error", error=str(exc))
            raise TransientUIError(f"Sign-in navigation failed: {exc}") from exc
        except AuthFailure as exc:
            self._transition(SessionState.FAILED, reason="auth_failure", error=str(exc))
            raise
        self._transition(SessionState.AUTHENTICATED, indicator=self.indicator)

    def _submit_credentials(self) -> None:
        page = self.page
        sel = self.selectors
        selector_timeout = self.settings.selector_timeout_seconds * 1000

        log_line(f"[SESSION] Navigating to sign-in page {self.settings.sign_in_url}")
        page.goto(
            self.settings.sign_in_url,
            wait_until="domcontentloaded",
            timeout=self.settings.nav_timeout_seconds * 1000,
        )

        page.wait_for_selector(sel.email_input, timeout=selector_timeout)
        page.locator(sel.email_input).press_sequentially(
            self.settings.email, delay=self.settings.typing_delay_ms
        )

        page.wait_for_selector(sel.password_input, timeout=selector_timeout)
        page.locator(sel.password_input).press_sequentially(
            self.settings.password, delay=self.settings.typing_delay_ms
        )

        page.click(sel.submit_button, timeout=selector_timeout)
        log_line("[SESSION] Credentials submitted; waiting for outcome.")

    def _error_banner_text(self) -> str:
        banner = self.page.locator(self.selectors.error_banner).first
        if not banner.count() or not banner.is_visible():
            return ""
        return (banner.inner_text() or "").strip()

    def _visible(self, selector: str) -> bool:
        locator = self.page.locator(selector).first
        return bool(locator.count()) and locator.is_visible()

    def _await_outcome(self) -> str:
        """Poll the post-submit signals; the first to appear decides the attempt.

        The error banner is checked ahead of the success indicators on every
        poll so a rejected login fails fast.
        """

        sel = self.selectors
        deadline = self._clock() + self.settings.login_timeout_seconds
        success_checks = (
            ("avatar", lambda: self._visible(sel.avatar)),
            ("pagination", lambda: self._visible(sel.page_button(1))),
            ("form_gone", lambda: self.page.locator(sel.email_input).count() == 0),
        )

        while True:
            message = self._error_banner_text()
            if message:
                raise AuthFailure(f"Login error: {message}")

            for name, check in success_checks:
                if check():
                    return name

            if self._clock() >= deadline:
                raise AuthFailure(
                    "Login failed: no dashboard indicator within "
                    f"{self.settings.login_timeout_seconds}s"
                )
            self.page.wait_for_timeout(POLL_INTERVAL_MS)


__all__ = ["SessionState", "SessionManager"]
