from __future__ import annotations

"""DOM selectors and API path hints for the fire-notification client portal."""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class PortalSelectors:
    """Selector hints for the portal's sign-in, listing and detail views.

    The portal is a Material UI single-page app, so most hooks are MUI class
    names or ARIA labels rather than stable ids.
    """

    email_input: str = 'input[type="email"]'
    password_input: str = 'input[type="password"]'
    submit_button: str = 'button[type="submit"]'
    error_banner: str = '.MuiAlert-message, .MuiAlert-root, [role="alert"], .error'

    avatar: str = 'img[src="/assets/placeholders/user.png"][alt="Placeholder avatar"]'
    pagination_button: str = "button.MuiPaginationItem-page"

    contact_button_text: str = "Contact"
    contact_badge: str = ".MuiBadge-badge"

    def page_button(self, page_number: int) -> str:
        return f'{self.pagination_button}[aria-label="page {int(page_number)}"]'


@dataclass(frozen=True)
class ApiPaths:
    """URL fragments used to correlate the portal's internal JSON calls."""

    listing: str = "/api/incident"
    assessment: str = "/api/assessment/incident/"
    incident: str = "/api/incident/"
    comments_suffix: str = "/comments"
    contact_suffix: str = "/contact"
    # Sibling endpoints sharing the listing/assessment prefixes.
    detail_excludes: Tuple[str, ...] = ("comments", "contact")


PORTAL_SELECTORS = PortalSelectors()
API_PATHS = ApiPaths()

__all__ = [
    "PortalSelectors",
    "ApiPaths",
    "PORTAL_SELECTORS",
    "API_PATHS",
]
