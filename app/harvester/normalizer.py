"""Map captured portal JSON onto the ``incidents`` table schema.

Everything here is pure: missing input degrades to ``None``/empty values and
nothing raises.
"""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

from .config import DEFAULT_STATE
from .listing import IncidentSummary

PHONE_RE = re.compile(r"\d{3}[-.\s]?\d{3}[-.\s]?\d{4}")
CONTACT_MARKER_RE = re.compile(r"\[CONTACT\][^/]+/([^/]+)", re.IGNORECASE)

SHORT_DESCRIPTION_LENGTH = 300
LONG_DESCRIPTION_LENGTH = 500

SCORE_TOP = 95
SCORE_MID = 80
SCORE_BASE = 60

PAGED_NOTE = "PAGED - Urgent Follow-Up"
NOT_PAGED_NOTE = "Not Paged"
NEW_STAGE = "New Alert"

CONFLICT_KEY = "incident_id"


@dataclass(frozen=True)
class NormalizedRow:
    incident_id: str
    preset_label: Optional[str]
    incident_type: Optional[str]
    structure_type: Optional[str]
    address: Optional[str]
    street_address: Optional[str]
    city: str
    state: str
    zipcode: str
    county: Optional[str]
    latitude: Optional[str]
    longitude: Optional[str]
    reported_at: Optional[str]
    sla_due: Optional[str]
    ai_score: int
    assigned_agent: str
    contractor: str
    commission_pct: Optional[float]
    owner_name: Optional[str]
    phone: Optional[str]
    damage_description: Optional[str]
    family_note: str
    description: Optional[str]
    stage: str

    def as_record(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.as_record(), sort_keys=True, ensure_ascii=False)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text else None


def _coordinate(value: Any) -> Optional[str]:
    if not value:
        return None
    return str(value)


def split_address(address_raw: Optional[str], city_name: Optional[str] = None) -> tuple[str, str]:
    """Return ``(city, zipcode)`` derived from a ``"street, city, ST zip"`` address."""

    parts = (address_raw or "").split(", ")
    city = city_name or (parts[1] if len(parts) > 1 else "") or ""
    zipcode = ""
    if len(parts) > 2 and parts[2]:
        tokens = parts[2].split(" ")
        if len(tokens) > 1:
            zipcode = tokens[1]
    return city, zipcode


def score_comments(comment_count: int) -> int:
    if comment_count > 3:
        return SCORE_TOP
    if comment_count > 1:
        return SCORE_MID
    return SCORE_BASE


def extract_phone(content: Optional[str], contacts: Sequence[Dict[str, Any]] = ()) -> Optional[str]:
    match = PHONE_RE.search(content or "")
    if match:
        return match.group(0)
    if contacts:
        contact = contacts[0].get("contact") if isinstance(contacts[0], dict) else None
        if contact:
            match = PHONE_RE.search(str(contact))
            if match:
                return match.group(0)
    return None


def extract_owner(content: Optional[str], assessments: Sequence[Dict[str, Any]] = ()) -> Optional[str]:
    if assessments and isinstance(assessments[0], dict):
        first = assessments[0]
        owner = (first.get("ownerInfo") or {}).get("name")
        buyer = (first.get("lastSale") or {}).get("buyer")
        names = [str(name).strip() for name in (owner, buyer) if name and str(name).strip()]
        if names:
            return " / ".join(names)

    match = CONTACT_MARKER_RE.search(content or "")
    if match:
        return match.group(1).strip() or None
    return None


def normalize(
    summary: IncidentSummary,
    assessments: Sequence[Dict[str, Any]] = (),
    comments: Sequence[Dict[str, Any]] = (),
    contacts: Sequence[Dict[str, Any]] = (),
    *,
    state: str = DEFAULT_STATE,
) -> NormalizedRow:
    """Build the output row for one incident.

    ``comments`` is accepted for symmetry with the captured detail; the score
    is driven by the listing's ``commentCount``.
    """

    content = summary.searchable_content or ""
    city, zipcode = split_address(summary.address_raw, summary.city_name)

    return NormalizedRow(
        incident_id=str(summary.incident_id),
        preset_label=_text(summary.preset_label),
        incident_type=_text(summary.incident_type_name),
        structure_type=_text(summary.structure_type_name),
        address=_text(summary.address_raw),
        street_address=_text(summary.street_address),
        city=city,
        state=state,
        zipcode=zipcode,
        county=_text(summary.county_short_name),
        latitude=_coordinate(summary.latitude),
        longitude=_coordinate(summary.longitude),
        reported_at=_text(summary.created_at),
        sla_due=None,
        ai_score=score_comments(summary.comment_count),
        assigned_agent="",
        contractor="",
        commission_pct=None,
        owner_name=extract_owner(content, assessments),
        phone=extract_phone(content, contacts),
        damage_description=content[:SHORT_DESCRIPTION_LENGTH] or None,
        family_note=PAGED_NOTE if summary.paged else NOT_PAGED_NOTE,
        description=content[:LONG_DESCRIPTION_LENGTH] or None,
        stage=NEW_STAGE,
    )


__all__ = [
    "NormalizedRow",
    "normalize",
    "split_address",
    "score_comments",
    "extract_phone",
    "extract_owner",
    "CONFLICT_KEY",
]
