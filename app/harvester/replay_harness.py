"""Offline replay of recorded incident captures.

Runs with ``HARVESTER_RECORD_FIXTURES=1`` append one JSON line per incident
(listing entry plus the assessment, comment and contact collections). This
module feeds those lines back through the normalizer and a sync writer
without a browser, which is handy for schema changes and backfills.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .config import Settings, load_settings
from .config_validation import validate_settings
from .listing import IncidentSummary
from .logging_utils import _sync_event
from .normalizer import NormalizedRow, normalize
from .sync_writer import SqliteSyncWriter, SyncWriter, build_writer
from .utils import load_json_lines, log_line


@dataclass
class ReplayConfig:
    fixtures_path: Path
    dry_run: bool = True
    db_path: Optional[Path] = None


def load_capture_fixtures(fixtures_path: Path) -> Iterable[Dict[str, Any]]:
    for item in load_json_lines(fixtures_path):
        if not isinstance(item, dict):
            continue
        incident = item.get("incident")
        if not isinstance(incident, dict) or incident.get("IncidentId") in (None, ""):
            continue
        yield item


def _collection(item: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = item.get(key)
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def build_rows(fixtures: Iterable[Dict[str, Any]], *, state: str) -> List[NormalizedRow]:
    rows: List[NormalizedRow] = []
    for item in fixtures:
        summary = IncidentSummary.from_payload(item["incident"])
        rows.append(
            normalize(
                summary,
                _collection(item, "assessments"),
                _collection(item, "comments"),
                _collection(item, "contacts"),
                state=state,
            )
        )
    return rows


def run_replay(
    config_obj: ReplayConfig,
    settings: Optional[Settings] = None,
    *,
    writer: Optional[SyncWriter] = None,
) -> Dict[str, Any]:
    """Normalize recorded captures and write them.

    Dry runs always write to a local SQLite mirror (``db_path`` or the
    settings' database) instead of the configured backend.
    """

    settings = settings or load_settings()
    if config_obj.dry_run:
        settings = settings.with_overrides(sync_backend="sqlite")
    settings = validate_settings(settings, "replay")
    fixtures = list(load_capture_fixtures(config_obj.fixtures_path))
    _sync_event(
        "replay",
        phase="start",
        fixtures=str(config_obj.fixtures_path),
        count=len(fixtures),
        dry_run=config_obj.dry_run,
    )

    rows = build_rows(fixtures, state=settings.default_state)
    if writer is None:
        if config_obj.dry_run:
            writer = SqliteSyncWriter(config_obj.db_path or settings.db_path)
        else:
            writer = build_writer(settings)

    result = writer.upsert(rows)
    log_line(
        f"[REPLAY] Replayed {len(rows)} incidents from {config_obj.fixtures_path.name} "
        f"(ok={result.ok})"
    )
    _sync_event(
        "replay",
        phase="end",
        fixtures=str(config_obj.fixtures_path),
        rows=len(rows),
        storage_ok=result.ok,
    )
    return {"fixtures": len(fixtures), "rows": len(rows), "storage": result.as_dict()}


if __name__ == "__main__":  # pragma: no cover
    import argparse

    parser = argparse.ArgumentParser(description="Replay recorded incident captures offline.")
    parser.add_argument("fixtures", help="Path to a captures_*.jsonl file")
    parser.add_argument(
        "--live",
        action="store_true",
        default=False,
        help="Write to the configured backend instead of the local SQLite mirror.",
    )
    args = parser.parse_args()

    cfg = ReplayConfig(fixtures_path=Path(args.fixtures), dry_run=not args.live)
    run_replay(cfg)
