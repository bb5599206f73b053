from __future__ import annotations

"""CLI helper for printing a sync run from the run ledger."""

import argparse
import json
from typing import Sequence

from . import db
from .config import load_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Show the outcome of a harvester sync run.",
    )
    parser.add_argument(
        "--run-id",
        type=int,
        help="Run ID to summarise.",
    )
    parser.add_argument(
        "--latest",
        action="store_true",
        help="Summarise the most recent run.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the run summary CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    settings = load_settings()
    conn = db.get_connection(settings.db_path)
    try:
        db.initialize_schema(conn)
        run_id = args.run_id
        if args.latest and run_id is None:
            run_id = db.latest_run_id(conn)
        if run_id is None:
            parser.error("You must provide --run-id or --latest")

        run = db.get_run(conn, run_id)
    finally:
        conn.close()

    if run is None:
        parser.error(f"Run {run_id} not found")

    print(f"Run {run['id']} ({run['trigger']}): {run['status']}")
    print(f"  started:      {run['started_at']}")
    print(f"  ended:        {run['ended_at'] or '-'}")
    print(f"  listed:       {run['listed']}")
    print(f"  rows_written: {run['rows_written']}")
    print(f"  skipped:      {run['skipped']}")
    print(f"  degraded:     {run['degraded']}")
    if run["error_summary"]:
        print(f"  error:        {run['error_summary']}")

    details = json.loads(run["summary_json"] or "{}")
    skipped_ids = details.get("skipped_ids") or []
    if skipped_ids:
        print("\nSkipped incidents:")
        for incident_id in skipped_ids:
            print(f"  {incident_id}")

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
