"""Per-run telemetry: one JSON file per run with every incident's outcome."""

from __future__ import annotations

import os
import time
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import save_json_file

MAX_RUN_FILES = int(os.environ.get("HARVESTER_RUNS_KEEP_MAX", "20"))


class RunTelemetry:
    """Collect incident outcomes for one sync run and flush them on finalize."""

    def __init__(self, runs_dir: Path, trigger: str) -> None:
        self.run_key = f"{time.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        self.trigger = trigger
        self.runs_dir = Path(runs_dir)
        self.started_at = time.time()
        self.incidents: List[Dict[str, Any]] = []
        self.outcomes: Counter[str] = Counter()
        self.error_codes: Counter[str] = Counter()

    def record(
        self,
        incident_id: str,
        outcome: str,
        *,
        error_code: Optional[str] = None,
        **meta: Any,
    ) -> None:
        entry: Dict[str, Any] = {"incident_id": incident_id, "outcome": outcome}
        if error_code:
            entry["error_code"] = error_code
            self.error_codes[error_code] += 1
        entry.update(meta)
        self.incidents.append(entry)
        self.outcomes[outcome] += 1

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> Path:
        ended_at = time.time()
        payload = {
            "run_key": self.run_key,
            "trigger": self.trigger,
            "started_at": self.started_at,
            "ended_at": ended_at,
            "duration_seconds": round(ended_at - self.started_at, 3),
            "outcomes": dict(self.outcomes),
            "error_codes": dict(self.error_codes),
            "incidents": self.incidents,
            **(extra or {}),
        }
        path = self.runs_dir / f"run_{self.run_key}.json"
        save_json_file(path, payload)
        prune_old_runs(self.runs_dir)
        return path


def prune_old_runs(runs_dir: Path, keep: int = MAX_RUN_FILES) -> None:
    """Delete the oldest ``run_*.json`` files beyond ``keep``."""

    stale = sorted(Path(runs_dir).glob("run_*.json"))[:-keep] if keep > 0 else []
    for path in stale:
        try:
            path.unlink()
        except OSError:
            continue


__all__ = ["RunTelemetry", "prune_old_runs"]
