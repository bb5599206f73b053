from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from .config import Settings

LOGGER = logging.getLogger("harvester")
_LOGGER_INITIALISED = False

_FORMATTER = logging.Formatter(
    fmt="[%(asctime)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _reset_handlers() -> None:
    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue


def _configure_logger(log_path: Optional[Path]) -> None:
    """Configure the shared logger: stdout always, plus ``log_path`` when given."""

    global _LOGGER_INITIALISED

    _reset_handlers()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(_FORMATTER)
    LOGGER.addHandler(stream_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(_FORMATTER)
        LOGGER.addHandler(file_handler)

    LOGGER.setLevel(logging.INFO)
    LOGGER.propagate = False

    _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    if _LOGGER_INITIALISED:
        return
    _configure_logger(None)


def setup_run_logger(log_dir: Path) -> Path:
    """Rotate to a fresh timestamped log file for the current run."""

    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    log_path = Path(log_dir) / f"sync_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def ensure_dirs(settings: Settings) -> None:
    """Create the data directory layout used by a run."""

    for path in (
        Path(settings.data_dir),
        settings.log_dir,
        settings.runs_dir,
        settings.debug_dir,
    ):
        path.mkdir(parents=True, exist_ok=True)


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active run log."""

    _ensure_logger()
    LOGGER.info(message)


def load_json_file(path: Path, default: Any = None) -> Any:
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except (FileNotFoundError, json.JSONDecodeError):
        return default


def save_json_file(path: Path, payload: Any) -> None:
    """Write ``payload`` to ``path`` atomically."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
    tmp_path.replace(path)


def append_json_line(path: Path, payload: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def load_json_lines(path: Path) -> Iterator[Any]:
    """Yield decoded JSON objects from ``path``, skipping malformed lines."""

    path = Path(path)
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                log_line(f"[UTILS] Skipping malformed JSON line in {path.name}")
                continue


__all__ = [
    "LOGGER",
    "setup_run_logger",
    "ensure_dirs",
    "log_line",
    "load_json_file",
    "save_json_file",
    "append_json_line",
    "load_json_lines",
]
