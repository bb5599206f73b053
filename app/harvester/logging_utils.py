from __future__ import annotations

from typing import Any

from .utils import log_line

_REDACTED_KEYS = {"password", "supabase_key", "apikey", "authorization", "token"}


def _render(key: str, value: Any) -> str:
    if key.lower() in _REDACTED_KEYS and value:
        return f"{key}='***'"
    return f"{key}={value!r}"


def _sync_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured ``[SYNC][LABEL] k=v, ...`` log line.

    ``phase`` doubles as the label when no label is given; when both are
    provided the phase is kept in the payload. Credential-like fields are
    masked.
    """

    try:
        phase_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(_render(k, v) for k, v in sorted(fields.items()))
        log_line(f"[SYNC][{phase_label.upper()}] {payload}")
    except Exception:
        # Never let logging break a run.
        return


__all__ = ["_sync_event"]
