from __future__ import annotations

from dataclasses import replace
from typing import Literal

from .config import SYNC_BACKENDS, Settings
from .logging_utils import _sync_event
from .utils import log_line

Entrypoint = Literal["cli", "webhook", "replay", "health", "tests"]

# Entrypoints that never drive the live portal.
_OFFLINE_ENTRYPOINTS = {"replay", "health", "tests"}


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _sync_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def validate_settings(settings: Settings, entrypoint: Entrypoint = "cli") -> Settings:
    """Validate ``settings`` for ``entrypoint`` and return the effective copy.

    Raises ``ValueError`` on blocking problems, such as missing storage
    configuration for the Supabase backend. Out-of-range tuning knobs are
    clamped and logged instead.
    """

    if settings.sync_backend not in SYNC_BACKENDS:
        _raise_config_error(
            f"HARVESTER_SYNC_BACKEND must be one of {', '.join(SYNC_BACKENDS)}.",
            entrypoint=entrypoint,
            error="unknown_sync_backend",
        )

    if settings.sync_backend == "supabase" and not (
        settings.supabase_url and settings.supabase_key
    ):
        _raise_config_error(
            "Missing SUPABASE_URL or SUPABASE_KEY environment variables.",
            entrypoint=entrypoint,
            error="missing_storage_config",
        )

    if entrypoint not in _OFFLINE_ENTRYPOINTS and not (settings.email and settings.password):
        _raise_config_error(
            "Missing portal credentials (HARVESTER_EMAIL / HARVESTER_PASSWORD).",
            entrypoint=entrypoint,
            error="missing_credentials",
        )

    timeout_fields = [
        ("HARVESTER_NAV_TIMEOUT_SECONDS", settings.nav_timeout_seconds),
        ("HARVESTER_SELECTOR_TIMEOUT_SECONDS", settings.selector_timeout_seconds),
        ("HARVESTER_RESPONSE_TIMEOUT_SECONDS", settings.response_timeout_seconds),
        ("HARVESTER_LOGIN_TIMEOUT_SECONDS", settings.login_timeout_seconds),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )

    adjustments = {}
    for field_name, minimum in (
        ("max_attempts", 1),
        ("contact_attempts", 1),
        ("max_pages", 1),
    ):
        value = getattr(settings, field_name)
        if value < minimum:
            adjustments[field_name] = minimum
    if settings.retry_delay_seconds < 0:
        adjustments["retry_delay_seconds"] = 0.0

    for field_name, adjusted in adjustments.items():
        _sync_event(
            "state",
            phase="config",
            context="runtime_validation",
            kind="config_adjustment",
            field=field_name,
            value=getattr(settings, field_name),
            adjusted=adjusted,
            entrypoint=entrypoint,
        )
        log_line(f"[CONFIG] {field_name} out of range; clamping to {adjusted}.")

    return replace(settings, **adjustments) if adjustments else settings


__all__ = ["validate_settings", "Entrypoint"]
