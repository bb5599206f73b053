"""Configuration for the incident harvester.

Module-level values are environment-derived defaults. Runtime code receives an
explicit :class:`Settings` built by :func:`load_settings` instead of reading
these constants directly.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

DATA_DIR: Path = Path(os.getenv("HARVESTER_DATA_DIR", "/app/data"))

DEFAULT_BASE_URL: str = "https://client.firenotification.com/"
SIGN_IN_PATH: str = "auth/sign-in"
DEFAULT_TABLE: str = "incidents"
DEFAULT_STATE: str = "AZ"

SYNC_BACKENDS = ("supabase", "sqlite")

UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

BROWSER_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--no-zygote",
)

VIEWPORT: dict[str, int] = {"width": 1280, "height": 800}

WEBHOOK_SHARED_SECRET: str = os.getenv("WEBHOOK_SHARED_SECRET", "")


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(environ.get(name, str(default)))
    except ValueError:
        return default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(environ.get(name, str(default)))
    except ValueError:
        return default


def _first_env(environ: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class Settings:
    email: str = ""
    password: str = field(default="", repr=False)
    base_url: str = DEFAULT_BASE_URL
    sign_in_path: str = SIGN_IN_PATH

    supabase_url: str = ""
    supabase_key: str = field(default="", repr=False)
    supabase_table: str = DEFAULT_TABLE
    sync_backend: str = "supabase"

    data_dir: Path = DATA_DIR
    headless: bool = True

    # Timeouts in seconds
    nav_timeout_seconds: int = 60
    selector_timeout_seconds: int = 20
    response_timeout_seconds: int = 30
    login_timeout_seconds: int = 30

    max_attempts: int = 3
    # Per-key delay when typing credentials (milliseconds)
    typing_delay_ms: int = 100

    retry_delay_seconds: float = 2.0
    contact_attempts: int = 2

    paginate: bool = True
    max_pages: int = 50

    default_state: str = DEFAULT_STATE
    record_fixtures: bool = False

    @property
    def sign_in_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.sign_in_path.lstrip("/")

    @property
    def listing_url(self) -> str:
        return self.base_url

    def detail_url(self, incident_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/incident?incidentId={incident_id}"

    @property
    def log_dir(self) -> Path:
        return Path(self.data_dir) / "logs"

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / "harvester.db"

    @property
    def summary_file(self) -> Path:
        return Path(self.data_dir) / "last_summary.json"

    @property
    def runs_dir(self) -> Path:
        return Path(self.data_dir) / "runs"

    @property
    def debug_dir(self) -> Path:
        return Path(self.data_dir) / "debug"

    @property
    def fixtures_dir(self) -> Path:
        return Path(self.data_dir) / "replay_fixtures"

    def with_overrides(self, **changes: object) -> "Settings":
        """Return a copy with ``changes`` applied, ignoring ``None`` values."""

        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (defaults to ``os.environ``)."""

    env = os.environ if environ is None else environ

    backend = (env.get("HARVESTER_SYNC_BACKEND") or "supabase").strip().lower()

    return Settings(
        email=_first_env(env, "HARVESTER_EMAIL", "EMAIL"),
        password=_first_env(env, "HARVESTER_PASSWORD", "PSKY"),
        base_url=_first_env(env, "HARVESTER_BASE_URL") or DEFAULT_BASE_URL,
        supabase_url=_first_env(env, "SUPABASE_URL"),
        supabase_key=_first_env(env, "SUPABASE_KEY"),
        supabase_table=_first_env(env, "SUPABASE_TABLE") or DEFAULT_TABLE,
        sync_backend=backend,
        data_dir=Path(_first_env(env, "HARVESTER_DATA_DIR") or str(DATA_DIR)),
        headless=_env_flag(env, "HARVESTER_HEADLESS", True),
        nav_timeout_seconds=_env_int(env, "HARVESTER_NAV_TIMEOUT_SECONDS", 60),
        selector_timeout_seconds=_env_int(env, "HARVESTER_SELECTOR_TIMEOUT_SECONDS", 20),
        response_timeout_seconds=_env_int(env, "HARVESTER_RESPONSE_TIMEOUT_SECONDS", 30),
        login_timeout_seconds=_env_int(env, "HARVESTER_LOGIN_TIMEOUT_SECONDS", 30),
        typing_delay_ms=_env_int(env, "HARVESTER_TYPING_DELAY_MS", 100),
        max_attempts=_env_int(env, "HARVESTER_MAX_ATTEMPTS", 3),
        retry_delay_seconds=_env_float(env, "HARVESTER_RETRY_DELAY_SECONDS", 2.0),
        contact_attempts=_env_int(env, "HARVESTER_CONTACT_ATTEMPTS", 2),
        paginate=_env_flag(env, "HARVESTER_PAGINATE", True),
        max_pages=_env_int(env, "HARVESTER_MAX_PAGES", 50),
        default_state=_first_env(env, "HARVESTER_DEFAULT_STATE") or DEFAULT_STATE,
        record_fixtures=_env_flag(env, "HARVESTER_RECORD_FIXTURES", False),
    )


__all__ = ["Settings", "load_settings", "SYNC_BACKENDS"]
