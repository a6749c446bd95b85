"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``OURAPP_DATA_DIR`` in the environment wins over the platform default.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    override = environ.get("OURAPP_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "OurApp"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
SECRETS_DIR = DATA_DIR / "secrets"
CACHE_DIR = DATA_DIR / "offline_cache"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, SECRETS_DIR, CACHE_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "app.db"
TOKEN_PATH = DATA_DIR / "token.json"
CONFIG_PATH = DATA_DIR / "config.json"
CLIENT_SECRET_PATH = SECRETS_DIR / "client_secret.json"
SYNC_CURSOR_PATH = STORAGE_DIR / "calendar_sync.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class QueueSettings:
    max_retries: int = 5
    max_age_days: int = 7
    request_timeout_sec: float = 30.0
    photos_collection: str = "photos"
    events_collection: str = "calendarEvents"


QUEUE = QueueSettings()


@dataclass(frozen=True)
class CalendarSyncSettings:
    calendar_name: str = APP_NAME
    scopes: tuple[str, ...] = ("https://www.googleapis.com/auth/calendar",)
    request_timeout_sec: float = 30.0
    foreground_min_interval_sec: int = 5 * 60
    token_refresh_margin_sec: int = 5 * 60
    page_size: int = 250
    dedup_window_days: int = 365


CALENDAR_SYNC = CalendarSyncSettings()


@dataclass(frozen=True)
class NetworkSettings:
    probe_host: str = "www.googleapis.com"
    probe_port: int = 443
    probe_timeout_sec: float = 3.0
    probe_interval_sec: float = 10.0


NETWORK = NetworkSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "SECRETS_DIR",
    "CACHE_DIR",
    "LOG_DIR",
    "DB_PATH",
    "TOKEN_PATH",
    "CONFIG_PATH",
    "CLIENT_SECRET_PATH",
    "SYNC_CURSOR_PATH",
    "SYNC_LOG_PATH",
    "QUEUE",
    "CALENDAR_SYNC",
    "NETWORK",
    "get_default_data_dir",
]
