"""Where the collector keeps its database and settings file."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from platformdirs import PlatformDirs


APP_NAME = "WinTracker"
APP_AUTHOR = "WinTracker"

DB_FILE_NAME = "collector.db"
SETTINGS_FILE_NAME = "collector.settings.json"


def get_data_dir() -> Path:
    """Roaming per-user data directory, created on first use."""
    dirs = PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)
    path = Path(dirs.user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / DB_FILE_NAME


def get_settings_path() -> Path:
    return get_data_dir() / SETTINGS_FILE_NAME


def resolve_sqlite_path(raw: Optional[str], base_dir: Path) -> Optional[Path]:
    """Interpret a configured database path.

    Blank values mean "use the default" and give ``None``. ``~`` is expanded,
    and a relative path is taken relative to ``base_dir`` (the directory of
    the settings file), not the process working directory.
    """
    if raw is None or not raw.strip():
        return None
    candidate = Path(raw.strip()).expanduser()
    if candidate.is_absolute():
        return candidate
    return Path(base_dir) / candidate


def ensure_parent_dir(path: Path) -> Path:
    """Create the directory that will hold ``path``; returns ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
