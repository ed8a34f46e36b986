"""Configuration models and helpers for the collector."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .normalization import normalize_exclusions
from .paths import get_db_path, resolve_sqlite_path

logger = logging.getLogger(__name__)

DEFAULT_RESCAN_SECONDS = 300

DEFAULT_EXCLUDED_EXE_NAMES: tuple[str, ...] = (
    "dwm.exe",
    "TextInputHost.exe",
    "NVIDIA Overlay.exe",
    "Overwolf.exe",
    "ArmourySwAgent.exe",
)


@dataclass(slots=True)
class CollectorSettings:
    """Runtime configuration for the collector and its event store."""

    rescan_interval: timedelta = timedelta(seconds=DEFAULT_RESCAN_SECONDS)
    sqlite_path: Optional[Path] = None
    excluded_exe_names: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_EXE_NAMES)
    )
    batch_size: int = 50
    write_retries: int = 3
    signal_poll_seconds: float = 0.25
    join_timeout: timedelta = timedelta(seconds=3)

    @classmethod
    def from_intervals(
        cls,
        rescan_seconds: float,
        sqlite_path: Optional[Path] = None,
        excluded_exe_names: Optional[list[str]] = None,
    ) -> "CollectorSettings":
        excluded = normalize_exclusions(excluded_exe_names or [])
        return cls(
            rescan_interval=timedelta(seconds=rescan_seconds),
            sqlite_path=sqlite_path,
            excluded_exe_names=excluded or list(DEFAULT_EXCLUDED_EXE_NAMES),
        )

    def resolved_db_path(self) -> Path:
        return Path(self.sqlite_path) if self.sqlite_path else get_db_path()


class SettingsFile(BaseModel):
    """Shape of ``collector.settings.json``.

    Accepts both the PascalCase keys written by earlier releases and
    snake_case keys.
    """

    polling_interval_seconds: int = Field(
        default=0,
        validation_alias=AliasChoices("PollingIntervalSeconds", "polling_interval_seconds"),
    )
    rescan_interval_seconds: int = Field(
        default=DEFAULT_RESCAN_SECONDS,
        validation_alias=AliasChoices("RescanIntervalSeconds", "rescan_interval_seconds"),
    )
    sqlite_file_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SqliteFilePath", "sqlite_file_path"),
    )
    excluded_exe_names: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_EXE_NAMES),
        validation_alias=AliasChoices("ExcludedExeNames", "excluded_exe_names"),
    )

    model_config = ConfigDict(extra="ignore")


def load_settings(settings_path: Path) -> CollectorSettings:
    """Load settings from JSON, falling back to defaults on any problem."""
    settings_path = Path(settings_path)
    if not settings_path.exists():
        logger.info("Settings not found, using defaults: %s", settings_path)
        return CollectorSettings()

    try:
        raw = json.loads(settings_path.read_text(encoding="utf-8") or "null")
    except (OSError, ValueError) as exc:
        logger.warning("Failed to read settings, using defaults: %s", exc)
        return CollectorSettings()

    if not isinstance(raw, dict):
        logger.warning("Settings file is empty/invalid, using defaults: %s", settings_path)
        return CollectorSettings()

    try:
        parsed = SettingsFile.model_validate(_casefold_keys(raw))
    except ValidationError as exc:
        logger.warning("Invalid settings, using defaults: %s", exc)
        return CollectorSettings()

    return _to_settings(parsed, base_dir=settings_path.parent)


_KNOWN_KEYS = {
    key.casefold(): key
    for key in (
        "PollingIntervalSeconds",
        "RescanIntervalSeconds",
        "SqliteFilePath",
        "ExcludedExeNames",
    )
}


def _casefold_keys(raw: dict) -> dict:
    # Keys in the settings file are matched case-insensitively.
    return {_KNOWN_KEYS.get(str(key).casefold(), key): value for key, value in raw.items()}


def _to_settings(parsed: SettingsFile, base_dir: Path) -> CollectorSettings:
    if parsed.rescan_interval_seconds > 0:
        rescan_seconds = parsed.rescan_interval_seconds
    elif parsed.polling_interval_seconds > 0:
        rescan_seconds = parsed.polling_interval_seconds
    else:
        rescan_seconds = DEFAULT_RESCAN_SECONDS

    sqlite_path = resolve_sqlite_path(parsed.sqlite_file_path, base_dir)

    return CollectorSettings.from_intervals(
        rescan_seconds=rescan_seconds,
        sqlite_path=sqlite_path,
        excluded_exe_names=parsed.excluded_exe_names,
    )
