"""Deterministic demo data for exercising reports without a live collector."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from .db import database_connection, delete_events
from .models import AppState, PersistedEvent, StateInterval, ensure_utc
from .writer import SqliteEventWriter

logger = logging.getLogger(__name__)

SEED_SOURCE = "demo-seed"
MAX_SEGMENTED_EVENTS = 200_000


class SeedProfile(str, Enum):
    HOURLY = "hourly"
    MIXED = "mixed"
    MINUTE = "minute"


@dataclass(frozen=True, slots=True)
class _DemoApp:
    exe_name: str
    pid: int
    hwnd: str
    title: str


_HOURLY_APPS = (
    _DemoApp("devenv.exe", 31612, "0x320B02", "WinTracker - Program.cs - Microsoft Visual Studio"),
    _DemoApp("msedge.exe", 18268, "0x204DE", "Docs - Microsoft Edge"),
    _DemoApp("powershell.exe", 22452, "0x40912", "Windows PowerShell"),
)

_SEGMENTED_APPS = _HOURLY_APPS + (
    _DemoApp("Code.exe", 4120, "0x125AA", "WinTracker - Visual Studio Code"),
    _DemoApp("Slack.exe", 9800, "0x8332", "Slack | WinTracker"),
)

_MIXED_DURATIONS = (60, 120, 300, 600, 900, 1800, 2700)
_MIXED_GAPS = (20, 40, 60, 120, 180, 300, 600)
_MINUTE_DURATIONS = (60, 120, 180)
_MINUTE_GAPS = (0, 20, 30, 60)


def seed_range(range_name: str, now_local: datetime) -> tuple[datetime, datetime]:
    """UTC bounds for ``24h`` (today) or ``1week`` (the last seven local days)."""
    day_start = now_local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = day_start + timedelta(days=1)
    if range_name == "1week":
        start = day_start - timedelta(days=6)
    elif range_name == "24h":
        start = day_start
    else:
        raise ValueError(f"Unknown seed range {range_name!r}; expected '24h' or '1week'")
    return ensure_utc(start), ensure_utc(end)


def build_events(
    from_utc: datetime, to_utc: datetime, profile: SeedProfile = SeedProfile.HOURLY
) -> list[PersistedEvent]:
    if profile is SeedProfile.MIXED:
        return _build_segmented(from_utc, to_utc, _MIXED_DURATIONS, _MIXED_GAPS)
    if profile is SeedProfile.MINUTE:
        return _build_segmented(from_utc, to_utc, _MINUTE_DURATIONS, _MINUTE_GAPS)
    return _build_hourly(from_utc, to_utc)


def seed_database(
    db_path: Path,
    *,
    range_name: str = "24h",
    profile: SeedProfile = SeedProfile.HOURLY,
    replace: bool = False,
    replace_all: bool = False,
    now_local: Optional[datetime] = None,
) -> int:
    """Write demo events for the range; returns the number of rows written."""
    now_local = now_local or datetime.now().astimezone()
    from_utc, to_utc = seed_range(range_name, now_local)

    if replace_all or replace:
        with database_connection(db_path) as conn:
            deleted = delete_events(
                conn, from_utc, to_utc, source=None if replace_all else SEED_SOURCE
            )
        logger.info("Deleted %d existing rows before seeding.", deleted)

    events = build_events(from_utc, to_utc, profile)
    with SqliteEventWriter(db_path) as writer:
        for event in events:
            writer.write(event)
    logger.info(
        "Seed completed: rows=%d range=%s profile=%s db=%s",
        len(events),
        range_name,
        profile.value,
        db_path,
    )
    return len(events)


def _build_hourly(from_utc: datetime, to_utc: datetime) -> list[PersistedEvent]:
    rows: list[PersistedEvent] = []
    cursor = from_utc
    day_index = 0
    app_count = len(_HOURLY_APPS)

    while cursor < to_utc:
        day_end = min(cursor + timedelta(days=1), to_utc)
        hour_start = cursor
        while hour_start < day_end:
            hour_end = min(hour_start + timedelta(hours=1), day_end)
            hour = hour_start.hour
            active_index = (day_index + hour) % app_count

            for index, app in enumerate(_HOURLY_APPS):
                if index == active_index:
                    active_minutes = 25 + ((day_index * 3 + hour * 5) % 30)
                    active_end = min(hour_start + timedelta(minutes=active_minutes), hour_end)
                    rows.append(_event(app, AppState.ACTIVE, hour_start, active_end))
                    if active_end < hour_end:
                        rows.append(_event(app, AppState.OPEN, active_end, hour_end))
                    continue

                # Leave the occasional hour empty so "not running" gaps show up.
                if (hour + index + day_index) % 8 == 0:
                    continue

                state = (
                    AppState.MINIMIZED
                    if (hour + index + day_index) % 3 == 0
                    else AppState.OPEN
                )
                rows.append(_event(app, state, hour_start, hour_end))
            hour_start = hour_end

        cursor = day_end
        day_index += 1

    return rows


def _build_segmented(
    from_utc: datetime,
    to_utc: datetime,
    durations: Sequence[int],
    gaps: Sequence[int],
) -> list[PersistedEvent]:
    rows: list[PersistedEvent] = []
    for app_index, app in enumerate(_SEGMENTED_APPS):
        cursor = from_utc + timedelta(minutes=app_index * 3)
        step = 0
        while cursor < to_utc and len(rows) < MAX_SEGMENTED_EVENTS:
            cursor += timedelta(seconds=_pick(gaps, app_index, step, salt=17))
            if cursor >= to_utc:
                break
            end = min(
                cursor + timedelta(seconds=_pick(durations, app_index, step, salt=31)),
                to_utc,
            )
            rows.append(_event(app, _resolve_state(app_index, step), cursor, end))
            cursor = end
            step += 1
    return rows


def _pick(options: Sequence[int], app_index: int, step: int, salt: int) -> int:
    value = (app_index + 1) * 1_000_003 + (step + 1) * 37 + salt * 97
    return options[abs(value) % len(options)]


def _resolve_state(app_index: int, step: int) -> AppState:
    if (step + app_index) % 7 == 0:
        return AppState.ACTIVE
    return AppState.MINIMIZED if (step + app_index) % 3 == 0 else AppState.OPEN


def _event(app: _DemoApp, state: AppState, start: datetime, end: datetime) -> PersistedEvent:
    return PersistedEvent(
        interval=StateInterval(
            exe_name=app.exe_name,
            pid=app.pid,
            hwnd=app.hwnd,
            title=app.title,
            state=state,
            start_utc=start,
            end_utc=end,
        ),
        source=SEED_SOURCE,
    )
