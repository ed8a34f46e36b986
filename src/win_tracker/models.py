"""Domain models for tracked application states and usage queries."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from .errors import InvalidWindowError
from .normalization import identity_key


class AppState(str, Enum):
    """Window state of an application, ranked for canonicalization."""

    ACTIVE = "Active"
    OPEN = "Open"
    MINIMIZED = "Minimized"

    @property
    def priority(self) -> int:
        return _STATE_PRIORITY[self]


_STATE_PRIORITY: dict[AppState, int] = {
    AppState.ACTIVE: 3,
    AppState.MINIMIZED: 2,
    AppState.OPEN: 1,
}


class CollectReason(str, Enum):
    """Why the collector woke up."""

    STARTUP = "startup"
    WIN_EVENT = "win_event"
    RESCAN = "rescan"

    @property
    def source(self) -> str:
        return "rescan" if self is CollectReason.RESCAN else "win_event"


SHUTDOWN_SOURCE = "shutdown"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """One observed window state for an application."""

    exe_name: str
    pid: int
    hwnd: str
    title: str
    state: AppState

    @property
    def identity(self) -> str:
        return identity_key(self.exe_name)


@dataclass(frozen=True, slots=True)
class StateInterval:
    """A span during which one application held a single state.

    Values are immutable: ``extend`` and ``close`` return new intervals.
    """

    exe_name: str
    pid: int
    hwnd: str
    title: str
    state: AppState
    start_utc: datetime
    end_utc: datetime

    @classmethod
    def open(cls, snapshot: Snapshot, observed_at: datetime) -> "StateInterval":
        return cls(
            exe_name=snapshot.exe_name,
            pid=snapshot.pid,
            hwnd=snapshot.hwnd,
            title=snapshot.title,
            state=snapshot.state,
            start_utc=observed_at,
            end_utc=observed_at,
        )

    @property
    def identity(self) -> str:
        return identity_key(self.exe_name)

    @property
    def duration_seconds(self) -> float:
        return (self.end_utc - self.start_utc).total_seconds()

    def extend(self, snapshot: Snapshot, observed_at: datetime) -> "StateInterval":
        return replace(
            self,
            end_utc=observed_at,
            pid=snapshot.pid,
            hwnd=snapshot.hwnd,
            title=snapshot.title,
        )

    def close(self, closed_at: datetime) -> "StateInterval":
        return replace(self, end_utc=closed_at)


@dataclass(frozen=True, slots=True)
class PersistedEvent:
    """A closed interval as written to the event store."""

    interval: StateInterval
    source: str

    @property
    def logged_at_utc(self) -> datetime:
        return self.interval.end_utc

    def to_dict(self) -> dict[str, object]:
        interval = self.interval
        return {
            "state_start_utc": interval.start_utc.isoformat(),
            "state_end_utc": interval.end_utc.isoformat(),
            "exe_name": interval.exe_name,
            "pid": interval.pid,
            "hwnd": interval.hwnd,
            "title": interval.title,
            "state": interval.state.value,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class StoredInterval:
    """An interval read back from the store, state kept as its stored text."""

    exe_name: str
    state: str
    start_utc: datetime
    end_utc: datetime


@dataclass(frozen=True, slots=True)
class UsageQueryWindow:
    """Half-open query range ``[from_utc, to_utc)`` with optional bucket size."""

    from_utc: datetime
    to_utc: datetime
    bucket_size: Optional[timedelta] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_utc", ensure_utc(self.from_utc))
        object.__setattr__(self, "to_utc", ensure_utc(self.to_utc))
        if self.from_utc >= self.to_utc:
            raise InvalidWindowError(
                f"from_utc ({self.from_utc.isoformat()}) must be before "
                f"to_utc ({self.to_utc.isoformat()})"
            )
        if self.bucket_size is not None and self.bucket_size <= timedelta(0):
            raise InvalidWindowError(
                f"bucket_size must be positive, got {self.bucket_size}"
            )

    @property
    def duration(self) -> timedelta:
        return self.to_utc - self.from_utc

    @classmethod
    def last_24_hours(cls, now_utc: datetime) -> "UsageQueryWindow":
        now_utc = ensure_utc(now_utc)
        return cls(now_utc - timedelta(hours=24), now_utc, timedelta(hours=1))

    @classmethod
    def last_7_days(cls, now_utc: datetime) -> "UsageQueryWindow":
        now_utc = ensure_utc(now_utc)
        return cls(now_utc - timedelta(days=7), now_utc, timedelta(days=1))

    @classmethod
    def for_range(cls, name: str, now_utc: datetime) -> "UsageQueryWindow":
        """Resolve a named report range (``24h`` or ``1week``)."""
        key = name.strip().lower()
        if key == "24h":
            return cls.last_24_hours(now_utc)
        if key == "1week":
            return cls.last_7_days(now_utc)
        raise InvalidWindowError(f"Unknown range {name!r}; expected '24h' or '1week'")


@dataclass(frozen=True, slots=True)
class StateUsageRow:
    exe_name: str
    state: str
    seconds: float


@dataclass(frozen=True, slots=True)
class AppSummaryRow:
    exe_name: str
    total_seconds: float
    active_seconds: float
    open_seconds: float
    minimized_seconds: float


@dataclass(frozen=True, slots=True)
class TimelineRow:
    bucket_start_utc: datetime
    exe_name: str
    state: str
    seconds: float


REPORT_OK = "ok"
REPORT_NO_DATA = "no_data"


@dataclass(slots=True)
class UsageReport:
    """Everything a report view needs for one window."""

    status: str
    window: UsageQueryWindow
    summaries: list[AppSummaryRow]
    states: list[StateUsageRow]
    timeline: list[TimelineRow]

    @property
    def has_data(self) -> bool:
        return self.status == REPORT_OK
