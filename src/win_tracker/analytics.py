"""Usage aggregation over stored state intervals.

All queries clip intervals against a half-open window ``[from_utc, to_utc)``
(or against each timeline bucket) exactly once, here; the store hands back
unclipped intervals. Durations are float seconds and an overlap of zero or
less contributes no row at all.

Timeline buckets are fixed width. Generation starts at ``from_utc`` and stops
after the first bucket whose end reaches ``to_utc``, so the final bucket may
extend past ``to_utc``; it is deliberately not truncated.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .db import fetch_intervals, readonly_connection
from .errors import InvalidWindowError
from .models import (
    REPORT_NO_DATA,
    REPORT_OK,
    AppState,
    AppSummaryRow,
    StateUsageRow,
    StoredInterval,
    TimelineRow,
    UsageQueryWindow,
    UsageReport,
    ensure_utc,
)
from .normalization import identity_key

logger = logging.getLogger(__name__)


def clip_interval(
    start: datetime, end: datetime, lower: datetime, upper: datetime
) -> Optional[tuple[datetime, datetime]]:
    """Clip ``[start, end)`` to ``[lower, upper)``; ``None`` when nothing overlaps."""
    overlap_start = max(start, lower)
    overlap_end = min(end, upper)
    if overlap_end <= overlap_start:
        return None
    return overlap_start, overlap_end


def overlaps(interval: StoredInterval, lower: datetime, upper: datetime) -> bool:
    return interval.end_utc > lower and interval.start_utc < upper


def _require_bucket_size(window: UsageQueryWindow) -> timedelta:
    if window.bucket_size is None:
        raise InvalidWindowError("A bucket size is required for timeline queries.")
    return window.bucket_size


def bucket_count(window: UsageQueryWindow) -> int:
    """Number of timeline buckets, ``ceil(duration / bucket_size)``."""
    size = _require_bucket_size(window)
    whole, remainder = divmod(window.duration, size)
    return whole + (1 if remainder else 0)


def bucket_index(moment: datetime, window: UsageQueryWindow) -> int:
    """Index of the bucket containing ``moment`` (negative before ``from_utc``)."""
    size = _require_bucket_size(window)
    return (ensure_utc(moment) - window.from_utc) // size


def iter_buckets(window: UsageQueryWindow) -> Iterator[tuple[datetime, datetime]]:
    """Yield ``(start, end)`` for each bucket covering the window."""
    size = _require_bucket_size(window)
    start = window.from_utc
    while True:
        end = start + size
        yield start, end
        if end >= window.to_utc:
            return
        start = end


@dataclass(slots=True)
class _AppAccumulator:
    exe_name: str
    total: float = 0.0
    active: float = 0.0
    open: float = 0.0
    minimized: float = 0.0

    def add(self, state: str, seconds: float) -> None:
        self.total += seconds
        key = state.casefold()
        if key == _ACTIVE:
            self.active += seconds
        elif key == _OPEN:
            self.open += seconds
        elif key == _MINIMIZED:
            self.minimized += seconds

    def to_row(self) -> AppSummaryRow:
        return AppSummaryRow(
            exe_name=self.exe_name,
            total_seconds=self.total,
            active_seconds=self.active,
            open_seconds=self.open,
            minimized_seconds=self.minimized,
        )


_ACTIVE = AppState.ACTIVE.value.casefold()
_OPEN = AppState.OPEN.value.casefold()
_MINIMIZED = AppState.MINIMIZED.value.casefold()


class _DisplayNames:
    """First-seen spelling of each case-insensitive identity."""

    def __init__(self) -> None:
        self._names: dict[str, str] = {}

    def key(self, exe_name: str) -> str:
        key = identity_key(exe_name)
        self._names.setdefault(key, exe_name)
        return key

    def __getitem__(self, key: str) -> str:
        return self._names[key]


def _clipped_durations(
    intervals: Iterable[StoredInterval], window: UsageQueryWindow
) -> Iterator[tuple[StoredInterval, float]]:
    for interval in intervals:
        clipped = clip_interval(
            interval.start_utc, interval.end_utc, window.from_utc, window.to_utc
        )
        if clipped is None:
            continue
        yield interval, (clipped[1] - clipped[0]).total_seconds()


def aggregate_state_totals(
    intervals: Iterable[StoredInterval], window: UsageQueryWindow
) -> list[StateUsageRow]:
    names = _DisplayNames()
    totals: defaultdict[tuple[str, str], float] = defaultdict(float)
    for interval, seconds in _clipped_durations(intervals, window):
        totals[(names.key(interval.exe_name), interval.state)] += seconds

    rows = [
        StateUsageRow(exe_name=names[key], state=state, seconds=seconds)
        for (key, state), seconds in totals.items()
    ]
    rows.sort(key=lambda row: (-row.seconds, row.exe_name.casefold(), row.state.casefold()))
    return rows


def aggregate_app_summaries(
    intervals: Iterable[StoredInterval], window: UsageQueryWindow
) -> list[AppSummaryRow]:
    apps: dict[str, _AppAccumulator] = {}
    for interval, seconds in _clipped_durations(intervals, window):
        key = identity_key(interval.exe_name)
        accumulator = apps.get(key)
        if accumulator is None:
            accumulator = apps[key] = _AppAccumulator(exe_name=interval.exe_name)
        accumulator.add(interval.state, seconds)

    rows = [accumulator.to_row() for accumulator in apps.values()]
    rows.sort(key=lambda row: (-row.total_seconds, row.exe_name.casefold()))
    return rows


def aggregate_timeline(
    intervals: Iterable[StoredInterval], window: UsageQueryWindow
) -> list[TimelineRow]:
    size = _require_bucket_size(window)
    count = bucket_count(window)
    names = _DisplayNames()
    totals: defaultdict[tuple[int, str, str], float] = defaultdict(float)

    for interval in intervals:
        if not overlaps(interval, window.from_utc, window.to_utc):
            continue
        key = names.key(interval.exe_name)
        index = max(0, bucket_index(interval.start_utc, window))
        while index < count:
            bucket_start = window.from_utc + size * index
            if bucket_start >= interval.end_utc:
                break
            clipped = clip_interval(
                interval.start_utc, interval.end_utc, bucket_start, bucket_start + size
            )
            if clipped is not None:
                totals[(index, key, interval.state)] += (
                    clipped[1] - clipped[0]
                ).total_seconds()
            index += 1

    rows = [
        TimelineRow(
            bucket_start_utc=window.from_utc + size * index,
            exe_name=names[key],
            state=state,
            seconds=seconds,
        )
        for (index, key, state), seconds in totals.items()
    ]
    rows.sort(
        key=lambda row: (row.bucket_start_utc, row.exe_name.casefold(), row.state.casefold())
    )
    return rows


class AggregationEngine:
    """Answers usage queries against the SQLite event store.

    Every query opens its own read-only connection, so one engine can serve
    concurrent callers. A database file that does not exist yet yields empty
    results; use :meth:`store_exists` to tell that apart from an empty store.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def store_exists(self) -> bool:
        return self.db_path.exists()

    def load_intervals(self, window: UsageQueryWindow) -> list[StoredInterval]:
        with readonly_connection(self.db_path) as conn:
            if conn is None:
                logger.debug("No database at %s; returning no data.", self.db_path)
                return []
            return fetch_intervals(conn, window.from_utc, window.to_utc)

    def query_totals(self, window: UsageQueryWindow) -> list[StateUsageRow]:
        return aggregate_state_totals(self.load_intervals(window), window)

    def query_app_summaries(self, window: UsageQueryWindow) -> list[AppSummaryRow]:
        return aggregate_app_summaries(self.load_intervals(window), window)

    def query_timeline(self, window: UsageQueryWindow) -> list[TimelineRow]:
        _require_bucket_size(window)
        return aggregate_timeline(self.load_intervals(window), window)

    def build_report(self, window: UsageQueryWindow) -> UsageReport:
        """Run all three queries over one read of the store."""
        if not self.store_exists():
            return UsageReport(
                status=REPORT_NO_DATA, window=window, summaries=[], states=[], timeline=[]
            )
        intervals = self.load_intervals(window)
        timeline = (
            aggregate_timeline(intervals, window) if window.bucket_size is not None else []
        )
        return UsageReport(
            status=REPORT_OK,
            window=window,
            summaries=aggregate_app_summaries(intervals, window),
            states=aggregate_state_totals(intervals, window),
            timeline=timeline,
        )
