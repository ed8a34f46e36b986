"""SQLite database layer for application state events."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .models import PersistedEvent, StoredInterval, ensure_utc
from .paths import ensure_parent_dir


# Fixed-width UTC text so that string comparison matches time order.
DATETIME_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_utc(value: datetime) -> str:
    return ensure_utc(value).strftime(DATETIME_FMT)


def parse_utc(value: str) -> datetime:
    return datetime.strptime(value, DATETIME_FMT).replace(tzinfo=timezone.utc)


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database for writing."""
    conn = sqlite3.connect(
        ensure_parent_dir(path),
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


def open_readonly(path: Path) -> Optional[sqlite3.Connection]:
    """Open an existing database read-only; ``None`` when the file is absent."""
    path = Path(path)
    if not path.exists():
        return None
    conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def readonly_connection(path: Path) -> Iterator[Optional[sqlite3.Connection]]:
    conn = open_readonly(path)
    try:
        yield conn
    finally:
        if conn is not None:
            conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS app_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_at_utc TEXT NOT NULL,
            state_start_utc TEXT NOT NULL,
            state_end_utc TEXT NOT NULL,
            exe_name TEXT NOT NULL,
            pid INTEGER NOT NULL,
            hwnd TEXT NOT NULL,
            title TEXT NOT NULL,
            state TEXT NOT NULL,
            source TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_app_events_time
            ON app_events(event_at_utc);

        CREATE INDEX IF NOT EXISTS idx_app_events_exe_time
            ON app_events(exe_name, event_at_utc);
        """
    )


def insert_events(conn: sqlite3.Connection, events: Iterable[PersistedEvent]) -> None:
    """Insert ``events`` inside a single transaction."""
    rows = [
        (
            format_utc(event.logged_at_utc),
            format_utc(event.interval.start_utc),
            format_utc(event.interval.end_utc),
            event.interval.exe_name,
            int(event.interval.pid),
            event.interval.hwnd,
            event.interval.title,
            event.interval.state.value,
            event.source,
        )
        for event in events
    ]
    if not rows:
        return
    conn.execute("BEGIN")
    try:
        conn.executemany(
            """
            INSERT INTO app_events (
                event_at_utc,
                state_start_utc,
                state_end_utc,
                exe_name,
                pid,
                hwnd,
                title,
                state,
                source
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def fetch_intervals(
    conn: sqlite3.Connection, from_utc: datetime, to_utc: datetime
) -> list[StoredInterval]:
    """Return stored intervals overlapping ``[from_utc, to_utc)``, unclipped."""
    rows = conn.execute(
        """
        SELECT exe_name, state, state_start_utc, state_end_utc
        FROM app_events
        WHERE state_end_utc > ?
          AND state_start_utc < ?
        ORDER BY state_start_utc ASC, id ASC;
        """,
        (format_utc(from_utc), format_utc(to_utc)),
    )
    return [
        StoredInterval(
            exe_name=row["exe_name"],
            state=row["state"],
            start_utc=parse_utc(row["state_start_utc"]),
            end_utc=parse_utc(row["state_end_utc"]),
        )
        for row in rows
    ]


def delete_events(
    conn: sqlite3.Connection,
    from_utc: datetime,
    to_utc: datetime,
    *,
    source: Optional[str] = None,
) -> int:
    """Delete events overlapping the range, optionally only those with ``source``."""
    cur = conn.execute(
        """
        DELETE FROM app_events
        WHERE state_end_utc > ?
          AND state_start_utc < ?
          AND (? IS NULL OR source = ?);
        """,
        (format_utc(from_utc), format_utc(to_utc), source, source),
    )
    return cur.rowcount


def count_events(conn: sqlite3.Connection) -> int:
    return int(conn.execute("SELECT COUNT(*) FROM app_events;").fetchone()[0])
