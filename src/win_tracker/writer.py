"""Buffered, batched writer for closed state intervals."""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path

from .db import insert_events, open_database
from .errors import StoreWriteError
from .models import PersistedEvent

logger = logging.getLogger(__name__)


class EventWriter(ABC):
    """Append-only sink for persisted events."""

    @abstractmethod
    def write(self, event: PersistedEvent) -> None:
        ...

    @abstractmethod
    def flush(self) -> None:
        """Make every previously written event durable."""

    def close(self) -> None:
        self.flush()

    def __enter__(self) -> "EventWriter":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SqliteEventWriter(EventWriter):
    """Buffers events and commits them to SQLite in batches.

    A batch that keeps failing with ``sqlite3.OperationalError`` (for example
    a locked database) is retried ``retries`` times before ``StoreWriteError``
    is raised; the batch stays buffered so a later flush can still commit it.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        batch_size: int = 50,
        retries: int = 3,
        retry_delay: float = 0.2,
    ) -> None:
        self.db_path = Path(db_path)
        self.batch_size = max(1, batch_size)
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._conn = open_database(self.db_path, check_same_thread=False)
        self._buffer: list[PersistedEvent] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def write(self, event: PersistedEvent) -> None:
        with self._lock:
            if self._closed:
                raise StoreWriteError(f"Writer for {self.db_path} is closed.")
            self._buffer.append(event)
            if len(self._buffer) >= self.batch_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._flush_locked()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            try:
                self._flush_locked()
            finally:
                self._conn.close()
                self._closed = True
                logger.debug("Event writer for %s closed.", self.db_path)

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        last_error: sqlite3.Error | None = None
        for attempt in range(1, self.retries + 1):
            try:
                insert_events(self._conn, self._buffer)
            except sqlite3.OperationalError as exc:
                last_error = exc
                logger.warning(
                    "Flush attempt %d/%d failed: %s", attempt, self.retries, exc
                )
                if attempt < self.retries:
                    time.sleep(self.retry_delay * attempt)
                continue
            except sqlite3.Error as exc:
                raise StoreWriteError(
                    f"Failed to write {len(self._buffer)} events to {self.db_path}"
                ) from exc
            logger.debug("Flushed %d events.", len(self._buffer))
            self._buffer.clear()
            return
        raise StoreWriteError(
            f"Failed to write {len(self._buffer)} events to {self.db_path} "
            f"after {self.retries} attempts"
        ) from last_error
