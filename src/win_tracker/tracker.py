"""Turn window snapshots into closed per-application state intervals."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Protocol

from .coalescer import RescanTimer, TriggerCoalescer
from .config import CollectorSettings
from .errors import SnapshotCaptureError
from .models import (
    SHUTDOWN_SOURCE,
    CollectReason,
    PersistedEvent,
    Snapshot,
    StateInterval,
    utc_now,
)
from .snapshots import SnapshotSource, canonicalize
from .writer import EventWriter

logger = logging.getLogger(__name__)


class SignalProducer(Protocol):
    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...


HookFactory = Callable[[Callable[[CollectReason], None]], SignalProducer]


class StateTransitionTracker:
    """Keeps one open interval per application and emits them once closed.

    The open-interval map is owned by whichever thread calls :meth:`run` (or
    the ``collect_once``/``apply_snapshot`` methods directly); producers only
    ever reach it through the :class:`TriggerCoalescer`.
    """

    def __init__(
        self,
        source: SnapshotSource,
        writer: EventWriter,
        settings: Optional[CollectorSettings] = None,
        *,
        hook_factory: Optional[HookFactory] = None,
        coalescer: Optional[TriggerCoalescer] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or CollectorSettings()
        self._source = source
        self._writer = writer
        self._hook_factory = hook_factory
        self._clock = clock
        self.coalescer = coalescer or TriggerCoalescer(self.settings.signal_poll_seconds)
        self._excluded = set(self.settings.excluded_exe_names)
        self._open: dict[str, StateInterval] = {}

    @property
    def open_intervals(self) -> Mapping[str, StateInterval]:
        return MappingProxyType(self._open)

    def run(self, stop_event: threading.Event) -> None:
        """Collect until ``stop_event`` is set, then flush and join producers."""
        coalescer = self.coalescer
        timer = RescanTimer(coalescer, self.settings.rescan_interval, stop_event)
        hooks = self._hook_factory(coalescer.signal) if self._hook_factory else None

        logger.info(
            "Event-driven collector started; rescan interval %ss.",
            int(self.settings.rescan_interval.total_seconds()),
        )
        if hooks is not None:
            hooks.start()
        try:
            coalescer.signal(CollectReason.STARTUP)
            timer.start()
            while True:
                reason = coalescer.wait(stop_event)
                if reason is None:
                    break
                self.collect_once(reason)
        finally:
            try:
                self.shutdown()
                self._writer.flush()
            finally:
                stop_event.set()
                timer.join(self.settings.join_timeout.total_seconds())
                if hooks is not None:
                    hooks.stop()
                logger.info("Collector stopped.")

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self.run(stop_event)
        except KeyboardInterrupt:
            logger.info("Collector interrupted; open intervals flushed.")

    def collect_once(self, reason: CollectReason) -> list[PersistedEvent]:
        """Capture the current windows and apply them as one tick."""
        observed_at = self._clock()
        try:
            current = self._source.capture_current_states(self._excluded)
        except SnapshotCaptureError as exc:
            logger.warning("Snapshot capture failed; skipping tick (%s): %s", reason.value, exc)
            return []
        return self.apply_snapshot(current, observed_at, reason.source)

    def apply_snapshot(
        self,
        current_by_app: Mapping[str, Snapshot],
        observed_at: datetime,
        source: str,
    ) -> list[PersistedEvent]:
        """Diff one canonical snapshot set against the open intervals."""
        current = canonicalize(current_by_app.values())
        emitted: list[PersistedEvent] = []

        for key, snapshot in current.items():
            existing = self._open.get(key)
            if existing is None:
                self._open[key] = StateInterval.open(snapshot, observed_at)
                continue

            if existing.state is snapshot.state:
                self._open[key] = existing.extend(snapshot, observed_at)
                continue

            # Swap first: a failed write must not leave the closed interval open.
            self._open[key] = StateInterval.open(snapshot, observed_at)
            self._emit(existing.close(observed_at), source, emitted)

        for key in [key for key in self._open if key not in current]:
            self._emit(self._open.pop(key).close(observed_at), source, emitted)

        logger.debug(
            "Tick (%s): %d open, %d closed.", source, len(self._open), len(emitted)
        )
        return emitted

    def shutdown(self, stopped_at: Optional[datetime] = None) -> list[PersistedEvent]:
        """Close every open interval at ``stopped_at`` with source ``shutdown``."""
        stopped_at = stopped_at or self._clock()
        emitted: list[PersistedEvent] = []
        for key in list(self._open):
            self._emit(self._open.pop(key).close(stopped_at), SHUTDOWN_SOURCE, emitted)
        if emitted:
            logger.info("Flushed %d open intervals on shutdown.", len(emitted))
        return emitted

    def _emit(
        self, interval: StateInterval, source: str, emitted: list[PersistedEvent]
    ) -> None:
        if interval.end_utc < interval.start_utc:
            return
        event = PersistedEvent(interval=interval, source=source)
        self._writer.write(event)
        emitted.append(event)
        logger.debug("%s", json.dumps(event.to_dict(), ensure_ascii=False))
