"""Coalesce bursty wake-up signals into single collection passes."""

from __future__ import annotations

import logging
import queue
import threading
from datetime import timedelta
from typing import Optional

from .models import CollectReason

logger = logging.getLogger(__name__)


class TriggerCoalescer:
    """Multi-producer, single-consumer signal queue.

    Producers call :meth:`signal` from any thread; it never blocks. The single
    consumer calls :meth:`wait`, which blocks for the first signal, drains
    everything queued behind it and reports only the most recent reason, so a
    burst of N notifications costs one collection pass.
    """

    def __init__(self, poll_seconds: float = 0.25) -> None:
        self._queue: "queue.SimpleQueue[CollectReason]" = queue.SimpleQueue()
        self._poll_seconds = poll_seconds
        self.last_drain_size = 0

    def signal(self, reason: CollectReason) -> None:
        self._queue.put(reason)

    def wait(self, stop_event: threading.Event) -> Optional[CollectReason]:
        """Return the latest reason of the next burst, or ``None`` once stopped."""
        while not stop_event.is_set():
            try:
                reason = self._queue.get(timeout=self._poll_seconds)
            except queue.Empty:
                continue
            return self._drain(reason)
        return None

    def _drain(self, reason: CollectReason) -> CollectReason:
        drained = 1
        while True:
            try:
                reason = self._queue.get_nowait()
            except queue.Empty:
                break
            drained += 1
        self.last_drain_size = drained
        if drained > 1:
            logger.debug("Coalesced %d signals into one pass (%s).", drained, reason.value)
        return reason

    def pending(self) -> int:
        return self._queue.qsize()


class RescanTimer:
    """Posts a ``RESCAN`` signal every ``interval`` until ``stop_event`` is set."""

    def __init__(
        self,
        coalescer: TriggerCoalescer,
        interval: timedelta,
        stop_event: threading.Event,
    ) -> None:
        self._coalescer = coalescer
        self._interval = interval.total_seconds()
        self._stop_event = stop_event
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        thread = threading.Thread(target=self._run, name="RescanTimer", daemon=True)
        self._thread = thread
        thread.start()

    def join(self, timeout: float) -> bool:
        """Wait for the timer thread; returns ``False`` if it is still alive."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("Rescan timer did not stop within %.1fs.", timeout)
            return False
        self._thread = None
        return True

    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run(self) -> None:
        # Event.wait returns True as soon as the stop event is set.
        while not self._stop_event.wait(self._interval):
            self._coalescer.signal(CollectReason.RESCAN)
