"""Exceptions raised by the tracker, the event store and the query engine."""

from __future__ import annotations


class WinTrackerError(Exception):
    """Base class for all tracker errors."""


class SnapshotCaptureError(WinTrackerError):
    """Enumerating the current windows failed for one tick."""


class StoreWriteError(WinTrackerError):
    """Buffered events could not be committed to the event store."""


class InvalidWindowError(WinTrackerError, ValueError):
    """A usage query window violates its contract (empty range, bad bucket size)."""


class HookStartError(WinTrackerError):
    """The OS window-event hooks could not be registered."""
