"""Snapshot source interface and per-application canonicalization."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from .models import Snapshot
from .normalization import identity_key


class SnapshotSource(ABC):
    """Supplies the current state of every tracked application."""

    @abstractmethod
    def capture_current_states(self, excluded_exe_names: set[str]) -> dict[str, Snapshot]:
        """Return one canonical snapshot per identity key.

        Executables named in ``excluded_exe_names`` (compared
        case-insensitively) are left out. Raises ``SnapshotCaptureError`` when
        the windows cannot be enumerated at all.
        """


def merge_by_priority(by_app: dict[str, Snapshot], candidate: Snapshot) -> None:
    """Fold ``candidate`` into ``by_app`` keeping the strongest snapshot per app.

    A higher state priority wins. On a tie the candidate only replaces a kept
    snapshot whose title is empty, and only when its own title is not.
    """
    key = candidate.identity
    existing = by_app.get(key)
    if existing is None:
        by_app[key] = candidate
        return

    if candidate.state.priority > existing.state.priority:
        by_app[key] = candidate
        return

    if (
        candidate.state.priority == existing.state.priority
        and not existing.title
        and candidate.title
    ):
        by_app[key] = candidate


def canonicalize(snapshots: Iterable[Snapshot]) -> dict[str, Snapshot]:
    """Reduce raw per-window snapshots to one snapshot per identity."""
    by_app: dict[str, Snapshot] = {}
    for snapshot in snapshots:
        merge_by_priority(by_app, snapshot)
    return by_app


def excluded_keys(excluded_exe_names: Iterable[str]) -> set[str]:
    return {identity_key(name) for name in excluded_exe_names if name and name.strip()}
