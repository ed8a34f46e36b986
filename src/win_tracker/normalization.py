"""Utilities to normalize executable names and window titles."""

from __future__ import annotations

import re
from typing import Iterable, Optional

UNKNOWN_EXE = "unknown.exe"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def identity_key(exe_name: Optional[str]) -> str:
    """Return the case-insensitive key under which an application is tracked."""
    if not exe_name:
        return UNKNOWN_EXE
    return exe_name.strip().casefold() or UNKNOWN_EXE


def normalize_exe_name(process_name: Optional[str]) -> str:
    """Turn a process name into the ``name.exe`` form used as identity."""
    if not process_name:
        return UNKNOWN_EXE
    name = process_name.strip()
    if not name:
        return UNKNOWN_EXE
    if not name.lower().endswith(".exe"):
        name = f"{name}.exe"
    return name


def normalize_window_title(window_title: Optional[str]) -> str:
    """Strip control characters and outer whitespace; never returns ``None``."""
    if not window_title:
        return ""
    return _CONTROL_CHARS.sub("", window_title).strip()


def normalize_exclusions(names: Iterable[str]) -> list[str]:
    """Trim names, drop blanks and de-duplicate case-insensitively, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if not name or not name.strip():
            continue
        trimmed = name.strip()
        key = trimmed.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(trimmed)
    return result
