"""Window state capture and window-event hooks for Windows."""

from __future__ import annotations

import ctypes
import logging
import sys
import threading
from ctypes import wintypes
from typing import Callable, Optional

import psutil

from .errors import HookStartError, SnapshotCaptureError
from .models import AppState, CollectReason, Snapshot
from .normalization import identity_key, normalize_exe_name, normalize_window_title
from .snapshots import SnapshotSource, excluded_keys, merge_by_priority

logger = logging.getLogger(__name__)

MINIMUM_WINDOW_WIDTH = 50
MINIMUM_WINDOW_HEIGHT = 50

GW_OWNER = 4
DWMWA_CLOAKED = 14

EVENT_SYSTEM_FOREGROUND = 0x0003
EVENT_SYSTEM_MINIMIZESTART = 0x0016
EVENT_SYSTEM_MINIMIZEEND = 0x0017
WINEVENT_OUTOFCONTEXT = 0x0000
WINEVENT_SKIPOWNPROCESS = 0x0002
OBJID_WINDOW = 0
WM_QUIT = 0x0012
PM_NOREMOVE = 0x0000


def is_windows() -> bool:
    return sys.platform == "win32"


def format_hwnd(hwnd: int) -> str:
    return f"0x{int(hwnd) & 0xFFFFFFFFFFFFFFFF:X}"


def should_track_window(
    exe_name: str,
    title: str,
    *,
    minimized: bool,
    owned: bool,
    cloaked: bool,
    size: Optional[tuple[int, int]],
    excluded: set[str],
) -> bool:
    """Decide whether a top-level window counts as an application window.

    ``cloaked`` and ``size`` only matter for windows that are not minimized;
    ``size`` is ``None`` when the window rectangle could not be read.
    """
    if identity_key(exe_name) in excluded:
        return False
    if owned:
        return False
    if minimized:
        return True
    if not title.strip():
        return False
    if cloaked:
        return False
    if size is not None:
        width, height = size
        if width < MINIMUM_WINDOW_WIDTH or height < MINIMUM_WINDOW_HEIGHT:
            return False
    return True


class WindowsSnapshotProvider(SnapshotSource):
    """Enumerates top-level windows and the foreground window via Win32."""

    def __init__(self) -> None:
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._dwmapi = ctypes.windll.dwmapi  # type: ignore[attr-defined]

    def capture_current_states(self, excluded_exe_names: set[str]) -> dict[str, Snapshot]:
        excluded = excluded_keys(excluded_exe_names)
        exe_cache: dict[int, str] = {}
        by_app: dict[str, Snapshot] = {}
        try:
            shell_window = self._user32.GetShellWindow()
            for hwnd in self._enumerate_windows():
                if not hwnd or hwnd == shell_window:
                    continue
                candidate = self._describe_window(hwnd, exe_cache, excluded)
                if candidate is not None:
                    merge_by_priority(by_app, candidate)

            active = self._foreground_snapshot(exe_cache, excluded)
        except OSError as exc:
            raise SnapshotCaptureError(f"Window enumeration failed: {exc}") from exc

        if active is not None:
            merge_by_priority(by_app, active)
        return by_app

    def _enumerate_windows(self) -> list[int]:
        handles: list[int] = []
        enum_proc = ctypes.WINFUNCTYPE(wintypes.BOOL, wintypes.HWND, wintypes.LPARAM)  # type: ignore[attr-defined]

        def _collect(hwnd: int, _lparam: int) -> bool:
            handles.append(hwnd)
            return True

        if not self._user32.EnumWindows(enum_proc(_collect), 0):
            raise ctypes.WinError()  # type: ignore[attr-defined]
        return handles

    def _describe_window(
        self, hwnd: int, exe_cache: dict[int, str], excluded: set[str]
    ) -> Optional[Snapshot]:
        minimized = bool(self._user32.IsIconic(hwnd))
        visible = bool(self._user32.IsWindowVisible(hwnd))
        if not visible and not minimized:
            return None

        pid = self._window_pid(hwnd)
        if pid is None:
            return None

        exe_name = self._exe_name(pid, exe_cache)
        title = self._window_title(hwnd)
        owned = bool(self._user32.GetWindow(hwnd, GW_OWNER))
        cloaked = False if minimized else self._is_cloaked(hwnd)
        size = None if minimized else self._window_size(hwnd)
        if not should_track_window(
            exe_name,
            title,
            minimized=minimized,
            owned=owned,
            cloaked=cloaked,
            size=size,
            excluded=excluded,
        ):
            return None

        return Snapshot(
            exe_name=exe_name,
            pid=pid,
            hwnd=format_hwnd(hwnd),
            title=title,
            state=AppState.MINIMIZED if minimized else AppState.OPEN,
        )

    def _foreground_snapshot(
        self, exe_cache: dict[int, str], excluded: set[str]
    ) -> Optional[Snapshot]:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        pid = self._window_pid(hwnd)
        if pid is None:
            logger.debug("GetWindowThreadProcessId failed for foreground window.")
            return None

        exe_name = self._exe_name(pid, exe_cache)
        title = self._window_title(hwnd)
        if not should_track_window(
            exe_name,
            title,
            minimized=False,
            owned=bool(self._user32.GetWindow(hwnd, GW_OWNER)),
            cloaked=self._is_cloaked(hwnd),
            size=self._window_size(hwnd),
            excluded=excluded,
        ):
            return None

        return Snapshot(
            exe_name=exe_name,
            pid=pid,
            hwnd=format_hwnd(hwnd),
            title=title,
            state=AppState.ACTIVE,
        )

    def _window_pid(self, hwnd: int) -> Optional[int]:
        pid = wintypes.DWORD()
        thread_id = self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        if not thread_id or not pid.value:
            return None
        return int(pid.value)

    def _window_title(self, hwnd: int) -> str:
        length = self._user32.GetWindowTextLengthW(hwnd)
        if length <= 0:
            return ""
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        return normalize_window_title(buffer.value)

    def _is_cloaked(self, hwnd: int) -> bool:
        cloaked = wintypes.DWORD()
        result = self._dwmapi.DwmGetWindowAttribute(
            wintypes.HWND(hwnd),
            DWMWA_CLOAKED,
            ctypes.byref(cloaked),
            ctypes.sizeof(cloaked),
        )
        return result == 0 and cloaked.value != 0

    def _window_size(self, hwnd: int) -> Optional[tuple[int, int]]:
        rect = wintypes.RECT()
        if not self._user32.GetWindowRect(hwnd, ctypes.byref(rect)):
            return None
        return rect.right - rect.left, rect.bottom - rect.top

    @staticmethod
    def _exe_name(pid: int, cache: dict[int, str]) -> str:
        cached = cache.get(pid)
        if cached is not None:
            return cached
        try:
            name = normalize_exe_name(psutil.Process(pid).name())
        except (psutil.Error, ProcessLookupError):
            name = normalize_exe_name(None)
        cache[pid] = name
        return name


class WinEventHookPump:
    """Runs a Win32 message loop that turns window events into signals.

    The loop lives on its own thread because out-of-context WinEvent hooks
    are delivered to the thread that registered them. :meth:`stop` posts
    ``WM_QUIT`` to that thread and waits at most ``join_timeout`` seconds.
    """

    HOOKED_EVENTS = (
        EVENT_SYSTEM_FOREGROUND,
        EVENT_SYSTEM_MINIMIZESTART,
        EVENT_SYSTEM_MINIMIZEEND,
    )

    def __init__(
        self,
        on_event: Callable[[CollectReason], None],
        join_timeout: float = 3.0,
    ) -> None:
        self._on_event = on_event
        self._join_timeout = join_timeout
        self._started = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._thread_id = 0
        self._hook_handles: list[int] = []
        self._start_error: Optional[BaseException] = None
        self._callback: object = None

    def start(self) -> None:
        thread = threading.Thread(target=self._thread_main, name="WinEventHookPump", daemon=True)
        self._thread = thread
        thread.start()
        self._started.wait()
        if self._start_error is not None:
            raise HookStartError("Failed to start WinEvent hooks.") from self._start_error
        logger.info("WinEvent hooks registered.")

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        if self._thread_id:
            ctypes.windll.user32.PostThreadMessageW(  # type: ignore[attr-defined]
                self._thread_id, WM_QUIT, 0, 0
            )
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning("WinEvent hook thread did not stop within %.1fs.", self._join_timeout)
        self._thread = None

    def handle_event(self, event_type: int, hwnd: int, id_object: int, id_child: int) -> None:
        if not hwnd or id_object != OBJID_WINDOW or id_child != 0:
            return
        self._on_event(CollectReason.WIN_EVENT)

    def _thread_main(self) -> None:
        user32 = None
        try:
            user32 = ctypes.windll.user32  # type: ignore[attr-defined]
            kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
            self._thread_id = kernel32.GetCurrentThreadId()
            msg = wintypes.MSG()
            # Creates the thread's message queue before hooks can post to it.
            user32.PeekMessageW(ctypes.byref(msg), None, 0, 0, PM_NOREMOVE)

            proc_type = ctypes.WINFUNCTYPE(  # type: ignore[attr-defined]
                None,
                wintypes.HANDLE,
                wintypes.DWORD,
                wintypes.HWND,
                wintypes.LONG,
                wintypes.LONG,
                wintypes.DWORD,
                wintypes.DWORD,
            )
            self._callback = proc_type(self._win_event_proc)
            user32.SetWinEventHook.restype = wintypes.HANDLE
            for event_type in self.HOOKED_EVENTS:
                handle = user32.SetWinEventHook(
                    event_type,
                    event_type,
                    None,
                    self._callback,
                    0,
                    0,
                    WINEVENT_OUTOFCONTEXT | WINEVENT_SKIPOWNPROCESS,
                )
                if not handle:
                    raise ctypes.WinError()  # type: ignore[attr-defined]
                self._hook_handles.append(handle)
        except Exception as exc:
            self._start_error = exc
            self._started.set()
            self._unhook(user32)
            return

        self._started.set()
        try:
            while user32.GetMessageW(ctypes.byref(msg), None, 0, 0) > 0:
                user32.TranslateMessage(ctypes.byref(msg))
                user32.DispatchMessageW(ctypes.byref(msg))
        except Exception:  # pragma: no cover
            logger.exception("WinEvent message loop failed.")
        finally:
            self._unhook(user32)

    def _win_event_proc(
        self,
        hook: int,
        event_type: int,
        hwnd: int,
        id_object: int,
        id_child: int,
        event_thread: int,
        event_time: int,
    ) -> None:
        self.handle_event(event_type, hwnd, id_object, id_child)

    def _unhook(self, user32: object) -> None:
        if user32 is None:
            self._hook_handles.clear()
            return
        for handle in self._hook_handles:
            user32.UnhookWinEvent(handle)  # type: ignore[attr-defined]
        self._hook_handles.clear()


def create_snapshot_source() -> SnapshotSource:
    if not is_windows():
        raise RuntimeError("Window capture is only available on Windows.")
    return WindowsSnapshotProvider()


def create_hook_factory(join_timeout: float = 3.0) -> Optional[Callable[..., WinEventHookPump]]:
    if not is_windows():
        return None

    def factory(on_event: Callable[[CollectReason], None]) -> WinEventHookPump:
        return WinEventHookPump(on_event, join_timeout=join_timeout)

    return factory
