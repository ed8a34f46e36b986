"""Unit tests for Win32 window capture and the WinEvent hook pump.

Win32 calls are replaced by fakes, so these tests run on any platform.
"""

from unittest.mock import MagicMock, patch

import psutil
import pytest

from win_tracker.collector import (
    WindowsSnapshotProvider,
    WinEventHookPump,
    create_hook_factory,
    create_snapshot_source,
    format_hwnd,
    should_track_window,
)
from win_tracker.errors import HookStartError, SnapshotCaptureError
from win_tracker.models import AppState, CollectReason


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _window(exe, title="Window", pid=100, minimized=False, visible=True, owned=False,
            cloaked=False, size=(800, 600)):
    return dict(exe=exe, title=title, pid=pid, minimized=minimized, visible=visible,
                owned=owned, cloaked=cloaked, size=size)


class FakeUser32:
    def __init__(self, windows, foreground=0, shell=0):
        self.windows = windows
        self.foreground = foreground
        self.shell = shell

    def GetShellWindow(self):
        return self.shell

    def GetForegroundWindow(self):
        return self.foreground

    def IsIconic(self, hwnd):
        return int(self.windows[hwnd]["minimized"])

    def IsWindowVisible(self, hwnd):
        return int(self.windows[hwnd]["visible"])

    def GetWindow(self, hwnd, _cmd):
        return 999 if self.windows[hwnd]["owned"] else 0


def _make_provider(windows, foreground=0, shell=0):
    """Build a WindowsSnapshotProvider whose Win32 helpers read from ``windows``."""
    with patch.object(WindowsSnapshotProvider, "__init__", lambda self: None):
        provider = WindowsSnapshotProvider()
    provider._user32 = FakeUser32(windows, foreground, shell)
    provider._dwmapi = MagicMock()
    provider._enumerate_windows = lambda: list(windows)
    provider._window_pid = lambda hwnd: windows[hwnd]["pid"]
    provider._window_title = lambda hwnd: windows[hwnd]["title"]
    provider._is_cloaked = lambda hwnd: windows[hwnd]["cloaked"]
    provider._window_size = lambda hwnd: windows[hwnd]["size"]
    exe_by_pid = {entry["pid"]: entry["exe"] for entry in windows.values()}
    provider._exe_name = lambda pid, cache: exe_by_pid[pid]
    return provider


# ---------------------------------------------------------------------------
# Window filtering
# ---------------------------------------------------------------------------

class TestShouldTrackWindow:
    def _check(self, **overrides):
        args = dict(
            exe_name="app.exe",
            title="Main",
            minimized=False,
            owned=False,
            cloaked=False,
            size=(800, 600),
            excluded=set(),
        )
        args.update(overrides)
        exe_name = args.pop("exe_name")
        title = args.pop("title")
        return should_track_window(exe_name, title, **args)

    def test_regular_window_is_tracked(self):
        assert self._check() is True

    def test_excluded_names_match_case_insensitively(self):
        assert self._check(exe_name="DWM.exe", excluded={"dwm.exe"}) is False

    def test_owned_windows_are_skipped(self):
        assert self._check(owned=True) is False
        assert self._check(owned=True, minimized=True) is False

    def test_untitled_visible_windows_are_skipped(self):
        assert self._check(title="  ") is False

    def test_minimized_windows_skip_title_and_geometry_checks(self):
        assert self._check(title="", minimized=True, cloaked=True, size=(1, 1)) is True

    def test_cloaked_windows_are_skipped(self):
        assert self._check(cloaked=True) is False

    @pytest.mark.parametrize("size", [(49, 600), (800, 49), (0, 0)])
    def test_tiny_windows_are_skipped(self, size):
        assert self._check(size=size) is False

    def test_unknown_size_is_accepted(self):
        assert self._check(size=None) is True


def test_format_hwnd_uses_upper_hex():
    assert format_hwnd(0x320B02) == "0x320B02"
    assert format_hwnd(255) == "0xFF"


# ---------------------------------------------------------------------------
# WindowsSnapshotProvider
# ---------------------------------------------------------------------------

class TestWindowsSnapshotProvider:
    def test_foreground_window_becomes_active(self):
        windows = {
            1: _window("code.exe", pid=10),
            2: _window("msedge.exe", pid=20),
            3: _window("slack.exe", pid=30, minimized=True, title=""),
        }
        provider = _make_provider(windows, foreground=1)

        result = provider.capture_current_states(set())

        assert result["code.exe"].state is AppState.ACTIVE
        assert result["msedge.exe"].state is AppState.OPEN
        assert result["slack.exe"].state is AppState.MINIMIZED
        assert result["code.exe"].hwnd == "0x1"

    def test_multiple_windows_collapse_to_one_snapshot_per_app(self):
        windows = {
            1: _window("msedge.exe", pid=20, title="Docs"),
            2: _window("MSEDGE.exe", pid=21, minimized=True),
        }
        provider = _make_provider(windows)

        result = provider.capture_current_states(set())

        assert list(result) == ["msedge.exe"]
        assert result["msedge.exe"].state is AppState.MINIMIZED

    def test_filters_excluded_hidden_and_shell_windows(self):
        windows = {
            1: _window("dwm.exe", pid=1),
            2: _window("hidden.exe", pid=2, visible=False),
            3: _window("explorer.exe", pid=3),
            4: _window("tool.exe", pid=4, owned=True),
            5: _window("app.exe", pid=5),
        }
        provider = _make_provider(windows, shell=3)

        result = provider.capture_current_states({"DWM.EXE"})

        assert set(result) == {"app.exe"}

    def test_excluded_foreground_window_is_not_active(self):
        windows = {1: _window("dwm.exe", pid=1)}
        provider = _make_provider(windows, foreground=1)

        assert provider.capture_current_states({"dwm.exe"}) == {}

    def test_enumeration_failure_is_a_capture_error(self):
        provider = _make_provider({})

        def fail():
            raise OSError("EnumWindows failed")

        provider._enumerate_windows = fail
        with pytest.raises(SnapshotCaptureError):
            provider.capture_current_states(set())

    def test_exe_name_lookup_is_cached_and_survives_dead_processes(self):
        cache = {}
        with patch("win_tracker.collector.psutil.Process") as process:
            process.return_value.name.return_value = "chrome"
            assert WindowsSnapshotProvider._exe_name(42, cache) == "chrome.exe"
            assert WindowsSnapshotProvider._exe_name(42, cache) == "chrome.exe"
            assert process.call_count == 1

            process.side_effect = psutil.NoSuchProcess(7)
            assert WindowsSnapshotProvider._exe_name(7, cache) == "unknown.exe"


# ---------------------------------------------------------------------------
# WinEventHookPump
# ---------------------------------------------------------------------------

class TestWinEventHookPump:
    def test_window_events_signal_the_coalescer(self):
        received = []
        pump = WinEventHookPump(received.append)

        pump.handle_event(0x0003, 0x1234, 0, 0)

        assert received == [CollectReason.WIN_EVENT]

    @pytest.mark.parametrize(
        "hwnd, id_object, id_child",
        [(0, 0, 0), (0x1234, -4, 0), (0x1234, 0, 3)],
    )
    def test_non_window_events_are_ignored(self, hwnd, id_object, id_child):
        received = []
        WinEventHookPump(received.append).handle_event(0x0003, hwnd, id_object, id_child)
        assert received == []

    def test_start_failure_raises_hook_start_error(self):
        with patch("win_tracker.collector.ctypes") as fake_ctypes:
            del fake_ctypes.windll
            pump = WinEventHookPump(lambda reason: None, join_timeout=0.5)
            with pytest.raises(HookStartError):
                pump.start()
        pump.stop()

    def test_stop_before_start_is_a_no_op(self):
        WinEventHookPump(lambda reason: None).stop()


def test_factories_require_windows():
    with patch("win_tracker.collector.is_windows", return_value=False):
        with pytest.raises(RuntimeError):
            create_snapshot_source()
        assert create_hook_factory() is None


def test_hook_factory_builds_pumps_on_windows():
    with patch("win_tracker.collector.is_windows", return_value=True):
        factory = create_hook_factory(join_timeout=1.5)
    pump = factory(lambda reason: None)
    assert isinstance(pump, WinEventHookPump)
