"""Tests for the typer command-line interface."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from win_tracker.cli import app
from win_tracker.seeding import SEED_SOURCE
from win_tracker import db

runner = CliRunner()


@pytest.fixture
def settings_path(tmp_path):
    path = tmp_path / "collector.settings.json"
    path.write_text(json.dumps({"SqliteFilePath": "collector.db"}), encoding="utf-8")
    return path


def _invoke(settings_path, *args):
    return runner.invoke(app, ["--settings", str(settings_path), *args])


def test_report_with_missing_database(settings_path):
    result = _invoke(settings_path, "report", "24h")

    assert result.exit_code == 0
    assert "Database not found:" in result.output
    assert str(settings_path.parent / "collector.db") in result.output


def test_report_rejects_unknown_range(settings_path):
    result = _invoke(settings_path, "report", "month")
    assert result.exit_code == 2


def test_seed_then_report(settings_path, tmp_path):
    seeded = _invoke(settings_path, "seed", "24h", "--profile", "mixed")
    assert seeded.exit_code == 0, seeded.output
    assert "Seed completed:" in seeded.output

    with db.readonly_connection(tmp_path / "collector.db") as conn:
        sources = {row["source"] for row in conn.execute("SELECT source FROM app_events")}
    assert sources == {SEED_SOURCE}

    report = _invoke(settings_path, "report", "24h")
    assert report.exit_code == 0
    assert "[App Summary]" in report.output


def test_seed_explicit_db_overrides_settings(settings_path, tmp_path):
    target = tmp_path / "other" / "events.db"
    result = _invoke(settings_path, "seed", "1week", "--db", str(target))

    assert result.exit_code == 0, result.output
    assert target.exists()
    assert not (tmp_path / "collector.db").exists()


def test_seed_rejects_unknown_profile(settings_path):
    result = _invoke(settings_path, "seed", "24h", "--profile", "random")
    assert result.exit_code == 2


def test_seed_rejects_unknown_range(settings_path):
    result = _invoke(settings_path, "seed", "month")
    assert result.exit_code == 2


def test_collect_refuses_to_run_off_windows(settings_path):
    with patch("win_tracker.collector.is_windows", return_value=False):
        result = _invoke(settings_path, "collect")
    assert result.exit_code == 1


def test_collect_wires_tracker_with_settings(settings_path, tmp_path):
    with patch("win_tracker.collector.is_windows", return_value=True), patch(
        "win_tracker.collector.create_snapshot_source"
    ) as source, patch(
        "win_tracker.collector.create_hook_factory", return_value=None
    ), patch(
        "win_tracker.tracker.StateTransitionTracker.run_forever"
    ) as run_forever:
        result = _invoke(settings_path, "collect", "--rescan-interval", "30")

    assert result.exit_code == 0, result.output
    source.assert_called_once()
    run_forever.assert_called_once()
    assert (tmp_path / "collector.db").exists()


def test_web_passes_options_to_server(settings_path):
    with patch("win_tracker.server_runner.run_dashboard") as run_dashboard:
        result = _invoke(settings_path, "web", "--port", "9000", "--no-collect")

    assert result.exit_code == 0, result.output
    kwargs = run_dashboard.call_args.kwargs
    assert kwargs["port"] == 9000
    assert kwargs["collect"] is False
    assert kwargs["settings"].sqlite_path == settings_path.parent / "collector.db"
