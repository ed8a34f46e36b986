"""Tests for the FastAPI report application and the background collector runner."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from win_tracker.config import CollectorSettings
from win_tracker.models import AppState, PersistedEvent, StateInterval
from win_tracker.webapp import MAX_TIMELINE_BUCKETS, CollectorRunner, create_app
from win_tracker.writer import SqliteEventWriter

T1000 = datetime(2026, 2, 19, 10, 0, tzinfo=timezone.utc)


def _seed(db_path, *intervals):
    with SqliteEventWriter(db_path) as writer:
        for exe, state, start, end in intervals:
            writer.write(
                PersistedEvent(
                    interval=StateInterval(
                        exe_name=exe,
                        pid=1,
                        hwnd="0x1",
                        title=exe,
                        state=state,
                        start_utc=start,
                        end_utc=end,
                    ),
                    source="test",
                )
            )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "collector.db"


@pytest.fixture
def client(db_path):
    app = create_app(db_path=db_path, settings=CollectorSettings(), collect=False)
    with TestClient(app) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

class TestStatus:
    def test_reports_database_and_collector_state(self, client, db_path):
        payload = client.get("/api/status").json()

        assert payload["collector_running"] is False
        assert payload["database_path"] == str(db_path)
        assert payload["database_exists"] is False
        assert payload["rescan_seconds"] == 300
        assert "dwm.exe" in payload["excluded_exe_names"]


class TestUsage:
    def test_returns_clipped_totals_and_timeline(self, client, db_path):
        _seed(
            db_path,
            ("devenv.exe", AppState.ACTIVE, T1000, T1000 + timedelta(hours=1)),
            ("devenv.exe", AppState.OPEN, T1000 + timedelta(hours=1), T1000 + timedelta(hours=2)),
        )

        response = client.get(
            "/api/usage",
            params={
                "start": "2026-02-19T10:00:00Z",
                "end": "2026-02-19T11:30:00Z",
                "bucket_minutes": 60,
            },
        )

        assert response.status_code == 200
        payload = response.json()
        assert payload["status"] == "ok"
        assert payload["bucket_seconds"] == 3600
        assert payload["bucket_count"] == 2
        assert [(row["state"], row["seconds"]) for row in payload["states"]] == [
            ("Active", 3600),
            ("Open", 1800),
        ]
        assert [row["seconds"] for row in payload["timeline"]] == [3600, 3600]
        assert payload["summaries"][0]["total_seconds"] == 5400

    def test_totals_only_without_bucket(self, client, db_path):
        _seed(db_path, ("a.exe", AppState.OPEN, T1000, T1000 + timedelta(minutes=10)))

        payload = client.get(
            "/api/usage",
            params={"start": "2026-02-19T10:00:00Z", "end": "2026-02-19T11:00:00Z"},
        ).json()

        assert payload["timeline"] == []
        assert payload["bucket_seconds"] is None
        assert payload["states"][0]["seconds"] == 600

    def test_missing_database_is_no_data(self, client):
        payload = client.get(
            "/api/usage",
            params={"start": "2026-02-19T10:00:00Z", "end": "2026-02-19T11:00:00Z"},
        ).json()

        assert payload["status"] == "no_data"
        assert payload["summaries"] == []

    @pytest.mark.parametrize(
        "params",
        [
            {"start": "2026-02-19T11:00:00Z", "end": "2026-02-19T10:00:00Z"},
            {"start": "2026-02-19T10:00:00Z", "end": "2026-02-19T10:00:00Z"},
            {"start": "2026-02-19T10:00:00Z", "end": "2026-02-19T11:00:00Z", "bucket_minutes": 0},
        ],
    )
    def test_invalid_windows_are_rejected(self, client, params):
        response = client.get("/api/usage", params=params)
        assert response.status_code == 400

    @pytest.mark.parametrize("bucket_minutes", ["nan", "inf", "-inf", "1e300"])
    def test_non_finite_bucket_sizes_are_rejected(self, client, bucket_minutes):
        response = client.get(
            "/api/usage",
            params={
                "start": "2026-02-19T10:00:00Z",
                "end": "2026-02-19T11:00:00Z",
                "bucket_minutes": bucket_minutes,
            },
        )
        assert response.status_code == 400

    def test_bucket_count_is_capped(self, client, db_path):
        _seed(db_path)
        response = client.get(
            "/api/usage",
            params={
                "start": "2026-02-12T10:00:00Z",
                "end": "2026-02-19T10:00:00Z",
                "bucket_minutes": 0.0001,
            },
        )
        assert response.status_code == 400
        assert str(MAX_TIMELINE_BUCKETS) in response.json()["detail"]

    def test_one_minute_buckets_over_a_week_are_allowed(self, client, db_path):
        _seed(db_path)
        response = client.get(
            "/api/usage",
            params={
                "start": "2026-02-12T10:00:00Z",
                "end": "2026-02-19T10:00:00Z",
                "bucket_minutes": 1,
            },
        )
        assert response.status_code == 200
        assert response.json()["bucket_count"] == 7 * 24 * 60

    def test_missing_parameters_fail_validation(self, client):
        assert client.get("/api/usage").status_code == 422


class TestReport:
    @pytest.mark.parametrize("range_name, buckets", [("24h", 24), ("1week", 7)])
    def test_named_ranges(self, client, db_path, range_name, buckets):
        _seed(db_path)
        payload = client.get("/api/report", params={"range": range_name}).json()

        assert payload["status"] == "ok"
        assert payload["bucket_count"] == buckets

    def test_unknown_range_is_rejected(self, client):
        response = client.get("/api/report", params={"range": "month"})
        assert response.status_code == 400
        assert "month" in response.json()["detail"]


# ---------------------------------------------------------------------------
# CollectorRunner
# ---------------------------------------------------------------------------

class TestCollectorRunner:
    def test_does_not_start_off_windows(self, db_path):
        runner = CollectorRunner(db_path, CollectorSettings())
        with patch("win_tracker.webapp.is_windows", return_value=False):
            runner.start()
        assert runner.is_running() is False

    def test_start_and_stop_background_thread(self, db_path):
        runner = CollectorRunner(db_path, CollectorSettings())
        with patch("win_tracker.webapp.is_windows", return_value=True), patch.object(
            CollectorRunner, "_run_collector", lambda self, stop_event: stop_event.wait(10)
        ):
            runner.start()
            assert runner.is_running() is True
            runner.start()  # second start is a no-op
            runner.stop()
        assert runner.is_running() is False

    def test_collector_failures_are_logged(self, db_path, caplog):
        runner = CollectorRunner(db_path, CollectorSettings())
        with patch(
            "win_tracker.webapp.create_snapshot_source",
            side_effect=RuntimeError("no desktop"),
        ):
            runner._run_collector(threading.Event())
        assert "Collector thread failed." in caplog.text

    def test_app_startup_launches_runner_when_collecting(self, db_path):
        app = create_app(db_path=db_path, collect=True)
        with patch.object(CollectorRunner, "start") as start, patch.object(
            CollectorRunner, "stop"
        ) as stop:
            with TestClient(app):
                pass
        start.assert_called_once()
        stop.assert_called_once()
