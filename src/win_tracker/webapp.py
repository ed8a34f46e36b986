"""FastAPI application that exposes usage reports and collector status."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from .analytics import AggregationEngine, bucket_count
from .collector import create_hook_factory, create_snapshot_source, is_windows
from .config import CollectorSettings
from .errors import InvalidWindowError
from .models import UsageQueryWindow, UsageReport, utc_now
from .tracker import StateTransitionTracker
from .writer import SqliteEventWriter

logger = logging.getLogger(__name__)

# A week of one-minute buckets fits comfortably.
MAX_TIMELINE_BUCKETS = 20_000


class CollectorRunner:
    """Manage the state collector in a background thread."""

    def __init__(self, db_path: Path, settings: CollectorSettings) -> None:
        self._db_path = Path(db_path)
        self._settings = settings
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            if not is_windows():
                logger.warning("Window capture is only available on Windows; collector not started.")
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_collector,
                args=(stop_event,),
                name="StateCollector",
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Collector background thread started.")

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Collector background thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _run_collector(self, stop_event: threading.Event) -> None:
        settings = self._settings
        try:
            with SqliteEventWriter(
                self._db_path,
                batch_size=settings.batch_size,
                retries=settings.write_retries,
            ) as writer:
                tracker = StateTransitionTracker(
                    create_snapshot_source(),
                    writer,
                    settings,
                    hook_factory=create_hook_factory(settings.join_timeout.total_seconds()),
                )
                tracker.run(stop_event)
        except Exception:
            logger.exception("Collector thread failed.")


class StateUsagePayload(BaseModel):
    exe_name: str
    state: str
    seconds: float


class AppSummaryPayload(BaseModel):
    exe_name: str
    total_seconds: float
    active_seconds: float
    open_seconds: float
    minimized_seconds: float


class TimelinePayload(BaseModel):
    bucket_start_utc: datetime
    exe_name: str
    state: str
    seconds: float


class ReportPayload(BaseModel):
    status: str
    from_utc: datetime
    to_utc: datetime
    bucket_seconds: Optional[float] = None
    bucket_count: Optional[int] = None
    summaries: list[AppSummaryPayload]
    states: list[StateUsagePayload]
    timeline: list[TimelinePayload]

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Path,
    settings: Optional[CollectorSettings] = None,
    collect: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path)
    resolved_settings = settings or CollectorSettings()
    runner = CollectorRunner(resolved_db_path, resolved_settings)
    engine = AggregationEngine(resolved_db_path)

    app = FastAPI(title="WinTracker", version="0.3.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.collector_runner = runner
    app.state.engine = engine

    @app.on_event("startup")
    async def _startup() -> None:
        if collect:
            runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        runner.stop()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "collector_running": request.app.state.collector_runner.is_running(),
            "database_path": str(request.app.state.db_path),
            "database_exists": request.app.state.engine.store_exists(),
            "rescan_seconds": resolved_settings.rescan_interval.total_seconds(),
            "excluded_exe_names": list(resolved_settings.excluded_exe_names),
        }

    @app.get("/api/report", response_model=ReportPayload)
    def report(
        request: Request,
        range_name: str = Query(
            default="24h",
            alias="range",
            description="Named window: '24h' (hourly buckets) or '1week' (daily buckets).",
        ),
    ) -> ReportPayload:
        try:
            window = UsageQueryWindow.for_range(range_name, utc_now())
        except InvalidWindowError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _report_payload(request.app.state.engine.build_report(window))

    @app.get("/api/usage", response_model=ReportPayload)
    def usage(
        request: Request,
        start: datetime = Query(description="Window start (ISO 8601, inclusive)."),
        end: datetime = Query(description="Window end (ISO 8601, exclusive)."),
        bucket_minutes: Optional[float] = Query(
            default=None,
            description="Timeline bucket size in minutes; omit for totals only.",
        ),
    ) -> ReportPayload:
        try:
            window = UsageQueryWindow(
                from_utc=start,
                to_utc=end,
                bucket_size=(
                    timedelta(minutes=bucket_minutes) if bucket_minutes is not None else None
                ),
            )
        except (ValueError, OverflowError) as exc:
            # InvalidWindowError is a ValueError; timedelta rejects nan/inf itself.
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if window.bucket_size is not None and bucket_count(window) > MAX_TIMELINE_BUCKETS:
            raise HTTPException(
                status_code=400,
                detail=(
                    f"Timeline would need {bucket_count(window)} buckets; "
                    f"at most {MAX_TIMELINE_BUCKETS} are allowed."
                ),
            )
        return _report_payload(request.app.state.engine.build_report(window))

    return app


def _report_payload(report: UsageReport) -> ReportPayload:
    window = report.window
    return ReportPayload(
        status=report.status,
        from_utc=window.from_utc,
        to_utc=window.to_utc,
        bucket_seconds=(
            window.bucket_size.total_seconds() if window.bucket_size is not None else None
        ),
        bucket_count=bucket_count(window) if window.bucket_size is not None else None,
        summaries=[
            AppSummaryPayload(
                exe_name=row.exe_name,
                total_seconds=row.total_seconds,
                active_seconds=row.active_seconds,
                open_seconds=row.open_seconds,
                minimized_seconds=row.minimized_seconds,
            )
            for row in report.summaries
        ],
        states=[
            StateUsagePayload(exe_name=row.exe_name, state=row.state, seconds=row.seconds)
            for row in report.states
        ],
        timeline=[
            TimelinePayload(
                bucket_start_utc=row.bucket_start_utc,
                exe_name=row.exe_name,
                state=row.state,
                seconds=row.seconds,
            )
            for row in report.timeline
        ],
    )
