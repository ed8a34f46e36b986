"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .analytics import AggregationEngine
from .models import UsageQueryWindow, UsageReport

SUMMARY_LIMIT = 15
STATE_LIMIT = 30
TIMELINE_LIMIT = 40


class ReportPrinter:
    """Render human-readable usage reports in the console."""

    def __init__(self, db_path: Path, echo: Optional[Callable[[str], None]] = None) -> None:
        self.db_path = Path(db_path)
        self._engine = AggregationEngine(self.db_path)
        self._echo = echo or print

    def print_report(self, window: UsageQueryWindow) -> UsageReport:
        report = self._engine.build_report(window)
        if not report.has_data:
            self._echo(f"Database not found: {self.db_path}")
            return report
        for line in render_report(report):
            self._echo(line)
        return report


def render_report(report: UsageReport) -> list[str]:
    window = report.window
    lines = [
        f"Report window: {window.from_utc.isoformat()} - {window.to_utc.isoformat()}",
        "",
        "[App Summary]",
    ]
    if not report.summaries:
        lines.append("  (no activity recorded in this window)")
    for row in report.summaries[:SUMMARY_LIMIT]:
        lines.append(
            f"{row.exe_name:<28} total={format_duration(row.total_seconds):>8} "
            f"active={format_duration(row.active_seconds):>8} "
            f"open={format_duration(row.open_seconds):>8} "
            f"min={format_duration(row.minimized_seconds):>8}"
        )

    lines.extend(["", "[App x State]"])
    for row in report.states[:STATE_LIMIT]:
        lines.append(f"{row.exe_name:<28} {row.state:<10} {format_duration(row.seconds):>8}")

    lines.extend(["", "[Timeline sample]"])
    for row in report.timeline[:TIMELINE_LIMIT]:
        lines.append(
            f"{row.bucket_start_utc.strftime('%Y-%m-%d %H:%M')}Z  "
            f"{row.exe_name:<24} {row.state:<10} {format_duration(row.seconds):>8}"
        )
    return lines


def format_duration(seconds: float) -> str:
    total_seconds = max(0, int(round(seconds)))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
