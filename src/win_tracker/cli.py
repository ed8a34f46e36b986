"""Command-line interface for the window state tracker."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

from .config import CollectorSettings, load_settings
from .errors import InvalidWindowError
from .models import UsageQueryWindow, utc_now
from .paths import get_settings_path

app = typer.Typer(help="Event-driven application window state tracker.")

logger = logging.getLogger(__name__)


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    settings_path: Optional[Path] = typer.Option(
        None,
        "--settings",
        path_type=Path,
        help="Path to collector.settings.json (defaults to the user data directory).",
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    ctx.obj = load_settings(settings_path or get_settings_path())


def _settings(ctx: typer.Context) -> CollectorSettings:
    return ctx.obj if isinstance(ctx.obj, CollectorSettings) else CollectorSettings()


@app.command()
def collect(
    ctx: typer.Context,
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the event SQLite database.",
    ),
    rescan_seconds: Optional[float] = typer.Option(
        None,
        "--rescan-interval",
        min=1.0,
        help="Seconds between full rescans (overrides the settings file).",
    ),
) -> None:
    """Run the event-driven collector until interrupted."""
    from .collector import create_hook_factory, create_snapshot_source, is_windows
    from .tracker import StateTransitionTracker
    from .writer import SqliteEventWriter

    if not is_windows():
        typer.echo("The collector can only run on Windows.", err=True)
        raise typer.Exit(code=1)

    settings = _settings(ctx)
    if rescan_seconds is not None:
        settings.rescan_interval = timedelta(seconds=rescan_seconds)
    resolved_db = db_path or settings.resolved_db_path()
    logger.info("Logging to SQLite: %s", resolved_db)

    with SqliteEventWriter(
        resolved_db, batch_size=settings.batch_size, retries=settings.write_retries
    ) as writer:
        tracker = StateTransitionTracker(
            create_snapshot_source(),
            writer,
            settings,
            hook_factory=create_hook_factory(settings.join_timeout.total_seconds()),
        )
        tracker.run_forever()


@app.command()
def report(
    ctx: typer.Context,
    range_name: str = typer.Argument("24h", metavar="[24h|1week]", help="Report window."),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the event SQLite database.",
    ),
) -> None:
    """Print app, state and timeline usage for the last day or week."""
    from .reporting import ReportPrinter

    try:
        window = UsageQueryWindow.for_range(range_name, utc_now())
    except InvalidWindowError as exc:
        typer.echo(f"{exc}\nUsage: win-tracker report [24h|1week]", err=True)
        raise typer.Exit(code=2)

    printer = ReportPrinter(db_path or _settings(ctx).resolved_db_path(), echo=typer.echo)
    printer.print_report(window)


@app.command()
def seed(
    ctx: typer.Context,
    range_name: str = typer.Argument("24h", metavar="[24h|1week]", help="Range to fill."),
    profile: str = typer.Option(
        "hourly", "--profile", help="Data shape: hourly, mixed or minute."
    ),
    replace: bool = typer.Option(
        False, "--replace", help="Delete previously seeded rows in the range first."
    ),
    replace_all: bool = typer.Option(
        False, "--replace-all", help="Delete every row in the range first."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the event SQLite database."
    ),
) -> None:
    """Fill the database with deterministic demo intervals."""
    from .seeding import SeedProfile, seed_database

    try:
        seed_profile = SeedProfile(profile.strip().lower())
    except ValueError:
        typer.echo(f"Unknown profile {profile!r}; expected hourly, mixed or minute.", err=True)
        raise typer.Exit(code=2)
    key = range_name.strip().lower()
    if key not in ("24h", "1week"):
        typer.echo("Usage: win-tracker seed [24h|1week] [--profile ...]", err=True)
        raise typer.Exit(code=2)

    resolved_db = db_path or _settings(ctx).resolved_db_path()
    rows = seed_database(
        resolved_db,
        range_name=key,
        profile=seed_profile,
        replace=replace,
        replace_all=replace_all,
    )
    typer.echo(
        f"Seed completed: rows={rows}, range={key}, profile={seed_profile.value}, "
        f"replace={replace}, replace_all={replace_all}, db={resolved_db}"
    )


@app.command()
def web(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the event SQLite database."
    ),
    collect_events: bool = typer.Option(
        True,
        "--collect/--no-collect",
        help="Run the collector in the background while serving.",
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the report endpoint in your default browser.",
    ),
) -> None:
    """Serve the JSON report API, optionally with the background collector."""
    from .server_runner import run_dashboard

    run_dashboard(
        host=host,
        port=port,
        db_path=db_path,
        settings=_settings(ctx),
        collect=collect_events,
        open_browser=open_browser,
    )
