"""Launch the local report API, optionally with the collector running inside it."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .config import CollectorSettings
from .webapp import create_app

logger = logging.getLogger(__name__)

REPORT_PATH = "/api/report"

# Addresses a server can bind to but a browser cannot connect to.
_WILDCARD_HOSTS = {"0.0.0.0": "127.0.0.1", "::": "::1", "": "127.0.0.1"}


def report_url(host: str, port: int) -> str:
    """URL of the default 24-hour report for a server bound to ``host:port``."""
    host = _WILDCARD_HOSTS.get(host, host)
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}{REPORT_PATH}"


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    settings: Optional[CollectorSettings] = None,
    collect: bool = True,
    open_browser: bool = False,
    log_level: str = "info",
) -> None:
    """Serve the report API until interrupted."""
    resolved_settings = settings or CollectorSettings()
    resolved_db_path = Path(db_path) if db_path else resolved_settings.resolved_db_path()
    app = create_app(db_path=resolved_db_path, settings=resolved_settings, collect=collect)

    url = report_url(host, port)
    logger.info(
        "Serving %s from %s (collector %s).",
        url,
        resolved_db_path,
        "enabled" if collect else "disabled",
    )
    if open_browser:
        threading.Thread(
            target=_launch_browser_after_delay, args=(url,), daemon=True
        ).start()

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _launch_browser_after_delay(url: str, delay: float = 1.0) -> None:
    time.sleep(delay)
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.exception("Failed to launch browser for %s", url)
