"""HTTP status endpoint for the running monitor."""

from __future__ import annotations

import logging
import threading
from typing import Any

from flask import Flask, jsonify

from pricemonitor.jobs.collector import BatchCollector
from pricemonitor.jobs.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def create_app(collector: BatchCollector, dispatcher: Dispatcher) -> Flask:
    app = Flask(__name__)

    @app.get("/")
    def root() -> Any:
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        """Report dispatcher progress and the collector's flush counters."""
        payload = {
            "status": "ok",
            "stations": len(dispatcher.stations),
            "ticks": dispatcher.ticks,
            **collector.stats(),
        }
        return jsonify(payload), 200

    return app


def start_status_server(app: Flask, port: int) -> threading.Thread:
    """Serve `app` from a daemon thread so it never holds the process open."""
    logger.info("[BOOT] Status endpoint on 0.0.0.0:%d", port)
    thread = threading.Thread(
        target=app.run,
        kwargs={"host": "0.0.0.0", "port": port, "use_reloader": False},
        name="status-server",
        daemon=True,
    )
    thread.start()
    return thread
