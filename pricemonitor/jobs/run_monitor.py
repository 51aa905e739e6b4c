"""Entrypoint that scrapes configured stations on a fixed interval and stores the prices."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import threading
from typing import List, Optional, Sequence

from pricemonitor.core.config import ConfigError, Settings, get_log_level, get_settings
from pricemonitor.core.db import PriceStore
from pricemonitor.jobs.collector import BatchCollector
from pricemonitor.jobs.dispatcher import Dispatcher
from pricemonitor.jobs.funnel import Funnel
from pricemonitor.jobs.status_server import create_app, start_status_server
from pricemonitor.vendors.stations import Station, build_stations

logger = logging.getLogger(__name__)


class PriceMonitorApplication:
    """Explicitly wired pipeline: dispatcher -> funnel -> collector -> store."""

    def __init__(self, settings: Settings, store: PriceStore, stations: Sequence[Station]) -> None:
        self.settings = settings
        self.store = store
        self.stations: List[Station] = list(stations)
        self.funnel = Funnel(maxsize=settings.funnel_size)
        self.collector = BatchCollector(
            store=store,
            funnel=self.funnel,
            expected_samples=len(self.stations),
            capacity=settings.flush_capacity,
            deadline=settings.flush_deadline_seconds,
            fill_ratio=settings.flush_fill_ratio,
        )
        self.dispatcher = Dispatcher(
            stations=self.stations,
            emit=self.funnel.emit,
            interval=settings.interval_seconds,
            pool_size=settings.pool_size,
        )
        self._collector_thread: Optional[threading.Thread] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceMonitorApplication":
        """Parse stations and connect to storage; any failure is a ConfigError."""
        stations = build_stations(settings.stations, timeout=settings.request_timeout)
        store = PriceStore(settings.dsn)
        store.ping()
        store.ensure_schema()
        return cls(settings, store, stations)

    def start_collector(self) -> threading.Thread:
        self._collector_thread = threading.Thread(target=self.collector.run, name="collector", daemon=True)
        self._collector_thread.start()
        return self._collector_thread

    def run(self, max_ticks: Optional[int] = None) -> None:
        self.start_collector()
        if self.settings.status_port:
            start_status_server(create_app(self.collector, self.dispatcher), self.settings.status_port)
        try:
            self.dispatcher.run(max_ticks=max_ticks)
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Close the funnel and wait for the collector to flush what it holds."""
        self.dispatcher.stop()
        self.funnel.close()
        if self._collector_thread is not None:
            self._collector_thread.join()
        self.store.close()
        logger.info("Price monitor stopped: %s", self.collector.stats())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape fuel prices on a fixed interval and store them")
    parser.add_argument("--once", action="store_true", help="Run a single tick, flush and exit")
    parser.add_argument("--pool-size", dest="pool_size", type=int, help="Number of scrape worker threads")
    parser.add_argument("--interval", dest="interval_seconds", type=float, help="Seconds between ticks")
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.pool_size is not None:
        if args.pool_size < 1:
            raise ConfigError("--pool-size must be at least 1")
        overrides["pool_size"] = args.pool_size
    if args.interval_seconds is not None:
        if args.interval_seconds <= 0:
            raise ConfigError("--interval must be positive")
        overrides["interval_seconds"] = args.interval_seconds
    return dataclasses.replace(settings, **overrides) if overrides else settings


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    # Before get_settings, whose warnings should use this format.
    logging.basicConfig(level=get_log_level(), format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        settings = apply_overrides(get_settings(), args)
        app = PriceMonitorApplication.from_settings(settings)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("Price monitor failed to start: %s", exc, exc_info=True)
        raise SystemExit(1) from exc

    try:
        app.run(max_ticks=1 if args.once else None)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
