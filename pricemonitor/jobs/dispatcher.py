"""Fixed-rate dispatcher feeding configured stations to a bounded worker pool."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence, Tuple

from pricemonitor.models import Sample
from pricemonitor.vendors.stations import ScrapeError, Station

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 5


class Dispatcher:
    """Runs every station through `pool_size` worker threads once per tick.

    Ticks are fixed-rate: the next tick is due `interval` seconds after the
    previous one started. A tick that overruns is followed immediately by the
    next one; ticks never overlap.
    """

    def __init__(
        self,
        stations: Sequence[Station],
        emit: Callable[[Sample], None],
        interval: float,
        pool_size: int = DEFAULT_POOL_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.stations: List[Station] = list(stations)
        self.interval = interval
        self.pool_size = pool_size
        self.ticks = 0
        self._emit = emit
        self._clock = clock
        self._stop = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="scrape-worker")

    def stop(self) -> None:
        """Stop after the current tick and interrupt the inter-tick sleep."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self, max_ticks: Optional[int] = None) -> None:
        """Dispatch ticks until stopped (or `max_ticks` ticks have run)."""
        logger.info(
            "Dispatching %d stations every %.1fs with %d workers",
            len(self.stations),
            self.interval,
            self.pool_size,
        )
        try:
            while not self._stop.is_set():
                tick_start = self._clock()
                self.run_tick()
                if max_ticks is not None and self.ticks >= max_ticks:
                    break
                delay = tick_start + self.interval - self._clock()
                if delay > 0:
                    self._stop.wait(delay)
                elif delay < 0:
                    logger.warning("Tick %d overran the interval by %.1fs", self.ticks, -delay)
        finally:
            self._executor.shutdown(wait=True)

    def run_tick(self) -> Tuple[int, int]:
        """Scrape every station once; returns ``(emitted, failed)``."""
        self.ticks += 1
        if not self.stations:
            logger.debug("Tick %d: no stations configured", self.ticks)
            return 0, 0

        started = time.perf_counter()
        work: "queue.Queue[Optional[Station]]" = queue.Queue()
        futures = [self._executor.submit(self._worker, work) for _ in range(self.pool_size)]

        for station in self.stations:
            work.put(station)
        for _ in range(self.pool_size):
            work.put(None)

        wait(futures)

        emitted = failed = 0
        for future in futures:
            ok, bad = future.result()
            emitted += ok
            failed += bad

        logger.info(
            "Tick %d finished: samples=%d failures=%d elapsed=%.2fs",
            self.ticks,
            emitted,
            failed,
            time.perf_counter() - started,
        )
        return emitted, failed

    def _worker(self, work: "queue.Queue[Optional[Station]]") -> Tuple[int, int]:
        emitted = failed = 0
        while True:
            station = work.get()
            if station is None:
                return emitted, failed
            try:
                sample = station.scrape_prices()
            except ScrapeError as exc:
                failed += 1
                logger.warning("Scrape failed for %s: %s", station.identifier(), exc)
                continue
            except Exception:  # noqa: BLE001
                failed += 1
                logger.exception("Unexpected error scraping %s", station.identifier())
                continue
            self._emit(sample)
            emitted += 1
