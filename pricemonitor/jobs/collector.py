"""Batch collector: drains the funnel and writes sample rows in batches.

A batching cycle starts with the first sample received after a flush. Each
sample's station is resolved, its prices are flattened into rows and
buffered, and the buffer is flushed when the first of these holds:

1. count: every configured station has reported this cycle;
2. capacity: the buffer reached `fill_ratio` of its capacity;
3. deadline: more than `deadline` seconds passed since the cycle started.

The deadline is what keeps the collector live when a station fails
permanently and the count trigger can never fire.

Buffer and cycle state belong to the collector thread alone.
"""

from __future__ import annotations

import logging
import queue
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pricemonitor.core.db import StorageError
from pricemonitor.etl.transform import flatten_sample
from pricemonitor.jobs.funnel import Funnel
from pricemonitor.models import Row, Sample

logger = logging.getLogger(__name__)

TRIGGER_COUNT = "count"
TRIGGER_CAPACITY = "capacity"
TRIGGER_DEADLINE = "deadline"
TRIGGER_SHUTDOWN = "shutdown"

DEFAULT_FILL_RATIO = 0.8

# Added to deadline waits so the wake-up lands strictly past the deadline.
_DEADLINE_SLACK = 0.01


@dataclass(frozen=True)
class FlushReport:
    reason: str
    samples: int
    rows: int
    ok: bool
    flushed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["flushed_at"] = self.flushed_at.isoformat()
        return data


class BatchCollector:
    """Single consumer of the funnel; see the module docstring for the policy."""

    def __init__(
        self,
        store: Any,
        funnel: Funnel,
        expected_samples: int,
        capacity: int,
        deadline: float,
        fill_ratio: float = DEFAULT_FILL_RATIO,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if deadline <= 0:
            raise ValueError("deadline must be positive")
        if not 0 < fill_ratio <= 1:
            raise ValueError("fill_ratio must be within (0, 1]")

        self.store = store
        self.funnel = funnel
        self.expected_samples = expected_samples
        self.capacity = capacity
        self.deadline = deadline
        self.fill_ratio = fill_ratio
        self._clock = clock

        self.buffer: List[Row] = []
        self.processed_samples = 0
        self.first_sample_time: Optional[float] = None

        self.flushes = 0
        self.rows_written = 0
        self.rows_dropped = 0
        self.last_flush: Optional[FlushReport] = None

    @property
    def capacity_threshold(self) -> float:
        return self.fill_ratio * self.capacity

    @property
    def accumulating(self) -> bool:
        return self.first_sample_time is not None

    def run(self) -> None:
        """Consume samples until the funnel is closed."""
        logger.info(
            "Collector started: expected_samples=%d capacity=%d deadline=%.1fs",
            self.expected_samples,
            self.capacity,
            self.deadline,
        )
        while True:
            try:
                sample = self.funnel.receive(timeout=self._time_to_deadline())
            except queue.Empty:
                try:
                    self.check_deadline()
                except Exception:  # noqa: BLE001
                    logger.exception("Unexpected error during deadline flush")
                continue

            if sample is None:
                if self.accumulating:
                    try:
                        self.flush(TRIGGER_SHUTDOWN)
                    except Exception:  # noqa: BLE001
                        logger.exception("Unexpected error during shutdown flush")
                logger.info("Funnel closed; collector stopping")
                return

            try:
                self.handle(sample)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected error while collecting sample %s", sample.id)

    def handle(self, sample: Sample) -> Optional[str]:
        """Buffer one sample and flush if a trigger fires; returns the trigger."""
        if self.first_sample_time is None:
            self.first_sample_time = self._clock()
            logger.debug("Batch cycle started")

        try:
            identity = sample.identity
            station_id = self.store.upsert_station(identity.address, identity.geo_location, identity.brand)
        except StorageError as exc:
            logger.error("Could not resolve station for sample %s (%s): %s", sample.id, sample.brand, exc)
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error resolving station for sample %s", sample.id)
        else:
            rows = flatten_sample(sample, station_id)
            self.buffer.extend(rows)
            logger.debug("Buffered %d rows from sample %s", len(rows), sample.id)

        self.processed_samples += 1

        reason = self.pending_trigger()
        if reason is not None:
            self.flush(reason)
        return reason

    def pending_trigger(self) -> Optional[str]:
        """Return the first trigger that holds right now, if any."""
        if self.first_sample_time is None:
            return None
        if self.expected_samples > 0 and self.processed_samples >= self.expected_samples:
            return TRIGGER_COUNT
        if len(self.buffer) >= self.capacity_threshold:
            return TRIGGER_CAPACITY
        if self._clock() - self.first_sample_time > self.deadline:
            return TRIGGER_DEADLINE
        return None

    def check_deadline(self) -> Optional[FlushReport]:
        """Flush if the current cycle has outlived its deadline."""
        if self.first_sample_time is None:
            return None
        if self._clock() - self.first_sample_time > self.deadline:
            return self.flush(TRIGGER_DEADLINE)
        return None

    def flush(self, reason: str) -> FlushReport:
        """Write the buffer, then reset the cycle whatever the outcome."""
        rows, samples = self.buffer, self.processed_samples
        self.buffer = []
        self.processed_samples = 0
        self.first_sample_time = None

        ok = True
        if rows:
            try:
                self.store.create_samples(rows)
            except StorageError as exc:
                ok = False
                logger.error("Dropping batch of %d rows (%s flush): %s", len(rows), reason, exc)
            except Exception:  # noqa: BLE001
                ok = False
                logger.exception("Dropping batch of %d rows (%s flush)", len(rows), reason)

        if ok:
            self.rows_written += len(rows)
            logger.info("Flushed %d rows from %d samples (trigger: %s)", len(rows), samples, reason)
        else:
            self.rows_dropped += len(rows)

        self.flushes += 1
        report = FlushReport(
            reason=reason,
            samples=samples,
            rows=len(rows),
            ok=ok,
            flushed_at=datetime.now(timezone.utc),
        )
        self.last_flush = report
        return report

    def stats(self) -> Dict[str, Any]:
        last_flush = self.last_flush
        return {
            "flushes": self.flushes,
            "rows_written": self.rows_written,
            "rows_dropped": self.rows_dropped,
            "last_flush": last_flush.to_dict() if last_flush else None,
        }

    def _time_to_deadline(self) -> Optional[float]:
        if self.first_sample_time is None:
            return None
        remaining = self.first_sample_time + self.deadline - self._clock()
        return max(remaining, 0.0) + _DEADLINE_SLACK
