"""Hand-off queue between scrape workers and the batch collector."""

from __future__ import annotations

import queue
from typing import Optional

from pricemonitor.models import Sample

_CLOSED = object()


class Funnel:
    """Many producers, exactly one consumer.

    `emit` blocks while the queue is full, which holds the emitting worker
    (and so the dispatcher's tick) back until the collector catches up.
    ``maxsize=0`` turns that off. Arrival order across producers is
    arbitrary.
    """

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)

    def emit(self, sample: Sample) -> None:
        self._queue.put(sample)

    def close(self) -> None:
        """Tell the consumer no more samples will follow."""
        self._queue.put(_CLOSED)

    def receive(self, timeout: Optional[float] = None) -> Optional[Sample]:
        """Return the next sample, or None once the funnel is closed.

        Raises `queue.Empty` when `timeout` elapses first.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            return None
        return item  # type: ignore[return-value]
