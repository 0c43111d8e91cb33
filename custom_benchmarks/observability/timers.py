from __future__ import annotations

import os
from contextlib import contextmanager
from threading import Lock
from time import perf_counter
from typing import Callable, Iterator, TypeVar

from custom_benchmarks.observability.metrics import percent_of


T = TypeVar("T")


def pid_benchmark(runtime: float) -> str:
    """Tag the line with the serving process, for logs shared by many workers."""

    return f" | PID: {os.getpid()}"


class SectionTimer:
    """Accumulates latency of one subsystem (search, rendering, ...) between lines.

    Register ``timer.summary`` as a benchmark callback; it reports the time
    spent since the previous line and its share of the request, then resets.
    """

    def __init__(self, label: str, clock: Callable[[], float] = perf_counter) -> None:
        self.label = label
        self._clock = clock
        self._lock = Lock()
        self._latency = 0.0

    @property
    def latency(self) -> float:
        with self._lock:
            return self._latency

    def add(self, elapsed: float) -> None:
        with self._lock:
            self._latency += float(elapsed)

    @contextmanager
    def measure(self) -> Iterator[None]:
        start = self._clock()
        try:
            yield
        finally:
            self.add(self._clock() - start)

    def time(self, fn: Callable[[], T]) -> T:
        with self.measure():
            return fn()

    def reset(self) -> float:
        with self._lock:
            latency, self._latency = self._latency, 0.0
        return latency

    def summary(self, runtime: float) -> str:
        latency = self.reset()
        pct = percent_of(latency, runtime)
        return " | %s: %.5f (%d%%)" % (self.label, latency, pct)
