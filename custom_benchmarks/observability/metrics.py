from __future__ import annotations

import math
from dataclasses import astuple, dataclass
from threading import Lock


@dataclass(frozen=True)
class CacheStats:
    latency: float = 0.0
    gets: int = 0
    get_bytes: int = 0
    sets: int = 0
    set_bytes: int = 0
    deletes: int = 0
    hits: int = 0
    misses: int = 0
    errors: int = 0

    def as_tuple(self) -> tuple[float, int, int, int, int, int, int, int]:
        """The eight fields reported on the benchmark line, in log order."""
        return astuple(self)[:8]


def percent_of(part: float, runtime: float) -> int:
    """Whole-percent share of the request, 0 when it cannot be computed."""

    if runtime <= 0:
        return 0
    share = part * 100 / runtime
    return int(share) if math.isfinite(share) else 0


def format_cache_fragment(stats: CacheStats, runtime: float, label: str = "memcache") -> str:
    pct = percent_of(stats.latency, runtime)
    return " | %s: %.5f,%d,%d,%d,%d,%d,%d,%d (%d%%)" % (label, *stats.as_tuple(), pct)


class CacheStatsAccumulator:
    """Thread-safe, process-local cache counters.

    Shared by every request in the process. ``summary()`` is meant to be
    registered as a benchmark callback: it reads and zeroes the counters in
    one critical section, so each line reports what happened since the
    previous line (from any worker).
    """

    def __init__(self, label: str = "memcache") -> None:
        self.label = label
        self._lock = Lock()
        self._zero()

    def _zero(self) -> None:
        self._latency = 0.0
        self._gets = 0
        self._get_bytes = 0
        self._sets = 0
        self._set_bytes = 0
        self._deletes = 0
        self._hits = 0
        self._misses = 0
        self._errors = 0

    def _current(self) -> CacheStats:
        return CacheStats(
            latency=self._latency,
            gets=self._gets,
            get_bytes=self._get_bytes,
            sets=self._sets,
            set_bytes=self._set_bytes,
            deletes=self._deletes,
            hits=self._hits,
            misses=self._misses,
            errors=self._errors,
        )

    def record_get(self, hit: bool, size: int | None, elapsed: float) -> None:
        with self._lock:
            self._gets += 1
            if hit:
                self._hits += 1
            else:
                self._misses += 1
            self._latency += float(elapsed)
            if size is not None:
                self._get_bytes += int(size)

    def record_set(self, size: int | None, elapsed: float) -> None:
        with self._lock:
            self._sets += 1
            self._latency += float(elapsed)
            if size is not None:
                self._set_bytes += int(size)

    def record_delete(self, elapsed: float) -> None:
        with self._lock:
            self._deletes += 1
            self._latency += float(elapsed)

    def record_error(self, elapsed: float) -> None:
        # Failed calls only contribute latency; they are neither hits nor misses.
        with self._lock:
            self._errors += 1
            self._latency += float(elapsed)

    def snapshot(self) -> CacheStats:
        with self._lock:
            return self._current()

    def snapshot_and_reset(self) -> CacheStats:
        with self._lock:
            stats = self._current()
            self._zero()
        return stats

    def reset(self) -> None:
        with self._lock:
            self._zero()

    def summary(self, runtime: float) -> str:
        return format_cache_fragment(self.snapshot_and_reset(), runtime, self.label)
