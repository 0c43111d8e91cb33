"""Per-request benchmark log lines for ASGI apps."""

from custom_benchmarks.cache.client import CacheConnectionError, CacheError, InstrumentedCacheClient
from custom_benchmarks.db.query_timer import QueryTimer
from custom_benchmarks.observability.metrics import CacheStats, CacheStatsAccumulator
from custom_benchmarks.observability.middleware import CustomBenchmarkMiddleware, benchmark_handler
from custom_benchmarks.observability.registry import APPLICATION, BenchmarkRegistry
from custom_benchmarks.observability.timers import SectionTimer, pid_benchmark

__all__ = [
    "APPLICATION",
    "BenchmarkRegistry",
    "CacheConnectionError",
    "CacheError",
    "CacheStats",
    "CacheStatsAccumulator",
    "CustomBenchmarkMiddleware",
    "InstrumentedCacheClient",
    "QueryTimer",
    "SectionTimer",
    "benchmark_handler",
    "pid_benchmark",
]
