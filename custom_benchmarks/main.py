from __future__ import annotations

from typing import Any, Callable

import structlog
from fastapi import FastAPI
from sqlalchemy.engine import Engine

from custom_benchmarks.cache.client import CacheClient, InstrumentedCacheClient
from custom_benchmarks.config import Settings, get_settings
from custom_benchmarks.db.query_timer import QueryTimer
from custom_benchmarks.db.session import get_engine
from custom_benchmarks.observability.logging import configure_logging
from custom_benchmarks.observability.metrics import CacheStatsAccumulator
from custom_benchmarks.observability.middleware import CustomBenchmarkMiddleware
from custom_benchmarks.observability.registry import APPLICATION, BenchmarkRegistry
from custom_benchmarks.observability.timers import pid_benchmark


def create_app(
    settings: Settings | None = None,
    *,
    cache_client: CacheClient | None = None,
    engine: Engine | None = None,
    registry: BenchmarkRegistry | None = None,
    sink: Any | None = None,
    notify: Callable[[BaseException], None] | None = None,
    **middleware_options: Any,
) -> FastAPI:
    """Build an app whose requests each end with one benchmark line.

    A caller-supplied ``registry`` is copied, not modified; its callbacks run
    after the built-in PID and cache fragments. Extra keyword arguments go
    to ``CustomBenchmarkMiddleware`` (clocks, handler resolution).
    """

    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(title="Custom Benchmarks", version="0.1.0")
    app_registry = BenchmarkRegistry()
    app_registry.register(APPLICATION, pid_benchmark)

    stats = CacheStatsAccumulator(label=settings.cache_label)
    cache = None
    if cache_client is not None:
        cache = InstrumentedCacheClient(
            cache_client,
            stats,
            record_size=settings.cache_record_size,
            logger=structlog.get_logger("cache") if settings.cache_log_operations else None,
            notify=notify,
            dev_mode=settings.dev_mode,
        )
        app_registry.register(APPLICATION, stats.summary)
    if registry is not None:
        app_registry.include(registry)

    query_timer = QueryTimer()
    if engine is not None:
        query_timer.attach(engine)
    else:
        engine = get_engine(settings, query_timer)

    if sink is None and settings.benchmark_enabled:
        sink = structlog.get_logger(settings.benchmark_logger)

    app.state.settings = settings
    app.state.registry = app_registry
    app.state.cache_stats = stats
    app.state.cache = cache
    app.state.query_timer = query_timer
    app.state.engine = engine

    app.add_middleware(
        CustomBenchmarkMiddleware,
        registry=app_registry,
        logger=sink if settings.benchmark_enabled else None,
        query_timer=query_timer,
        notify=notify,
        **middleware_options,
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
