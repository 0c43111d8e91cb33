from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from custom_benchmarks.config import Settings, get_settings
from custom_benchmarks.db.query_timer import QueryTimer


def get_engine(settings: Settings | None = None, query_timer: QueryTimer | None = None) -> Engine | None:
    settings = settings or get_settings()
    if not settings.database_url:
        return None

    engine = create_engine(settings.database_url, pool_pre_ping=True)
    if query_timer is not None:
        query_timer.attach(engine)
    return engine
