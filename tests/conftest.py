from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from custom_benchmarks.cache.client import InstrumentedCacheClient
from custom_benchmarks.config import get_settings
from custom_benchmarks.observability.metrics import CacheStatsAccumulator


class FakeCacheClient:
    """Dict-backed stand-in for a memcache-style client."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.fail_with: BaseException | None = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def get(self, key: str) -> Any:
        self._check()
        return self.data.get(key)

    def get_multi(self, keys: list[str]) -> dict[str, Any]:
        self._check()
        return {key: self.data[key] for key in keys if key in self.data}

    def set(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> bool:
        self._check()
        self.data[key] = value
        return True

    def add(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> bool:
        self._check()
        if key in self.data:
            return False
        self.data[key] = value
        return True

    def delete(self, key: str, expiry: int = 0) -> bool:
        self._check()
        return self.data.pop(key, None) is not None

    def flush_all(self) -> None:
        self.data.clear()


class CapturingLogger:
    def __init__(self) -> None:
        self.lines: list[str] = []
        self.events: list[dict[str, Any]] = []

    def info(self, event: str, **fields: Any) -> None:
        self.lines.append(event)
        self.events.append({"event": event, **fields})


class BrokenSink:
    def info(self, event: str, **fields: Any) -> None:
        raise OSError("disk full")


class TickingClock:
    """Returns 0, step, 2*step, ... on successive calls."""

    def __init__(self, step: float = 0.5) -> None:
        self.step = step
        self.calls = 0

    def __call__(self) -> float:
        value = self.calls * self.step
        self.calls += 1
        return value



@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "test")
    for name in ("DATABASE_URL", "BENCHMARK_ENABLED", "CACHE_RECORD_SIZE", "CACHE_LOG_OPERATIONS", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def cache_backend() -> FakeCacheClient:
    return FakeCacheClient()


@pytest.fixture
def sink() -> CapturingLogger:
    return CapturingLogger()


@pytest.fixture
def op_logger() -> CapturingLogger:
    return CapturingLogger()


@pytest.fixture
def broken_sink() -> BrokenSink:
    return BrokenSink()


@pytest.fixture
def make_clock() -> Callable[[float], TickingClock]:
    return TickingClock


@pytest.fixture
def client_for() -> Callable[[FastAPI], AsyncClient]:
    def _client_for(app: FastAPI) -> AsyncClient:
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://host")

    return _client_for


@pytest.fixture
def make_proxy(cache_backend: FakeCacheClient, make_clock) -> Callable[..., InstrumentedCacheClient]:
    def _make_proxy(**kwargs: Any) -> InstrumentedCacheClient:
        kwargs.setdefault("clock", make_clock(0.5))
        return InstrumentedCacheClient(cache_backend, CacheStatsAccumulator(), **kwargs)

    return _make_proxy
