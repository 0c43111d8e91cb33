from __future__ import annotations

import re
import time
from time import perf_counter
from typing import Any, Callable, Iterable, Protocol

import structlog

from custom_benchmarks.cache.sizing import measure_size
from custom_benchmarks.observability.metrics import CacheStatsAccumulator


log = structlog.get_logger("cache")

Notifier = Callable[[BaseException], None]

_NO_CONNECTION = "No connection to server"
_LOST_CONNECTION = re.compile(r"^lost connection", re.IGNORECASE)


class CacheError(Exception):
    """Failure reported by the backing cache."""


class CacheConnectionError(CacheError, ConnectionError):
    """The cache server is unreachable or dropped the connection."""


DEFAULT_CONTAINED_ERRORS: tuple[type[BaseException], ...] = (CacheError, ConnectionError, TimeoutError)


class CacheClient(Protocol):
    def get(self, key: str) -> Any: ...

    def get_multi(self, keys: list[str]) -> dict[str, Any]: ...

    def set(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> Any: ...

    def add(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> Any: ...

    def delete(self, key: str, expiry: int = 0) -> Any: ...


def is_benign_error(err: BaseException) -> bool:
    message = str(err)
    return message == _NO_CONNECTION or bool(_LOST_CONNECTION.match(message))


def _batch_id(started_at: float) -> str:
    return f"{started_at:.6f}"[-4:]


class InstrumentedCacheClient:
    """Wraps a cache client, timing and counting every get/set/add/delete.

    Results are returned unchanged. Errors from the backing cache are logged,
    reported through ``notify`` (unless benign or in development mode) and
    turned into a neutral result, so an unreachable cache degrades to misses
    instead of failing the request.
    """

    def __init__(
        self,
        client: CacheClient,
        stats: CacheStatsAccumulator,
        *,
        record_size: bool = False,
        logger: Any | None = None,
        notify: Notifier | None = None,
        dev_mode: bool = False,
        contained_errors: tuple[type[BaseException], ...] = DEFAULT_CONTAINED_ERRORS,
        clock: Callable[[], float] = perf_counter,
        wallclock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.stats = stats
        self.record_size = record_size
        self.logger = logger
        self.notify = notify
        self.dev_mode = dev_mode
        self._contained_errors = contained_errors
        self._clock = clock
        self._wallclock = wallclock

    def __getattr__(self, name: str) -> Any:
        # Only reached for names the proxy does not define itself.
        client = self.__dict__.get("client")
        if client is None:
            raise AttributeError(name)
        return getattr(client, name)

    def __getitem__(self, key: str) -> Any:
        return self.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def _report(self, operation: str, key: Any, err: BaseException) -> None:
        log.warning("cache_error", operation=operation, key=key, error=str(err), exc_info=err)
        if self.notify is None or self.dev_mode or is_benign_error(err):
            return
        try:
            self.notify(err)
        except Exception:
            log.exception("cache_error_notify_failed", operation=operation, key=key)

    def _contain(self, operation: str, key: Any, fn: Callable[[], Any]) -> tuple[bool, Any]:
        try:
            return True, fn()
        except self._contained_errors as err:
            self._report(operation, key, err)
            return False, None

    def _size(self, value: Any) -> int | None:
        if not self.record_size:
            return None
        return measure_size(value) or 0

    def get(self, key: str) -> Any:
        start = self._clock()
        ok, value = self._contain("get", key, lambda: self.client.get(key))
        elapsed = self._clock() - start
        if not ok:
            self.stats.record_error(elapsed)
            return None

        size = self._size(value)
        self.stats.record_get(value is not None, size, elapsed)
        if self.logger is not None:
            self.logger.info("cache_get", key=key, size=size or 0, elapsed=elapsed)
        return value

    def get_multi(self, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        started_at = self._wallclock()
        start = self._clock()
        ok, values = self._contain("get_multi", keys, lambda: self.client.get_multi(keys))
        elapsed = self._clock() - start
        if not ok:
            self.stats.record_error(elapsed)
            return {}

        values = values or {}
        total: int | None = None
        if self.record_size or self.logger is not None:
            batch_id = _batch_id(started_at)
            for key in keys:
                size = self._size(values.get(key))
                if size is not None:
                    total = (total or 0) + size
                if self.logger is not None:
                    self.logger.info("cache_get_multi", batch_id=batch_id, key=key, size=size or 0, elapsed=elapsed)

        # One sample per batch; it is a hit only when every key came back.
        hit = bool(keys) and all(key in values for key in keys)
        self.stats.record_get(hit, total, elapsed)
        return values

    def _store(self, operation: str, key: str, value: Any, expiry: int, raw: bool) -> Any:
        call = getattr(self.client, operation)
        start = self._clock()
        ok, result = self._contain(operation, key, lambda: call(key, value, expiry, raw))
        elapsed = self._clock() - start
        if not ok:
            self.stats.record_error(elapsed)
            return None

        size = self._size(value)
        self.stats.record_set(size, elapsed)
        if self.logger is not None:
            self.logger.info(f"cache_{operation}", key=key, size=size or 0, elapsed=elapsed)
        return result

    def set(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> Any:
        return self._store("set", key, value, expiry, raw)

    def add(self, key: str, value: Any, expiry: int = 0, raw: bool = False) -> Any:
        return self._store("add", key, value, expiry, raw)

    def delete(self, key: str, expiry: int = 0) -> Any:
        start = self._clock()
        ok, result = self._contain("delete", key, lambda: self.client.delete(key, expiry))
        elapsed = self._clock() - start
        if not ok:
            self.stats.record_error(elapsed)
            return None

        self.stats.record_delete(elapsed)
        if self.logger is not None:
            self.logger.info("cache_delete", key=key, elapsed=elapsed)
        return result
