from __future__ import annotations

from threading import Lock
from time import perf_counter
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.engine import Engine

from custom_benchmarks.observability.metrics import percent_of


_START_KEY = "custom_benchmarks.query_start"


class QueryTimer:
    """Accumulates time spent executing SQL on the engines it is attached to.

    ``runtime`` covers the current window and is zeroed by each
    ``reset_runtime()``; ``total_runtime`` keeps growing until a
    ``reset_runtime(total=True)``. Statements that raise are still timed.
    """

    def __init__(self, clock: Callable[[], float] = perf_counter) -> None:
        self._clock = clock
        self._lock = Lock()
        self._runtime = 0.0
        self._total_runtime = 0.0
        self._engines: list[Engine] = []

    @property
    def connected(self) -> bool:
        return bool(self._engines)

    @property
    def runtime(self) -> float:
        with self._lock:
            return self._runtime

    @property
    def total_runtime(self) -> float:
        with self._lock:
            return self._total_runtime

    def attach(self, engine: Engine) -> None:
        if engine in self._engines:
            return
        event.listen(engine, "before_cursor_execute", self._before_execute)
        event.listen(engine, "after_cursor_execute", self._after_execute)
        event.listen(engine, "handle_error", self._on_error)
        self._engines.append(engine)

    def detach(self, engine: Engine) -> None:
        if engine not in self._engines:
            return
        event.remove(engine, "before_cursor_execute", self._before_execute)
        event.remove(engine, "after_cursor_execute", self._after_execute)
        event.remove(engine, "handle_error", self._on_error)
        self._engines.remove(engine)

    def add(self, seconds: float) -> None:
        with self._lock:
            self._runtime += seconds
            self._total_runtime += seconds

    def reset_runtime(self, total: bool = False) -> float:
        with self._lock:
            if total:
                runtime = self._total_runtime
                self._total_runtime = 0.0
            else:
                runtime = self._runtime
            self._runtime = 0.0
        return runtime

    def fragment(self, runtime: float) -> str:
        db_runtime = self.reset_runtime()
        pct = percent_of(db_runtime, runtime)
        return " | DB: %.5f (%d%%)" % (db_runtime, pct)

    def _before_execute(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        conn.info.setdefault(_START_KEY, []).append(self._clock())

    def _after_execute(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        self._finish(conn)

    def _on_error(self, exception_context: Any) -> None:
        conn = exception_context.connection
        if conn is not None:
            self._finish(conn)

    def _finish(self, conn: Any) -> None:
        starts = conn.info.get(_START_KEY)
        if starts:
            self.add(self._clock() - starts.pop())
