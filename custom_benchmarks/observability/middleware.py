from __future__ import annotations

import inspect
import math
import re
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import URL

from custom_benchmarks.observability.registry import APPLICATION, BenchmarkRegistry


log = structlog.get_logger("benchmark")

_HANDLER_ATTR = "__benchmark_handler__"
_UNKNOWN_URI = "unknown"


def benchmark_handler(name: str) -> Callable[[Any], Any]:
    """Report an endpoint under an explicit handler name, e.g. ``Widgets``."""

    def decorator(endpoint: Any) -> Any:
        setattr(endpoint, _HANDLER_ATTR, name)
        return endpoint

    return decorator


def _camelize(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[_\-\s]+", name) if part)


def resolve_handler(scope: dict[str, Any]) -> tuple[str, str]:
    """Return ``(handler, action)`` for the endpoint the router matched."""

    endpoint = scope.get("endpoint")
    if endpoint is None:
        return APPLICATION, "unrouted"

    if inspect.isclass(endpoint):
        return getattr(endpoint, _HANDLER_ATTR, endpoint.__name__), str(scope.get("method", "")).lower()

    action = getattr(endpoint, "__name__", type(endpoint).__name__)
    explicit = getattr(endpoint, _HANDLER_ATTR, None)
    if explicit:
        return explicit, action

    owner = getattr(endpoint, "__qualname__", "").rpartition(".")[0]
    if owner and "<locals>" not in owner:
        return owner.rsplit(".", 1)[-1], action

    tags = getattr(scope.get("route"), "tags", None)
    if tags:
        return _camelize(str(tags[0])), action

    module = (getattr(endpoint, "__module__", None) or "").rsplit(".", 1)[-1]
    return _camelize(module) or APPLICATION, action


def status_text(status_code: int) -> str:
    try:
        return f"{status_code} {HTTPStatus(status_code).phrase}"
    except ValueError:
        return str(status_code)


def request_uri(scope: dict[str, Any]) -> str:
    try:
        return str(URL(scope=scope))
    except Exception:
        return _UNKNOWN_URI


def requests_per_second(runtime: float) -> int:
    if runtime <= 0:
        return 0
    rate = 1 / runtime
    # Subnormal runtimes overflow to inf.
    return math.floor(rate) if math.isfinite(rate) else 0


@dataclass
class RequestTiming:
    """Everything one request contributes to its summary line."""

    handler: str
    action: str
    runtime: float
    fragments: list[str] = field(default_factory=list)

    @property
    def headline(self) -> str:
        return "Finished %s#%s in %.5f (%d reqs/sec)" % (
            self.handler,
            self.action,
            self.runtime,
            requests_per_second(self.runtime),
        )

    def line(self) -> str:
        parts = [self.headline, *(fragment.strip() for fragment in self.fragments)]
        return " ".join(part for part in parts if part)


class CustomBenchmarkMiddleware:
    """Writes one benchmark line per HTTP request to ``logger``.

    Line layout: headline, query time (when a query timer is attached),
    registered callbacks in order, then completion time, status and URI.
    With no ``logger`` requests pass straight through untimed. Failures of
    the handler propagate untouched; failures while building or writing the
    line are logged and reported but never reach the client.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        *,
        registry: BenchmarkRegistry,
        logger: Any | None = None,
        query_timer: Any | None = None,
        notify: Callable[[BaseException], None] | None = None,
        resolve: Callable[[dict[str, Any]], tuple[str, str]] = resolve_handler,
        clock: Callable[[], float] = perf_counter,
        wallclock: Callable[[], float] = time.time,
    ) -> None:
        self.app = app
        self.registry = registry
        self.logger = logger
        self.query_timer = query_timer
        self.notify = notify
        self._resolve = resolve
        self._clock = clock
        self._wallclock = wallclock

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http" or self.logger is None:
            await self.app(scope, receive, send)
            return

        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))

            await send(message)

        start = self._clock()
        await self.app(scope, receive, send_wrapper)
        runtime = self._clock() - start

        try:
            line = self.summarize(scope, runtime, status_code)
            self.logger.info(line)
        except Exception as err:
            log.exception("benchmark_line_failed")
            self._notify(err)

    def summarize(self, scope: dict[str, Any], runtime: float, status_code: int) -> str:
        handler, action = self._resolve(scope)
        timing = RequestTiming(handler=handler, action=action, runtime=runtime)

        if self.query_timer is not None and self.query_timer.connected:
            timing.fragments.append(self._fragment("db", self.query_timer.fragment, runtime))
        for callback in self.registry.callbacks_for(handler):
            timing.fragments.append(self._fragment(getattr(callback, "__qualname__", repr(callback)), callback, runtime))

        timing.fragments.append(f"| Time: {int(self._wallclock())}")
        timing.fragments.append(f"| {status_text(status_code)}")
        timing.fragments.append(f"[{request_uri(scope)}]")
        return timing.line()

    def _fragment(self, name: str, callback: Callable[[float], str], runtime: float) -> str:
        try:
            return callback(runtime) or ""
        except Exception as err:
            log.exception("benchmark_fragment_failed", fragment=name)
            self._notify(err)
            return ""

    def _notify(self, err: BaseException) -> None:
        if self.notify is None:
            return
        try:
            self.notify(err)
        except Exception:
            log.exception("benchmark_notify_failed")
