from __future__ import annotations

from typing import Callable

import structlog


log = structlog.get_logger("benchmark")

BenchmarkCallback = Callable[[float], str]

# Callbacks registered here apply to every handler, ahead of its own.
APPLICATION = "Application"


class BenchmarkRegistry:
    """Ordered benchmark callbacks per handler name.

    Populated at startup and only read while serving requests. A callback
    takes the request's elapsed seconds and returns one fragment of the
    summary line, e.g. ``" | PID: 1234"``.

    Handlers can inherit another handler's callbacks with ``inherit()``;
    the effective list is ``Application``'s, then each base's from the root
    down, then the handler's own, each in registration order.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[BenchmarkCallback]] = {}
        self._bases: dict[str, str] = {}

    def register(self, handler: str, callback: BenchmarkCallback) -> None:
        if not callable(callback):
            raise TypeError(f"benchmark callback for {handler!r} is not callable")
        self._callbacks.setdefault(handler, []).append(callback)
        log.debug("benchmark_registered", handler=handler, callback=getattr(callback, "__qualname__", repr(callback)))

    def benchmark(self, handler: str = APPLICATION) -> Callable[[BenchmarkCallback], BenchmarkCallback]:
        """Decorator form of ``register``."""

        def decorator(callback: BenchmarkCallback) -> BenchmarkCallback:
            self.register(handler, callback)
            return callback

        return decorator

    def inherit(self, handler: str, base: str) -> None:
        if handler == APPLICATION:
            raise ValueError("Application is the implicit root and cannot inherit")
        if base == handler or handler in self._lineage(base):
            raise ValueError(f"{handler!r} -> {base!r} would create an inheritance cycle")
        self._bases[handler] = base

    def _lineage(self, handler: str) -> list[str]:
        chain: list[str] = []
        current = self._bases.get(handler)
        while current is not None and current not in chain:
            chain.append(current)
            current = self._bases.get(current)
        return chain

    def callbacks_for(self, handler: str) -> tuple[BenchmarkCallback, ...]:
        names = [APPLICATION, *reversed(self._lineage(handler)), handler]
        seen: set[str] = set()
        callbacks: list[BenchmarkCallback] = []
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            callbacks.extend(self._callbacks.get(name, ()))
        return tuple(callbacks)

    def include(self, other: BenchmarkRegistry) -> None:
        """Append another registry's callbacks and inheritance after this one's."""

        for handler, callbacks in other._callbacks.items():
            for callback in callbacks:
                self.register(handler, callback)
        for handler, base in other._bases.items():
            self.inherit(handler, base)

    def handlers(self) -> list[str]:
        return list(self._callbacks)
