"""Latency budget observation for workflow operations."""

from __future__ import annotations

import functools
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

SlowListener = Callable[[str, float], None]
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


class LatencyMonitor:
    """Flags operations that exceed the configured budget.

    A slow operation is logged as ``slow_operation`` and handed to every
    registered listener. Nothing here ever fails the observed call.
    """

    def __init__(self, budget_ms: float):
        self.budget_ms = budget_ms
        self._listeners: list[SlowListener] = []

    def add_listener(self, listener: SlowListener) -> None:
        self._listeners.append(listener)

    def record(self, operation: str, duration_ms: float) -> bool:
        if duration_ms <= self.budget_ms:
            logger.debug("%s completed in %.1fms", operation, duration_ms)
            return False
        logger.warning(
            "slow_operation",
            extra={
                "operation": operation,
                "duration_ms": round(duration_ms, 1),
                "budget_ms": self.budget_ms,
            },
        )
        for listener in self._listeners:
            try:
                listener(operation, duration_ms)
            except Exception:
                logger.exception("Slow-operation listener failed for %s", operation)
        return True


def observe_latency(operation: str) -> Callable[[F], F]:
    """Time an async method and report it to ``self.latency``."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                return await func(self, *args, **kwargs)
            finally:
                self.latency.record(operation, (time.monotonic() - start) * 1000)

        return wrapper  # type: ignore[return-value]

    return decorator
