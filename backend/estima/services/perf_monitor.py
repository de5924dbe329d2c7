"""Performance monitoring utilities for Estima store adapters."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("estima.perf")


def timed_async(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time of an async store method.

    The owning object's ``mode`` (local/remote) is attached to the log record
    and the duration is fed to the module-level ``tracker``.

    Usage::

        @timed_async
        async def save_project(self, project, owner=None):
            ...
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        start = time.perf_counter()
        store = getattr(getattr(self, "mode", None), "value", type(self).__name__)
        operation = f"{store}.{func.__name__}"
        try:
            return await func(self, *args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            tracker.record_call(operation, duration_ms)
            logger.debug(
                "store call timed",
                extra={
                    "store": store,
                    "operation": func.__name__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class StoreCallTracker:
    """
    Thread-safe in-memory tracker for store-call latency.

    Tracks per-operation call counts and average duration, plus the slowest
    operation seen so far.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._durations: Dict[str, list] = {}   # operation -> [duration_ms, ...]
        self._slowest_operation = None
        self._slowest_ms: float = 0.0

    def record_call(self, operation: str, duration_ms: float) -> None:
        with self._lock:
            self._durations.setdefault(operation, []).append(duration_ms)
            if duration_ms > self._slowest_ms:
                self._slowest_ms = duration_ms
                self._slowest_operation = operation

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            calls_by_operation      : dict  {operation: count}
            avg_duration_ms         : dict  {operation: avg_ms}
            slowest_operation       : str | None
            slowest_ms              : float
        """
        with self._lock:
            return {
                "calls_by_operation": {op: len(d) for op, d in self._durations.items()},
                "avg_duration_ms": {
                    op: round(sum(d) / len(d), 2) for op, d in self._durations.items() if d
                },
                "slowest_operation": self._slowest_operation,
                "slowest_ms": round(self._slowest_ms, 2),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._durations.clear()
            self._slowest_operation = None
            self._slowest_ms = 0.0


# Module-level instance shared by every adapter.
tracker = StoreCallTracker()
