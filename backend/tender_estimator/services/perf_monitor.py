"""Performance monitoring for estimate calculation requests."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("tender-api.perf")


def timed(operation: str) -> Callable:
    """
    Decorator that measures a synchronous calculation, logs it at DEBUG and
    records it on the module tracker under ``operation``.

    Usage::

        @timed("calculate_totals")
        def run_totals(rows, coefficients):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            failed = False
            try:
                return func(*args, **kwargs)
            except Exception:
                failed = True
                raise
            finally:
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                if failed:
                    tracker.record_error(operation)
                else:
                    tracker.record_operation(operation, duration_ms)
                logger.debug(
                    "calculation timed",
                    extra={"operation": operation, "duration_ms": duration_ms},
                )
        return wrapper
    return decorator


class PerformanceTracker:
    """
    Thread-safe in-memory tracker for calculation metrics.

    Tracks:
    - Calls and rows priced per operation
    - Average duration per operation
    - Slowest operation seen
    - Error count broken down by operation
    """

    def __init__(self):
        self._lock = threading.Lock()
        # operation -> running {"count", "total_ms", "max_ms"}; fixed size per operation
        self._stats: Dict[str, Dict[str, float]] = {}
        self._rows_priced: int = 0
        self._error_counts: Dict[str, int] = {}
        self._slowest_operation: str | None = None
        self._slowest_operation_ms: float = 0.0

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_operation(self, operation: str, duration_ms: float) -> None:
        with self._lock:
            stats = self._stats.setdefault(operation, {"count": 0, "total_ms": 0.0, "max_ms": 0.0})
            stats["count"] += 1
            stats["total_ms"] += duration_ms
            stats["max_ms"] = max(stats["max_ms"], duration_ms)
            if duration_ms > self._slowest_operation_ms:
                self._slowest_operation_ms = duration_ms
                self._slowest_operation = operation

    def record_rows(self, count: int) -> None:
        with self._lock:
            self._rows_priced += count

    def record_error(self, operation: str) -> None:
        with self._lock:
            self._error_counts[operation] = self._error_counts.get(operation, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            calculations_processed  : int
            rows_priced             : int
            slowest_operation       : str | None
            slowest_operation_ms    : float
            error_count             : int
            error_count_by_operation: dict  {operation: count}
            operation_avg_ms        : dict  {operation: avg_ms}
            operation_max_ms        : dict  {operation: max_ms}
            operation_counts        : dict  {operation: calls}
        """
        with self._lock:
            averages = {
                op: round(s["total_ms"] / s["count"], 2) if s["count"] else 0.0
                for op, s in self._stats.items()
            }
            return {
                "calculations_processed": sum(s["count"] for s in self._stats.values()),
                "rows_priced": self._rows_priced,
                "slowest_operation": self._slowest_operation,
                "slowest_operation_ms": round(self._slowest_operation_ms, 2),
                "error_count": sum(self._error_counts.values()),
                "error_count_by_operation": dict(self._error_counts),
                "operation_avg_ms": averages,
                "operation_max_ms": {op: round(s["max_ms"], 2) for op, s in self._stats.items()},
                "operation_counts": {op: s["count"] for op, s in self._stats.items()},
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._stats.clear()
            self._rows_priced = 0
            self._error_counts.clear()
            self._slowest_operation = None
            self._slowest_operation_ms = 0.0


# Module-level singleton — import this instance everywhere else.
tracker = PerformanceTracker()
