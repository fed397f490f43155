"""Performance monitoring utilities."""

import time
import anyio
from typing import Callable, Dict, Optional, Any
from dataclasses import dataclass, field
from collections import deque
from typing import Deque
import statistics

from .constants import MONITORING_RECENT_DURATIONS_MAXLEN


@dataclass
class PerformanceMetrics:
    """Stores request performance metrics for monitoring."""

    request_count: int = 0
    total_duration_ms: float = 0
    avg_duration_ms: float = 0
    p95_duration_ms: float = 0
    p99_duration_ms: float = 0
    error_count: int = 0
    active_requests: int = 0
    recent_durations: Deque[float] = field(
        default_factory=lambda: deque(maxlen=MONITORING_RECENT_DURATIONS_MAXLEN)
    )


@dataclass
class OperationMetric:
    """Aggregated timings for a named internal operation (e.g. ``cache_lookup``)."""

    count: int = 0
    total_ms: float = 0
    max_ms: float = 0
    last_ms: float = 0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class PerformanceMonitor:
    """Monitor and track application performance metrics."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """Initialize the monitor.

        Request metrics are guarded by an async lock; named operation metrics
        are updated synchronously from ``start_metric`` end callbacks.
        """
        self.metrics = PerformanceMetrics()
        self.operations: Dict[str, OperationMetric] = {}
        self._clock = clock
        self._lock = anyio.Lock()
        self._request_start_times: Dict[str, float] = {}

    def start_metric(self, name: str) -> Callable[[], float]:
        """Start timing operation *name*.

        Returns a callable that stops the timer, records the duration and
        returns it in milliseconds. Calling it more than once records nothing
        further.
        """
        start = self._clock()
        finished = False

        def end() -> float:
            nonlocal finished
            duration_ms = (self._clock() - start) * 1000
            if finished:
                return duration_ms
            finished = True
            metric = self.operations.setdefault(name, OperationMetric())
            metric.count += 1
            metric.total_ms += duration_ms
            metric.last_ms = duration_ms
            metric.max_ms = max(metric.max_ms, duration_ms)
            return duration_ms

        return end

    async def start_request(self, request_id: str) -> float:
        """Mark the start of a request."""
        start_time = self._clock()
        async with self._lock:
            self._request_start_times[request_id] = start_time
            self.metrics.active_requests += 1
        return start_time

    async def end_request(
        self, request_id: str, success: bool = True
    ) -> Optional[float]:
        """Mark the end of a request and calculate duration."""
        end_time = self._clock()

        async with self._lock:
            start_time = self._request_start_times.pop(request_id, None)
            if start_time is None:
                return None

            duration_ms = (end_time - start_time) * 1000

            self.metrics.request_count += 1
            self.metrics.total_duration_ms += duration_ms
            self.metrics.recent_durations.append(duration_ms)
            self.metrics.active_requests = max(0, self.metrics.active_requests - 1)

            if not success:
                self.metrics.error_count += 1

            durations = list(self.metrics.recent_durations)
            self.metrics.avg_duration_ms = statistics.mean(durations)

            if len(durations) >= 10:
                sorted_durations = sorted(durations)
                p95_index = int(len(sorted_durations) * 0.95)
                p99_index = int(len(sorted_durations) * 0.99)
                self.metrics.p95_duration_ms = sorted_durations[p95_index]
                self.metrics.p99_duration_ms = sorted_durations[p99_index]

            return duration_ms

    def get_operation_metrics(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {
                "count": metric.count,
                "avg_ms": round(metric.avg_ms, 3),
                "max_ms": round(metric.max_ms, 3),
                "last_ms": round(metric.last_ms, 3),
            }
            for name, metric in self.operations.items()
        }

    async def get_metrics(self) -> Dict[str, Any]:
        """Get current performance metrics."""
        async with self._lock:
            return {
                "request_count": self.metrics.request_count,
                "active_requests": self.metrics.active_requests,
                "error_count": self.metrics.error_count,
                "error_rate": self.metrics.error_count
                / max(1, self.metrics.request_count),
                "avg_duration_ms": round(self.metrics.avg_duration_ms, 2),
                "p95_duration_ms": round(self.metrics.p95_duration_ms, 2),
                "p99_duration_ms": round(self.metrics.p99_duration_ms, 2),
                "operations": self.get_operation_metrics(),
            }

    async def reset_metrics(self) -> None:
        """Reset all metrics."""
        async with self._lock:
            self.metrics = PerformanceMetrics()
            self.operations.clear()
            self._request_start_times.clear()
