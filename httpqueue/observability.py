"""
Metrics for httpqueue.

Each queue owns a ``QueueMetrics`` registry and forwards its metrics to the
hooks registered there. Any object with ``increment``, ``gauge``,
``histogram`` and ``timing`` methods can serve as a hook, which makes it
easy to bridge to Prometheus, StatsD or OpenTelemetry.

Example:
    >>> from httpqueue import HttpQueue, QueueConfig, RetryAfter
    >>> from httpqueue.observability import InMemoryMetricHook, METRIC_REQUESTS_COMPLETED
    >>>
    >>> hook = InMemoryMetricHook()
    >>> queue = HttpQueue(
    ...     QueueConfig(retry_after=RetryAfter(header="Retry-After")),
    ...     metric_hooks=[hook],
    ... )
    >>> queue.await_push(request)
    >>> hook.total(METRIC_REQUESTS_COMPLETED)
    1.0
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Tags = dict[str, Any]
MetricKey = tuple[str, tuple[tuple[str, Any], ...]]


@runtime_checkable
class MetricHook(Protocol):
    """
    Receiver for queue metrics.

    Hooks are called from the dispatcher thread and from whichever thread
    completes a send, so implementations must be thread-safe.
    """

    def increment(self, name: str, value: float = 1.0, tags: Tags | None = None) -> None: ...

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None: ...

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None: ...

    def timing(self, name: str, duration_ms: float, tags: Tags | None = None) -> None: ...


def _key(name: str, tags: Tags | None) -> MetricKey:
    return name, tuple(sorted((tags or {}).items()))


@dataclass(frozen=True)
class MetricSummary:
    """Summary of the samples recorded for a histogram or timing."""

    count: int
    total: float
    min: float
    max: float

    @property
    def avg(self) -> float:
        return self.total / self.count

    @classmethod
    def of(cls, samples: list[float]) -> MetricSummary | None:
        if not samples:
            return None
        return cls(len(samples), sum(samples), min(samples), max(samples))


class InMemoryMetricHook:
    """
    Keeps queue metrics in memory, for tests and quick inspection.

    Counters and gauges are stored per tag set. Histogram values and
    timings share one sample store, keyed by metric name.

    Example:
        >>> hook = InMemoryMetricHook()
        >>> hook.increment("httpqueue.requests.completed", tags={"status": 200})
        >>> hook.increment("httpqueue.requests.completed", tags={"status": 429})
        >>> hook.get_counter("httpqueue.requests.completed", {"status": 429})
        1.0
        >>> hook.total("httpqueue.requests.completed")
        2.0
    """

    def __init__(self) -> None:
        self._counters: dict[MetricKey, float] = {}
        self._gauges: dict[MetricKey, float] = {}
        self._samples: dict[MetricKey, list[float]] = {}
        self._lock = threading.Lock()

    def increment(self, name: str, value: float = 1.0, tags: Tags | None = None) -> None:
        key = _key(name, tags)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + value

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None:
        with self._lock:
            self._gauges[_key(name, tags)] = value

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None:
        with self._lock:
            self._samples.setdefault(_key(name, tags), []).append(value)

    def timing(self, name: str, duration_ms: float, tags: Tags | None = None) -> None:
        self.histogram(name, duration_ms, tags)

    def get_counter(self, name: str, tags: Tags | None = None) -> float:
        """Get a counter for one exact tag set, or 0.0 if never incremented."""
        with self._lock:
            return self._counters.get(_key(name, tags), 0.0)

    def total(self, name: str) -> float:
        """Sum a counter over every tag set it was incremented with."""
        with self._lock:
            return sum(value for (metric, _), value in self._counters.items() if metric == name)

    def get_gauge(self, name: str, tags: Tags | None = None) -> float | None:
        """Get the last value of a gauge, or None if never set."""
        with self._lock:
            return self._gauges.get(_key(name, tags))

    def summary(self, name: str, tags: Tags | None = None) -> MetricSummary | None:
        """Summarize histogram or timing samples, or None if there are none."""
        with self._lock:
            return MetricSummary.of(list(self._samples.get(_key(name, tags), [])))

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._samples.clear()


class QueueMetrics:
    """
    Metric hook registry owned by a single queue.

    Emitting never raises: a failing hook is logged and skipped so that
    metrics cannot stall the dispatcher.
    """

    def __init__(self, hooks: Iterable[MetricHook] | None = None) -> None:
        self._hooks: list[MetricHook] = list(hooks or [])
        self._lock = threading.Lock()

    def add_hook(self, hook: MetricHook) -> None:
        """Register a metric hook."""
        with self._lock:
            self._hooks.append(hook)

    def remove_hook(self, hook: MetricHook) -> bool:
        """
        Remove a metric hook.

        Returns:
            True if the hook was removed, False if not found.
        """
        with self._lock:
            try:
                self._hooks.remove(hook)
                return True
            except ValueError:
                return False

    @property
    def hooks(self) -> list[MetricHook]:
        """Get a copy of the registered metric hooks."""
        with self._lock:
            return list(self._hooks)

    def _emit(self, method: str, name: str, value: float, tags: Tags | None) -> None:
        for hook in self.hooks:
            try:
                getattr(hook, method)(name, value, tags)
            except Exception:
                logger.exception(f"Metric hook {hook!r} failed on {name}")

    def counter(self, name: str, value: float = 1.0, tags: Tags | None = None) -> None:
        self._emit("increment", name, value, tags)

    def gauge(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._emit("gauge", name, value, tags)

    def histogram(self, name: str, value: float, tags: Tags | None = None) -> None:
        self._emit("histogram", name, value, tags)

    def timing(self, name: str, duration_ms: float, tags: Tags | None = None) -> None:
        self._emit("timing", name, duration_ms, tags)


# Request lifecycle
METRIC_REQUESTS_QUEUED = "httpqueue.requests.queued"
"""Counter: Requests pushed, tagged by priority."""

METRIC_REQUESTS_DISPATCHED = "httpqueue.requests.dispatched"
"""Counter: Requests admitted to send, tagged by priority."""

METRIC_REQUESTS_COMPLETED = "httpqueue.requests.completed"
"""Counter: Sends that produced a response, tagged by status code."""

METRIC_REQUESTS_FAILED = "httpqueue.requests.failed"
"""Counter: Sends whose request unit raised, tagged by error type."""

METRIC_REQUESTS_CONNECTION_FAILED = "httpqueue.requests.connection_failed"
"""Counter: Responses with connection_successful=False."""

METRIC_SEND_LATENCY = "httpqueue.send.latency_ms"
"""Timing: Duration of a send in milliseconds."""

# Rate limiting
METRIC_RATE_LIMIT_SIGNALS = "httpqueue.rate_limit.signals"
"""Counter: Rate-limit responses received."""

METRIC_RATE_LIMIT_HEADER_ANOMALIES = "httpqueue.rate_limit.header_anomalies"
"""Counter: Rate-limit responses whose cooldown header was missing, invalid or out of range."""

METRIC_RATE_LIMIT_COOLDOWN = "httpqueue.rate_limit.cooldown_seconds"
"""Histogram: Cooldown durations applied."""

# Queue state
METRIC_QUEUE_SIZE = "httpqueue.queue.size"
"""Gauge: Requests waiting for admission."""

METRIC_QUEUE_IN_FLIGHT = "httpqueue.queue.in_flight"
"""Gauge: Sends currently in flight."""
