"""
Self-regulating HTTP request queue.

``HttpQueue`` is the public entry point: it owns a priority queue, a rate
limit state and a dispatcher thread, and turns pushed requests into
futures of their responses.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future
from typing import Any

from httpqueue.config import QueueConfig
from httpqueue.dispatcher import Dispatcher
from httpqueue.exceptions import QueueClosedError
from httpqueue.observability import (
    METRIC_QUEUE_SIZE,
    METRIC_REQUESTS_QUEUED,
    MetricHook,
    QueueMetrics,
)
from httpqueue.priority_queue import HttpRequestPriority, PriorityQueue
from httpqueue.rate_limit import RateLimitState
from httpqueue.types import HttpRequestUnit, HttpResponse

logger = logging.getLogger(__name__)

_queue_ids = itertools.count(1)


class HttpQueue:
    """
    A self-regulating queue for REST APIs that impose rate limits.

    Requests pushed to the queue are sent oldest first (unless a priority
    says otherwise), with at most ``max_simultaneous_send_operations`` in
    flight. When the remote service answers 429 Too Many Requests the queue
    stops admitting new requests until the cooldown given by its
    ``retry_after`` setting has passed.

    A queue is not a guarantee of never exceeding the remote service's
    limits: several queues (or processes) talking to the same service each
    regulate themselves independently.

    Example:
        >>> from httpqueue import HttpQueue, HttpRequest, HttpRequestPriority
        >>>
        >>> queue = HttpQueue.from_options({
        ...     "retryAfter": {"header": "Retry-After"},
        ...     "maxSimultaneousSendOperations": 4,
        ... })
        >>>
        >>> # Non-blocking: get a future
        >>> future = queue.push(HttpRequest("https://api.example.org/items"))
        >>>
        >>> # Blocking: wait for the response
        >>> response = queue.await_push(
        ...     HttpRequest("https://api.example.org/status"),
        ...     HttpRequestPriority.FIRST,
        ... )
        >>> response.status_code
        200
        >>>
        >>> queue.close()
    """

    def __init__(
        self,
        config: QueueConfig,
        *,
        metric_hooks: Iterable[MetricHook] | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str | None = None,
    ) -> None:
        """
        Create an empty queue and start its dispatcher.

        Args:
            config: Validated queue configuration.
            metric_hooks: Metric hooks that receive this queue's metrics.
            clock: Monotonic time source in seconds.
            name: Name used for the dispatcher thread and log messages.
        """
        if not isinstance(config, QueueConfig):
            raise TypeError(f"config must be a QueueConfig, got {type(config).__name__}")

        self.config = config
        self.name = name or f"httpqueue-{next(_queue_ids)}"
        self._clock = clock
        self._metrics = QueueMetrics(metric_hooks)

        self._queue = PriorityQueue(clock=clock)
        self._rate_limit = RateLimitState(config.retry_after, metrics=self._metrics)
        self._dispatcher = Dispatcher(
            self._queue,
            self._rate_limit,
            config,
            metrics=self._metrics,
            clock=clock,
            name=f"{self.name}-dispatcher",
        )

        self._closed = False
        self._lock = threading.Lock()

        self._dispatcher.start()

    @classmethod
    def from_options(cls, options: Mapping[str, Any], **kwargs: Any) -> HttpQueue:
        """
        Create a queue from an options dictionary.

        Args:
            options: Options accepted by ``QueueConfig.from_dict``.
            **kwargs: Passed through to the constructor.

        Returns:
            A running, empty queue.

        Raises:
            ConfigurationError: If the options are invalid.
        """
        return cls(QueueConfig.from_dict(options), **kwargs)

    @property
    def metrics(self) -> QueueMetrics:
        """The metric hook registry of this queue."""
        return self._metrics

    def push(
        self,
        request: HttpRequestUnit,
        priority: HttpRequestPriority = HttpRequestPriority.NORMAL,
    ) -> Future[HttpResponse]:
        """
        Push a request to the queue to be sent whenever possible.

        Never blocks. The returned future cannot be cancelled: once pushed,
        a request is sent.

        Args:
            request: The request to be sent.
            priority: The priority of the request relative to other
                requests in this queue.

        Returns:
            A future resolved with the response. Transport failures resolve
            to a response with ``connection_successful=False``.

        Raises:
            TypeError: If ``request`` is not a request unit.
            QueueClosedError: If the queue has been closed.
        """
        if not isinstance(request, HttpRequestUnit):
            raise TypeError(
                f"request must provide url, send() and await_send(), "
                f"got {type(request).__name__}"
            )
        priority = HttpRequestPriority(priority)

        with self._lock:
            if self._closed:
                raise QueueClosedError(pending=self._queue.size())
            future = self._queue.enqueue(request, priority)
            self._dispatcher.notify()

        self._metrics.counter(METRIC_REQUESTS_QUEUED, tags={"priority": priority.name})
        self._metrics.gauge(METRIC_QUEUE_SIZE, self._queue.size())
        return future

    def await_push(
        self,
        request: HttpRequestUnit,
        priority: HttpRequestPriority = HttpRequestPriority.NORMAL,
        timeout: float | None = None,
    ) -> HttpResponse:
        """
        Push a request and block until its response is available.

        Args:
            request: The request to be sent.
            priority: The priority of the request.
            timeout: Maximum seconds to wait. The request stays queued
                even if the wait times out.

        Returns:
            The server's response to the request.

        Raises:
            TimeoutError: If ``timeout`` elapses first.
        """
        return self.push(request, priority).result(timeout)

    async def push_async(
        self,
        request: HttpRequestUnit,
        priority: HttpRequestPriority = HttpRequestPriority.NORMAL,
    ) -> HttpResponse:
        """
        Push a request and await its response from a coroutine.

        Only the awaiting task is suspended; the event loop keeps running.

        Args:
            request: The request to be sent.
            priority: The priority of the request.

        Returns:
            The server's response to the request.
        """
        return await asyncio.wrap_future(self.push(request, priority))

    def queue_size(self) -> int:
        """Get how many requests are waiting to be sent (in-flight excluded)."""
        return self._queue.size()

    def in_flight(self) -> int:
        """Get how many requests are being sent right now."""
        return self._dispatcher.in_flight()

    def is_rate_limited(self) -> bool:
        """Check whether admission is paused by a cooldown."""
        return self._rate_limit.is_blocked(self._clock())

    def cooldown_remaining(self) -> float:
        """Get seconds left in the current cooldown, or 0 if none."""
        return self._rate_limit.remaining(self._clock())

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def close(self, wait: bool = True, timeout: float | None = None) -> bool:
        """
        Stop accepting requests and let the queue drain.

        Requests already pushed are still sent, respecting the concurrency
        cap and any cooldown.

        Args:
            wait: Whether to block until every pushed request has completed.
            timeout: Maximum seconds to wait.

        Returns:
            True if the queue has fully drained.
        """
        with self._lock:
            if not self._closed:
                self._closed = True
                logger.info(
                    f"Queue {self.name} closing with {self._queue.size()} request(s) waiting"
                )
        return self._dispatcher.stop(wait=wait, timeout=timeout)

    def get_stats(self) -> dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with queue, dispatcher and rate limit statistics.
        """
        return {
            "name": self.name,
            "closed": self.is_closed,
            "queue": self._queue.get_stats(),
            "dispatcher": self._dispatcher.get_stats(),
            "rate_limit": self._rate_limit.get_stats(self._clock()),
            "config": self.config.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"HttpQueue(name={self.name!r}, queued={self.queue_size()}, "
            f"in_flight={self.in_flight()}, closed={self.is_closed})"
        )

    def __enter__(self) -> HttpQueue:
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close(wait=True)
