"""
Dispatcher loop for HTTP queues.

A single daemon thread per queue decides when queued requests may start
sending. Sends themselves run wherever the request unit runs them; the
dispatcher only observes their futures, so it never blocks on network I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from enum import Enum, auto
from typing import Any

from httpqueue.config import QueueConfig
from httpqueue.observability import (
    METRIC_QUEUE_IN_FLIGHT,
    METRIC_QUEUE_SIZE,
    METRIC_RATE_LIMIT_SIGNALS,
    METRIC_REQUESTS_COMPLETED,
    METRIC_REQUESTS_CONNECTION_FAILED,
    METRIC_REQUESTS_DISPATCHED,
    METRIC_REQUESTS_FAILED,
    METRIC_SEND_LATENCY,
    QueueMetrics,
)
from httpqueue.priority_queue import PriorityQueue, QueueEntry
from httpqueue.rate_limit import RateLimitState
from httpqueue.types import HttpResponse

logger = logging.getLogger(__name__)

# Longest single timed wait; longer cooldowns are waited out in steps
MAX_WAIT_STEP = 3600.0


class DispatcherState(Enum):
    """Dispatcher operational states."""

    RUNNING = auto()
    DRAINING = auto()
    STOPPED = auto()


class Dispatcher:
    """
    Admits queued requests under a concurrency cap and rate-limit cooldowns.

    Admission rules, checked in order before every dequeue:

    1. Fewer than ``max_simultaneous_send_operations`` sends are in flight.
    2. The queue's rate limit state is not in cooldown.
    3. The priority queue is not empty.

    When a rule fails the thread waits on a condition that is notified by
    pushes, completed sends and shutdown; cooldowns use a timed wait. Sends
    already in flight when a cooldown starts are left to finish.

    A completed send whose status code is one of the configured rate-limit
    codes starts a cooldown before its slot is freed. Every entry's future
    is resolved exactly once: with the response, or with the exception the
    request unit raised. Requests are never retried.
    """

    def __init__(
        self,
        queue: PriorityQueue,
        rate_limit: RateLimitState,
        config: QueueConfig,
        metrics: QueueMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "httpqueue-dispatcher",
    ) -> None:
        self._queue = queue
        self._rate_limit = rate_limit
        self._config = config
        self._metrics = metrics or QueueMetrics()
        self._clock = clock
        self._name = name

        self._cond = threading.Condition()
        self._state = DispatcherState.RUNNING
        self._in_flight = 0

        # Statistics
        self._total_dispatched = 0
        self._total_completed = 0
        self._total_failed = 0
        self._total_rate_limited = 0
        self._total_connection_failed = 0
        self._max_in_flight = 0

        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        """Start the dispatcher thread."""
        self._thread.start()
        logger.info(
            f"Dispatcher {self._name} started "
            f"(max_simultaneous_send_operations={self._config.max_simultaneous_send_operations})"
        )

    def notify(self) -> None:
        """Wake the dispatcher after new work was enqueued."""
        with self._cond:
            self._cond.notify_all()

    def in_flight(self) -> int:
        """Get the number of sends currently in flight."""
        with self._cond:
            return self._in_flight

    @property
    def state(self) -> DispatcherState:
        with self._cond:
            return self._state

    def stop(self, wait: bool = True, timeout: float | None = None) -> bool:
        """
        Let the dispatcher drain and exit.

        Entries already queued and sends in flight run to completion
        (cooldowns included) before the thread exits.

        Args:
            wait: Whether to block until the thread has exited.
            timeout: Maximum seconds to wait when ``wait`` is True.

        Returns:
            True if the dispatcher thread has exited.
        """
        with self._cond:
            if self._state == DispatcherState.RUNNING:
                self._state = DispatcherState.DRAINING
                logger.info(f"Dispatcher {self._name} draining...")
            self._cond.notify_all()

        if wait and self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        """Dispatcher loop."""
        try:
            while True:
                try:
                    entry = self._next_entry()
                    if entry is None:
                        return
                    self._launch(entry)
                except Exception:
                    logger.exception(f"Unexpected error in dispatcher {self._name}")
        finally:
            with self._cond:
                self._state = DispatcherState.STOPPED
            logger.info(f"Dispatcher {self._name} stopped")

    def _next_entry(self) -> QueueEntry | None:
        """
        Block until an entry may be admitted and occupy a slot for it.

        Returns:
            The admitted entry, or None once a drain has finished.
        """
        limit = self._config.max_simultaneous_send_operations

        with self._cond:
            while True:
                if (
                    self._state != DispatcherState.RUNNING
                    and self._in_flight == 0
                    and self._queue.is_empty()
                ):
                    return None

                if self._in_flight >= limit:
                    self._cond.wait()
                    continue

                now = self._clock()
                if self._rate_limit.is_blocked(now):
                    remaining = self._rate_limit.remaining(now)
                    logger.debug(f"Admission paused for {remaining:.3f}s (rate limited)")
                    self._cond.wait(timeout=min(remaining, MAX_WAIT_STEP))
                    continue

                entry = self._queue.dequeue()
                if entry is None:
                    self._cond.wait()
                    continue

                self._in_flight += 1
                self._total_dispatched += 1
                self._max_in_flight = max(self._max_in_flight, self._in_flight)
                in_flight = self._in_flight
                break

        logger.debug(
            f"Dispatching request #{entry.sequence} ({entry.priority.name}), "
            f"in flight: {in_flight}/{limit}"
        )
        self._metrics.counter(
            METRIC_REQUESTS_DISPATCHED, tags={"priority": entry.priority.name}
        )
        self._metrics.gauge(METRIC_QUEUE_IN_FLIGHT, in_flight)
        self._metrics.gauge(METRIC_QUEUE_SIZE, self._queue.size())
        return entry

    def _launch(self, entry: QueueEntry) -> None:
        """Start the send for an admitted entry."""
        started = self._clock()
        try:
            send_future = entry.unit.send()
            send_future.add_done_callback(
                lambda future: self._on_send_done(entry, started, future)
            )
        except Exception as e:
            logger.exception(f"Request #{entry.sequence} failed to start sending")
            self._finish(entry, started, error=e)

    def _on_send_done(
        self,
        entry: QueueEntry,
        started: float,
        send_future: Future[HttpResponse],
    ) -> None:
        """Collect the outcome of a finished send."""
        try:
            response = send_future.result()
        except Exception as e:
            logger.error(f"Request #{entry.sequence} failed: {e!r}")
            self._finish(entry, started, error=e)
            return
        self._finish(entry, started, response=response)

    def _finish(
        self,
        entry: QueueEntry,
        started: float,
        response: HttpResponse | None = None,
        error: Exception | None = None,
    ) -> None:
        """Free the entry's slot, record rate limits and resolve its future."""
        try:
            now = self._clock()
            decision = None
            with self._cond:
                if error is not None:
                    self._total_failed += 1
                else:
                    self._total_completed += 1
                    if not getattr(response, "connection_successful", False):
                        self._total_connection_failed += 1
                    elif self.is_rate_limit_signal(response):
                        self._total_rate_limited += 1
                        # Cooldown must be in place before the slot frees up
                        decision = self._rate_limit.apply_limit_signal(response, now)
                self._in_flight -= 1
                in_flight = self._in_flight
                self._cond.notify_all()

            if decision is not None:
                self._rate_limit.report(decision)
            self._report(entry, started, now, in_flight, response, error)
        finally:
            if error is not None:
                entry.future.set_exception(error)
            else:
                entry.future.set_result(response)

    def is_rate_limit_signal(self, response: Any) -> bool:
        """Check whether a response asks the queue to back off."""
        return bool(getattr(response, "connection_successful", False)) and (
            getattr(response, "status_code", None) in self._config.rate_limit_status_codes
        )

    def _report(
        self,
        entry: QueueEntry,
        started: float,
        now: float,
        in_flight: int,
        response: HttpResponse | None,
        error: Exception | None,
    ) -> None:
        """Emit metrics for a finished send."""
        self._metrics.timing(METRIC_SEND_LATENCY, (now - started) * 1000)
        self._metrics.gauge(METRIC_QUEUE_IN_FLIGHT, in_flight)

        if error is not None:
            self._metrics.counter(
                METRIC_REQUESTS_FAILED, tags={"error": type(error).__name__}
            )
            return

        if not getattr(response, "connection_successful", False):
            logger.debug(f"Request #{entry.sequence} could not connect")
            self._metrics.counter(METRIC_REQUESTS_CONNECTION_FAILED)
            return

        status = getattr(response, "status_code", 0)
        logger.debug(f"Request #{entry.sequence} completed with HTTP {status}")
        self._metrics.counter(METRIC_REQUESTS_COMPLETED, tags={"status": status})
        if self.is_rate_limit_signal(response):
            self._metrics.counter(METRIC_RATE_LIMIT_SIGNALS, tags={"status": status})

    def get_stats(self) -> dict[str, Any]:
        """
        Get dispatcher statistics.

        Returns:
            Dictionary with dispatcher counters.
        """
        with self._cond:
            return {
                "state": self._state.name,
                "in_flight": self._in_flight,
                "max_in_flight": self._max_in_flight,
                "total_dispatched": self._total_dispatched,
                "total_completed": self._total_completed,
                "total_failed": self._total_failed,
                "total_rate_limited": self._total_rate_limited,
                "total_connection_failed": self._total_connection_failed,
            }
