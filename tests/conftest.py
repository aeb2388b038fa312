"""
Pytest fixtures for httpqueue tests.

Provides fake request units that record when the queue admits them,
and a queue factory that drains every queue created during a test.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from concurrent.futures import Future
from typing import Any

import pytest

from httpqueue import HttpQueue, HttpResponse, QueueConfig, RetryAfter


# ============================================================================
# Fake request units
# ============================================================================


class SendRecorder:
    """Thread-safe record of admissions and concurrency."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.order: list[str] = []
        self.started: dict[str, float] = {}
        self.finished: dict[str, float] = {}
        self.current = 0
        self.max_concurrent = 0
        self.admitted = threading.Condition(self._lock)

    def start(self, name: str) -> None:
        with self._lock:
            self.order.append(name)
            self.started[name] = time.monotonic()
            self.current += 1
            self.max_concurrent = max(self.max_concurrent, self.current)
            self.admitted.notify_all()

    def finish(self, name: str) -> None:
        with self._lock:
            self.finished[name] = time.monotonic()
            self.current -= 1

    def wait_for_admissions(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least ``count`` sends have started."""
        with self._lock:
            return self.admitted.wait_for(lambda: len(self.order) >= count, timeout)


class FakeRequest:
    """
    Request unit that answers with a canned response.

    The send runs on its own thread. It finishes after ``latency`` seconds,
    or once ``gate`` is set when a gate is given.
    """

    def __init__(
        self,
        name: str,
        recorder: SendRecorder,
        response: HttpResponse | None = None,
        latency: float = 0.0,
        gate: threading.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.recorder = recorder
        self.response = response or HttpResponse(True, 200, "OK", {}, name)
        self.latency = latency
        self.gate = gate
        self.error = error
        self.send_count = 0

    @property
    def url(self) -> str:
        return f"https://api.example.org/{self.name}"

    def send(self) -> Future[HttpResponse]:
        self.send_count += 1
        self.recorder.start(self.name)
        future: Future[HttpResponse] = Future()

        def run() -> None:
            if self.gate is not None:
                self.gate.wait(5.0)
            elif self.latency:
                time.sleep(self.latency)
            self.recorder.finish(self.name)
            if self.error is not None:
                future.set_exception(self.error)
            else:
                future.set_result(self.response)

        threading.Thread(target=run, daemon=True).start()
        return future

    def await_send(self) -> HttpResponse:
        return self.send().result()


class ExplodingRequest:
    """Request unit whose send() raises before returning a future."""

    url = "https://api.example.org/explode"

    def send(self) -> Future[HttpResponse]:
        raise RuntimeError("cannot send")

    def await_send(self) -> HttpResponse:
        raise RuntimeError("cannot send")


# ============================================================================
# Response fixtures
# ============================================================================


def make_response(
    status: int = 200,
    headers: dict[str, str] | None = None,
    body: str = "",
    message: str = "",
) -> HttpResponse:
    return HttpResponse(
        connection_successful=True,
        status_code=status,
        status_message=message,
        headers=headers or {},
        body=body,
    )


@pytest.fixture
def ok_response() -> HttpResponse:
    """A plain 200 response."""
    return make_response(200, {"Content-Type": "application/json"}, '{"ok": true}', "OK")


@pytest.fixture
def too_many_requests() -> HttpResponse:
    """A 429 response carrying a one second Retry-After header."""
    return make_response(429, {"Retry-After": "1"}, "slow down", "Too Many Requests")


# ============================================================================
# Queue fixtures
# ============================================================================


@pytest.fixture
def recorder() -> SendRecorder:
    """Create a send recorder."""
    return SendRecorder()


@pytest.fixture
def make_request(recorder: SendRecorder) -> Callable[..., FakeRequest]:
    """Factory for fake requests sharing the test's recorder."""

    def factory(name: str, **kwargs: Any) -> FakeRequest:
        return FakeRequest(name, recorder, **kwargs)

    return factory


@pytest.fixture
def make_queue() -> Generator[Callable[..., HttpQueue], None, None]:
    """Factory for queues that are drained when the test ends."""
    queues: list[HttpQueue] = []

    def factory(
        retry_after: RetryAfter | None = None,
        max_simultaneous_send_operations: int = 10,
        **kwargs: Any,
    ) -> HttpQueue:
        config = QueueConfig(
            retry_after=retry_after or RetryAfter(header="Retry-After"),
            max_simultaneous_send_operations=max_simultaneous_send_operations,
        )
        queue = HttpQueue(config, **kwargs)
        queues.append(queue)
        return queue

    yield factory

    for queue in queues:
        queue.close(wait=True, timeout=10.0)
