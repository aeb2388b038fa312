"""
httpqueue: a self-regulating request queue for rate-limited REST APIs.

Requests pushed to a queue are sent in priority order with a bounded
number in flight. When the remote service answers 429 Too Many Requests,
the queue pauses admission for a cooldown read from a response header or
configured up front, then resumes on its own.

Basic Usage:
    >>> from httpqueue import HttpQueue, HttpRequest, HttpRequestPriority
    >>>
    >>> queue = HttpQueue.from_options({
    ...     "retryAfter": {"header": "Retry-After"},
    ...     "maxSimultaneousSendOperations": 4,
    ... })
    >>>
    >>> future = queue.push(HttpRequest("https://api.example.org/items"))
    >>> urgent = queue.await_push(
    ...     HttpRequest("https://api.example.org/status"),
    ...     HttpRequestPriority.FIRST,
    ... )
    >>> future.result().request_successful
    True
"""

__version__ = "0.1.0"

from httpqueue.config import (
    DEFAULT_MAX_SIMULTANEOUS_SEND_OPERATIONS,
    QueueConfig,
    RetryAfter,
)
from httpqueue.dispatcher import Dispatcher, DispatcherState
from httpqueue.exceptions import (
    ConfigurationError,
    HttpQueueError,
    QueueClosedError,
)
from httpqueue.guards import (
    is_http_queue,
    is_http_request,
    is_http_request_priority,
    is_http_response,
)
from httpqueue.http_queue import HttpQueue
from httpqueue.observability import (
    InMemoryMetricHook,
    MetricHook,
    MetricSummary,
    QueueMetrics,
)
from httpqueue.priority_queue import HttpRequestPriority, PriorityQueue, QueueEntry
from httpqueue.rate_limit import CooldownDecision, RateLimitState, parse_retry_after
from httpqueue.request import HttpRequest
from httpqueue.types import HttpRequestUnit, HttpResponse

__all__ = [
    "__version__",
    # Queue
    "HttpQueue",
    "QueueConfig",
    "RetryAfter",
    "DEFAULT_MAX_SIMULTANEOUS_SEND_OPERATIONS",
    # Requests and responses
    "HttpRequest",
    "HttpRequestUnit",
    "HttpResponse",
    "HttpRequestPriority",
    # Scheduling internals
    "PriorityQueue",
    "QueueEntry",
    "RateLimitState",
    "CooldownDecision",
    "parse_retry_after",
    "Dispatcher",
    "DispatcherState",
    # Metrics
    "MetricHook",
    "MetricSummary",
    "InMemoryMetricHook",
    "QueueMetrics",
    # Errors
    "HttpQueueError",
    "ConfigurationError",
    "QueueClosedError",
    # Type guards
    "is_http_request",
    "is_http_request_priority",
    "is_http_response",
    "is_http_queue",
]
