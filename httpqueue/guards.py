"""Type guards for httpqueue values."""

from __future__ import annotations

from typing import Any

from httpqueue.http_queue import HttpQueue
from httpqueue.priority_queue import HttpRequestPriority
from httpqueue.types import HttpRequestUnit, HttpResponse


def is_http_request(obj: Any) -> bool:
    """Check if an object can be pushed to a queue."""
    return isinstance(obj, HttpRequestUnit)


def is_http_request_priority(obj: Any) -> bool:
    """Check if an object is a request priority."""
    return isinstance(obj, HttpRequestPriority)


def is_http_response(obj: Any) -> bool:
    """Check if an object is a response."""
    return isinstance(obj, HttpResponse)


def is_http_queue(obj: Any) -> bool:
    """Check if an object is a queue."""
    return isinstance(obj, HttpQueue)
