"""
Core type definitions for httpqueue.

This module defines the response shape produced by request units and the
protocol a request unit must satisfy to be scheduled by a queue. The queue
never inspects a request beyond this protocol.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

HTTP_TOO_MANY_REQUESTS = 429


@dataclass(frozen=True)
class HttpResponse:
    """
    The remote server's response to a request.

    When ``connection_successful`` is False the request never reached a
    server (DNS failure, refused connection, TLS problems, timeouts) and
    the remaining fields carry no information from the remote side.

    Attributes:
        connection_successful: Whether a connection to the server was made.
        status_code: The status code returned by the remote server.
        status_message: Human-readable form of the status code.
        headers: Response headers.
        body: The data returned by the server.

    Example:
        >>> response = HttpResponse(
        ...     connection_successful=True,
        ...     status_code=429,
        ...     status_message="Too Many Requests",
        ...     headers={"Retry-After": "5"},
        ... )
        >>> response.request_successful
        False
        >>> response.header("retry-after")
        '5'
    """

    connection_successful: bool
    status_code: int = 0
    status_message: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def request_successful(self) -> bool:
        """True when connected and the status code is within 200-299."""
        return self.connection_successful and 200 <= self.status_code <= 299

    @property
    def is_rate_limited(self) -> bool:
        """True when the server answered 429 Too Many Requests."""
        return self.connection_successful and self.status_code == HTTP_TOO_MANY_REQUESTS

    def header(self, name: str, default: str | None = None) -> str | None:
        """Look up a header value, ignoring the case of its name."""
        if name in self.headers:
            return self.headers[name]
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @classmethod
    def connection_failure(cls, message: str) -> HttpResponse:
        """Build the response used when no connection could be made."""
        return cls(connection_successful=False, status_message=message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "connection_successful": self.connection_successful,
            "request_successful": self.request_successful,
            "status_code": self.status_code,
            "status_message": self.status_message,
            "headers": dict(self.headers),
            "body": self.body,
        }


@runtime_checkable
class HttpRequestUnit(Protocol):
    """
    Protocol for anything a queue can send.

    A request unit is already fully composed (method, headers, query and
    body) and knows how to perform exactly one send. ``send`` must not block;
    it returns a future that resolves to the response. Transport failures
    should resolve to a response with ``connection_successful=False`` rather
    than an exception.

    Example:
        >>> class EchoRequest:
        ...     url = "https://example.org"
        ...     def send(self):
        ...         future = Future()
        ...         future.set_result(HttpResponse(True, 200, "OK"))
        ...         return future
        ...     def await_send(self):
        ...         return self.send().result()
    """

    @property
    def url(self) -> str:
        """The computed url the request is sent to."""
        ...

    def send(self) -> Future[HttpResponse]:
        """Start sending and return a future for the response."""
        ...

    def await_send(self) -> HttpResponse:
        """Send and block until the response is available."""
        ...
