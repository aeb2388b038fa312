"""
Reference request unit backed by urllib.

``HttpRequest`` is a ready-made request unit for queues: it composes the
url, performs one send through ``urllib.request`` and maps every outcome
to an ``HttpResponse``. Any other object satisfying ``HttpRequestUnit``
can be pushed to a queue instead.
"""

from __future__ import annotations

import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping
from concurrent.futures import Future
from email.message import Message
from http import HTTPStatus
from typing import Any, Union

from httpqueue.types import HttpResponse

logger = logging.getLogger(__name__)

QueryValue = Union[str, int, float, bool]

DEFAULT_TIMEOUT = 30.0


class HttpRequest:
    """
    An HTTP request that can be sent exactly once per ``send`` call.

    Attributes:
        method: HTTP method, upper-cased.
        body: Request body, sent UTF-8 encoded.
        headers: Additional request headers.
        timeout: Socket timeout in seconds for the send.

    Example:
        >>> request = HttpRequest(
        ...     "https://example.org",
        ...     "GET",
        ...     query={"isCool": True, "qwerty": "keyboard", "from": "python"},
        ... )
        >>> request.url
        'https://example.org?isCool=true&qwerty=keyboard&from=python'
    """

    def __init__(
        self,
        url: str,
        method: str = "GET",
        query: Mapping[str, QueryValue] | None = None,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """
        Create a request.

        Args:
            url: The url endpoint the request is sent to.
            method: The method/verb used by the request.
            query: Query options appended to the url.
            body: Body of the request (POST, PUT, etc.).
            headers: Additional headers to include.
            timeout: Socket timeout in seconds.

        Raises:
            ValueError: If the url or method is empty.
        """
        if not url:
            raise ValueError("url must not be empty")
        if not method or not method.strip():
            raise ValueError("method must not be empty")

        self.method = method.strip().upper()
        self.body = body
        self.headers: dict[str, str] = dict(headers or {})
        self.timeout = timeout
        self._url = _compose_url(url, query)

    @property
    def url(self) -> str:
        """The computed url, query string included."""
        return self._url

    def send(self) -> Future[HttpResponse]:
        """
        Send the request on a background thread.

        Returns:
            A future resolved with the response when it is available.
        """
        future: Future[HttpResponse] = Future()
        future.set_running_or_notify_cancel()

        def run() -> None:
            try:
                future.set_result(self.await_send())
            except Exception as e:
                future.set_exception(e)

        threading.Thread(target=run, name=f"httpqueue-send {self.method}", daemon=True).start()
        return future

    def await_send(self) -> HttpResponse:
        """
        Send the request and block until the response is available.

        Returns:
            The server's response. Connection problems produce a response
            with ``connection_successful=False`` instead of raising.
        """
        data = self.body.encode("utf-8") if self.body is not None else None
        req = urllib.request.Request(
            self._url,
            data=data,
            headers=self.headers,
            method=self.method,
        )

        logger.debug(f"{self.method} {self._url}")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return _to_response(
                    response.status, response.reason, response.headers, response.read()
                )
        except urllib.error.HTTPError as e:
            try:
                payload = e.read()
            except OSError:
                payload = b""
            return _to_response(e.code, e.reason, e.headers, payload)
        except urllib.error.URLError as e:
            logger.warning(f"{self.method} {self._url} failed to connect: {e.reason}")
            return HttpResponse.connection_failure(str(e.reason))
        except (TimeoutError, OSError) as e:
            logger.warning(f"{self.method} {self._url} failed: {e!r}")
            return HttpResponse.connection_failure(str(e) or type(e).__name__)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "url": self._url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "timeout": self.timeout,
        }

    def __repr__(self) -> str:
        return f"HttpRequest({self.method} {self._url})"


def _compose_url(url: str, query: Mapping[str, QueryValue] | None) -> str:
    """Append query options to a url."""
    if not query:
        return url
    pairs = [(str(key), _query_value(value)) for key, value in query.items()]
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urllib.parse.urlencode(pairs)}"


def _query_value(value: QueryValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_response(
    status: int,
    reason: str | None,
    headers: Message | None,
    payload: bytes,
) -> HttpResponse:
    """Build an HttpResponse from urllib's response parts."""
    header_map: dict[str, str] = {}
    charset = "utf-8"
    if headers is not None:
        for key, value in headers.items():
            if key in header_map:
                header_map[key] = f"{header_map[key]}, {value}"
            else:
                header_map[key] = value
        charset = headers.get_content_charset() or charset

    if not reason:
        try:
            reason = HTTPStatus(status).phrase
        except ValueError:
            reason = ""

    try:
        body = payload.decode(charset, errors="replace")
    except LookupError:
        body = payload.decode("utf-8", errors="replace")

    return HttpResponse(
        connection_successful=True,
        status_code=status,
        status_message=reason,
        headers=header_map,
        body=body,
    )
