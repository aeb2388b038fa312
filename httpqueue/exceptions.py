"""
Custom exceptions for httpqueue.

Only construction and lifecycle problems are raised as exceptions.
Transport failures and rate-limited responses are ordinary results
delivered through the request's future.
"""

from __future__ import annotations

from typing import Any


class HttpQueueError(Exception):
    """
    Base exception for all httpqueue errors.

    Attributes:
        message: Human-readable error description.
        details: Additional context about the error.

    Example:
        >>> try:
        ...     queue = HttpQueue(QueueConfig(retry_after=RetryAfter(cooldown=5)))
        ... except HttpQueueError as e:
        ...     logger.error(f"httpqueue error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(HttpQueueError):
    """
    Raised when queue options are invalid.

    Raised while the configuration is being built, so a queue instance
    never exists in an invalid state.

    Attributes:
        option: Name of the offending option.
        value: The rejected value.

    Example:
        >>> raise ConfigurationError(
        ...     option="max_simultaneous_send_operations",
        ...     value=0,
        ...     reason="must be a positive integer",
        ... )
    """

    def __init__(self, option: str, value: Any = None, reason: str | None = None) -> None:
        self.option = option
        self.value = value
        self.reason = reason or "invalid value"

        message = f"Invalid queue option '{option}': {self.reason}"
        details = {
            "option": option,
            "value": repr(value),
            "reason": self.reason,
        }
        super().__init__(message, details)


class QueueClosedError(HttpQueueError):
    """
    Raised when a request is pushed to a queue that has been closed.

    Requests accepted before the queue was closed still run to completion.
    """

    def __init__(self, pending: int = 0) -> None:
        self.pending = pending
        super().__init__(
            "Queue is closed and no longer accepts requests",
            {"pending": pending},
        )
