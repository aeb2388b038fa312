"""
Configuration for HTTP queues.

A queue is configured once, at construction. Both dataclasses are frozen
and validate themselves in ``__post_init__``, so an invalid configuration
fails immediately instead of surfacing later inside the dispatcher.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from httpqueue.exceptions import ConfigurationError
from httpqueue.types import HTTP_TOO_MANY_REQUESTS

DEFAULT_MAX_SIMULTANEOUS_SEND_OPERATIONS = 10


@dataclass(frozen=True)
class RetryAfter:
    """
    How long to stop admitting requests after a rate-limit response.

    Exactly one of the two attributes must be set.

    Attributes:
        header: Response header holding the cooldown in seconds
            (for example ``"Retry-After"``).
        cooldown: Fixed cooldown in seconds applied on every signal.

    Example:
        >>> RetryAfter(header="Retry-After")
        >>> RetryAfter(cooldown=5)
    """

    header: str | None = None
    cooldown: float | None = None

    def __post_init__(self) -> None:
        """Validate that exactly one source is configured."""
        if self.header is None and self.cooldown is None:
            raise ConfigurationError(
                "retry_after",
                reason="one of 'header' or 'cooldown' is required",
            )
        if self.header is not None and self.cooldown is not None:
            raise ConfigurationError(
                "retry_after",
                value={"header": self.header, "cooldown": self.cooldown},
                reason="'header' and 'cooldown' are mutually exclusive",
            )
        if self.header is not None:
            if not isinstance(self.header, str) or not self.header.strip():
                raise ConfigurationError(
                    "retry_after.header",
                    value=self.header,
                    reason="must be a non-empty header name",
                )
        else:
            if isinstance(self.cooldown, bool) or not isinstance(self.cooldown, (int, float)):
                raise ConfigurationError(
                    "retry_after.cooldown",
                    value=self.cooldown,
                    reason="must be a number of seconds",
                )
            if not math.isfinite(self.cooldown):
                raise ConfigurationError(
                    "retry_after.cooldown",
                    value=self.cooldown,
                    reason="must be a finite number of seconds",
                )
            if self.cooldown < 0:
                raise ConfigurationError(
                    "retry_after.cooldown",
                    value=self.cooldown,
                    reason="must not be negative",
                )

    @property
    def uses_header(self) -> bool:
        """True when the cooldown is read from a response header."""
        return self.header is not None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryAfter:
        """Build from ``{"header": name}`` or ``{"cooldown": seconds}``."""
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                "retry_after",
                value=data,
                reason="must be a mapping with 'header' or 'cooldown'",
            )
        return cls(header=data.get("header"), cooldown=data.get("cooldown"))

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dictionary form accepted by ``from_dict``."""
        if self.uses_header:
            return {"header": self.header}
        return {"cooldown": self.cooldown}


@dataclass(frozen=True)
class QueueConfig:
    """
    Configuration for an HttpQueue.

    Attributes:
        retry_after: Where rate-limit cooldowns come from.
        max_simultaneous_send_operations: Upper bound on concurrent sends.
        rate_limit_status_codes: Status codes treated as rate-limit signals.

    Example:
        >>> config = QueueConfig(
        ...     retry_after=RetryAfter(header="Retry-After"),
        ...     max_simultaneous_send_operations=4,
        ... )
    """

    retry_after: RetryAfter
    max_simultaneous_send_operations: int = DEFAULT_MAX_SIMULTANEOUS_SEND_OPERATIONS
    rate_limit_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({HTTP_TOO_MANY_REQUESTS})
    )

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not isinstance(self.retry_after, RetryAfter):
            raise ConfigurationError(
                "retry_after",
                value=self.retry_after,
                reason="must be a RetryAfter instance",
            )
        limit = self.max_simultaneous_send_operations
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ConfigurationError(
                "max_simultaneous_send_operations",
                value=limit,
                reason="must be a positive integer",
            )
        # Accept any iterable of codes but store a frozenset
        codes = frozenset(self.rate_limit_status_codes)
        if not codes:
            raise ConfigurationError(
                "rate_limit_status_codes",
                value=self.rate_limit_status_codes,
                reason="must contain at least one status code",
            )
        object.__setattr__(self, "rate_limit_status_codes", codes)

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> QueueConfig:
        """
        Build a configuration from an options dictionary.

        Accepts both the camelCase option names used by the original
        http-queue library and snake_case names.

        Args:
            options: Mapping with ``retryAfter``/``retry_after`` and optionally
                ``maxSimultaneousSendOperations``/``max_simultaneous_send_operations``
                and ``rateLimitStatusCodes``/``rate_limit_status_codes``.

        Returns:
            A validated QueueConfig.

        Raises:
            ConfigurationError: If an option is missing or invalid.

        Example:
            >>> QueueConfig.from_dict({
            ...     "retryAfter": {"cooldown": 5},
            ...     "maxSimultaneousSendOperations": 1,
            ... })
        """
        retry_after = _pick(options, "retryAfter", "retry_after")
        if retry_after is None:
            raise ConfigurationError("retry_after", reason="option is required")
        if not isinstance(retry_after, RetryAfter):
            retry_after = RetryAfter.from_dict(retry_after)

        kwargs: dict[str, Any] = {"retry_after": retry_after}

        limit = _pick(
            options, "maxSimultaneousSendOperations", "max_simultaneous_send_operations"
        )
        if limit is not None:
            kwargs["max_simultaneous_send_operations"] = limit

        codes = _pick(options, "rateLimitStatusCodes", "rate_limit_status_codes")
        if codes is not None:
            kwargs["rate_limit_status_codes"] = _as_codes(codes)

        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "retry_after": self.retry_after.to_dict(),
            "max_simultaneous_send_operations": self.max_simultaneous_send_operations,
            "rate_limit_status_codes": sorted(self.rate_limit_status_codes),
        }


def _pick(options: Mapping[str, Any], *names: str) -> Any:
    """Return the first option present under any of the given names."""
    for name in names:
        if name in options:
            return options[name]
    return None


def _as_codes(codes: Any) -> frozenset[int]:
    """Normalize a single code or an iterable of codes."""
    if isinstance(codes, int):
        return frozenset({codes})
    if isinstance(codes, Iterable) and not isinstance(codes, str):
        try:
            return frozenset(int(code) for code in codes)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                "rate_limit_status_codes",
                value=codes,
                reason=f"invalid status code ({e})",
            ) from e
    raise ConfigurationError(
        "rate_limit_status_codes",
        value=codes,
        reason="must be a status code or a list of status codes",
    )
