"""
Cooldown tracking for rate-limited queues.

The dispatcher decides whether a response is a rate-limit signal and hands
it to ``RateLimitState``, which works out how long admission must pause.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any

from httpqueue.config import RetryAfter
from httpqueue.observability import (
    METRIC_RATE_LIMIT_COOLDOWN,
    METRIC_RATE_LIMIT_HEADER_ANOMALIES,
    QueueMetrics,
)
from httpqueue.types import HttpResponse

logger = logging.getLogger(__name__)

# Longest cooldown a header may request; larger values count as malformed
MAX_HEADER_COOLDOWN = threading.TIMEOUT_MAX


@dataclass(frozen=True)
class CooldownDecision:
    """
    Outcome of applying one rate-limit response.

    Attributes:
        status_code: Status of the response that triggered the cooldown.
        duration: Cooldown derived from that response, in seconds.
        remaining: Seconds left in the (possibly longer) active cooldown.
        anomaly: Why the cooldown header was ignored, if it was.
    """

    status_code: int
    duration: float
    remaining: float
    anomaly: str | None = None


class RateLimitState:
    """
    Cooldown window of a single queue.

    Times are readings of the queue's clock (``time.monotonic`` by default).
    A cooldown is only ever extended, never shortened, and lifts by itself
    once the clock passes ``cooldown_until``.

    Thread Safety:
        All operations are thread-safe using internal locking.

    Example:
        >>> state = RateLimitState(RetryAfter(cooldown=5))
        >>> state.record_limit_signal(response, now=100.0)
        5.0
        >>> state.is_blocked(now=103.0)
        True
        >>> state.is_blocked(now=105.0)
        False
    """

    def __init__(
        self,
        retry_after: RetryAfter,
        metrics: QueueMetrics | None = None,
    ) -> None:
        """
        Initialize the rate limit state.

        Args:
            retry_after: Where cooldown durations come from.
            metrics: Optional metrics registry for cooldown reporting.
        """
        self.retry_after = retry_after
        self._metrics = metrics or QueueMetrics()
        self._cooldown_until: float | None = None
        self._lock = threading.Lock()

        # Statistics
        self._total_signals = 0
        self._header_anomalies = 0

    @property
    def cooldown_until(self) -> float | None:
        """Clock reading at which admission resumes, if a cooldown was set."""
        with self._lock:
            return self._cooldown_until

    def is_blocked(self, now: float) -> bool:
        """Check whether admission is paused at ``now``."""
        with self._lock:
            return self._cooldown_until is not None and now < self._cooldown_until

    def remaining(self, now: float) -> float:
        """Get seconds left in the current cooldown, or 0 if none."""
        with self._lock:
            if self._cooldown_until is None:
                return 0.0
            return max(0.0, self._cooldown_until - now)

    def record_limit_signal(self, response: HttpResponse, now: float) -> float:
        """
        Pause admission after a rate-limit response and report it.

        Args:
            response: The rate-limit response.
            now: Clock reading when the response was received.

        Returns:
            The cooldown duration in seconds derived from this response.
        """
        decision = self.apply_limit_signal(response, now)
        self.report(decision)
        return decision.duration

    def apply_limit_signal(self, response: HttpResponse, now: float) -> CooldownDecision:
        """
        Pause admission after a rate-limit response without reporting it.

        Never logs or emits metrics, so it is safe to call while holding
        the dispatcher's lock. Pass the result to ``report`` afterwards.
        """
        duration, anomaly = self._cooldown_for(response)

        with self._lock:
            self._total_signals += 1
            if anomaly is not None:
                self._header_anomalies += 1
            candidate = now + duration
            if self._cooldown_until is None or candidate > self._cooldown_until:
                self._cooldown_until = candidate
            remaining = max(0.0, self._cooldown_until - now)

        return CooldownDecision(
            status_code=getattr(response, "status_code", 0),
            duration=duration,
            remaining=remaining,
            anomaly=anomaly,
        )

    def report(self, decision: CooldownDecision) -> None:
        """Log and emit metrics for an applied rate-limit signal."""
        if decision.anomaly is not None:
            logger.warning(f"{decision.anomaly}; applying no cooldown")
            self._metrics.counter(METRIC_RATE_LIMIT_HEADER_ANOMALIES)

        self._metrics.histogram(METRIC_RATE_LIMIT_COOLDOWN, decision.duration)
        if decision.duration > 0:
            logger.warning(
                f"Rate limited (HTTP {decision.status_code}): pausing admission "
                f"for {decision.duration:.3f}s ({decision.remaining:.3f}s remaining)"
            )

    def reset(self) -> None:
        """Clear any active cooldown."""
        with self._lock:
            self._cooldown_until = None

    def _cooldown_for(self, response: HttpResponse) -> tuple[float, str | None]:
        """Compute the cooldown a response asks for, and any header anomaly."""
        if not self.retry_after.uses_header:
            return float(self.retry_after.cooldown), None

        header = self.retry_after.header
        raw = response.header(header)
        if raw is None:
            return 0.0, f"Rate-limit response has no '{header}' header"

        seconds = parse_retry_after(raw)
        if seconds is None:
            return 0.0, f"Rate-limit response has an unparseable '{header}' header: {raw!r}"
        if seconds > MAX_HEADER_COOLDOWN:
            return 0.0, f"Rate-limit response has an out-of-range '{header}' header: {raw!r}"
        return seconds, None

    def get_stats(self, now: float) -> dict[str, Any]:
        """
        Get rate limit statistics.

        Args:
            now: Current clock reading.

        Returns:
            Dictionary with cooldown state and counters.
        """
        with self._lock:
            blocked = self._cooldown_until is not None and now < self._cooldown_until
            remaining = max(0.0, self._cooldown_until - now) if blocked else 0.0
            return {
                "blocked": blocked,
                "cooldown_remaining": remaining,
                "total_signals": self._total_signals,
                "header_anomalies": self._header_anomalies,
                "retry_after": self.retry_after.to_dict(),
            }


def parse_retry_after(value: str) -> float | None:
    """
    Parse a cooldown header value.

    Accepts a number of seconds (fractions allowed) or an HTTP-date, in
    which case the delay until that date is returned (0 if already past).

    Args:
        value: Raw header value.

    Returns:
        Seconds to wait, or None if the value cannot be understood.

    Example:
        >>> parse_retry_after("120")
        120.0
        >>> parse_retry_after("soon") is None
        True
    """
    text = value.strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        return _parse_http_date(text)

    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def _parse_http_date(text: str) -> float | None:
    try:
        moment = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, moment.timestamp() - time.time())
