"""
Priority queue implementation for request admission.

Provides a thread-safe, two-lane queue. The prioritary lane is always
drained before the normal lane, and FIRST requests are inserted at the
front of the prioritary lane.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from httpqueue.types import HttpRequestUnit, HttpResponse

logger = logging.getLogger(__name__)


class HttpRequestPriority(IntEnum):
    """
    Priority of a request relative to other requests in the same queue.

    Lower values are admitted first.

    Attributes:
        FIRST: Placed at the front of the prioritary lane.
        PRIORITARY: Placed at the back of the prioritary lane.
        NORMAL: Placed at the back of the normal lane.
    """

    FIRST = 0
    PRIORITARY = 1
    NORMAL = 2


@dataclass
class QueueEntry:
    """
    A request waiting for admission.

    Attributes:
        unit: The request unit to send.
        priority: Priority the request was pushed with.
        sequence: Monotonic enqueue counter, unique per queue.
        enqueued_at: Clock reading when the entry was enqueued.
        future: Resolved once with the response, or with an error if the
            request unit itself fails.
    """

    unit: HttpRequestUnit
    priority: HttpRequestPriority
    sequence: int
    enqueued_at: float
    future: Future[HttpResponse] = field(default_factory=Future, repr=False)

    def wait_seconds(self, now: float) -> float:
        """Get how long this entry has been (or was) waiting."""
        return max(0.0, now - self.enqueued_at)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "sequence": self.sequence,
            "priority": self.priority.name,
            "url": getattr(self.unit, "url", None),
            "enqueued_at": self.enqueued_at,
            "done": self.future.done(),
        }


class PriorityQueue:
    """
    Thread-safe two-lane priority queue.

    FIRST entries go ahead of every PRIORITARY entry but behind FIRST
    entries that are still waiting, so each priority keeps FIFO order.

    Example:
        >>> queue = PriorityQueue()
        >>> queue.enqueue(request_a, HttpRequestPriority.NORMAL)
        >>> queue.enqueue(request_b, HttpRequestPriority.FIRST)
        >>>
        >>> # FIRST dequeued before NORMAL
        >>> entry = queue.dequeue()
        >>> assert entry.unit is request_b
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the priority queue.

        Args:
            clock: Time source used to stamp entries.
        """
        self._clock = clock
        self._prioritary: deque[QueueEntry] = deque()
        self._normal: deque[QueueEntry] = deque()
        # Number of FIRST entries currently at the head of the prioritary lane
        self._first_count = 0
        self._sequence = itertools.count()
        self._lock = threading.RLock()

        # Statistics
        self._total_enqueued = 0
        self._total_dequeued = 0

    def enqueue(
        self,
        unit: HttpRequestUnit,
        priority: HttpRequestPriority = HttpRequestPriority.NORMAL,
    ) -> Future[HttpResponse]:
        """
        Add a request to the queue.

        Args:
            unit: The request unit to enqueue.
            priority: Which lane, and which end of it, the entry goes to.

        Returns:
            A future resolved with the request's response.
        """
        priority = HttpRequestPriority(priority)

        with self._lock:
            entry = QueueEntry(
                unit=unit,
                priority=priority,
                sequence=next(self._sequence),
                enqueued_at=self._clock(),
            )
            # Queued requests cannot be withdrawn, so the future is never cancellable
            entry.future.set_running_or_notify_cancel()

            if priority == HttpRequestPriority.FIRST:
                self._prioritary.insert(self._first_count, entry)
                self._first_count += 1
            elif priority == HttpRequestPriority.PRIORITARY:
                self._prioritary.append(entry)
            else:
                self._normal.append(entry)

            self._total_enqueued += 1

        logger.debug(f"Enqueued request #{entry.sequence} with priority {priority.name}")
        return entry.future

    def dequeue(self) -> QueueEntry | None:
        """
        Remove and return the next entry to admit.

        Returns:
            The front of the prioritary lane, else the front of the normal
            lane, or None if both are empty.
        """
        with self._lock:
            if self._prioritary:
                entry = self._prioritary.popleft()
                if self._first_count:
                    self._first_count -= 1
            elif self._normal:
                entry = self._normal.popleft()
            else:
                return None

            self._total_dequeued += 1
            return entry

    def peek(self) -> QueueEntry | None:
        """
        View the next entry without removing it.

        Returns:
            The next entry to admit, or None if empty.
        """
        with self._lock:
            if self._prioritary:
                return self._prioritary[0]
            if self._normal:
                return self._normal[0]
            return None

    def size(self) -> int:
        """Get the number of entries waiting."""
        with self._lock:
            return len(self._prioritary) + len(self._normal)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return self.size() == 0

    def size_by_priority(self) -> dict[HttpRequestPriority, int]:
        """
        Get queue size breakdown by priority.

        Returns:
            Dictionary mapping priorities to counts.
        """
        with self._lock:
            counts: dict[HttpRequestPriority, int] = dict.fromkeys(HttpRequestPriority, 0)
            for entry in itertools.chain(self._prioritary, self._normal):
                counts[entry.priority] += 1
            return counts

    def get_stats(self) -> dict[str, Any]:
        """
        Get queue statistics.

        Returns:
            Dictionary with queue statistics.
        """
        with self._lock:
            return {
                "current_size": len(self._prioritary) + len(self._normal),
                "prioritary_lane": len(self._prioritary),
                "normal_lane": len(self._normal),
                "total_enqueued": self._total_enqueued,
                "total_dequeued": self._total_dequeued,
                "size_by_priority": {
                    level.name: count
                    for level, count in self.size_by_priority().items()
                },
            }

    def __len__(self) -> int:
        """Get queue size."""
        return self.size()
