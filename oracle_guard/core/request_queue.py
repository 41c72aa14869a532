"""
Priority request queue.

Holds pending oracle requests in three FIFO buckets with per-bucket and
aggregate capacity limits, duplicate suppression and tick-based timeouts.
"""

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

from .results import CallType, OracleResult

logger = logging.getLogger(__name__)


class Priority(Enum):
    """Request priority classes, dequeued strictly in this order."""
    HIGH = 0    # player input interpretation
    MEDIUM = 1  # world state narrative
    LOW = 2     # ambient NPC dialogue


# Ticks before a queued request times out (60 ticks per second)
DEFAULT_TIMEOUT_TICKS: Dict[Priority, int] = {
    Priority.HIGH: 180,
    Priority.MEDIUM: 600,
    Priority.LOW: 300,
}

MAX_BUCKET_SIZE: Dict[Priority, int] = {
    Priority.HIGH: 5,
    Priority.MEDIUM: 3,
    Priority.LOW: 10,
}

MAX_TOTAL_SIZE = 15


@dataclass
class OracleRequest:
    """A pending call owned by the queue until dequeued."""
    prompt: str
    priority: Priority = Priority.MEDIUM
    enqueued_tick: int = 0
    timeout_ticks: Optional[int] = None
    callback: Optional[Callable[[OracleResult], None]] = None
    call_type: CallType = CallType.UNKNOWN
    request_id: Optional[int] = None
    attempt_count: int = 0
    max_attempts: int = 3
    next_retry_tick: int = 0

    def __post_init__(self):
        if self.timeout_ticks is None:
            self.timeout_ticks = DEFAULT_TIMEOUT_TICKS[self.priority]
        if self.timeout_ticks < 0:
            raise ValueError("timeout_ticks cannot be negative")

    def is_timed_out(self, current_tick: int) -> bool:
        return current_tick - self.enqueued_tick > self.timeout_ticks

    def is_ready(self, current_tick: int) -> bool:
        return not self.is_timed_out(current_tick) and self.next_retry_tick <= current_tick


def notify_timeout(request: OracleRequest, current_tick: int) -> None:
    """Default timeout handler: hand the caller a TIMEOUT result."""
    if request.callback is not None:
        request.callback(OracleResult.timed_out(current_tick - request.enqueued_tick))


class RequestQueue:
    """Three-bucket priority queue.

    Duplicate detection uses the exact prompt text; a duplicate is rejected,
    never merged. Rejections are silent to the caller apart from the False
    return value.
    """

    def __init__(
        self,
        on_timeout: Optional[Callable[[OracleRequest, int], None]] = None,
    ):
        """Initialize an empty queue.

        Args:
            on_timeout: Called with (request, current_tick) for each request
                removed by a timeout sweep. Defaults to invoking the request
                callback with a TIMEOUT result.
        """
        self._buckets: Dict[Priority, Deque[OracleRequest]] = {
            priority: deque() for priority in Priority
        }
        self._prompts: Dict[str, int] = {}
        self._ids = itertools.count()
        self._on_timeout = on_timeout or notify_timeout
        self._lock = threading.Lock()

    @staticmethod
    def timeout_ticks_for(priority: Priority) -> int:
        return DEFAULT_TIMEOUT_TICKS[priority]

    def enqueue(self, request: OracleRequest) -> bool:
        """Append a request to the back of its priority bucket.

        Returns:
            False if the prompt is already queued, the bucket is full or the
            whole queue is at its aggregate cap
        """
        with self._lock:
            if not self._admissible(request):
                return False
            if request.request_id is None:
                request.request_id = next(self._ids)
            self._buckets[request.priority].append(request)
            self._prompts[request.prompt] = request.request_id
        return True

    def requeue(self, request: OracleRequest) -> bool:
        """Put a retried request back at the front of its bucket."""
        with self._lock:
            if not self._admissible(request):
                return False
            self._buckets[request.priority].appendleft(request)
            self._prompts[request.prompt] = request.request_id
        return True

    def dequeue_next(self, current_tick: int) -> Optional[OracleRequest]:
        """Remove and return the next ready request.

        Sweeps timeouts first. The caller takes ownership of the returned
        request and is responsible for completing it.
        """
        self.process_timeouts(current_tick)
        with self._lock:
            for priority in Priority:
                bucket = self._buckets[priority]
                for index, request in enumerate(bucket):
                    if request.is_ready(current_tick):
                        del bucket[index]
                        del self._prompts[request.prompt]
                        return request
        return None

    def peek_next(self, current_tick: int) -> Optional[OracleRequest]:
        """The request `dequeue_next` would return, left in place."""
        with self._lock:
            for priority in Priority:
                for request in self._buckets[priority]:
                    if request.is_ready(current_tick):
                        return request
        return None

    def has_ready(self, current_tick: int) -> bool:
        with self._lock:
            return any(
                request.is_ready(current_tick)
                for bucket in self._buckets.values()
                for request in bucket
            )

    def process_timeouts(self, current_tick: int) -> int:
        """Remove timed-out requests and signal each one.

        Returns:
            Number of requests that timed out
        """
        expired: List[OracleRequest] = []
        with self._lock:
            for priority, bucket in self._buckets.items():
                keep = deque()
                for request in bucket:
                    if request.is_timed_out(current_tick):
                        expired.append(request)
                        del self._prompts[request.prompt]
                    else:
                        keep.append(request)
                self._buckets[priority] = keep
        # Handlers run outside the lock so callbacks may resubmit
        for request in expired:
            logger.info(
                "Request %s (%s) timed out after %d ticks",
                request.request_id, request.priority.name,
                current_tick - request.enqueued_tick,
            )
            self._on_timeout(request, current_tick)
        return len(expired)

    def size(self, priority: Optional[Priority] = None) -> int:
        with self._lock:
            if priority is not None:
                return len(self._buckets[priority])
            return sum(len(bucket) for bucket in self._buckets.values())

    def contains(self, prompt: str) -> bool:
        with self._lock:
            return prompt in self._prompts

    def clear(self) -> List[OracleRequest]:
        """Drop every queued request, returning them in priority order."""
        with self._lock:
            drained = [request for priority in Priority for request in self._buckets[priority]]
            for bucket in self._buckets.values():
                bucket.clear()
            self._prompts.clear()
        return drained

    def _admissible(self, request: OracleRequest) -> bool:
        if request.prompt in self._prompts:
            logger.debug("Rejected duplicate prompt (request %s)", request.request_id)
            return False
        total = sum(len(bucket) for bucket in self._buckets.values())
        if total >= MAX_TOTAL_SIZE:
            logger.debug("Rejected request: queue full (%d)", total)
            return False
        if len(self._buckets[request.priority]) >= MAX_BUCKET_SIZE[request.priority]:
            logger.debug("Rejected request: %s bucket full", request.priority.name)
            return False
        return True
