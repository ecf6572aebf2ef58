"""
Request Queue
=============
FIFO queue with priority re-insertion and a concurrency cap.
"""

from collections import deque
from typing import Any, Deque, Dict, Optional

from ..exceptions import ConfigurationError
from .models import Request


class RequestQueue:
    """
    FIFO request queue with concurrency control.

    Retries are pushed to the head with `enqueue_priority`, so a request that
    keeps retrying is serviced ahead of fresh work and can starve it.

    `dequeue` is a non-blocking poll: it returns None when the queue is empty
    or when the number of active requests has reached `max_concurrent`.
    """

    def __init__(self, max_concurrent: int = 5):
        if not isinstance(max_concurrent, int) or isinstance(max_concurrent, bool) or max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be a positive integer")
        self.max_concurrent = max_concurrent
        self._pending: Deque[Request] = deque()
        self._active: Dict[str, Request] = {}

    def enqueue(self, request: Request) -> str:
        """Append a request to the tail."""
        self._pending.append(request)
        return request.id

    def enqueue_priority(self, request: Request) -> str:
        """Push a request to the head."""
        self._pending.appendleft(request)
        return request.id

    def dequeue(self) -> Optional[Request]:
        """Pop the next request if a concurrency slot is free."""
        if not self._pending:
            return None
        if self.is_at_limit():
            return None
        return self._pending.popleft()

    def mark_active(self, request_id: str, request: Request) -> None:
        self._active[request_id] = request

    def mark_complete(self, request_id: str) -> None:
        self._active.pop(request_id, None)

    def get_active(self, request_id: str) -> Optional[Request]:
        return self._active.get(request_id)

    def find_pending(self, request_id: str) -> Optional[Request]:
        for request in self._pending:
            if request.id == request_id:
                return request
        return None

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_empty(self) -> bool:
        return not self._pending

    def is_at_limit(self) -> bool:
        return self.active_count >= self.max_concurrent

    def clear_pending(self) -> None:
        self._pending.clear()

    def clear_active(self) -> None:
        self._active.clear()

    def clear(self) -> None:
        self.clear_pending()
        self.clear_active()

    def get_stats(self) -> Dict[str, Any]:
        """Get queue statistics."""
        return {
            "pending": self.pending_count,
            "active": self.active_count,
            "max_concurrent": self.max_concurrent,
            "at_limit": self.is_at_limit(),
        }
