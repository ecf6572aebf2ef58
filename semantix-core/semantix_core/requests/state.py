"""
Request State Manager
=====================
Request id generation, status lookup and bounded terminal history.
"""

import secrets
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

import structlog

from ..exceptions import ConfigurationError
from .models import Request, RequestSpec
from .queue import RequestQueue

logger = structlog.get_logger(__name__)

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_request_id() -> str:
    """Generate an opaque request id, e.g. ``req_1704067200000_k3j9x0q2m``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"req_{int(time.time() * 1000)}_{suffix}"


class RequestStateManager:
    """
    Tracks requests for a single orchestrator.

    Terminal requests are moved into a history map holding at most
    `max_history` entries; the oldest entry is evicted first.
    """

    def __init__(self, queue: RequestQueue, max_history: int = 1000):
        if max_history < 1:
            raise ConfigurationError("max_history must be at least 1")
        self.queue = queue
        self.max_history = max_history
        self._history: "OrderedDict[str, Request]" = OrderedDict()

    def create_request(self, spec: RequestSpec) -> Request:
        """Create a pending request with a fresh id."""
        request_id = generate_request_id()
        while request_id in self._history or self.get_status(request_id):
            request_id = generate_request_id()
        return Request.from_spec(request_id, spec)

    def store_in_history(self, request: Request, **additional: Any) -> None:
        """Move a terminal request into history."""
        for key, value in additional.items():
            setattr(request, key, value)
        request.completed_at = time.time()

        self._history[request.id] = request
        self._history.move_to_end(request.id)

        while len(self._history) > self.max_history:
            evicted_id, _ = self._history.popitem(last=False)
            logger.debug("request_history_evicted", request_id=evicted_id)

    def get_status(self, request_id: str) -> Optional[Request]:
        """Look up a request in the active set, the pending queue, then history."""
        request = self.queue.get_active(request_id)
        if request is not None:
            return request

        request = self.queue.find_pending(request_id)
        if request is not None:
            return request

        return self._history.get(request_id)

    def get_from_history(self, request_id: str) -> Optional[Request]:
        return self._history.get(request_id)

    @property
    def history_size(self) -> int:
        return len(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "history_size": self.history_size,
            "max_history": self.max_history,
        }
