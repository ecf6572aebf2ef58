"""
Requests
========
Request models, the bounded-concurrency queue and request state tracking.
"""

from .models import ALLOWED_METHODS, Request, RequestSpec, RequestStatus
from .queue import RequestQueue
from .state import RequestStateManager, generate_request_id

__all__ = [
    # Models
    "ALLOWED_METHODS",
    "Request",
    "RequestSpec",
    "RequestStatus",
    # Queue
    "RequestQueue",
    # State
    "RequestStateManager",
    "generate_request_id",
]
