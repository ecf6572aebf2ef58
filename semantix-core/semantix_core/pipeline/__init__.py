"""
Delivery Pipeline
=================
Lifecycle handling and orchestration of queued backend requests.
"""

from .lifecycle import RequestLifecycleHandler
from .orchestrator import RUNTIME_SETTINGS, RequestOrchestrator

__all__ = [
    "RequestLifecycleHandler",
    "RequestOrchestrator",
    "RUNTIME_SETTINGS",
]
