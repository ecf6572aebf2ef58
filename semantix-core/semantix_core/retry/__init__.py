"""
Retry Logic with Exponential Backoff
=====================================
Retry decisions and backoff delays for transient delivery failures.
"""

from .policy import JITTER_RANGE_MS, RETRY_PROFILES, RetryContext, RetryPolicy

__all__ = [
    "JITTER_RANGE_MS",
    "RETRY_PROFILES",
    "RetryContext",
    "RetryPolicy",
]
