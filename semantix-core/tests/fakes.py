"""
Test doubles for the delivery pipeline.
"""

import asyncio
from typing import Any, List, Optional

from semantix_core.retry import RetryPolicy
from semantix_core.transport import Transport


def fast_retry_policy(max_attempts: int = 3) -> RetryPolicy:
    """Retry policy with millisecond delays and no jitter."""
    return RetryPolicy(max_attempts=max_attempts, base_delay_ms=1, max_delay_ms=5, jitter=False)


class FakeTransport(Transport):
    """
    Scripted transport.

    Each call consumes the next outcome; when the script runs out `default`
    is used. An outcome may be a value, an exception instance, or a callable
    taking the request and returning either. With a `gate`, every call waits
    on it before settling.
    """

    def __init__(
        self,
        outcomes: Optional[List[Any]] = None,
        default: Any = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.outcomes = list(outcomes or [])
        self.default = {"ok": True} if default is None else default
        self.gate = gate
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def execute(self, request, timeout):
        self.calls.append((request.id, request.attempts, timeout))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)

            outcome = self.outcomes.pop(0) if self.outcomes else self.default
            if callable(outcome) and not isinstance(outcome, BaseException):
                outcome = outcome(request)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    async def aclose(self):
        self.closed = True
