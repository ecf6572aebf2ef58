"""
Retry Policy
============
Attempt accounting and exponential backoff with jitter.
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..exceptions import ConfigurationError

# Upper bound (exclusive) of the additive jitter, in milliseconds
JITTER_RANGE_MS = 1000


@dataclass(frozen=True)
class RetryContext:
    """Delay computed for one scheduled retry."""
    attempt: int            # Attempt that will run after the delay
    delay_ms: int
    attempts_remaining: int


RETRY_PROFILES: Dict[str, Dict[str, Any]] = {
    # Fewer retries, longer delays
    "conservative": {"max_attempts": 2, "base_delay_ms": 2000, "max_delay_ms": 60000, "jitter": True},
    "standard": {"max_attempts": 3, "base_delay_ms": 1000, "max_delay_ms": 30000, "jitter": True},
    # More retries, shorter delays
    "aggressive": {"max_attempts": 5, "base_delay_ms": 500, "max_delay_ms": 15000, "jitter": True},
    # Fail fast
    "no_retry": {"max_attempts": 1, "base_delay_ms": 0, "max_delay_ms": 0, "jitter": False},
}


class RetryPolicy:
    """
    Retry decision and delay calculation.

    `max_attempts` counts every execution including the first one, so a
    request is tried at most `max_attempts` times (and always at least once).

    Delay for attempt n (1-based) is::

        min(base_delay_ms * 2 ** (n - 1) + jitter, max_delay_ms)

    with jitter drawn uniformly from [0, 1000) ms. Spreading the delays keeps
    requests that failed together from retrying together.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        jitter: bool = True,
        rng: Optional[random.Random] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter = jitter
        self._rng = rng or random.Random()
        self._validate()

    @classmethod
    def from_profile(cls, name: str, **overrides: Any) -> "RetryPolicy":
        key = name.lower().replace("-", "_")
        if key not in RETRY_PROFILES:
            raise ConfigurationError(f"Unknown retry profile: {name}")
        return cls(**{**RETRY_PROFILES[key], **overrides})

    def _validate(self) -> None:
        if self.max_attempts < 0:
            raise ConfigurationError("max_attempts must be 0 or greater")
        if self.base_delay_ms < 0:
            raise ConfigurationError("base_delay_ms must be 0 or greater")
        if self.max_delay_ms < 0:
            raise ConfigurationError("max_delay_ms must be 0 or greater")

    def should_retry(self, attempts: int) -> bool:
        """Whether another attempt is allowed after `attempts` executions."""
        return attempts < self.max_attempts

    def calculate_delay(self, attempt: int) -> int:
        """Delay in milliseconds before retry attempt `attempt` (1-based)."""
        exponential = self.base_delay_ms * (2 ** max(attempt - 1, 0))
        jitter = self._rng.random() * JITTER_RANGE_MS if self.jitter else 0
        return int(round(min(exponential + jitter, self.max_delay_ms)))

    def get_retry_info(self, attempts: int) -> Optional[RetryContext]:
        """Context for the next retry, or None when attempts are exhausted."""
        if not self.should_retry(attempts):
            return None
        return RetryContext(
            attempt=attempts + 1,
            delay_ms=self.calculate_delay(attempts),
            attempts_remaining=max(0, self.max_attempts - attempts),
        )

    def get_config(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "jitter": self.jitter,
        }

    def update_config(self, **changes: Any) -> None:
        """Update configuration at runtime; unknown keys are rejected."""
        for key, value in changes.items():
            if key not in ("max_attempts", "base_delay_ms", "max_delay_ms", "jitter"):
                raise ConfigurationError(f"Unknown retry setting: {key}")
            if value is not None:
                setattr(self, key, value)
        self._validate()
