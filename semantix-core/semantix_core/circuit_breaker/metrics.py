"""
Circuit Metrics
===============
Windowed success/failure counters feeding the breaker and its recovery
strategies.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class Outcome:
    """A single recorded request outcome."""
    success: bool
    timestamp: float


class CircuitMetrics:
    """
    Collects circuit breaker outcome metrics.

    The rolling window keeps the last `window_size` outcomes, oldest evicted
    first. Windowed queries (`get_success_rate(n)`, `get_recent_failures(n)`)
    look at the last `n` entries of that already-bounded window, so the
    effective size is ``min(n, window_size, outcomes recorded)``.
    """

    def __init__(self, threshold: int = 5, window_size: int = 100):
        if threshold < 1:
            raise ConfigurationError("threshold must be at least 1")
        if window_size < 1:
            raise ConfigurationError("window_size must be at least 1")

        self.threshold = threshold
        self.window_size = window_size

        self.successes = 0
        self.failures = 0
        self.total_requests = 0
        self.consecutive_successes = 0
        self.consecutive_failures = 0

        self.last_success_time: Optional[float] = None
        self.last_failure_time: Optional[float] = None
        self.first_failure_time: Optional[float] = None

        self._window: Deque[Outcome] = deque(maxlen=window_size)

    def record_success(self) -> None:
        now = time.time()
        self.successes += 1
        self.total_requests += 1
        self.consecutive_successes += 1
        self.consecutive_failures = 0
        self.last_success_time = now
        self._window.append(Outcome(True, now))

    def record_failure(self) -> None:
        now = time.time()
        self.failures += 1
        self.total_requests += 1
        self.consecutive_failures += 1
        self.consecutive_successes = 0
        self.last_failure_time = now
        if self.first_failure_time is None:
            self.first_failure_time = now
        self._window.append(Outcome(False, now))

    @property
    def window_length(self) -> int:
        return len(self._window)

    def _recent(self, window_size: Optional[int]) -> list:
        size = self.window_size if window_size is None else window_size
        if size <= 0:
            return []
        return list(self._window)[-size:]

    def get_success_rate(self, window_size: Optional[int] = None) -> float:
        """
        Success ratio in [0, 1].

        Returns 1.0 when nothing has been recorded yet (assume healthy).
        """
        if self.total_requests == 0:
            return 1.0

        if window_size:
            recent = self._recent(window_size)
            if not recent:
                return 1.0
            return sum(1 for outcome in recent if outcome.success) / len(recent)

        return self.successes / self.total_requests

    def get_failure_rate(self, window_size: Optional[int] = None) -> float:
        return 1.0 - self.get_success_rate(window_size)

    def get_health_percentage(self) -> int:
        """Health as an integer percentage (0-100)."""
        return int(round(self.get_success_rate() * 100))

    def is_threshold_reached(self) -> bool:
        return self.consecutive_failures >= self.threshold

    def get_recent_failures(self, window_size: Optional[int] = None) -> int:
        return sum(1 for outcome in self._recent(window_size) if not outcome.success)

    def get_recent_successes(self, window_size: Optional[int] = None) -> int:
        return sum(1 for outcome in self._recent(window_size) if outcome.success)

    def time_since_last_failure(self) -> Optional[float]:
        """Seconds since the last failure, or None."""
        if self.last_failure_time is None:
            return None
        return time.time() - self.last_failure_time

    def time_since_first_failure(self) -> Optional[float]:
        if self.first_failure_time is None:
            return None
        return time.time() - self.first_failure_time

    def get_stats(self) -> Dict[str, Any]:
        return {
            "successes": self.successes,
            "failures": self.failures,
            "total_requests": self.total_requests,
            "success_rate": self.get_success_rate(),
            "failure_rate": self.get_failure_rate(),
            "health_percentage": self.get_health_percentage(),
            "consecutive_successes": self.consecutive_successes,
            "consecutive_failures": self.consecutive_failures,
            "recent_successes": self.get_recent_successes(10),
            "recent_failures": self.get_recent_failures(10),
            "last_success_time": self.last_success_time,
            "last_failure_time": self.last_failure_time,
            "time_since_last_failure": self.time_since_last_failure(),
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self.successes = 0
        self.failures = 0
        self.total_requests = 0
        self.consecutive_successes = 0
        self.consecutive_failures = 0
        self.last_success_time = None
        self.last_failure_time = None
        self.first_failure_time = None
        self._window.clear()

    def reset_failures(self) -> None:
        """Reset failure tracking only (used when the circuit closes)."""
        self.failures = 0
        self.consecutive_failures = 0
        self.last_failure_time = None
        self.first_failure_time = None
