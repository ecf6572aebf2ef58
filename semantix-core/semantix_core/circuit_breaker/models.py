"""
Circuit Breaker Models
======================
Data models, enums and configuration profiles for the circuit breaker.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List

from ..exceptions import ConfigurationError


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject requests
    HALF_OPEN = "half_open"  # Single-trial probing


class TransitionReason(str, Enum):
    """Reason recorded with each legal state transition."""
    THRESHOLD_REACHED = "threshold_reached"
    TIMEOUT_ELAPSED = "timeout_elapsed"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class StateTransition:
    """One entry of the transition history."""
    from_state: CircuitState
    to_state: CircuitState
    reason: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_state.value,
            "to": self.to_state.value,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }


RECOVERY_STRATEGY_NAMES = ("fixed", "adaptive", "health-based", "progressive")


def normalize_strategy_name(name: str) -> str:
    return str(name).strip().lower().replace("_", "-")


@dataclass
class CircuitBreakerConfig:
    """Configuration for a circuit breaker."""
    threshold: int = 5                 # Consecutive failures before opening
    timeout_ms: int = 60000            # Base recovery timeout
    window_size: int = 100             # Rolling outcome window
    recovery_strategy: str = "fixed"
    strategy_options: Dict[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        self.recovery_strategy = normalize_strategy_name(self.recovery_strategy)
        self.validate()

    def validate(self) -> None:
        """Fail fast on invalid settings."""
        if not _is_int(self.threshold) or self.threshold < 1:
            raise ConfigurationError("threshold must be a positive integer")
        if not _is_int(self.timeout_ms) or self.timeout_ms < 1000:
            raise ConfigurationError("timeout_ms must be at least 1000ms")
        if not _is_int(self.window_size) or self.window_size < 1:
            raise ConfigurationError("window_size must be a positive integer")
        if self.recovery_strategy not in RECOVERY_STRATEGY_NAMES:
            raise ConfigurationError(
                f"Unknown recovery strategy: {self.recovery_strategy}"
            )

    @classmethod
    def from_profile(cls, name: str, **overrides: Any) -> "CircuitBreakerConfig":
        """Build a config from a named profile, applying overrides."""
        key = name.strip().lower().replace("-", "_")
        if key not in CONFIG_PROFILES:
            raise ConfigurationError(f"Unknown config profile: {name}")
        profile = CONFIG_PROFILES[key]
        overrides.setdefault("strategy_options", dict(profile.strategy_options))
        return replace(profile, **overrides)

    @staticmethod
    def list_profiles() -> List[Dict[str, Any]]:
        return [
            {"name": name, "description": profile.description, "config": profile}
            for name, profile in CONFIG_PROFILES.items()
        ]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


CONFIG_PROFILES: Dict[str, CircuitBreakerConfig] = {
    "conservative": CircuitBreakerConfig(
        threshold=10,
        timeout_ms=120000,
        window_size=200,
        recovery_strategy="adaptive",
        strategy_options={
            "min_timeout_ms": 60000,
            "max_timeout_ms": 600000,
            "backoff_multiplier": 3,
        },
        description="Conservative - Higher threshold, longer recovery",
    ),
    "standard": CircuitBreakerConfig(
        threshold=5,
        timeout_ms=60000,
        window_size=100,
        recovery_strategy="fixed",
        description="Standard - Balanced threshold and recovery",
    ),
    "aggressive": CircuitBreakerConfig(
        threshold=3,
        timeout_ms=30000,
        window_size=50,
        recovery_strategy="adaptive",
        description="Aggressive - Low threshold, fast recovery",
    ),
    "development": CircuitBreakerConfig(
        threshold=10,
        timeout_ms=5000,
        window_size=50,
        recovery_strategy="fixed",
        description="Development - Quick recovery for testing",
    ),
    "production": CircuitBreakerConfig(
        threshold=7,
        timeout_ms=90000,
        window_size=150,
        recovery_strategy="adaptive",
        description="Production - Robust with adaptive recovery",
    ),
    "health_based": CircuitBreakerConfig(
        threshold=5,
        timeout_ms=60000,
        window_size=100,
        recovery_strategy="health-based",
        description="Health-based - Recovery based on system health",
    ),
}
