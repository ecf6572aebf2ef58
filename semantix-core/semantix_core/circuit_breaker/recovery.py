"""
Recovery Strategies
===================
Pluggable policies deciding when an open circuit may retry the backend.

Each strategy answers three questions for the breaker:

1. `calculate_timeout(context)`: how long to wait before half-opening
2. `should_attempt_recovery(context)`: whether probing is allowed right now
3. `max_deferral_ms(context)`: how long (2) may keep saying no

Usage:
    from semantix_core.circuit_breaker import create_recovery_strategy

    strategy = create_recovery_strategy("adaptive", base_timeout_ms=30000)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from ..exceptions import ConfigurationError
from .metrics import CircuitMetrics
from .models import CircuitState, normalize_strategy_name


@dataclass
class RecoveryContext:
    """Snapshot of breaker state handed to a strategy."""
    failures: int = 0
    successes: int = 0
    consecutive_opens: int = 0
    metrics: Optional[CircuitMetrics] = None
    state: CircuitState = CircuitState.CLOSED


class RecoveryStrategy(ABC):
    """Base recovery strategy."""

    name = "base"

    @abstractmethod
    def calculate_timeout(self, context: RecoveryContext) -> int:
        """Milliseconds to wait before half-opening."""

    def should_attempt_recovery(self, context: RecoveryContext) -> bool:
        return True

    def max_deferral_ms(self, context: RecoveryContext) -> int:
        """
        Longest total time recovery may be declined before half-open is forced.

        Metrics do not change while the circuit is open, so a declining
        strategy would otherwise decline forever.
        """
        return self.calculate_timeout(context)

    def reset(self) -> None:
        pass

    def describe(self) -> dict:
        return {"name": self.name}


class FixedRecoveryStrategy(RecoveryStrategy):
    """Constant recovery delay."""

    name = "fixed"

    def __init__(self, timeout_ms: int = 60000):
        self.timeout_ms = timeout_ms

    def calculate_timeout(self, context: RecoveryContext) -> int:
        return self.timeout_ms

    def describe(self) -> dict:
        return {"name": self.name, "timeout_ms": self.timeout_ms}


class AdaptiveRecoveryStrategy(RecoveryStrategy):
    """
    Exponential backoff over consecutive circuit openings.

    timeout = base * multiplier ** consecutive_opens, clamped to [min, max].
    Recovery is suppressed while more than 90% of the last 10 outcomes failed,
    for at most `max_timeout_ms` per opening.
    """

    name = "adaptive"
    failure_rate_ceiling = 0.9
    sample_size = 10

    def __init__(
        self,
        base_timeout_ms: int = 60000,
        min_timeout_ms: int = 10000,
        max_timeout_ms: int = 300000,
        backoff_multiplier: float = 2,
    ):
        if min_timeout_ms > max_timeout_ms:
            raise ConfigurationError("min_timeout_ms must not exceed max_timeout_ms")
        self.base_timeout_ms = base_timeout_ms
        self.min_timeout_ms = min_timeout_ms
        self.max_timeout_ms = max_timeout_ms
        self.backoff_multiplier = backoff_multiplier

    def calculate_timeout(self, context: RecoveryContext) -> int:
        backoff = self.base_timeout_ms * (self.backoff_multiplier ** context.consecutive_opens)
        return int(min(max(backoff, self.min_timeout_ms), self.max_timeout_ms))

    def should_attempt_recovery(self, context: RecoveryContext) -> bool:
        metrics = context.metrics
        if metrics is not None and metrics.get_failure_rate(self.sample_size) > self.failure_rate_ceiling:
            return False
        return True

    def max_deferral_ms(self, context: RecoveryContext) -> int:
        return self.max_timeout_ms

    def describe(self) -> dict:
        return {
            "name": self.name,
            "base_timeout_ms": self.base_timeout_ms,
            "min_timeout_ms": self.min_timeout_ms,
            "max_timeout_ms": self.max_timeout_ms,
            "backoff_multiplier": self.backoff_multiplier,
        }


class HealthBasedRecoveryStrategy(RecoveryStrategy):
    """
    Recovery delay scales inversely with overall health.

    timeout = base * (1 + (1 - health / 100)); a fully healthy history waits
    `base`, a fully failing one waits `2 * base`. Probing requires health to
    be at least `health_threshold` percent.
    """

    name = "health-based"

    def __init__(self, base_timeout_ms: int = 60000, health_threshold: int = 50):
        if not 0 <= health_threshold <= 100:
            raise ConfigurationError("health_threshold must be between 0 and 100")
        self.base_timeout_ms = base_timeout_ms
        self.health_threshold = health_threshold

    def calculate_timeout(self, context: RecoveryContext) -> int:
        if context.metrics is None:
            return self.base_timeout_ms
        health_factor = 1 - (context.metrics.get_health_percentage() / 100)
        return int(round(self.base_timeout_ms * (1 + health_factor)))

    def should_attempt_recovery(self, context: RecoveryContext) -> bool:
        if context.metrics is None:
            return True
        return context.metrics.get_health_percentage() >= self.health_threshold

    def describe(self) -> dict:
        return {
            "name": self.name,
            "base_timeout_ms": self.base_timeout_ms,
            "health_threshold": self.health_threshold,
        }


class ProgressiveRecoveryStrategy(RecoveryStrategy):
    """
    Requires a run of successes observed elsewhere before half-opening.

    While the circuit is open no new requests are dispatched, so the
    successes come from requests that were already in flight when it opened.
    """

    name = "progressive"

    def __init__(self, base_timeout_ms: int = 60000, required_successes: int = 3):
        if required_successes < 0:
            raise ConfigurationError("required_successes must be 0 or greater")
        self.base_timeout_ms = base_timeout_ms
        self.required_successes = required_successes
        self.observed_successes = 0

    def calculate_timeout(self, context: RecoveryContext) -> int:
        return self.base_timeout_ms

    def should_attempt_recovery(self, context: RecoveryContext) -> bool:
        if context.metrics is None:
            return True
        self.observed_successes = context.metrics.consecutive_successes
        return self.observed_successes >= self.required_successes

    def reset(self) -> None:
        self.observed_successes = 0

    def describe(self) -> dict:
        return {
            "name": self.name,
            "base_timeout_ms": self.base_timeout_ms,
            "required_successes": self.required_successes,
            "observed_successes": self.observed_successes,
        }


def create_recovery_strategy(
    strategy: Union[str, RecoveryStrategy] = "fixed",
    base_timeout_ms: int = 60000,
    **options: Any,
) -> RecoveryStrategy:
    """
    Build a recovery strategy from a validated name.

    Args:
        strategy: "fixed", "adaptive", "health-based" or "progressive"
            (underscores accepted), or an existing strategy instance
        base_timeout_ms: Base recovery timeout shared by all variants
        **options: Variant-specific settings

    Raises:
        ConfigurationError: On an unknown name or option
    """
    if isinstance(strategy, RecoveryStrategy):
        return strategy

    name = normalize_strategy_name(strategy)
    try:
        if name == "fixed":
            return FixedRecoveryStrategy(timeout_ms=base_timeout_ms, **options)
        if name == "adaptive":
            return AdaptiveRecoveryStrategy(base_timeout_ms=base_timeout_ms, **options)
        if name == "health-based":
            return HealthBasedRecoveryStrategy(base_timeout_ms=base_timeout_ms, **options)
        if name == "progressive":
            return ProgressiveRecoveryStrategy(base_timeout_ms=base_timeout_ms, **options)
    except TypeError as e:
        raise ConfigurationError(f"Invalid options for recovery strategy '{name}': {e}")

    raise ConfigurationError(f"Unknown recovery strategy: {strategy}")
