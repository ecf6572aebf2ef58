"""
Semantix Core - Circuit Breaker
===============================
Circuit breaker with pluggable recovery strategies for backend delivery.

States:

1. CLOSED: Normal operation, requests flow through
2. OPEN: Backend is failing, dispatch is blocked
3. HALF-OPEN: A single trial request tests whether the backend recovered

Usage:
    from semantix_core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig

    breaker = CircuitBreaker(CircuitBreakerConfig.from_profile("production"))
    if breaker.is_request_allowed():
        ...
"""

from .models import (
    CONFIG_PROFILES,
    RECOVERY_STRATEGY_NAMES,
    CircuitBreakerConfig,
    CircuitState,
    StateTransition,
    TransitionReason,
)

from .state import CircuitStateMachine, TRANSITIONS

from .metrics import CircuitMetrics

from .recovery import (
    AdaptiveRecoveryStrategy,
    FixedRecoveryStrategy,
    HealthBasedRecoveryStrategy,
    ProgressiveRecoveryStrategy,
    RecoveryContext,
    RecoveryStrategy,
    create_recovery_strategy,
)

from .breaker import CircuitBreaker, RecoveryPlan

__all__ = [
    # Models
    "CONFIG_PROFILES",
    "RECOVERY_STRATEGY_NAMES",
    "CircuitBreakerConfig",
    "CircuitState",
    "StateTransition",
    "TransitionReason",
    # State machine
    "CircuitStateMachine",
    "TRANSITIONS",
    # Metrics
    "CircuitMetrics",
    # Recovery
    "AdaptiveRecoveryStrategy",
    "FixedRecoveryStrategy",
    "HealthBasedRecoveryStrategy",
    "ProgressiveRecoveryStrategy",
    "RecoveryContext",
    "RecoveryStrategy",
    "create_recovery_strategy",
    # Breaker
    "CircuitBreaker",
    "RecoveryPlan",
]
