"""
Semantix Core Library
=====================
Resilient request delivery from the Semantix browser extension to its
conversation backend: bounded-concurrency queueing, exponential-backoff
retries and a circuit breaker with pluggable recovery strategies.
"""

__version__ = "0.3.0"

# Configuration
from semantix_core.config import PipelineConfig

# Errors
from semantix_core.exceptions import (
    SemantixError,
    TransportError,
    TransientNetworkError,
    RequestTimeoutError,
    HTTPError,
    CircuitOpenError,
    ConfigurationError,
    InvalidStateTransition,
    InvalidRequestError,
)

# Events
from semantix_core.events import Event, EventType, NotificationChannel

# Requests
from semantix_core.requests import (
    Request,
    RequestSpec,
    RequestStatus,
    RequestQueue,
    RequestStateManager,
)

# Retry
from semantix_core.retry import RetryPolicy, RetryContext

# Circuit Breaker
from semantix_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitMetrics,
    CircuitState,
    CircuitStateMachine,
    RecoveryStrategy,
    FixedRecoveryStrategy,
    AdaptiveRecoveryStrategy,
    HealthBasedRecoveryStrategy,
    ProgressiveRecoveryStrategy,
    create_recovery_strategy,
)

# Transport
from semantix_core.transport import Transport, HttpTransport

# Pipeline
from semantix_core.pipeline import RequestLifecycleHandler, RequestOrchestrator

# Metrics
from semantix_core.metrics import PipelineMetrics, MetricLabels, MetricNames

__all__ = [
    # Configuration
    "PipelineConfig",
    # Errors
    "SemantixError",
    "TransportError",
    "TransientNetworkError",
    "RequestTimeoutError",
    "HTTPError",
    "CircuitOpenError",
    "ConfigurationError",
    "InvalidStateTransition",
    "InvalidRequestError",
    # Events
    "Event",
    "EventType",
    "NotificationChannel",
    # Requests
    "Request",
    "RequestSpec",
    "RequestStatus",
    "RequestQueue",
    "RequestStateManager",
    # Retry
    "RetryPolicy",
    "RetryContext",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitMetrics",
    "CircuitState",
    "CircuitStateMachine",
    "RecoveryStrategy",
    "FixedRecoveryStrategy",
    "AdaptiveRecoveryStrategy",
    "HealthBasedRecoveryStrategy",
    "ProgressiveRecoveryStrategy",
    "create_recovery_strategy",
    # Transport
    "Transport",
    "HttpTransport",
    # Pipeline
    "RequestLifecycleHandler",
    "RequestOrchestrator",
    # Metrics
    "PipelineMetrics",
    "MetricLabels",
    "MetricNames",
]
