"""
Circuit Breaker Core
====================
Composes the state machine, outcome metrics and a recovery strategy, and
owns the timer that moves an open circuit to half-open.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import structlog

from ..events import EventType, NotificationChannel
from ..exceptions import InvalidStateTransition
from .metrics import CircuitMetrics
from .models import CircuitBreakerConfig, CircuitState, TransitionReason
from .recovery import RecoveryContext, RecoveryStrategy, create_recovery_strategy
from .state import CircuitStateMachine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecoveryPlan:
    """What the recovery timer does next."""
    half_open: bool  # True: half-open after delay; False: re-check after delay
    delay_ms: int
    forced: bool = False  # Half-open despite the strategy declining


class CircuitBreaker:
    """
    Event-driven circuit breaker with a pluggable recovery strategy.

    Only terminal request outcomes are recorded. Opening arms a recovery
    timer (an asyncio task owned by this breaker); `reset()` and `destroy()`
    cancel it so no callback fires afterwards.

    Example:
        breaker = CircuitBreaker(
            CircuitBreakerConfig(threshold=5, recovery_strategy="adaptive"),
            channel=channel,
        )
        if breaker.is_request_allowed():
            ...
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        channel: Optional[NotificationChannel] = None,
        recovery_strategy: Optional[Union[str, RecoveryStrategy]] = None,
        name: str = "backend",
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.channel = channel or NotificationChannel()

        self.state = CircuitStateMachine(CircuitState.CLOSED)
        self.metrics = CircuitMetrics(
            threshold=self.config.threshold,
            window_size=self.config.window_size,
        )
        self.recovery_strategy = create_recovery_strategy(
            recovery_strategy or self.config.recovery_strategy,
            base_timeout_ms=self.config.timeout_ms,
            **self.config.strategy_options,
        )

        self.consecutive_opens = 0
        self._recovery_task: Optional[asyncio.Task] = None
        self._destroyed = False
        self._deferred_ms = 0

    @property
    def current_state(self) -> CircuitState:
        return self.state.current

    def is_request_allowed(self) -> bool:
        return not self.state.is_open()

    def is_open(self) -> bool:
        return self.state.is_open()

    def is_closed(self) -> bool:
        return self.state.is_closed()

    def is_half_open(self) -> bool:
        return self.state.is_half_open()

    def record_success(self) -> None:
        """Record a successful request."""
        self.metrics.record_success()

        if self.state.is_half_open():
            self.close(TransitionReason.SUCCESS)
        elif self.state.is_closed():
            self.consecutive_opens = 0

    def record_failure(self, request_id: Optional[str] = None) -> bool:
        """
        Record a failed request.

        Returns:
            True if this failure opened the circuit
        """
        self.metrics.record_failure()

        if self.state.is_half_open():
            return self.open(TransitionReason.FAILURE, request_id=request_id)

        if self.state.is_closed() and self.metrics.is_threshold_reached():
            return self.open(TransitionReason.THRESHOLD_REACHED, request_id=request_id)

        return False

    def open(
        self,
        reason: Union[str, TransitionReason] = TransitionReason.THRESHOLD_REACHED,
        request_id: Optional[str] = None,
    ) -> bool:
        """Open the circuit. Returns False if it was already open."""
        if self.state.is_open():
            return False

        entry = self.state.transition(CircuitState.OPEN, reason)
        self.consecutive_opens += 1

        logger.warning(
            "circuit_opened",
            breaker=self.name,
            reason=entry.reason,
            failures=self.metrics.consecutive_failures,
            consecutive_opens=self.consecutive_opens,
            request_id=request_id,
        )
        self._publish_state_change(entry.from_state, CircuitState.OPEN, entry.reason)
        self.channel.emit(
            EventType.CIRCUIT_OPENED,
            request_id=request_id,
            breaker=self.name,
            reason=entry.reason,
            failures=self.metrics.consecutive_failures,
            threshold=self.config.threshold,
            consecutive_opens=self.consecutive_opens,
        )

        self._arm_recovery_timer()
        return True

    def half_open(self, reason: Union[str, TransitionReason] = TransitionReason.TIMEOUT_ELAPSED) -> bool:
        """Move an open circuit to half-open."""
        if self.state.is_half_open():
            return False

        entry = self.state.transition(CircuitState.HALF_OPEN, reason)

        logger.info("circuit_half_open", breaker=self.name, reason=entry.reason)
        self._publish_state_change(entry.from_state, CircuitState.HALF_OPEN, entry.reason)
        self.channel.emit(EventType.CIRCUIT_HALF_OPENED, breaker=self.name, reason=entry.reason)
        return True

    def close(self, reason: Union[str, TransitionReason] = TransitionReason.SUCCESS) -> bool:
        """Close a half-open circuit and reset failure tracking."""
        if self.state.is_closed():
            return False

        entry = self.state.transition(CircuitState.CLOSED, reason)
        self.metrics.reset_failures()
        self._cancel_recovery_timer()

        logger.info("circuit_closed", breaker=self.name, reason=entry.reason)
        self._publish_state_change(entry.from_state, CircuitState.CLOSED, entry.reason)
        self.channel.emit(EventType.CIRCUIT_CLOSED, breaker=self.name, reason=entry.reason)
        return True

    def get_context(self) -> RecoveryContext:
        return RecoveryContext(
            failures=self.metrics.failures,
            successes=self.metrics.successes,
            consecutive_opens=self.consecutive_opens,
            metrics=self.metrics,
            state=self.state.current,
        )

    def plan_recovery(self) -> RecoveryPlan:
        """
        Ask the strategy what to do next.

        When the strategy declines, the timer re-checks after the configured
        base timeout instead of half-opening. Declining is capped by the
        strategy's `max_deferral_ms`; once the time spent deferred reaches
        it, half-open is forced so an open circuit always heals.
        """
        context = self.get_context()
        if not self.recovery_strategy.should_attempt_recovery(context):
            remaining = self.recovery_strategy.max_deferral_ms(context) - self._deferred_ms
            if remaining > 0:
                return RecoveryPlan(half_open=False, delay_ms=min(self.config.timeout_ms, remaining))
            return RecoveryPlan(half_open=True, delay_ms=0, forced=True)
        return RecoveryPlan(half_open=True, delay_ms=self.recovery_strategy.calculate_timeout(context))

    @property
    def recovery_pending(self) -> bool:
        return self._recovery_task is not None and not self._recovery_task.done()

    def _arm_recovery_timer(self) -> None:
        self._cancel_recovery_timer()
        self._deferred_ms = 0
        if self._destroyed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("circuit_recovery_timer_unavailable", breaker=self.name)
            return
        self._recovery_task = loop.create_task(self._run_recovery_timer())

    async def _run_recovery_timer(self) -> None:
        while True:
            plan = self.plan_recovery()
            if plan.forced:
                logger.warning(
                    "circuit_recovery_forced",
                    breaker=self.name,
                    strategy=self.recovery_strategy.name,
                    deferred_ms=self._deferred_ms,
                )
            elif not plan.half_open:
                logger.info(
                    "circuit_recovery_deferred",
                    breaker=self.name,
                    strategy=self.recovery_strategy.name,
                    recheck_ms=plan.delay_ms,
                )
            await asyncio.sleep(plan.delay_ms / 1000)
            if plan.half_open:
                break
            self._deferred_ms += plan.delay_ms

        # Detach before transitioning so close() never cancels the running task
        self._recovery_task = None
        try:
            self.half_open(TransitionReason.TIMEOUT_ELAPSED)
        except InvalidStateTransition as e:
            logger.error("circuit_recovery_transition_rejected", breaker=self.name, error=str(e))

    def _cancel_recovery_timer(self) -> None:
        task = self._recovery_task
        self._recovery_task = None
        if task is not None and not task.done():
            task.cancel()

    def _publish_state_change(self, from_state: CircuitState, to_state: CircuitState, reason: str) -> None:
        self.channel.emit(
            EventType.CIRCUIT_STATE_CHANGED,
            breaker=self.name,
            from_state=from_state.value,
            to_state=to_state.value,
            reason=reason,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.current.value,
            **self.metrics.get_stats(),
            "threshold": self.config.threshold,
            "timeout_ms": self.config.timeout_ms,
            "consecutive_opens": self.consecutive_opens,
            "recovery_strategy": self.recovery_strategy.describe(),
            "recovery_pending": self.recovery_pending,
            "recovery_deferred_ms": self._deferred_ms,
            "state_history": [entry.to_dict() for entry in self.state.get_history()],
        }

    def reset(self) -> None:
        """Reset to closed, clearing metrics and cancelling the recovery timer."""
        self._cancel_recovery_timer()
        self.state.reset()
        self.metrics.reset()
        self.recovery_strategy.reset()
        self.consecutive_opens = 0
        self._deferred_ms = 0

        logger.info("circuit_reset", breaker=self.name)
        self.channel.emit(EventType.CIRCUIT_RESET, breaker=self.name)

    def destroy(self) -> None:
        """Cancel the recovery timer and stop arming new ones."""
        self._destroyed = True
        self._cancel_recovery_timer()
