"""
Circuit State Machine
=====================
Pure state machine for circuit breaker states.

Legal edges:

    CLOSED    -> OPEN       (threshold_reached)
    OPEN      -> HALF_OPEN  (timeout_elapsed)
    HALF_OPEN -> CLOSED     (success)
    HALF_OPEN -> OPEN       (failure)
"""

from collections import deque
from typing import Deque, Dict, FrozenSet, List, Optional

from ..exceptions import InvalidStateTransition
from .models import CircuitState, StateTransition

HISTORY_LIMIT = 50

TRANSITIONS: Dict[CircuitState, FrozenSet[CircuitState]] = {
    CircuitState.CLOSED: frozenset({CircuitState.OPEN}),
    CircuitState.OPEN: frozenset({CircuitState.HALF_OPEN}),
    CircuitState.HALF_OPEN: frozenset({CircuitState.CLOSED, CircuitState.OPEN}),
}


class CircuitStateMachine:
    """Tracks the current circuit state and validates transitions."""

    def __init__(self, initial_state: CircuitState = CircuitState.CLOSED):
        self.current = CircuitState(initial_state)
        self.previous: Optional[CircuitState] = None
        self._history: Deque[StateTransition] = deque(maxlen=HISTORY_LIMIT)

    def can_transition(self, target: CircuitState) -> bool:
        return CircuitState(target) in TRANSITIONS[self.current]

    def transition(self, target: CircuitState, reason: str = "") -> StateTransition:
        """Move to `target`, raising InvalidStateTransition on an illegal edge."""
        target = CircuitState(target)
        if not self.can_transition(target):
            raise InvalidStateTransition(self.current, target)

        entry = StateTransition(
            from_state=self.current,
            to_state=target,
            reason=getattr(reason, "value", reason),
        )
        self.previous = self.current
        self.current = target
        self._history.append(entry)
        return entry

    def is_closed(self) -> bool:
        return self.current == CircuitState.CLOSED

    def is_open(self) -> bool:
        return self.current == CircuitState.OPEN

    def is_half_open(self) -> bool:
        return self.current == CircuitState.HALF_OPEN

    def get_history(self, limit: int = 10) -> List[StateTransition]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def reset(self) -> None:
        """Return to CLOSED and drop the history."""
        self.previous = self.current
        self.current = CircuitState.CLOSED
        self._history.clear()
