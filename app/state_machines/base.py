"""
Base state machine class for flow state machines.

Provides common functionality for state restoration, transition logging,
and flow info retrieval.
"""

from typing import Any, Dict, List, Optional

import structlog
from statemachine import StateMachine
from statemachine.exceptions import TransitionNotAllowed

from app.core.exceptions import ConflictError


class FlowState:
    """Holder for the machine's current state value."""

    def __init__(self, state: Optional[str] = None):
        self.state = state


class FlowMachine(StateMachine):
    """
    Base class for flow state machines.

    Features:
    - Restores the machine from a persisted state value without re-entering it
    - Structured logging on every transition
    - get_flow_info() for API responses
    - fire() translating rejected events into ConflictError
    """

    def __init__(
        self,
        record: Any = None,
        subject_id: Optional[str] = None,
        start_state: Optional[str] = None,
        **kwargs
    ):
        """
        Initialize flow machine.

        Args:
            record: Domain object the callbacks mutate
            subject_id: Owning entity ID for logging
            start_state: Persisted state value to resume from
            **kwargs: Additional context passed to StateMachine
        """
        self.record = record
        self.subject_id = subject_id
        self.logger = structlog.get_logger(__name__)
        self.error_message: Optional[str] = None
        super().__init__(model=FlowState(start_state), **kwargs)

    @property
    def state_value(self) -> str:
        return self.current_state.value

    def allowed_event_names(self) -> List[str]:
        return [getattr(e, "id", None) or e.name for e in self.allowed_events]

    def fire(self, event: str, **kwargs) -> Any:
        """
        Send an event, raising ConflictError when the current state rejects it.
        """
        try:
            return self.send(event, **kwargs)
        except TransitionNotAllowed as e:
            self.logger.info(
                "transition_rejected",
                transition_event=event,
                state=self.state_value,
                subject_id=self.subject_id,
            )
            raise ConflictError(
                f"Cannot {event.replace('_', ' ')} while in state '{self.state_value}'",
                details={"event": event, "state": self.state_value},
            ) from e

    def get_flow_info(self) -> Dict[str, Any]:
        """
        Returns current state + allowed events for API responses.
        """
        return {
            "state": self.state_value,
            "allowed_events": self.allowed_event_names(),
            "error_message": self.error_message,
        }

    def log_transition(self, event: str, from_state: str, to_state: str):
        """
        Log state transition with structured logging.

        Args:
            event: Event name that triggered transition
            from_state: Previous state
            to_state: New state
        """
        self.logger.info(
            "state_transition",
            transition_event=event,
            from_state=from_state,
            to_state=to_state,
            subject_id=self.subject_id,
        )
