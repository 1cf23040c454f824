"""State machine for a single generation attempt."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

logger = logging.getLogger(__name__)


class GenerationState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    DEGRADING = "degrading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[GenerationState] = frozenset({GenerationState.SUCCEEDED, GenerationState.FAILED})

ALLOWED_TRANSITIONS: Dict[GenerationState, FrozenSet[GenerationState]] = {
    GenerationState.IDLE: frozenset({GenerationState.SUBMITTING}),
    GenerationState.SUBMITTING: frozenset({GenerationState.POLLING, GenerationState.FAILED}),
    GenerationState.POLLING: frozenset(
        {GenerationState.SUCCEEDED, GenerationState.DEGRADING, GenerationState.FAILED}
    ),
    GenerationState.DEGRADING: frozenset({GenerationState.SUBMITTING, GenerationState.FAILED}),
    GenerationState.SUCCEEDED: frozenset(),
    GenerationState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class StateTransition:
    """Event emitted on every state change of an attempt."""
    attempt_id: str
    previous: GenerationState
    current: GenerationState
    message: str = ""
    timestamp: float = field(default_factory=time.time)


TransitionListener = Callable[[StateTransition], None]


class InvalidTransition(RuntimeError):
    pass


class AttemptStateMachine:
    """
    Tracks and validates the state of one attempt.

    Listener errors are logged and do not affect the attempt.
    """

    def __init__(self, attempt_id: str, listener: Optional[TransitionListener] = None):
        self.attempt_id = attempt_id
        self.state = GenerationState.IDLE
        self.history: List[StateTransition] = []
        self._listener = listener

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: GenerationState, message: str = "") -> StateTransition:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value} is not allowed")
        event = StateTransition(self.attempt_id, self.state, target, message)
        self.state = target
        self.history.append(event)
        logger.info(f"Attempt {self.attempt_id}: {event.previous.value} -> {target.value} {message}".rstrip())
        if self._listener is not None:
            try:
                self._listener(event)
            except Exception:
                logger.warning("Transition listener raised", exc_info=True)
        return event
