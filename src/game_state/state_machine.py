"""
Phase state machine for the exploration loop.

Only ONE phase may be active at any time. Every phase change goes through
transition(), which validates the (phase, trigger) pair against
VALID_TRANSITIONS and records the change for debugging and replay.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import logging

from src.explore.errors import InvalidTransitionError
from src.observability.run_log import get_run_log

logger = logging.getLogger(__name__)


class PhaseKind(str, Enum):
    """Exploration phases. Exactly one is active at a time."""

    IDLE = "idle"
    LOADING = "loading"
    ENCOUNTER = "encounter"
    CHAPTER = "chapter"
    RESOLUTION = "resolution"
    REST_NEEDED = "rest_needed"
    ERROR = "error"


@dataclass
class StateTransition:
    """Defines a valid phase transition."""

    from_state: PhaseKind
    to_state: PhaseKind
    trigger: str
    description: str = ""

    def __hash__(self) -> int:
        return hash((self.from_state, self.to_state, self.trigger))


@dataclass
class TransitionLog:
    """Log entry for a phase transition."""

    timestamp_millis: Optional[int]
    from_state: str
    to_state: str
    trigger: str
    context: dict[str, Any] = field(default_factory=dict)


VALID_TRANSITIONS: list[StateTransition] = [
    StateTransition(
        PhaseKind.IDLE,
        PhaseKind.LOADING,
        "begin_exploration",
        "Player asks for the next encounter",
    ),
    StateTransition(
        PhaseKind.ERROR,
        PhaseKind.LOADING,
        "begin_exploration",
        "Player retries after a failed lookup",
    ),
    StateTransition(
        PhaseKind.LOADING,
        PhaseKind.ENCOUNTER,
        "encounter_found",
        "Event engine selected an ordinary snippet",
    ),
    StateTransition(
        PhaseKind.LOADING,
        PhaseKind.CHAPTER,
        "chapter_triggered",
        "Event engine produced a chapter event",
    ),
    StateTransition(
        PhaseKind.LOADING,
        PhaseKind.REST_NEEDED,
        "rest_required",
        "Fatigue threshold reached",
    ),
    StateTransition(
        PhaseKind.LOADING,
        PhaseKind.ERROR,
        "lookup_failed",
        "Selected content could not be loaded",
    ),
    StateTransition(
        PhaseKind.ENCOUNTER,
        PhaseKind.RESOLUTION,
        "option_chosen",
        "Player resolved an ordinary snippet",
    ),
    StateTransition(
        PhaseKind.CHAPTER,
        PhaseKind.RESOLUTION,
        "option_chosen",
        "Player resolved a chapter event",
    ),
    StateTransition(
        PhaseKind.RESOLUTION,
        PhaseKind.IDLE,
        "resolution_dismissed",
        "Player acknowledged the resolution summary",
    ),
    StateTransition(
        PhaseKind.REST_NEEDED,
        PhaseKind.IDLE,
        "rest_taken",
        "Player rested and fatigue was cleared",
    ),
]


class StateMachine:
    """
    Manages phase transitions with validation and history tracking.

    Attributes:
        current_state: The active phase
        previous_state: The phase before the last transition
        state_history: Every transition taken so far
    """

    def __init__(
        self,
        initial_state: PhaseKind = PhaseKind.IDLE,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the state machine.

        Args:
            initial_state: The starting phase (default: IDLE)
            clock: Timestamp source for history entries; must be the
                player state store's clock so replays stay deterministic
        """
        self._current_state: PhaseKind = initial_state
        self._previous_state: Optional[PhaseKind] = None
        self._state_history: list[TransitionLog] = []
        self._clock = clock
        self._post_transition_hooks: list[Callable] = []

        self._valid_transitions: dict[tuple[PhaseKind, str], PhaseKind] = {}
        for transition in VALID_TRANSITIONS:
            key = (transition.from_state, transition.trigger)
            self._valid_transitions[key] = transition.to_state

        self._log_transition(
            from_state="INIT", to_state=initial_state.value, trigger="initialization"
        )

    @property
    def current_state(self) -> PhaseKind:
        return self._current_state

    @property
    def previous_state(self) -> Optional[PhaseKind]:
        return self._previous_state

    @property
    def state_history(self) -> list[TransitionLog]:
        return self._state_history.copy()

    def can_transition(self, trigger: str) -> bool:
        """Check if a trigger is valid from the current phase."""
        return (self._current_state, trigger) in self._valid_transitions

    def get_valid_triggers(self) -> list[str]:
        """Get all valid triggers from the current phase."""
        return [
            trigger
            for (state, trigger) in self._valid_transitions
            if state == self._current_state
        ]

    def require(self, trigger: str, operation: str) -> None:
        """
        Raise InvalidTransitionError unless trigger is valid right now.

        Used by callers to reject an operation before doing any work, so an
        invalid call never mutates state.
        """
        if not self.can_transition(trigger):
            raise InvalidTransitionError(
                f"Cannot {operation} while in phase '{self._current_state.value}'. "
                f"Valid triggers: {self.get_valid_triggers()}"
            )

    def transition(
        self,
        trigger: str,
        context: Optional[dict[str, Any]] = None,
        timestamp_millis: Optional[int] = None,
    ) -> PhaseKind:
        """
        Attempt to transition to a new phase.

        timestamp_millis pins the history entry to a time the caller already
        read from the clock; otherwise the clock is consulted.

        Raises:
            InvalidTransitionError: If the trigger is not valid from the current phase
        """
        context = context or {}

        key = (self._current_state, trigger)
        if key not in self._valid_transitions:
            raise InvalidTransitionError(
                f"Invalid transition: Cannot trigger '{trigger}' from phase "
                f"'{self._current_state.value}'. Valid triggers: {self.get_valid_triggers()}"
            )

        new_state = self._valid_transitions[key]
        old_state = self._current_state
        self._previous_state = old_state
        self._current_state = new_state

        self._log_transition(
            from_state=old_state.value,
            to_state=new_state.value,
            trigger=trigger,
            context=context,
            timestamp_millis=timestamp_millis,
        )

        for hook in self._post_transition_hooks:
            hook(old_state, new_state, trigger, context)

        return new_state

    def register_post_hook(self, hook: Callable) -> None:
        """
        Register a hook to run after any transition.

        The hook will be called with (old_state, new_state, trigger, context).
        """
        self._post_transition_hooks.append(hook)

    def _log_transition(
        self,
        from_state: str,
        to_state: str,
        trigger: str,
        context: Optional[dict[str, Any]] = None,
        timestamp_millis: Optional[int] = None,
    ) -> None:
        timestamp = timestamp_millis
        if timestamp is None and self._clock:
            timestamp = self._clock()
        self._state_history.append(
            TransitionLog(
                timestamp_millis=timestamp,
                from_state=from_state,
                to_state=to_state,
                trigger=trigger,
                context=context or {},
            )
        )
        logger.debug(f"Phase {from_state} -> {to_state} ({trigger})")
        get_run_log().log_transition(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            timestamp_millis=timestamp,
            context=context,
        )

    def get_state_info(self) -> dict[str, Any]:
        """Get information about the current phase for display/debugging."""
        return {
            "current_state": self._current_state.value,
            "previous_state": self._previous_state.value if self._previous_state else None,
            "valid_triggers": self.get_valid_triggers(),
            "transition_count": len(self._state_history),
        }

    def __repr__(self) -> str:
        return f"StateMachine(current={self._current_state.value}, previous={self._previous_state})"
