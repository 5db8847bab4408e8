"""Game state management module."""

from src.game_state.state_machine import PhaseKind, StateMachine, StateTransition
from src.game_state.state_store import PlayerStateStore
from src.game_state.session_manager import SessionManager
from src.game_state.condition_parser import SnippetConditionParser, check_snippet_conditions

__all__ = [
    "PhaseKind",
    "StateMachine",
    "StateTransition",
    "PlayerStateStore",
    "SessionManager",
    "SnippetConditionParser",
    "check_snippet_conditions",
]
