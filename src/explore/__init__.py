"""
Exploration loop.

Only the error types are re-exported here; the phase table in
src.game_state.state_machine imports them, so the state machine and phase
types are imported from their own modules.
"""

from src.explore.errors import (
    ChapterGenerationError,
    ContentNotFoundError,
    ExplorationError,
    InvalidTransitionError,
    NoEligibleContentError,
    SaveCorruptError,
    SaveError,
)

__all__ = [
    "ChapterGenerationError",
    "ContentNotFoundError",
    "ExplorationError",
    "InvalidTransitionError",
    "NoEligibleContentError",
    "SaveCorruptError",
    "SaveError",
]
