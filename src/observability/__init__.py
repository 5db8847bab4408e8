"""
Observability and replay for the exploration loop.

Provides a structured log of every phase transition, encounter selection,
resolved choice, applied consequence, and director update, and supports
deterministic replay of a recorded session.
"""

from src.observability.run_log import (
    RunLog,
    LogEvent,
    EventType,
    TransitionEvent,
    SelectionEvent,
    ResolutionEvent,
    ConsequenceEvent,
    get_run_log,
    reset_run_log,
)
from src.observability.replay import (
    ReplayClock,
    ReplayDivergenceError,
    ReplayMode,
    ReplaySession,
    ReplayStep,
    StepAction,
)

__all__ = [
    "RunLog",
    "LogEvent",
    "EventType",
    "TransitionEvent",
    "SelectionEvent",
    "ResolutionEvent",
    "ConsequenceEvent",
    "get_run_log",
    "reset_run_log",
    "ReplayClock",
    "ReplayDivergenceError",
    "ReplayMode",
    "ReplaySession",
    "ReplayStep",
    "StepAction",
]
