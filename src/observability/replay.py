"""
Replay system for deterministic exploration replay.

A session is a list of steps (resolved choices and rests) with the game
timestamps they happened at. Replaying pins a scripted clock to each step's
timestamp and feeds a fixed-resolution event engine, so a fresh state machine
reproduces the recorded choice log exactly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import json
import logging

from src.data_models import ChapterEvent, ChapterEventResponse, Encounter, EventResolution, RestRequired
from src.explore.errors import ExplorationError
from src.observability.run_log import _EVENT_CLASSES, EventType, LogEvent, ResolutionEvent, get_run_log

logger = logging.getLogger(__name__)


class ReplayMode(str, Enum):
    """Replay mode settings."""

    DISABLED = "disabled"  # Normal operation
    REPLAYING = "replaying"  # Driving a machine from recorded steps
    RECORDING = "recording"  # Normal operation, but recording for later replay


class StepAction(str, Enum):
    RESOLVE = "resolve"
    REST = "rest"


class ReplayDivergenceError(ExplorationError):
    """The replayed machine did not land where the recording says it did."""


@dataclass
class ReplayStep:
    """One recorded step of a session."""

    action: StepAction
    timestamp_millis: int
    history_id: str = ""
    option_index: int = 0
    chapter: Optional[dict[str, Any]] = None

    def to_resolution(self) -> EventResolution:
        if self.action == StepAction.REST:
            return RestRequired()
        if self.chapter is not None:
            return ChapterEvent(response=ChapterEventResponse.from_dict(self.chapter))
        return Encounter(snippet_id=self.history_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "timestamp_millis": self.timestamp_millis,
            "history_id": self.history_id,
            "option_index": self.option_index,
            "chapter": self.chapter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReplayStep":
        return cls(
            action=StepAction(data["action"]),
            timestamp_millis=int(data["timestamp_millis"]),
            history_id=data.get("history_id", ""),
            option_index=data.get("option_index", 0),
            chapter=data.get("chapter"),
        )


def step_from_event(event: LogEvent) -> Optional[ReplayStep]:
    """Map a run log event to a replay step, or None when it is not one."""
    if event.timestamp_millis is None:
        return None
    if isinstance(event, ResolutionEvent):
        return ReplayStep(
            action=StepAction.RESOLVE,
            timestamp_millis=event.timestamp_millis,
            history_id=event.history_id,
            option_index=event.option_index,
            chapter=event.context.get("chapter") if event.is_chapter else None,
        )
    if event.event_type == EventType.DIRECTOR and event.context.get("update") == "rest":
        return ReplayStep(action=StepAction.REST, timestamp_millis=event.timestamp_millis)
    return None


class ReplayClock:
    """A clock that returns whatever time it was last set to."""

    def __init__(self, start_millis: int = 0):
        self._now = start_millis

    def set_time(self, timestamp_millis: int) -> None:
        self._now = timestamp_millis

    def __call__(self) -> int:
        return self._now


@dataclass
class ReplaySession:
    """
    Manages a replay session.

    Steps come from a run log (live, via start_recording, or from a saved
    log file) and are replayed in order against a fresh state machine.
    """

    steps: list[ReplayStep] = field(default_factory=list)
    seed: Optional[int] = None
    mode: ReplayMode = ReplayMode.DISABLED
    _position: int = 0

    def __post_init__(self):
        self._position = 0
        self._recorder: Optional[Callable[[LogEvent], None]] = None

    @classmethod
    def from_run_log(cls, log_data: dict[str, Any]) -> "ReplaySession":
        """
        Create a replay session from saved run log data.

        Args:
            log_data: Dictionary from RunLog.to_dict() or loaded JSON
        """
        steps = []
        events = sorted(log_data.get("events", []), key=lambda e: e.get("sequence_number", 0))
        for event_data in events:
            event_cls = _EVENT_CLASSES.get(EventType(event_data["event_type"]), LogEvent)
            step = step_from_event(event_cls.from_dict(event_data))
            if step is not None:
                steps.append(step)
        return cls(steps=steps, seed=log_data.get("seed"))

    @classmethod
    def load(cls, filepath: str) -> "ReplaySession":
        """Load a replay session from a file."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        # Handle both ReplaySession.save() format and RunLog.to_dict() format
        if "steps" in data:
            return cls(
                steps=[ReplayStep.from_dict(s) for s in data["steps"]],
                seed=data.get("seed"),
            )
        return cls.from_run_log(data)

    def save(self, filepath: str) -> None:
        """Save the replay session to a file."""
        data = {
            "seed": self.seed,
            "steps": [step.to_dict() for step in self.steps],
        }
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.info(f"ReplaySession saved to {filepath}")

    # =========================================================================
    # RECORDING
    # =========================================================================

    def start_recording(self) -> None:
        """Append steps as the global run log receives them."""
        if self._recorder is not None:
            return

        def record(event: LogEvent) -> None:
            step = step_from_event(event)
            if step is not None:
                self.steps.append(step)

        self._recorder = record
        self.seed = get_run_log().get_seed()
        get_run_log().subscribe(record)
        self.mode = ReplayMode.RECORDING

    def stop_recording(self) -> None:
        if self._recorder is not None:
            get_run_log().unsubscribe(self._recorder)
            self._recorder = None
        self.mode = ReplayMode.DISABLED

    # =========================================================================
    # REPLAY
    # =========================================================================

    def build_event_engine(self):
        """A FixedResolutionEventEngine scripted with this session's steps."""
        from src.encounter.event_engine import FixedResolutionEventEngine

        if not self.steps:
            raise ValueError("Nothing to replay")
        return FixedResolutionEventEngine([step.to_resolution() for step in self.steps])

    def replay(self, build_machine: Callable[[ReplayClock, Any], Any], record: bool = False):
        """
        Replay every step against a fresh state machine.

        Args:
            build_machine: Called with (clock, event_engine); must return an
                ExploreStateMachine whose player state store uses the clock
            record: Keep writing to the run log during the replay

        Returns:
            The state machine after the last step

        Raises:
            ReplayDivergenceError: If a step does not land in the expected phase
        """
        from src.explore.explore_types import Chapter, Encounter as EncounterPhase, RestNeeded

        clock = ReplayClock(self.steps[0].timestamp_millis if self.steps else 0)
        machine = build_machine(clock, self.build_event_engine())

        run_log = get_run_log()
        was_paused = run_log.is_paused()
        if not record:
            run_log.pause()
        self.mode = ReplayMode.REPLAYING
        self._position = 0
        logger.info(f"Replay started with {len(self.steps)} recorded steps")
        try:
            for step in self.steps:
                clock.set_time(step.timestamp_millis)
                phase = machine.begin_exploration()
                if step.action == StepAction.REST:
                    if not isinstance(phase, RestNeeded):
                        raise ReplayDivergenceError(
                            f"Step {self._position}: expected rest, got {phase.describe()}"
                        )
                    machine.rest()
                else:
                    if not isinstance(phase, (EncounterPhase, Chapter)):
                        raise ReplayDivergenceError(
                            f"Step {self._position}: expected {step.history_id}, got {phase.describe()}"
                        )
                    machine.choose_option(step.option_index)
                    machine.continue_after_resolution()
                self._position += 1
        finally:
            if not record and not was_paused:
                run_log.resume()
            self.mode = ReplayMode.DISABLED
        logger.info(f"Replay finished at step {self._position}/{len(self.steps)}")
        return machine

    # =========================================================================
    # QUERIES
    # =========================================================================

    def is_replaying(self) -> bool:
        return self.mode == ReplayMode.REPLAYING

    def get_position(self) -> int:
        return self._position

    def get_total_steps(self) -> int:
        return len(self.steps)

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of the replay session."""
        return {
            "seed": self.seed,
            "mode": self.mode.value,
            "total_steps": len(self.steps),
            "resolutions": sum(1 for s in self.steps if s.action == StepAction.RESOLVE),
            "rests": sum(1 for s in self.steps if s.action == StepAction.REST),
            "current_position": self._position,
        }

    def __repr__(self) -> str:
        return (
            f"ReplaySession(seed={self.seed}, "
            f"mode={self.mode.value}, "
            f"position={self._position}/{len(self.steps)})"
        )
