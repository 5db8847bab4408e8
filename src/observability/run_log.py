"""
Run Log system for exploration event tracking.

Captures every deterministic event (phase transitions, encounter selections,
resolved choices, applied consequences, director updates) to enable
auditing and deterministic replay. Timestamps come from the player state
store's clock, never from the wall clock.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional
import json
import logging

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of events that can be logged."""

    TRANSITION = "transition"  # Phase machine transition
    SELECTION = "selection"  # Event engine decision
    RESOLUTION = "resolution"  # Player choice resolved
    CONSEQUENCE = "consequence"  # Interpreter output
    DIRECTOR = "director"  # AI Director counter update
    CUSTOM = "custom"


@dataclass
class LogEvent:
    """Base class for all logged events."""

    # Subclasses set the correct value in __post_init__
    event_type: EventType = EventType.CUSTOM
    timestamp_millis: Optional[int] = None
    sequence_number: int = 0
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "timestamp_millis": self.timestamp_millis,
            "sequence_number": self.sequence_number,
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEvent":
        return cls(
            event_type=EventType(data["event_type"]),
            timestamp_millis=data.get("timestamp_millis"),
            sequence_number=data.get("sequence_number", 0),
            context=data.get("context", {}),
        )

    def __str__(self) -> str:
        return f"[{self.sequence_number}] {self.event_type.value.upper()} {self.context}"


@dataclass
class TransitionEvent(LogEvent):
    """A phase machine transition event."""

    from_state: str = ""
    to_state: str = ""
    trigger: str = ""

    def __post_init__(self):
        self.event_type = EventType.TRANSITION

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "from_state": self.from_state,
                "to_state": self.to_state,
                "trigger": self.trigger,
            }
        )
        return base

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransitionEvent":
        return cls(
            timestamp_millis=data.get("timestamp_millis"),
            sequence_number=data.get("sequence_number", 0),
            context=data.get("context", {}),
            from_state=data.get("from_state", ""),
            to_state=data.get("to_state", ""),
            trigger=data.get("trigger", ""),
        )

    def __str__(self) -> str:
        return f"[{self.sequence_number}] TRANSITION {self.from_state} -> {self.to_state} (trigger: {self.trigger})"


@dataclass
class SelectionEvent(LogEvent):
    """An encounter-selection decision made by the event engine."""

    resolution: str = ""  # encounter / chapter / rest_required
    target_id: str = ""  # snippet id or chapter history id
    reason: str = ""

    def __post_init__(self):
        self.event_type = EventType.SELECTION

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "resolution": self.resolution,
                "target_id": self.target_id,
                "reason": self.reason,
            }
        )
        return base

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SelectionEvent":
        return cls(
            timestamp_millis=data.get("timestamp_millis"),
            sequence_number=data.get("sequence_number", 0),
            context=data.get("context", {}),
            resolution=data.get("resolution", ""),
            target_id=data.get("target_id", ""),
            reason=data.get("reason", ""),
        )

    def __str__(self) -> str:
        return f"[{self.sequence_number}] SELECT {self.resolution} {self.target_id} ({self.reason})"


@dataclass
class ResolutionEvent(LogEvent):
    """A resolved player choice."""

    history_id: str = ""
    option_index: int = 0
    autosave_tag: str = ""
    is_chapter: bool = False

    def __post_init__(self):
        self.event_type = EventType.RESOLUTION

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update(
            {
                "history_id": self.history_id,
                "option_index": self.option_index,
                "autosave_tag": self.autosave_tag,
                "is_chapter": self.is_chapter,
            }
        )
        return base

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolutionEvent":
        return cls(
            timestamp_millis=data.get("timestamp_millis"),
            sequence_number=data.get("sequence_number", 0),
            context=data.get("context", {}),
            history_id=data.get("history_id", ""),
            option_index=data.get("option_index", 0),
            autosave_tag=data.get("autosave_tag", ""),
            is_chapter=data.get("is_chapter", False),
        )

    def __str__(self) -> str:
        return f"[{self.sequence_number}] RESOLVE {self.history_id} option={self.option_index} ({self.autosave_tag})"


@dataclass
class ConsequenceEvent(LogEvent):
    """The summary lines produced by one consequence application."""

    source: str = ""
    summaries: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.event_type = EventType.CONSEQUENCE

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base.update({"source": self.source, "summaries": self.summaries})
        return base

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConsequenceEvent":
        return cls(
            timestamp_millis=data.get("timestamp_millis"),
            sequence_number=data.get("sequence_number", 0),
            context=data.get("context", {}),
            source=data.get("source", ""),
            summaries=data.get("summaries", []),
        )

    def __str__(self) -> str:
        return f"[{self.sequence_number}] CONSEQUENCE {self.source}: {'; '.join(self.summaries)}"


_EVENT_CLASSES: dict[EventType, type[LogEvent]] = {
    EventType.TRANSITION: TransitionEvent,
    EventType.SELECTION: SelectionEvent,
    EventType.RESOLUTION: ResolutionEvent,
    EventType.CONSEQUENCE: ConsequenceEvent,
}


class RunLog:
    """
    Central run log for all exploration events.

    Singleton pattern - use get_run_log() to access.
    """

    _instance: Optional["RunLog"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._initialized = True
        self._events: list[LogEvent] = []
        self._sequence: int = 0
        self._seed: Optional[int] = None
        self._subscribers: list[Callable[[LogEvent], None]] = []
        self._paused: bool = False

    def reset(self) -> None:
        """Reset the log for a new session."""
        self._events = []
        self._sequence = 0
        self._seed = None
        logger.info("RunLog reset")

    def set_seed(self, seed: int) -> None:
        """Record the RNG seed used for this session."""
        self._seed = seed
        logger.info(f"RunLog seed set: {seed}")

    def get_seed(self) -> Optional[int]:
        return self._seed

    def pause(self) -> None:
        """Pause logging (e.g., during replay)."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def is_paused(self) -> bool:
        return self._paused

    def subscribe(self, callback: Callable[[LogEvent], None]) -> None:
        """Subscribe to receive events as they are logged."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LogEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _log_event(self, event: LogEvent) -> None:
        if self._paused:
            return

        self._sequence += 1
        event.sequence_number = self._sequence
        self._events.append(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.warning(f"Subscriber error: {e}")

    def log_transition(
        self,
        from_state: str,
        to_state: str,
        trigger: str,
        timestamp_millis: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> TransitionEvent:
        """Log a phase transition."""
        event = TransitionEvent(
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            timestamp_millis=timestamp_millis,
            context=context or {},
        )
        self._log_event(event)
        return event

    def log_selection(
        self,
        resolution: str,
        target_id: str = "",
        reason: str = "",
        timestamp_millis: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> SelectionEvent:
        """Log an event engine decision."""
        event = SelectionEvent(
            resolution=resolution,
            target_id=target_id,
            reason=reason,
            timestamp_millis=timestamp_millis,
            context=context or {},
        )
        self._log_event(event)
        return event

    def log_resolution(
        self,
        history_id: str,
        option_index: int,
        autosave_tag: str,
        is_chapter: bool = False,
        timestamp_millis: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> ResolutionEvent:
        """Log a resolved player choice."""
        event = ResolutionEvent(
            history_id=history_id,
            option_index=option_index,
            autosave_tag=autosave_tag,
            is_chapter=is_chapter,
            timestamp_millis=timestamp_millis,
            context=context or {},
        )
        self._log_event(event)
        return event

    def log_consequence(
        self,
        source: str,
        summaries: list[str],
        timestamp_millis: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> ConsequenceEvent:
        """Log the outcome of one consequence application."""
        event = ConsequenceEvent(
            source=source,
            summaries=list(summaries),
            timestamp_millis=timestamp_millis,
            context=context or {},
        )
        self._log_event(event)
        return event

    def log_director(
        self,
        update: str,
        details: dict[str, Any],
        timestamp_millis: Optional[int] = None,
    ) -> LogEvent:
        """Log an AI Director counter update."""
        event = LogEvent(
            event_type=EventType.DIRECTOR,
            timestamp_millis=timestamp_millis,
            context={"update": update, **details},
        )
        self._log_event(event)
        return event

    def log_custom(
        self,
        event_name: str,
        details: dict[str, Any],
    ) -> LogEvent:
        """Log a custom event."""
        event = LogEvent(
            event_type=EventType.CUSTOM,
            context={"event_name": event_name, **details},
        )
        self._log_event(event)
        return event

    def get_events(
        self,
        event_type: Optional[EventType] = None,
        since_sequence: int = 0,
    ) -> list[LogEvent]:
        """
        Get logged events.

        Args:
            event_type: Filter by event type (None = all)
            since_sequence: Only events after this sequence number
        """
        events = [e for e in self._events if e.sequence_number > since_sequence]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events

    def get_transitions(self) -> list[TransitionEvent]:
        return [e for e in self._events if isinstance(e, TransitionEvent)]

    def get_selections(self) -> list[SelectionEvent]:
        return [e for e in self._events if isinstance(e, SelectionEvent)]

    def get_resolutions(self) -> list[ResolutionEvent]:
        return [e for e in self._events if isinstance(e, ResolutionEvent)]

    def get_consequences(self) -> list[ConsequenceEvent]:
        return [e for e in self._events if isinstance(e, ConsequenceEvent)]

    def get_event_count(self) -> int:
        return len(self._events)

    def get_summary(self) -> dict[str, Any]:
        """Get a summary of the run log."""
        return {
            "seed": self._seed,
            "total_events": len(self._events),
            "transitions": len(self.get_transitions()),
            "selections": len(self.get_selections()),
            "resolutions": len(self.get_resolutions()),
            "consequences": len(self.get_consequences()),
            "last_sequence": self._sequence,
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize the entire log to a dictionary."""
        return {
            "seed": self._seed,
            "sequence": self._sequence,
            "events": [e.to_dict() for e in self._events],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def save(self, filepath: str) -> None:
        """Save the log to a file."""
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(self.to_json())
        logger.info(f"RunLog saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> "RunLog":
        """Load a log from a file, replacing the current contents."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)

        log = get_run_log()
        log.reset()
        log._seed = data.get("seed")
        log._sequence = data.get("sequence", 0)

        for event_data in data.get("events", []):
            event_type = EventType(event_data["event_type"])
            event_cls = _EVENT_CLASSES.get(event_type, LogEvent)
            log._events.append(event_cls.from_dict(event_data))

        logger.info(f"RunLog loaded from {filepath}: {len(log._events)} events")
        return log

    def format_log(
        self,
        event_types: Optional[list[EventType]] = None,
        max_events: Optional[int] = None,
    ) -> str:
        """Format the log as a human-readable string."""
        lines = [
            "=== Run Log ===",
            f"Seed: {self._seed if self._seed is not None else 'not set'}",
            f"Total Events: {len(self._events)}",
            "",
        ]

        events = self._events
        if event_types:
            events = [e for e in events if e.event_type in event_types]
        if max_events:
            events = events[-max_events:]

        for event in events:
            lines.append(str(event))

        return "\n".join(lines)


# Singleton access
_run_log: Optional[RunLog] = None


def get_run_log() -> RunLog:
    """Get the global RunLog instance."""
    global _run_log
    if _run_log is None:
        _run_log = RunLog()
    return _run_log


def reset_run_log() -> RunLog:
    """Reset and return the global RunLog instance."""
    log = get_run_log()
    log.reset()
    return log
