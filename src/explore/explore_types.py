"""
Phase and history types observed by the UI.

ExplorePhase is a closed set of variants; each carries the payload the UI
needs for that phase and a `kind` matching the phase transition table.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from src.data_models import ChapterEventResponse, Snippet
from src.game_state.state_machine import PhaseKind


# =============================================================================
# RESOLUTION RECORDS
# =============================================================================


@dataclass(frozen=True)
class ResolutionSummary:
    """What the player sees after choosing an option."""

    title: str
    choice_text: Optional[str]
    reward_summaries: tuple[str, ...]
    autosave_tag: str
    snippet_id: str
    timestamp_millis: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "choice_text": self.choice_text,
            "reward_summaries": list(self.reward_summaries),
            "autosave_tag": self.autosave_tag,
            "snippet_id": self.snippet_id,
            "timestamp_millis": self.timestamp_millis,
        }


@dataclass(frozen=True)
class ExploreHistoryEntry:
    """One completed encounter in the session history."""

    snippet_id: str
    title: str
    choice_summary: Optional[str]
    autosave_tag: str
    narrated_summary: str = ""
    reward_summaries: tuple[str, ...] = ()
    timestamp_millis: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "snippet_id": self.snippet_id,
            "title": self.title,
            "choice_summary": self.choice_summary,
            "autosave_tag": self.autosave_tag,
            "narrated_summary": self.narrated_summary,
            "reward_summaries": list(self.reward_summaries),
            "timestamp_millis": self.timestamp_millis,
        }


# =============================================================================
# PHASES
# =============================================================================


class ExplorePhase:
    """Base class for exploration phases."""

    __slots__ = ()

    kind: ClassVar[PhaseKind]

    def describe(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class Idle(ExplorePhase):
    kind: ClassVar[PhaseKind] = PhaseKind.IDLE


@dataclass(frozen=True)
class Loading(ExplorePhase):
    kind: ClassVar[PhaseKind] = PhaseKind.LOADING


@dataclass(frozen=True)
class Encounter(ExplorePhase):
    """An ordinary snippet waiting for a choice."""

    kind: ClassVar[PhaseKind] = PhaseKind.ENCOUNTER

    snippet: Snippet
    title: str = ""

    def describe(self) -> str:
        return f"encounter: {self.title or self.snippet.snippet_id}"


@dataclass(frozen=True)
class Chapter(ExplorePhase):
    """A chapter event waiting for a choice on its lead snippet."""

    kind: ClassVar[PhaseKind] = PhaseKind.CHAPTER

    response: ChapterEventResponse

    @property
    def snippet(self) -> Optional[Snippet]:
        return self.response.lead_snippet

    def describe(self) -> str:
        return f"chapter: {self.response.world_event_title}"


@dataclass(frozen=True)
class Resolution(ExplorePhase):
    kind: ClassVar[PhaseKind] = PhaseKind.RESOLUTION

    summary: ResolutionSummary

    def describe(self) -> str:
        return f"resolution: {self.summary.title}"


@dataclass(frozen=True)
class RestNeeded(ExplorePhase):
    kind: ClassVar[PhaseKind] = PhaseKind.REST_NEEDED

    events_since_rest: int = 0


@dataclass(frozen=True)
class Error(ExplorePhase):
    """A lookup failed; begin_exploration may be retried."""

    kind: ClassVar[PhaseKind] = PhaseKind.ERROR

    message: str = ""

    def describe(self) -> str:
        return f"error: {self.message}"


@dataclass(frozen=True)
class ExploreState:
    """The observable state of the exploration loop."""

    phase: ExplorePhase = field(default_factory=Idle)
    history: tuple[ExploreHistoryEntry, ...] = ()
