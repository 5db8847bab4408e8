"""
Core data models for the exploration loop.

Player state is an immutable snapshot: every mutation produces a new
PlayerState through dataclasses.replace, and only the player state store
publishes new snapshots. Narrative content (snippets, chapter events) is
plain data handed over by the content repository or a chapter provider.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional
import re


_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lowercase and collapse every non-alphanumeric run into '_'."""
    return _SLUG_PATTERN.sub("_", text.lower()).strip("_")


# =============================================================================
# ENUMERATIONS
# =============================================================================


class DifficultyLevel(str, Enum):
    """Discrete difficulty tiers produced by the AI Director."""

    EASY = "easy"
    NORMAL = "normal"
    HARD = "hard"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return _DIFFICULTY_ORDER.index(self)


_DIFFICULTY_ORDER = [
    DifficultyLevel.EASY,
    DifficultyLevel.NORMAL,
    DifficultyLevel.HARD,
    DifficultyLevel.EXPERT,
]


class Playstyle(str, Enum):
    """Playstyle classifications derived from tagged player actions."""

    CAUTIOUS = "cautious"
    AGGRESSIVE = "aggressive"
    EXPLORER = "explorer"
    HOARDER = "hoarder"
    SOCIAL = "social"
    BALANCED = "balanced"


# =============================================================================
# PLAYER STATE
# =============================================================================


@dataclass(frozen=True)
class ChoiceLogEntry:
    """A single tag in the append-only choice log."""

    tag: str
    timestamp_millis: int

    def to_dict(self) -> dict[str, Any]:
        return {"tag": self.tag, "timestamp_millis": self.timestamp_millis}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChoiceLogEntry":
        return cls(tag=data["tag"], timestamp_millis=int(data["timestamp_millis"]))


@dataclass(frozen=True)
class StatusEffect:
    """A keyed status effect. expires_at_millis of None means permanent."""

    key: str
    expires_at_millis: Optional[int] = None

    def is_active(self, now: Optional[int]) -> bool:
        if now is None or self.expires_at_millis is None:
            return True
        return self.expires_at_millis > now

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "expires_at_millis": self.expires_at_millis}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusEffect":
        expires = data.get("expires_at_millis")
        return cls(key=data["key"], expires_at_millis=int(expires) if expires is not None else None)


@dataclass(frozen=True)
class QuestLog:
    """Quest identifiers grouped by status. Quest bodies live elsewhere."""

    active_quests: tuple[str, ...] = ()
    completed_quests: tuple[str, ...] = ()
    failed_quests: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "active_quests": list(self.active_quests),
            "completed_quests": list(self.completed_quests),
            "failed_quests": list(self.failed_quests),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuestLog":
        return cls(
            active_quests=tuple(data.get("active_quests", [])),
            completed_quests=tuple(data.get("completed_quests", [])),
            failed_quests=tuple(data.get("failed_quests", [])),
        )


@dataclass(frozen=True)
class PerformanceMetrics:
    """Gameplay performance counters observed by the AI Director."""

    combat_wins: int = 0
    combat_losses: int = 0
    quest_completions: int = 0
    quest_failures: int = 0
    deaths: int = 0
    resources_gained: int = 0
    resources_lost: int = 0
    average_health: float = 1.0  # Rolling mean of health samples, 0.0-1.0
    health_samples: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "combat_wins": self.combat_wins,
            "combat_losses": self.combat_losses,
            "quest_completions": self.quest_completions,
            "quest_failures": self.quest_failures,
            "deaths": self.deaths,
            "resources_gained": self.resources_gained,
            "resources_lost": self.resources_lost,
            "average_health": self.average_health,
            "health_samples": self.health_samples,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceMetrics":
        return cls(
            combat_wins=data.get("combat_wins", 0),
            combat_losses=data.get("combat_losses", 0),
            quest_completions=data.get("quest_completions", 0),
            quest_failures=data.get("quest_failures", 0),
            deaths=data.get("deaths", 0),
            resources_gained=data.get("resources_gained", 0),
            resources_lost=data.get("resources_lost", 0),
            average_health=float(data.get("average_health", 1.0)),
            health_samples=data.get("health_samples", 0),
        )


# Minimum top score before any playstyle is considered dominant
PLAYSTYLE_SIGNAL_FLOOR = 10
# Runner-up at or above this share of the leader means no clear preference
PLAYSTYLE_CLOSENESS_RATIO = 0.8


@dataclass(frozen=True)
class PlaystyleProfile:
    """Five independent non-negative playstyle counters."""

    cautious_score: int = 0
    aggressive_score: int = 0
    explorer_score: int = 0
    hoarder_score: int = 0
    social_score: int = 0

    def scores(self) -> dict[Playstyle, int]:
        return {
            Playstyle.CAUTIOUS: self.cautious_score,
            Playstyle.AGGRESSIVE: self.aggressive_score,
            Playstyle.EXPLORER: self.explorer_score,
            Playstyle.HOARDER: self.hoarder_score,
            Playstyle.SOCIAL: self.social_score,
        }

    def increment(self, style: Playstyle, amount: int = 1) -> "PlaystyleProfile":
        """Return a copy with one counter raised. BALANCED is not a counter."""
        if style == Playstyle.BALANCED:
            raise ValueError("BALANCED is a classification, not a counter")
        if amount < 0:
            raise ValueError("Playstyle counters are non-negative")
        attr = f"{style.value}_score"
        return replace(self, **{attr: getattr(self, attr) + amount})

    def get_dominant_style(
        self,
        signal_floor: int = PLAYSTYLE_SIGNAL_FLOOR,
        closeness_ratio: float = PLAYSTYLE_CLOSENESS_RATIO,
    ) -> Playstyle:
        """
        Classify the dominant playstyle.

        BALANCED when the top counter is below the signal floor, or when the
        runner-up is within closeness_ratio of the top counter.
        """
        scores = self.scores()
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        top_style, top_score = ranked[0]
        if top_score < signal_floor:
            return Playstyle.BALANCED
        runner_up = ranked[1][1]
        if runner_up >= top_score * closeness_ratio:
            return Playstyle.BALANCED
        return top_style

    def to_dict(self) -> dict[str, Any]:
        return {style.value: score for style, score in self.scores().items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaystyleProfile":
        return cls(
            cautious_score=data.get("cautious", 0),
            aggressive_score=data.get("aggressive", 0),
            explorer_score=data.get("explorer", 0),
            hoarder_score=data.get("hoarder", 0),
            social_score=data.get("social", 0),
        )


@dataclass(frozen=True)
class AIDirectorState:
    """Persistent AI Director state. Mutated only through the director."""

    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    playstyle: PlaystyleProfile = field(default_factory=PlaystyleProfile)
    last_event_timestamp: Optional[int] = None
    events_since_rest: int = 0
    current_difficulty: DifficultyLevel = DifficultyLevel.NORMAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "performance": self.performance.to_dict(),
            "playstyle": self.playstyle.to_dict(),
            "last_event_timestamp": self.last_event_timestamp,
            "events_since_rest": self.events_since_rest,
            "current_difficulty": self.current_difficulty.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AIDirectorState":
        return cls(
            performance=PerformanceMetrics.from_dict(data.get("performance", {})),
            playstyle=PlaystyleProfile.from_dict(data.get("playstyle", {})),
            last_event_timestamp=data.get("last_event_timestamp"),
            events_since_rest=data.get("events_since_rest", 0),
            current_difficulty=DifficultyLevel(data.get("current_difficulty", "normal")),
        )


@dataclass(frozen=True)
class PlayerState:
    """Immutable snapshot of everything the exploration loop reads or writes."""

    player_id: str
    name: str = ""
    location_id: Optional[str] = None
    biome: Optional[str] = None
    choice_log: tuple[ChoiceLogEntry, ...] = ()
    quest_log: QuestLog = field(default_factory=QuestLog)
    status_effects: tuple[StatusEffect, ...] = ()
    ai_director: AIDirectorState = field(default_factory=AIDirectorState)

    def choice_tags(self) -> list[str]:
        return [entry.tag for entry in self.choice_log]

    def has_choice_tag(self, tag: str) -> bool:
        return any(entry.tag == tag for entry in self.choice_log)

    def get_status_effect(self, key: str) -> Optional[StatusEffect]:
        for effect in self.status_effects:
            if effect.key == key:
                return effect
        return None

    def active_status_keys(self, now: Optional[int] = None) -> set[str]:
        return {effect.key for effect in self.status_effects if effect.is_active(now)}

    def append_choice(self, tag: str, timestamp_millis: int) -> "PlayerState":
        if not tag or not tag.strip():
            raise ValueError("Choice tag cannot be blank")
        entry = ChoiceLogEntry(tag=tag, timestamp_millis=timestamp_millis)
        return replace(self, choice_log=self.choice_log + (entry,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "player_id": self.player_id,
            "name": self.name,
            "location_id": self.location_id,
            "biome": self.biome,
            "choice_log": [entry.to_dict() for entry in self.choice_log],
            "quest_log": self.quest_log.to_dict(),
            "status_effects": [effect.to_dict() for effect in self.status_effects],
            "ai_director": self.ai_director.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlayerState":
        return cls(
            player_id=data["player_id"],
            name=data.get("name", ""),
            location_id=data.get("location_id"),
            biome=data.get("biome"),
            choice_log=tuple(ChoiceLogEntry.from_dict(e) for e in data.get("choice_log", [])),
            quest_log=QuestLog.from_dict(data.get("quest_log", {})),
            status_effects=tuple(StatusEffect.from_dict(e) for e in data.get("status_effects", [])),
            ai_director=AIDirectorState.from_dict(data.get("ai_director", {})),
        )


# =============================================================================
# NARRATIVE CONTENT
# =============================================================================


@dataclass(frozen=True)
class Snippet:
    """
    A single narrative encounter definition.

    choice_options are addressed by position. consequences maps a consequence
    key to an effect description; the repository record decides which key
    belongs to which option. Empty allowed_locations/allowed_biomes means the
    snippet is eligible everywhere.
    """

    snippet_id: str
    event_text: str
    choice_options: tuple[str, ...] = ()
    consequences: dict[str, Any] = field(default_factory=dict)
    conditions: dict[str, Any] = field(default_factory=dict)
    allowed_locations: tuple[str, ...] = ()
    allowed_biomes: tuple[str, ...] = ()

    def option_text(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.choice_options):
            return self.choice_options[index]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.snippet_id,
            "event_text": self.event_text,
            "choice_options": list(self.choice_options),
            "consequences": self.consequences,
            "conditions": self.conditions,
            "allowed_locations": list(self.allowed_locations),
            "allowed_biomes": list(self.allowed_biomes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snippet":
        return cls(
            snippet_id=data["id"],
            event_text=data.get("event_text", ""),
            choice_options=tuple(data.get("choice_options", [])),
            consequences=dict(data.get("consequences") or {}),
            conditions=dict(data.get("conditions") or {}),
            allowed_locations=tuple(data.get("allowed_locations", [])),
            allowed_biomes=tuple(data.get("allowed_biomes", [])),
        )


@dataclass(frozen=True)
class ChapterEventRequest:
    """Everything a chapter provider may use to author a chapter event."""

    player_id: str
    choice_log: tuple[ChoiceLogEntry, ...]
    quest_log: QuestLog
    status_effects: tuple[StatusEffect, ...]
    trigger_reason: Optional[str] = None
    difficulty: DifficultyLevel = DifficultyLevel.NORMAL
    playstyle: Playstyle = Playstyle.BALANCED
    intent: str = "steady"


@dataclass(frozen=True)
class ChapterEventResponse:
    """
    A director-authored narrative bundle.

    Only the first bundled snippet's options are offered to the player; the
    remaining snippets are reserved for multi-stage events.
    """

    world_event_title: str
    world_event_summary: str
    snippets: tuple[Snippet, ...] = ()

    @property
    def slug(self) -> str:
        return slugify(self.world_event_title)

    @property
    def history_id(self) -> str:
        return f"chapter:{self.slug}"

    @property
    def lead_snippet(self) -> Optional[Snippet]:
        return self.snippets[0] if self.snippets else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "world_event_title": self.world_event_title,
            "world_event_summary": self.world_event_summary,
            "snippets": [snippet.to_dict() for snippet in self.snippets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChapterEventResponse":
        return cls(
            world_event_title=data["world_event_title"],
            world_event_summary=data.get("world_event_summary", ""),
            snippets=tuple(Snippet.from_dict(s) for s in data.get("snippets", [])),
        )


# =============================================================================
# EVENT RESOLUTION
# =============================================================================


class EventResolution:
    """Outcome of one encounter-selection decision."""

    __slots__ = ()


@dataclass(frozen=True)
class Encounter(EventResolution):
    """An ordinary snippet should be presented."""

    snippet_id: str


@dataclass(frozen=True)
class ChapterEvent(EventResolution):
    """A chapter event takes the place of an ordinary snippet."""

    response: ChapterEventResponse


@dataclass(frozen=True)
class RestRequired(EventResolution):
    """The fatigue threshold was reached; the player must rest first."""

    events_since_rest: int = 0
