"""
AI Director: adaptive difficulty and playstyle profiling.

The director owns the AIDirectorState embedded in the player snapshot. Combat,
quest, and exploration subsystems call its record_* operations; every change
goes through the player state store so the snapshot stays the single source
of truth.

Difficulty is a pure function of the performance counters and is recomputed
on demand. Playstyle is classified from five independent counters with a
signal floor and a closeness tie-break (see PlaystyleProfile).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional
import logging
import re

from src.data_models import (
    PLAYSTYLE_CLOSENESS_RATIO,
    PLAYSTYLE_SIGNAL_FLOOR,
    AIDirectorState,
    DifficultyLevel,
    PerformanceMetrics,
    PlayerState,
    Playstyle,
)
from src.game_state.state_store import PlayerStateStore
from src.observability.run_log import get_run_log

logger = logging.getLogger(__name__)


class EventRecommendation(str, Enum):
    """Event type recommendations for the event engine."""

    COMBAT = "combat"
    EXPLORATION = "exploration"
    SOCIAL = "social"
    RESOURCE = "resource"
    NARRATIVE = "narrative"
    BALANCED = "balanced"


PLAYSTYLE_RECOMMENDATIONS: dict[Playstyle, EventRecommendation] = {
    Playstyle.AGGRESSIVE: EventRecommendation.COMBAT,
    Playstyle.EXPLORER: EventRecommendation.EXPLORATION,
    Playstyle.SOCIAL: EventRecommendation.SOCIAL,
    Playstyle.HOARDER: EventRecommendation.RESOURCE,
    Playstyle.CAUTIOUS: EventRecommendation.NARRATIVE,
    Playstyle.BALANCED: EventRecommendation.BALANCED,
}

DIFFICULTY_MULTIPLIERS: dict[DifficultyLevel, float] = {
    DifficultyLevel.EASY: 0.7,
    DifficultyLevel.NORMAL: 1.0,
    DifficultyLevel.HARD: 1.3,
    DifficultyLevel.EXPERT: 1.6,
}

# Checked in order; the first family with a matching word wins
PLAYSTYLE_KEYWORDS: list[tuple[Playstyle, frozenset[str]]] = [
    (Playstyle.CAUTIOUS, frozenset({"flee", "retreat", "avoid", "hide", "sneak", "careful"})),
    (Playstyle.AGGRESSIVE, frozenset({"attack", "fight", "combat", "challenge", "confront"})),
    (
        Playstyle.EXPLORER,
        frozenset(
            {"explore", "discover", "travel", "location", "lore", "investigate", "inspect", "stride", "trail"}
        ),
    ),
    (Playstyle.HOARDER, frozenset({"collect", "gather", "hoard", "shiny", "seeds", "resource", "salvage"})),
    (Playstyle.SOCIAL, frozenset({"talk", "conversation", "npc", "gift", "affinity", "friend", "rally"})),
]

_WORD_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass
class DirectorConfig:
    """Tuning constants for the AI Director."""

    fatigue_threshold: int = 5
    easy_below: float = 0.3
    normal_below: float = 0.6
    hard_below: float = 0.85
    death_penalty: float = 0.1
    default_rate: float = 0.5
    playstyle_signal_floor: int = PLAYSTYLE_SIGNAL_FLOOR
    playstyle_closeness_ratio: float = PLAYSTYLE_CLOSENESS_RATIO
    chaos_boost: float = 0.05
    chaos_suppression: float = 0.07
    struggling_deaths: int = 3


def performance_score(metrics: PerformanceMetrics, config: Optional[DirectorConfig] = None) -> float:
    """Mean of combat win rate and quest success rate, less a per-death penalty."""
    config = config or DirectorConfig()

    total_combats = metrics.combat_wins + metrics.combat_losses
    win_rate = metrics.combat_wins / total_combats if total_combats else config.default_rate

    total_quests = metrics.quest_completions + metrics.quest_failures
    quest_rate = metrics.quest_completions / total_quests if total_quests else config.default_rate

    return (win_rate + quest_rate) / 2 - metrics.deaths * config.death_penalty


def compute_difficulty(metrics: PerformanceMetrics, config: Optional[DirectorConfig] = None) -> DifficultyLevel:
    """Map performance counters to a difficulty tier."""
    config = config or DirectorConfig()
    score = performance_score(metrics, config)
    if score < config.easy_below:
        return DifficultyLevel.EASY
    if score < config.normal_below:
        return DifficultyLevel.NORMAL
    if score < config.hard_below:
        return DifficultyLevel.HARD
    return DifficultyLevel.EXPERT


def classify_tag(tag: str) -> Optional[Playstyle]:
    """
    Map a choice tag to a playstyle, or None when no family matches.

    Tags are split into words; a leading "explore" namespace word is dropped
    so that "explore_gather_twigs" reads as gathering rather than exploring.
    """
    words = [w for w in _WORD_SPLIT.split(tag.lower()) if w]
    if len(words) > 1 and words[0] == "explore":
        words = words[1:]
    for style, keywords in PLAYSTYLE_KEYWORDS:
        if any(word in keywords for word in words):
            return style
    return None


def should_boost_chaos_events(playstyle: Playstyle) -> bool:
    """Aggressive and balanced players get chaos a little more often."""
    return playstyle in (Playstyle.AGGRESSIVE, Playstyle.BALANCED)


def should_suppress_chaos_events(
    playstyle: Playstyle, metrics: PerformanceMetrics, config: Optional[DirectorConfig] = None
) -> bool:
    """Cautious players who keep dying are spared some chaos."""
    config = config or DirectorConfig()
    return playstyle == Playstyle.CAUTIOUS and metrics.deaths >= config.struggling_deaths

class AIDirectorManager:
    """
    Adaptive difficulty and content recommendation controller.

    Attributes:
        config: Tuning constants
    """

    def __init__(self, store: PlayerStateStore, config: Optional[DirectorConfig] = None):
        self._store = store
        self.config = config or DirectorConfig()

    @property
    def state(self) -> AIDirectorState:
        return self._store.current().ai_director

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_current_difficulty(self) -> DifficultyLevel:
        return compute_difficulty(self.state.performance, self.config)

    def get_playstyle(self) -> Playstyle:
        return self.state.playstyle.get_dominant_style(
            self.config.playstyle_signal_floor, self.config.playstyle_closeness_ratio
        )

    def recommend_event_type(self) -> EventRecommendation:
        return PLAYSTYLE_RECOMMENDATIONS[self.get_playstyle()]

    def difficulty_multiplier(self) -> float:
        """Scaling for rewards and challenges: 0.7 / 1.0 / 1.3 / 1.6."""
        return DIFFICULTY_MULTIPLIERS[self.get_current_difficulty()]

    def get_events_since_rest(self) -> int:
        return self.state.events_since_rest

    def is_fatigued(self, player: Optional[PlayerState] = None) -> bool:
        state = player.ai_director if player is not None else self.state
        return state.events_since_rest >= self.config.fatigue_threshold

    def should_boost_chaos_events(self) -> bool:
        return should_boost_chaos_events(self.get_playstyle())

    def should_suppress_chaos_events(self) -> bool:
        return should_suppress_chaos_events(self.get_playstyle(), self.state.performance, self.config)

    # =========================================================================
    # PERFORMANCE COUNTERS
    # =========================================================================

    def _update(
        self,
        update: str,
        fn: Callable[[AIDirectorState], AIDirectorState],
        timestamp_millis: Optional[int] = None,
    ) -> AIDirectorState:
        def apply(player: PlayerState) -> PlayerState:
            director = fn(player.ai_director)
            difficulty = compute_difficulty(director.performance, self.config)
            if difficulty != director.current_difficulty:
                logger.info(f"Difficulty {director.current_difficulty.value} -> {difficulty.value}")
                director = replace(director, current_difficulty=difficulty)
            return replace(player, ai_director=director)

        new_state = self._store.update(apply).ai_director
        get_run_log().log_director(
            update,
            {
                "events_since_rest": new_state.events_since_rest,
                "difficulty": new_state.current_difficulty.value,
            },
            timestamp_millis=timestamp_millis if timestamp_millis is not None else new_state.last_event_timestamp,
        )
        return new_state

    def _bump(self, update: str, **deltas: int) -> AIDirectorState:
        def fn(director: AIDirectorState) -> AIDirectorState:
            perf = director.performance
            changes = {name: getattr(perf, name) + amount for name, amount in deltas.items()}
            return replace(director, performance=replace(perf, **changes))

        return self._update(update, fn)

    def record_combat_win(self) -> AIDirectorState:
        return self._bump("combat_win", combat_wins=1)

    def record_combat_loss(self) -> AIDirectorState:
        return self._bump("combat_loss", combat_losses=1)

    def record_quest_completion(self) -> AIDirectorState:
        return self._bump("quest_completion", quest_completions=1)

    def record_quest_failure(self) -> AIDirectorState:
        return self._bump("quest_failure", quest_failures=1)

    def record_death(self) -> AIDirectorState:
        return self._bump("death", deaths=1)

    def record_resources(self, gained: int = 0, lost: int = 0) -> AIDirectorState:
        if gained < 0 or lost < 0:
            raise ValueError("Resource counters only move forward")
        return self._bump("resources", resources_gained=gained, resources_lost=lost)

    def record_health_sample(self, health_fraction: float) -> AIDirectorState:
        """Fold a 0.0-1.0 health reading into the rolling average."""
        sample = min(1.0, max(0.0, float(health_fraction)))

        def fn(director: AIDirectorState) -> AIDirectorState:
            perf = director.performance
            count = perf.health_samples + 1
            average = (perf.average_health * perf.health_samples + sample) / count
            return replace(
                director,
                performance=replace(perf, average_health=average, health_samples=count),
            )

        return self._update("health_sample", fn)

    # =========================================================================
    # PACING
    # =========================================================================

    def record_event(self, now: int) -> AIDirectorState:
        """One more resolved event since the last rest."""
        return self._update(
            "event",
            lambda d: replace(d, events_since_rest=d.events_since_rest + 1, last_event_timestamp=now),
            timestamp_millis=now,
        )

    def record_rest(self, now: Optional[int] = None) -> AIDirectorState:
        logger.info(f"Rest taken after {self.state.events_since_rest} events")
        return self._update("rest", lambda d: replace(d, events_since_rest=0), timestamp_millis=now)

    # =========================================================================
    # PLAYSTYLE
    # =========================================================================

    def record_playstyle_tag(self, tag: str) -> Optional[Playstyle]:
        """Increment the counter the tag maps to. Unmapped tags record nothing."""
        style = classify_tag(tag)
        if style is None:
            logger.debug(f"Tag {tag!r} carries no playstyle signal")
            return None
        self._update(
            "playstyle",
            lambda d: replace(d, playstyle=d.playstyle.increment(style)),
        )
        logger.debug(f"Tag {tag!r} counted as {style.value}")
        return style
