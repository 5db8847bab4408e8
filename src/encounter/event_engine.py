"""
Encounter selection policy for the exploration loop.

Given a player snapshot the event engine decides what happens next:
- RestRequired when the fatigue threshold is reached (checked first, always)
- Encounter(snippet_id) for a chaos record when the chaos trigger fires
- ChapterEvent when a chapter trigger fires and a provider authors the event
- Encounter(snippet_id) for the freshest eligible snippet otherwise

When no snippet is eligible the engine raises NoEligibleContentError; it never
relaxes conditions to find something.
"""

from typing import Callable, Optional, Protocol, Union
import logging
import random

from src.ai.director import (
    DirectorConfig,
    compute_difficulty,
    should_boost_chaos_events,
    should_suppress_chaos_events,
)
from src.content_loader.snippet_repository import (
    CHAOS_INTRODUCTION_ID,
    CHAOS_MARKER,
    COMPLETION_TAG_PREFIX,
    SnippetRecord,
    SnippetRepository,
)
from src.data_models import (
    ChapterEvent,
    ChapterEventRequest,
    ChapterEventResponse,
    DifficultyLevel,
    Encounter,
    EventResolution,
    PlayerState,
    RestRequired,
    Snippet,
)
from src.explore.errors import NoEligibleContentError

logger = logging.getLogger(__name__)


AUTOSAVE_PREFIX = "autosave:"
LOCATION_TAG_PREFIX = "explore_at_"
CHAPTER_TAG_PREFIX = "chapter:"
CHAPTER_COMPLETION_PREFIX = f"{COMPLETION_TAG_PREFIX}chapter_"


class EventEngine(Protocol):
    """Anything that can pick the next encounter for a player."""

    def evaluate_next_encounter(self, player: PlayerState) -> EventResolution:
        ...


# =============================================================================
# CHAPTER TRIGGERS
# =============================================================================


class ChapterTrigger(Protocol):
    """Decides whether a chapter event replaces the next ordinary snippet."""

    def evaluate(self, player: PlayerState, difficulty: DifficultyLevel) -> Optional[str]:
        """Return a trigger reason, or None when no chapter is due."""
        ...


def encounters_since_last_chapter(player: PlayerState) -> int:
    """Resolved ordinary encounters logged after the most recent chapter tag."""
    count = 0
    for entry in reversed(player.choice_log):
        if entry.tag.startswith(CHAPTER_TAG_PREFIX):
            break
        if entry.tag.startswith(COMPLETION_TAG_PREFIX) and not entry.tag.startswith(
            CHAPTER_COMPLETION_PREFIX
        ):
            count += 1
    return count


class CadenceChapterTrigger:
    """
    Fires after every `cadence` resolved encounters.

    The cadence shortens by one at HARD and by two at EXPERT, never below one.
    A cadence of zero or less disables the trigger.
    """

    ESCALATION = {DifficultyLevel.HARD: 1, DifficultyLevel.EXPERT: 2}

    def __init__(self, cadence: int = 4):
        self.cadence = cadence

    def effective_cadence(self, difficulty: DifficultyLevel) -> int:
        return max(1, self.cadence - self.ESCALATION.get(difficulty, 0))

    def evaluate(self, player: PlayerState, difficulty: DifficultyLevel) -> Optional[str]:
        if self.cadence <= 0:
            return None
        needed = self.effective_cadence(difficulty)
        seen = encounters_since_last_chapter(player)
        logger.debug(f"Chapter cadence: {seen}/{needed} at {difficulty.value}")
        if seen >= needed:
            return f"cadence_reached:{seen}"
        return None


class ChanceChapterTrigger:
    """Fires with a fixed probability per evaluation."""

    def __init__(self, odds: float, rng: Optional[random.Random] = None):
        if not 0.0 <= odds <= 1.0:
            raise ValueError("Chapter event odds must be a probability")
        self.odds = odds
        self._rng = rng or random.Random()

    def evaluate(self, player: PlayerState, difficulty: DifficultyLevel) -> Optional[str]:
        if self.odds > 0.0 and self._rng.random() < self.odds:
            return "probability_threshold_met"
        return None


class AnyChapterTrigger:
    """Fires when any wrapped trigger fires; the first reason wins."""

    def __init__(self, *triggers: ChapterTrigger):
        self.triggers = list(triggers)

    def evaluate(self, player: PlayerState, difficulty: DifficultyLevel) -> Optional[str]:
        for trigger in self.triggers:
            reason = trigger.evaluate(player, difficulty)
            if reason:
                return reason
        return None


# =============================================================================
# CHAPTER PROVIDERS
# =============================================================================


class ChapterEventProvider(Protocol):
    """Authors a chapter event for a request."""

    def generate_chapter_event(self, request: ChapterEventRequest) -> ChapterEventResponse:
        ...


def director_intent(difficulty: DifficultyLevel) -> str:
    if difficulty in (DifficultyLevel.HARD, DifficultyLevel.EXPERT):
        return "escalate"
    if difficulty == DifficultyLevel.EASY:
        return "ease"
    return "steady"


class DefaultChapterEventProvider:
    """Deterministic placeholder chapter, used when no author is configured."""

    def generate_chapter_event(self, request: ChapterEventRequest) -> ChapterEventResponse:
        player_id = request.player_id
        return ChapterEventResponse(
            world_event_title=f"Whispers Over {player_id.upper()}",
            world_event_summary=f"A placeholder chapter event shaped by {player_id}'s journey.",
            snippets=(
                Snippet(
                    snippet_id="placeholder_chapter_intro",
                    event_text=f"A hush rolls across the burrows as news spreads of {player_id}'s rising legend.",
                    choice_options=("Embrace the moment", "Stay humble", "Rally the critters"),
                    consequences={
                        "embrace_the_moment": {"add_choice_tags": ["chapter_embrace"]},
                        "stay_humble": {"add_choice_tags": ["chapter_humble"]},
                        "rally_the_critters": {"add_choice_tags": ["chapter_rally"]},
                    },
                ),
            ),
        )


# =============================================================================
# CHAOS TRIGGER
# =============================================================================


class ChaosEventTrigger:
    """
    Rolls for a chaos encounter that interrupts ordinary selection.

    A player who has never met the chaos character only sees the introduction,
    and only after passing a first-meeting roll. The base odds rise for
    aggressive or balanced players and fall for cautious players who keep
    dying. The chosen record is returned; it is never offered by eligibility.
    """

    def __init__(
        self,
        records: list[SnippetRecord],
        odds: float = 0.10,
        introduction_odds: float = 0.05,
        rng: Optional[random.Random] = None,
        director_config: Optional[DirectorConfig] = None,
        marker: str = CHAOS_MARKER,
        introduction_id: str = CHAOS_INTRODUCTION_ID,
    ):
        for value in (odds, introduction_odds):
            if not 0.0 <= value <= 1.0:
                raise ValueError("Chaos event odds must be a probability")
        self.odds = odds
        self.introduction_odds = introduction_odds
        self.director_config = director_config or DirectorConfig()
        self.marker = marker
        self._rng = rng or random.Random()

        self.introduction: Optional[SnippetRecord] = None
        self.follow_ups: list[SnippetRecord] = []
        for record in records:
            if record.snippet_id == introduction_id:
                self.introduction = record
            else:
                self.follow_ups.append(record)

    def has_met(self, player: PlayerState) -> bool:
        return any(self.marker in tag for tag in player.choice_tags())

    def adjusted_odds(self, player: PlayerState) -> float:
        config = self.director_config
        playstyle = player.ai_director.playstyle.get_dominant_style(
            config.playstyle_signal_floor, config.playstyle_closeness_ratio
        )
        odds = self.odds
        if should_boost_chaos_events(playstyle):
            odds += config.chaos_boost
        if should_suppress_chaos_events(playstyle, player.ai_director.performance, config):
            odds -= config.chaos_suppression
        return min(1.0, max(0.0, odds))

    def evaluate(self, player: PlayerState) -> Optional[SnippetRecord]:
        if self.odds <= 0.0:
            return None

        met = self.has_met(player)
        if not met and self._rng.random() > self.introduction_odds:
            return None

        odds = self.adjusted_odds(player)
        if self._rng.random() > odds:
            return None

        pool = self.follow_ups if met else [self.introduction] if self.introduction else []
        if not pool:
            logger.debug(f"Chaos roll passed but no {'follow-up' if met else 'introduction'} record")
            return None
        chosen = self._rng.choice(pool)
        logger.info(f"Chaos encounter {chosen.snippet_id} at odds {odds:.2f}")
        return chosen


# =============================================================================
# ENGINES
# =============================================================================


def last_resolved_at(player: PlayerState) -> dict[str, int]:
    """Map snippet id -> timestamp of its most recent autosave tag."""
    resolved: dict[str, int] = {}
    for entry in player.choice_log:
        if not entry.tag.startswith(AUTOSAVE_PREFIX):
            continue
        body = entry.tag[len(AUTOSAVE_PREFIX):]
        snippet_id, _, stamp = body.rpartition(":")
        if not snippet_id:
            continue
        try:
            resolved[snippet_id] = int(stamp)
        except ValueError:
            continue
    return resolved


def _specificity(snippet: Snippet) -> int:
    if snippet.allowed_locations:
        return 2
    if snippet.allowed_biomes:
        return 1
    return 0


class SnippetEventEngine:
    """
    The default encounter selection policy.

    Selection tie-break among eligible snippets:
    1. never-resolved before resolved
    2. least-recently resolved
    3. location-specific before biome-specific before universal
    4. catalog order
    """

    def __init__(
        self,
        repository: SnippetRepository,
        director_config: Optional[DirectorConfig] = None,
        chapter_trigger: Optional[ChapterTrigger] = None,
        chapter_provider: Optional[ChapterEventProvider] = None,
        clock: Optional[Callable[[], int]] = None,
        chaos_trigger: Optional[ChaosEventTrigger] = None,
    ):
        self.repository = repository
        self.director_config = director_config or DirectorConfig()
        self.chapter_trigger = chapter_trigger
        self.chapter_provider = chapter_provider or DefaultChapterEventProvider()
        self.chaos_trigger = chaos_trigger
        self._clock = clock

    def evaluate_next_encounter(self, player: PlayerState) -> EventResolution:
        director = player.ai_director
        if director.events_since_rest >= self.director_config.fatigue_threshold:
            logger.debug(f"Fatigue threshold reached ({director.events_since_rest})")
            return RestRequired(events_since_rest=director.events_since_rest)

        if self.chaos_trigger is not None:
            chaos = self.chaos_trigger.evaluate(player)
            if chaos is not None:
                return Encounter(snippet_id=chaos.snippet_id)

        difficulty = compute_difficulty(director.performance, self.director_config)

        if self.chapter_trigger is not None:
            reason = self.chapter_trigger.evaluate(player, difficulty)
            if reason:
                request = self.build_chapter_request(player, difficulty, reason)
                response = self.chapter_provider.generate_chapter_event(request)
                logger.debug(f"Chapter event '{response.world_event_title}' ({reason})")
                return ChapterEvent(response=response)

        now = self._clock() if self._clock else None
        eligible = self.repository.find_eligible(player, now)
        if not eligible:
            raise NoEligibleContentError(
                f"No eligible snippet at location={player.location_id} biome={player.biome}"
            )

        chosen = self.select(eligible, player)
        return Encounter(snippet_id=chosen.snippet_id)

    def select(self, eligible: list[Snippet], player: PlayerState) -> Snippet:
        resolved = last_resolved_at(player)

        def sort_key(snippet: Snippet) -> tuple:
            last = resolved.get(snippet.snippet_id)
            return (
                last is not None,
                last if last is not None else 0,
                -_specificity(snippet),
                self.repository.catalog_index(snippet.snippet_id),
            )

        return min(eligible, key=sort_key)

    def build_chapter_request(
        self,
        player: PlayerState,
        difficulty: DifficultyLevel,
        reason: Optional[str],
    ) -> ChapterEventRequest:
        playstyle = player.ai_director.playstyle.get_dominant_style(
            self.director_config.playstyle_signal_floor,
            self.director_config.playstyle_closeness_ratio,
        )
        return ChapterEventRequest(
            player_id=player.player_id,
            choice_log=player.choice_log,
            quest_log=player.quest_log,
            status_effects=player.status_effects,
            trigger_reason=reason,
            difficulty=difficulty,
            playstyle=playstyle,
            intent=director_intent(difficulty),
        )


class FixedResolutionEventEngine:
    """
    Returns scripted resolutions in order; the last one repeats.

    Used for tests and for replaying a recorded session.
    """

    def __init__(self, resolutions: Union[EventResolution, list[EventResolution]]):
        if isinstance(resolutions, EventResolution):
            resolutions = [resolutions]
        if not resolutions:
            raise ValueError("At least one resolution is required")
        self.resolutions = list(resolutions)
        self.calls = 0

    def evaluate_next_encounter(self, player: PlayerState) -> EventResolution:
        index = min(self.calls, len(self.resolutions) - 1)
        self.calls += 1
        return self.resolutions[index]
