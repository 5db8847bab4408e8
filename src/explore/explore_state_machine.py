"""
Exploration State Machine.

Drives one player's exploration loop:

    Idle -> Loading -> Encounter | Chapter | RestNeeded | Error
    Encounter | Chapter -> Resolution -> Idle
    RestNeeded -> Idle
    Error -> Loading (retry)

Every operation reads the clock once, from the player state store, and
threads that timestamp through consequences, choice-log tags, the AI
Director, and the run log. Operations are not reentrant: a call arriving
while another is in flight is rejected with InvalidTransitionError.
"""

from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Iterator, Optional
import logging
import threading

from src.ai.director import AIDirectorManager
from src.content_loader.snippet_repository import (
    COMPLETION_TAG_PREFIX,
    SnippetRecord,
    SnippetRepository,
)
from src.data_models import (
    ChapterEvent,
    ChapterEventResponse,
    Encounter as EncounterResolution,
    EventResolution,
    PlayerState,
    RestRequired,
)
from src.encounter.event_engine import AUTOSAVE_PREFIX, LOCATION_TAG_PREFIX, EventEngine
from src.explore.errors import (
    ChapterGenerationError,
    ContentNotFoundError,
    ExplorationError,
    InvalidTransitionError,
)
from src.explore.explore_types import (
    Chapter,
    Encounter,
    Error,
    ExploreHistoryEntry,
    ExplorePhase,
    ExploreState,
    Idle,
    Loading,
    Resolution,
    ResolutionSummary,
    RestNeeded,
)
from src.game_state.state_machine import PhaseKind, StateMachine
from src.game_state.state_store import PlayerStateStore
from src.narrative.consequence_interpreter import ConsequenceInterpreter, ConsequenceOutcome
from src.observability.run_log import get_run_log

logger = logging.getLogger(__name__)


REST_CHOICE_TAG = "player_rest"
DEFAULT_REST_STATUS_KEY = "well_rested"
DEFAULT_REST_DURATION_MS = 30 * 60_000


def autosave_tag(history_id: str, now: int) -> str:
    return f"{AUTOSAVE_PREFIX}{history_id}:{now}"


def chapter_record(response: ChapterEventResponse) -> SnippetRecord:
    """Wrap a chapter's lead snippet so it resolves like a catalog entry."""
    lead = response.lead_snippet
    if lead is None or not lead.choice_options:
        raise ChapterGenerationError(
            f"Chapter '{response.world_event_title}' has no playable snippet"
        )
    return SnippetRecord(
        snippet=lead,
        title=response.world_event_title,
        history_summary=response.world_event_summary,
        completion_tag=f"{COMPLETION_TAG_PREFIX}chapter_{response.slug}",
        repeatable=True,
    )


class ExploreStateMachine:
    """
    The exploration loop for one player session.

    Collaborators are injected; tests substitute a FixedResolutionEventEngine
    and a scripted clock on the store.
    """

    def __init__(
        self,
        store: PlayerStateStore,
        repository: SnippetRepository,
        interpreter: ConsequenceInterpreter,
        director: AIDirectorManager,
        event_engine: EventEngine,
        rest_status_key: str = DEFAULT_REST_STATUS_KEY,
        rest_duration_ms: Optional[int] = DEFAULT_REST_DURATION_MS,
    ):
        self._store = store
        self._repository = repository
        self._interpreter = interpreter
        self._director = director
        self._engine = event_engine
        self.rest_status_key = rest_status_key
        self.rest_duration_ms = rest_duration_ms

        self._phases = StateMachine(PhaseKind.IDLE, clock=store.now)
        self._state = ExploreState()
        self._busy = threading.Lock()
        self._listeners: list[Callable[[ExploreState], None]] = []

        self._active_record: Optional[SnippetRecord] = None
        self._active_chapter: Optional[ChapterEventResponse] = None
        self._pending_entry: Optional[ExploreHistoryEntry] = None

    # =========================================================================
    # OBSERVATION
    # =========================================================================

    @property
    def state(self) -> ExploreState:
        return self._state

    @property
    def phase(self) -> ExplorePhase:
        return self._state.phase

    @property
    def history(self) -> tuple[ExploreHistoryEntry, ...]:
        return self._state.history

    @property
    def transitions(self) -> StateMachine:
        return self._phases

    def subscribe(self, listener: Callable[[ExploreState], None]) -> None:
        """Observe every published ExploreState."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[ExploreState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def begin_exploration(self) -> ExplorePhase:
        """
        Ask the event engine for the next encounter.

        When the player has a location, an explore_at_<location> tag is logged
        before the engine is asked.

        Always lands in Encounter, Chapter, RestNeeded, or Error. Collaborator
        failures become the Error phase; only an invalid call raises.
        """
        with self._exclusive("begin exploration"):
            self._phases.require("begin_exploration", "begin exploration")
            now = self._store.now()
            self._active_record = None
            self._active_chapter = None
            self._publish(Loading(), "begin_exploration", now)

            try:
                location_id = self._store.current().location_id
                if location_id:
                    self._store.append_choice(f"{LOCATION_TAG_PREFIX}{location_id}", now)
                resolution = self._engine.evaluate_next_encounter(self._store.current())
                self._present(resolution, now)
            except ExplorationError as e:
                logger.warning(f"Exploration lookup failed: {e}")
                self._fail(str(e), now)
            except Exception as e:
                logger.exception(f"Event engine failure: {e}")
                self._fail(f"Exploration failed: {e}", now)
            return self.phase

    def choose_option(self, option_index: int) -> ResolutionSummary:
        """
        Resolve the active encounter or chapter with the chosen option.

        An out-of-range index resolves with no consequence and no reward.
        """
        with self._exclusive("choose an option"):
            self._phases.require("option_chosen", "choose an option")
            now = self._store.now()

            chapter = self._active_chapter
            if chapter is not None:
                record = chapter_record(chapter)
                history_id = chapter.history_id
            elif self._active_record is not None:
                record = self._active_record
                history_id = record.snippet_id
            else:
                raise InvalidTransitionError("No active encounter to resolve")

            option_text = record.snippet.option_text(option_index)
            valid_choice = option_text is not None
            if not valid_choice:
                logger.warning(
                    f"Option {option_index} out of range for {history_id} "
                    f"({len(record.snippet.choice_options)} options); resolving without consequence"
                )
            consequences = record.consequence_for(option_index) if valid_choice else None
            save_tag = autosave_tag(history_id, now)
            outcomes: list[ConsequenceOutcome] = []

            def apply(player: PlayerState) -> PlayerState:
                outcome = self._interpreter.apply(consequences, player, now)
                updated = outcome.player
                if chapter is not None:
                    updated = updated.append_choice(history_id, now)
                if valid_choice and record.completion_tag:
                    updated = updated.append_choice(record.completion_tag, now)
                updated = updated.append_choice(save_tag, now)
                outcomes.append(outcome)
                return updated

            self._store.update(apply)
            outcome = outcomes[0]

            self._director.record_event(now)
            if valid_choice:
                playstyle_tag = outcome.choice_tags[0] if outcome.choice_tags else record.choice_key(option_index)
                if playstyle_tag:
                    self._director.record_playstyle_tag(playstyle_tag)

            summaries = list(outcome.reward_summaries)
            if valid_choice and record.completion_tag:
                insert_at = int(outcome.narration is not None) + int(bool(outcome.choice_tags))
                summaries.insert(insert_at, f"Milestone logged: {record.completion_tag}")

            summary = ResolutionSummary(
                title=record.title,
                choice_text=option_text,
                reward_summaries=tuple(summaries),
                autosave_tag=save_tag,
                snippet_id=history_id,
                timestamp_millis=now,
            )
            self._pending_entry = ExploreHistoryEntry(
                snippet_id=history_id,
                title=record.title,
                choice_summary=option_text,
                autosave_tag=save_tag,
                narrated_summary=outcome.narration or record.history_summary,
                reward_summaries=tuple(summaries),
                timestamp_millis=now,
            )

            run_log = get_run_log()
            run_log.log_consequence(history_id, summaries, timestamp_millis=now)
            run_log.log_resolution(
                history_id,
                option_index,
                save_tag,
                is_chapter=chapter is not None,
                timestamp_millis=now,
                context={"chapter": chapter.to_dict()} if chapter is not None else None,
            )

            self._active_record = None
            self._active_chapter = None
            self._publish(
                Resolution(summary),
                "option_chosen",
                now,
                context={"history_id": history_id, "option_index": option_index},
            )
            logger.info(f"Resolved {history_id} with option {option_index} ({save_tag})")
            return summary

    def continue_after_resolution(self) -> ExploreHistoryEntry:
        """Record the resolved encounter in history and return to Idle."""
        with self._exclusive("continue after resolution"):
            self._phases.require("resolution_dismissed", "continue after resolution")
            now = self._store.now()
            entry = self._pending_entry
            if entry is None:
                raise InvalidTransitionError("No resolution to continue from")
            self._pending_entry = None
            self._state = replace(self._state, history=self._state.history + (entry,))
            self._publish(Idle(), "resolution_dismissed", now)
            return entry

    def rest(self) -> list[str]:
        """Clear fatigue, apply the rest recovery effect, and return to Idle."""
        with self._exclusive("rest"):
            self._phases.require("rest_taken", "rest")
            now = self._store.now()
            self._director.record_rest(now)

            grant: dict[str, Any] = {"key": self.rest_status_key}
            if self.rest_duration_ms is not None:
                grant["duration_ms"] = self.rest_duration_ms
            consequences = {
                "add_choice_tags": [REST_CHOICE_TAG],
                "grant_status_effects": [grant],
            }
            outcomes: list[ConsequenceOutcome] = []

            def apply(player: PlayerState) -> PlayerState:
                outcome = self._interpreter.apply(consequences, player, now)
                outcomes.append(outcome)
                return outcome.player

            self._store.update(apply)
            summaries = outcomes[0].reward_summaries
            get_run_log().log_consequence("rest", summaries, timestamp_millis=now)
            self._publish(Idle(), "rest_taken", now)
            logger.info("Player rested; fatigue cleared")
            return list(summaries)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._busy.acquire(blocking=False):
            raise InvalidTransitionError(
                f"Cannot {operation}: another exploration operation is in progress"
            )
        try:
            yield
        finally:
            self._busy.release()

    def _present(self, resolution: EventResolution, now: int) -> None:
        run_log = get_run_log()

        if isinstance(resolution, EncounterResolution):
            record = self._repository.get_record(resolution.snippet_id)
            if record is None:
                raise ContentNotFoundError(resolution.snippet_id)
            self._active_record = record
            run_log.log_selection("encounter", record.snippet_id, timestamp_millis=now)
            self._publish(
                Encounter(snippet=record.snippet, title=record.title),
                "encounter_found",
                now,
                context={"snippet_id": record.snippet_id},
            )
            logger.info(f"Encounter: {record.title} ({record.snippet_id})")

        elif isinstance(resolution, ChapterEvent):
            response = resolution.response
            chapter_record(response)
            self._active_chapter = response
            run_log.log_selection(
                "chapter",
                response.history_id,
                timestamp_millis=now,
                context={"chapter": response.to_dict()},
            )
            self._publish(
                Chapter(response=response),
                "chapter_triggered",
                now,
                context={"history_id": response.history_id},
            )
            logger.info(f"Chapter event: {response.world_event_title}")

        elif isinstance(resolution, RestRequired):
            events = resolution.events_since_rest or self._director.get_events_since_rest()
            run_log.log_selection("rest", reason=f"events_since_rest={events}", timestamp_millis=now)
            self._publish(RestNeeded(events_since_rest=events), "rest_required", now)
            logger.info(f"Rest needed after {events} events")

        else:
            raise ExplorationError(f"Unsupported event resolution: {resolution!r}")

    def _fail(self, message: str, now: int) -> None:
        self._active_record = None
        self._active_chapter = None
        self._publish(Error(message=message), "lookup_failed", now, context={"message": message})

    def _publish(
        self,
        phase: ExplorePhase,
        trigger: str,
        now: int,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self._phases.transition(trigger, context=context, timestamp_millis=now)
        self._state = replace(self._state, phase=phase)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.warning(f"Explore listener error: {e}")
