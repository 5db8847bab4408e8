"""
Tests for the exploration state machine.

Covers the encounter, chapter, and rest loops end to end against the
built-in catalog, plus the failure and misuse paths: invalid calls,
out-of-range choices, missing content, and reentrant calls.
"""

from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from src.content_loader.snippet_repository import SnippetRepository, chaos_records
from src.data_models import (
    ChapterEvent,
    ChapterEventResponse,
    Encounter as EncounterResolution,
    RestRequired,
    Snippet,
)
from src.encounter.event_engine import (
    CadenceChapterTrigger,
    FixedResolutionEventEngine,
    SnippetEventEngine,
)
from src.explore.errors import InvalidTransitionError
from src.explore.explore_state_machine import autosave_tag, chapter_record
from src.explore.explore_types import (
    Chapter,
    Encounter,
    Error,
    Idle,
    Loading,
    Resolution,
    RestNeeded,
)
from src.game_state.state_machine import PhaseKind
from src.observability.run_log import get_run_log


def moonlit_assembly() -> ChapterEventResponse:
    return ChapterEventResponse(
        world_event_title="Moonlit Assembly",
        world_event_summary="The garden critters gather beneath a silver moon.",
        snippets=(
            Snippet(
                snippet_id="moonlit_intro",
                event_text="Crickets fall silent as the assembly turns toward Jalmar.",
                choice_options=("Join the chorus", "Watch from the reeds"),
                consequences={
                    "join_the_chorus": {
                        "add_choice_tags": ["chapter_chorus"],
                        "narration": "Jalmar's chirp rings out over the pond.",
                    },
                },
            ),
        ),
    )


def resolve(machine, option_index=0):
    summary = machine.choose_option(option_index)
    machine.continue_after_resolution()
    return summary


class TestEncounterLoop:
    """Tests for resolving ordinary snippets."""

    def test_fresh_player_meets_garden_gate(self, machine):
        """Test the first encounter of a fresh player is the garden gate."""
        phase = machine.begin_exploration()
        assert isinstance(phase, Encounter)
        assert phase.snippet.snippet_id == "explore_garden_gate"
        assert phase.title == "Garden Gate Recon"
        assert machine.transitions.current_state == PhaseKind.ENCOUNTER

    def test_stride_through_clover(self, machine, store, clock):
        """Test choosing the clover path applies tags, status, and milestone."""
        machine.begin_exploration()
        clock.advance(5_000)
        now = clock.now

        summary = machine.choose_option(1)

        assert isinstance(machine.phase, Resolution)
        assert summary.title == "Garden Gate Recon"
        assert summary.choice_text == "Stride through the clover"
        assert summary.autosave_tag == f"autosave:explore_garden_gate:{now}"
        assert summary.timestamp_millis == now
        assert summary.reward_summaries == (
            "Clover stems sway aside as Jalmar charts a path fit for tiny legends.",
            "Choice tags: explore_clover_trail",
            "Milestone logged: explore_completed_garden_gate",
            "Status: forest_poise (60 min)",
        )

        player = store.current()
        assert player.choice_tags() == [
            "explore_clover_trail",
            "explore_completed_garden_gate",
            f"autosave:explore_garden_gate:{now}",
        ]
        assert all(entry.timestamp_millis == now for entry in player.choice_log)
        assert player.get_status_effect("forest_poise").expires_at_millis == now + 3_600_000

    def test_director_counts_resolution(self, machine, store, clock):
        """Test the director records the event and the playstyle signal."""
        machine.begin_exploration()
        clock.advance(1_000)
        machine.choose_option(1)
        director = store.current().ai_director
        assert director.events_since_rest == 1
        assert director.last_event_timestamp == clock.now
        assert director.playstyle.explorer_score == 1

    def test_continue_records_history(self, machine):
        """Test continuing returns to Idle and appends a history entry."""
        machine.begin_exploration()
        summary = machine.choose_option(2)
        entry = machine.continue_after_resolution()

        assert isinstance(machine.phase, Idle)
        assert machine.history == (entry,)
        assert entry.snippet_id == "explore_garden_gate"
        assert entry.title == "Garden Gate Recon"
        assert entry.choice_summary == "Retreat to the nest"
        assert entry.autosave_tag == summary.autosave_tag
        assert entry.narrated_summary.startswith("The nest's warmth")

    def test_completion_unlocks_next_snippets(self, machine):
        """Test the copse follows the gate, then the repeatable perimeter."""
        machine.begin_exploration()
        resolve(machine, 0)
        assert machine.begin_exploration().snippet.snippet_id == "explore_clover_copse"
        resolve(machine, 1)
        assert machine.begin_exploration().snippet.snippet_id == "explore_nest_perimeter"
        resolve(machine, 0)
        assert machine.begin_exploration().snippet.snippet_id == "explore_nest_perimeter"

    def test_salvage_grants_seeds(self, machine, ledger):
        """Test seed rewards reach the reward ledger."""
        machine.begin_exploration()
        resolve(machine, 0)
        machine.begin_exploration()
        summary = machine.choose_option(1)
        assert ledger.seeds == 3
        assert "Seeds gathered: 3" in summary.reward_summaries

    def test_same_snippet_twice_gets_distinct_autosave_tags(self, make_machine, store, clock):
        """Test resolving one snippet twice logs two autosave tags in order."""
        machine = make_machine(FixedResolutionEventEngine(EncounterResolution("explore_nest_perimeter")))

        machine.begin_exploration()
        first = resolve(machine, 2)
        clock.advance(1_000)
        machine.begin_exploration()
        second = resolve(machine, 2)

        assert first.autosave_tag != second.autosave_tag
        autosaves = [e for e in store.current().choice_log if e.tag.startswith("autosave:")]
        assert [e.tag for e in autosaves] == [first.autosave_tag, second.autosave_tag]
        assert autosaves[0].timestamp_millis <= autosaves[1].timestamp_millis
        assert len(machine.history) == 2

    def test_listeners_see_every_phase(self, machine):
        """Test subscribers observe Loading then Encounter."""
        seen = []
        machine.subscribe(lambda state: seen.append(type(state.phase)))
        machine.begin_exploration()
        assert seen == [Loading, Encounter]

    def test_listener_errors_do_not_break_the_loop(self, machine):
        """Test a failing listener does not stop the operation."""

        def broken(state):
            raise RuntimeError("listener failed")

        machine.subscribe(broken)
        assert isinstance(machine.begin_exploration(), Encounter)

    def test_transitions_share_operation_timestamp(self, machine, clock):
        """Test both transitions of one begin call carry the same time."""
        clock.advance(2_500)
        machine.begin_exploration()
        history = machine.transitions.state_history
        assert history[-1].timestamp_millis == clock.now
        assert history[-2].timestamp_millis == clock.now

    def test_run_log_records_resolution(self, machine, clock):
        """Test selection, consequence, and resolution events are logged."""
        machine.begin_exploration()
        summary = machine.choose_option(1)
        log = get_run_log()

        selection = log.get_selections()[-1]
        assert selection.resolution == "encounter"
        assert selection.target_id == "explore_garden_gate"

        consequence = log.get_consequences()[-1]
        assert consequence.source == "explore_garden_gate"
        assert consequence.summaries == list(summary.reward_summaries)

        resolution = log.get_resolutions()[-1]
        assert resolution.history_id == "explore_garden_gate"
        assert resolution.option_index == 1
        assert resolution.autosave_tag == summary.autosave_tag
        assert resolution.timestamp_millis == clock.now
        assert resolution.is_chapter is False


class TestOutOfRangeChoice:
    """Tests for option indices outside the offered options."""

    @pytest.mark.parametrize("index", [3, 7, -1])
    def test_resolves_without_consequence(self, machine, store, clock, index):
        """Test an out-of-range index resolves with only the autosave tag."""
        machine.begin_exploration()
        summary = machine.choose_option(index)

        assert isinstance(machine.phase, Resolution)
        assert summary.choice_text is None
        assert summary.reward_summaries == ()
        assert store.current().choice_tags() == [f"autosave:explore_garden_gate:{clock.now}"]
        assert store.current().status_effects == ()

    def test_counts_as_event_without_playstyle(self, machine, store):
        """Test the director still counts the event but records no playstyle."""
        machine.begin_exploration()
        machine.choose_option(9)
        director = store.current().ai_director
        assert director.events_since_rest == 1
        assert sum(director.playstyle.scores().values()) == 0

    def test_snippet_stays_eligible(self, machine):
        """Test no completion tag is logged, so the snippet is offered again."""
        machine.begin_exploration()
        resolve(machine, 9)
        assert machine.begin_exploration().snippet.snippet_id == "explore_garden_gate"


class TestChapterEvents:
    """Tests for chapter events."""

    def test_chapter_resolution(self, make_machine, store, clock):
        """Test a chapter resolves with its own tags and history id."""
        machine = make_machine(FixedResolutionEventEngine(ChapterEvent(moonlit_assembly())))

        phase = machine.begin_exploration()
        assert isinstance(phase, Chapter)
        assert phase.snippet.snippet_id == "moonlit_intro"

        clock.advance(3_000)
        now = clock.now
        summary = machine.choose_option(0)
        entry = machine.continue_after_resolution()

        assert summary.title == "Moonlit Assembly"
        assert summary.autosave_tag == f"autosave:chapter:moonlit_assembly:{now}"
        assert store.current().choice_tags() == [
            "chapter_chorus",
            "chapter:moonlit_assembly",
            "explore_completed_chapter_moonlit_assembly",
            f"autosave:chapter:moonlit_assembly:{now}",
        ]
        assert entry.snippet_id == "chapter:moonlit_assembly"
        assert entry.title == "Moonlit Assembly"
        assert entry.choice_summary == "Join the chorus"

    def test_chapter_option_without_consequence(self, make_machine, store):
        """Test an unmapped chapter option still logs chapter and milestone tags."""
        machine = make_machine(FixedResolutionEventEngine(ChapterEvent(moonlit_assembly())))
        machine.begin_exploration()
        summary = machine.choose_option(1)
        tags = store.current().choice_tags()
        assert tags[:2] == ["chapter:moonlit_assembly", "explore_completed_chapter_moonlit_assembly"]
        assert summary.reward_summaries == ("Milestone logged: explore_completed_chapter_moonlit_assembly",)

    def test_chapter_logged_for_replay(self, make_machine):
        """Test the resolution event carries the chapter payload."""
        machine = make_machine(FixedResolutionEventEngine(ChapterEvent(moonlit_assembly())))
        machine.begin_exploration()
        machine.choose_option(0)
        resolution = get_run_log().get_resolutions()[-1]
        assert resolution.is_chapter is True
        assert resolution.history_id == "chapter:moonlit_assembly"
        assert resolution.context["chapter"]["world_event_title"] == "Moonlit Assembly"

    def test_chapter_without_options_is_an_error(self, make_machine):
        """Test a chapter with no playable snippet lands in Error."""
        empty = ChapterEventResponse(world_event_title="Empty Night", world_event_summary="")
        machine = make_machine(FixedResolutionEventEngine(ChapterEvent(empty)))
        phase = machine.begin_exploration()
        assert isinstance(phase, Error)
        assert "no playable snippet" in phase.message

    def test_cadence_trigger_interleaves_chapters(self, make_machine, repository, store):
        """Test a cadence of one alternates encounters and chapters."""
        engine = SnippetEventEngine(repository, chapter_trigger=CadenceChapterTrigger(1), clock=store.now)
        machine = make_machine(engine)

        assert isinstance(machine.begin_exploration(), Encounter)
        resolve(machine, 0)

        phase = machine.begin_exploration()
        assert isinstance(phase, Chapter)
        assert phase.response.world_event_title == "Whispers Over JALMAR"
        resolve(machine, 0)
        assert "chapter_embrace" in store.current().choice_tags()

        assert machine.begin_exploration().snippet.snippet_id == "explore_clover_copse"

    def test_chapter_record_fields(self):
        """Test chapter_record wraps the lead snippet as a repeatable record."""
        record = chapter_record(moonlit_assembly())
        assert record.snippet_id == "moonlit_intro"
        assert record.title == "Moonlit Assembly"
        assert record.completion_tag == "explore_completed_chapter_moonlit_assembly"
        assert record.repeatable is True


class TestRest:
    """Tests for fatigue and resting."""

    def test_fatigue_requires_rest(self, machine, store, clock):
        """Test five resolved events force a rest before exploring again."""
        for _ in range(5):
            machine.begin_exploration()
            resolve(machine, 0)
            clock.advance(1_000)

        phase = machine.begin_exploration()
        assert isinstance(phase, RestNeeded)
        assert phase.events_since_rest == 5

        with pytest.raises(InvalidTransitionError):
            machine.begin_exploration()

        summaries = machine.rest()
        assert summaries == ["Choice tags: player_rest", "Status: well_rested (30 min)"]
        assert isinstance(machine.phase, Idle)

        player = store.current()
        assert player.ai_director.events_since_rest == 0
        assert player.get_status_effect("well_rested").expires_at_millis == clock.now + 1_800_000
        assert player.choice_tags()[-1] == "player_rest"

        assert isinstance(machine.begin_exploration(), Encounter)

    def test_rest_logged_for_replay(self, make_machine, clock):
        """Test a rest writes a director rest event and a consequence event."""
        machine = make_machine(FixedResolutionEventEngine(RestRequired(events_since_rest=5)))
        machine.begin_exploration()
        machine.rest()
        log = get_run_log()
        rests = [e for e in log.get_events() if e.context.get("update") == "rest"]
        assert len(rests) == 1
        assert rests[0].timestamp_millis == clock.now
        assert log.get_consequences()[-1].source == "rest"

    def test_permanent_rest_effect(self, make_machine, store):
        """Test a rest duration of None grants a permanent status."""
        machine = make_machine(
            FixedResolutionEventEngine(RestRequired()),
            rest_status_key="cozy",
            rest_duration_ms=None,
        )
        machine.begin_exploration()
        assert machine.rest() == ["Choice tags: player_rest", "Status: cozy"]
        assert store.current().get_status_effect("cozy").expires_at_millis is None



class TestChaosEncounters:
    """Tests for resolving chaos records."""

    def test_chaos_resolution_leaves_no_milestone(self, make_machine, repository, store, clock, ledger):
        """Test a chaos record logs its tags and autosave but no completion tag."""
        for chaos in chaos_records():
            repository.register(chaos)
        machine = make_machine(FixedResolutionEventEngine(EncounterResolution("borken_chaos_introduction")))

        phase = machine.begin_exploration()
        assert isinstance(phase, Encounter)
        assert phase.title == "Borken Appears!"

        clock.advance(1_000)
        now = clock.now
        summary = resolve(machine, 1)
        assert store.current().choice_tags() == [
            "borken_met_complimented",
            f"autosave:borken_chaos_introduction:{now}",
        ]
        assert ledger.inventory == {"item_borkens_pointy_stick": 1}
        assert not any(line.startswith("Milestone") for line in summary.reward_summaries)

        assert machine.begin_exploration().title == "Borken Appears!"


class TestLocationTag:
    """Tests for the exploration location tag."""

    def test_location_logged_on_begin(self, machine, store, clock):
        """Test each exploration at a location logs explore_at_<location>."""
        store.update(lambda p: replace(p, location_id="garden"))
        machine.begin_exploration()
        resolve(machine, 0)
        clock.advance(2_000)
        machine.begin_exploration()

        at_garden = [e for e in store.current().choice_log if e.tag == "explore_at_garden"]
        assert len(at_garden) == 2
        assert at_garden[1].timestamp_millis == clock.now
        assert store.current().choice_tags()[0] == "explore_at_garden"

    def test_no_location_no_tag(self, machine, store):
        """Test a player without a location logs nothing on begin."""
        machine.begin_exploration()
        assert store.current().choice_log == ()

class TestFailures:
    """Tests for lookup failures and the Error phase."""

    def test_missing_snippet_then_retry(self, make_machine):
        """Test a missing snippet lands in Error and a retry can succeed."""
        machine = make_machine(
            FixedResolutionEventEngine(
                [EncounterResolution("explore_missing"), EncounterResolution("explore_garden_gate")]
            )
        )
        phase = machine.begin_exploration()
        assert isinstance(phase, Error)
        assert phase.message == "Missing snippet for id=explore_missing"

        assert isinstance(machine.begin_exploration(), Encounter)

    def test_no_eligible_content(self, make_machine, store):
        """Test an empty catalog lands in Error instead of raising."""
        machine = make_machine(SnippetEventEngine(SnippetRepository(), clock=store.now))
        phase = machine.begin_exploration()
        assert isinstance(phase, Error)
        assert phase.message.startswith("No eligible snippet")

    def test_unexpected_engine_failure(self, make_machine):
        """Test an unexpected engine exception becomes an Error phase."""
        engine = MagicMock()
        engine.evaluate_next_encounter.side_effect = RuntimeError("boom")
        machine = make_machine(engine)
        phase = machine.begin_exploration()
        assert isinstance(phase, Error)
        assert phase.message == "Exploration failed: boom"


class TestInvalidCalls:
    """Tests for operations called in the wrong phase."""

    def test_choose_while_idle(self, machine, store):
        """Test choosing with nothing presented raises and changes nothing."""
        before = store.current()
        with pytest.raises(InvalidTransitionError):
            machine.choose_option(0)
        assert store.current() is before
        assert isinstance(machine.phase, Idle)

    def test_continue_while_idle(self, machine):
        """Test continuing without a resolution raises."""
        with pytest.raises(InvalidTransitionError):
            machine.continue_after_resolution()

    def test_rest_while_idle(self, machine, store):
        """Test resting when not fatigued raises and changes nothing."""
        before = store.current()
        with pytest.raises(InvalidTransitionError):
            machine.rest()
        assert store.current() is before

    def test_begin_during_encounter(self, machine):
        """Test exploring again before choosing raises."""
        machine.begin_exploration()
        with pytest.raises(InvalidTransitionError):
            machine.begin_exploration()
        assert isinstance(machine.phase, Encounter)

    def test_choose_twice(self, machine):
        """Test a resolved encounter cannot be chosen again."""
        machine.begin_exploration()
        machine.choose_option(0)
        with pytest.raises(InvalidTransitionError):
            machine.choose_option(1)

    def test_reentrant_call_rejected(self, make_machine):
        """Test an operation started from inside another one is rejected."""

        class ReentrantEngine:
            def __init__(self):
                self.machine = None
                self.errors = []

            def evaluate_next_encounter(self, player):
                try:
                    self.machine.begin_exploration()
                except InvalidTransitionError as e:
                    self.errors.append(e)
                return EncounterResolution("explore_garden_gate")

        engine = ReentrantEngine()
        machine = make_machine(engine)
        engine.machine = machine

        assert isinstance(machine.begin_exploration(), Encounter)
        assert len(engine.errors) == 1
        assert "in progress" in str(engine.errors[0])


class TestAutosaveTag:
    """Tests for the autosave tag format."""

    def test_format(self):
        """Test the tag embeds history id and timestamp."""
        assert autosave_tag("explore_garden_gate", 1234) == "autosave:explore_garden_gate:1234"
        assert autosave_tag("chapter:moonlit", 5) == "autosave:chapter:moonlit:5"
