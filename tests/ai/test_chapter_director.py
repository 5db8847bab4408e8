"""
Tests for LLM-authored chapter events.

Verifies prompt assembly, JSON extraction from model replies, validation of
the authored bundle, the narrative-only consequence filter, and fallback to
the deterministic provider when authoring fails.
"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from src.ai.chapter_director import (
    ChapterPromptBuilder,
    LLMChapterEventProvider,
    extract_json_payload,
    parse_chapter_response,
)
from src.ai.llm_provider import LLMConfig, LLMManager, LLMProvider, LLMResponse
from src.data_models import (
    ChapterEventRequest,
    ChoiceLogEntry,
    DifficultyLevel,
    Playstyle,
    QuestLog,
    StatusEffect,
)
from src.encounter.event_engine import ChanceChapterTrigger, DefaultChapterEventProvider, SnippetEventEngine
from src.explore.errors import ChapterGenerationError
from src.explore.explore_types import Chapter


MOONLIT = {
    "world_event_title": "Moonlit Assembly",
    "world_event_summary": "The garden critters gather beneath a silver moon.",
    "snippets": [
        {
            "id": "moonlit_intro",
            "event_text": "Crickets fall silent as the assembly turns toward Jalmar.",
            "choice_options": ["Join the chorus", "Watch from the reeds", "Slip away"],
            "consequences": {
                "join_the_chorus": {
                    "add_choice_tags": ["chapter_chorus"],
                    "narration": "Jalmar's chirp rings out over the pond.",
                    "grant_seeds": 50,
                },
                "Watch from the reeds": {
                    "grant_items": [{"item_id": "moon_pebble", "quantity": 1}],
                },
            },
            "conditions": {},
        }
    ],
}


@pytest.fixture
def request_hard():
    return ChapterEventRequest(
        player_id="jalmar",
        choice_log=tuple(ChoiceLogEntry(f"tag_{i}", i) for i in range(7)),
        quest_log=QuestLog(active_quests=("lost_acorn",), completed_quests=("moth_lantern",)),
        status_effects=(StatusEffect("forest_poise", 4_605_000),),
        trigger_reason="cadence_reached:4",
        difficulty=DifficultyLevel.HARD,
        playstyle=Playstyle.EXPLORER,
        intent="escalate",
    )


@pytest.fixture
def request_empty():
    return ChapterEventRequest(
        player_id="jalmar",
        choice_log=(),
        quest_log=QuestLog(),
        status_effects=(),
    )


@pytest.fixture
def mock_llm():
    manager = LLMManager(LLMConfig(provider=LLMProvider.MOCK))
    manager.get_mock_client().set_responses([json.dumps(MOONLIT)])
    return manager


class TestChapterPromptBuilder:
    """Tests for prompt assembly."""

    def test_system_prompt_constraints(self, request_hard):
        """Test the system prompt forbids mechanical outcomes."""
        prompt = ChapterPromptBuilder().build_system_prompt(request_hard)
        assert "CRITICAL CONSTRAINTS" in prompt
        assert "NEVER grant or remove seeds" in prompt
        assert "jalmar" in prompt

    def test_user_prompt_context(self, request_hard):
        """Test the user prompt carries the director's view of the player."""
        prompt = ChapterPromptBuilder().build_user_prompt(request_hard)
        assert "trigger_reason: cadence_reached:4" in prompt
        assert "difficulty: hard" in prompt
        assert "playstyle: explorer" in prompt
        assert "director_intent: escalate" in prompt
        assert "rising tension" in prompt
        assert "Active: lost_acorn" in prompt
        assert "Completed: 1 quests" in prompt
        assert "- forest_poise (expires: 4605000)" in prompt

    def test_only_recent_choices(self, request_hard):
        """Test only the five most recent choices are summarized."""
        prompt = ChapterPromptBuilder().build_user_prompt(request_hard)
        assert "tag: tag_6," in prompt
        assert "tag: tag_2," in prompt
        assert "tag: tag_1," not in prompt

    def test_empty_history(self, request_empty):
        """Test placeholders for an empty player history."""
        prompt = ChapterPromptBuilder().build_user_prompt(request_empty)
        assert "trigger_reason: unspecified" in prompt
        assert "- none recorded" in prompt
        assert "- no quests tracked" in prompt
        assert "- no active effects" in prompt

    def test_option_count(self, request_empty):
        """Test the requested option count appears in both prompts."""
        prompt = ChapterPromptBuilder(option_count=2).build(request_empty)
        assert "(2 options)" in prompt.system_prompt
        assert "2 branching options" in prompt.user_prompt


class TestExtractJsonPayload:
    """Tests for pulling JSON out of model replies."""

    def test_bare_json(self):
        """Test a bare object parses."""
        assert extract_json_payload('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        """Test a fenced json block parses."""
        reply = 'Here you go:\n```json\n{"a": 1}\n```\nEnjoy!'
        assert extract_json_payload(reply) == {"a": 1}

    def test_prose_wrapped(self):
        """Test an object wrapped in prose parses."""
        assert extract_json_payload('Sure! {"a": {"b": 2}} Hope it helps.') == {"a": {"b": 2}}

    @pytest.mark.parametrize("reply", ["[1, 2]", "no json here", "{broken"])
    def test_no_object(self, reply):
        """Test replies without an object raise ValueError."""
        with pytest.raises(ValueError):
            extract_json_payload(reply)


class TestParseChapterResponse:
    """Tests for validating authored bundles."""

    def test_rewards_stripped(self, caplog):
        """Test authored consequences keep only tags and narration."""
        with caplog.at_level(logging.WARNING):
            response = parse_chapter_response(MOONLIT)
        lead = response.lead_snippet
        assert response.history_id == "chapter:moonlit_assembly"
        assert lead.consequences["join_the_chorus"] == {
            "add_choice_tags": ["chapter_chorus"],
            "narration": "Jalmar's chirp rings out over the pond.",
        }
        assert lead.consequences["watch_from_the_reeds"] == {}
        assert "Stripped non-narrative consequence keys" in caplog.text

    def test_camel_case_keys(self):
        """Test camelCase field names and a generated snippet id."""
        response = parse_chapter_response(
            {"world_event_title": "Quiet Night", "snippets": [{"choiceOptions": ["Go"], "eventText": "Still."}]}
        )
        assert response.lead_snippet.snippet_id == "quiet_night_0"
        assert response.lead_snippet.event_text == "Still."
        assert response.world_event_summary == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"snippets": [{"choice_options": ["Go"]}]},
            {"world_event_title": "!!!", "snippets": [{"choice_options": ["Go"]}]},
            {"world_event_title": "Night", "snippets": []},
            {"world_event_title": "Night", "snippets": [{"choice_options": []}]},
            {"world_event_title": "Night", "snippets": ["not an object"]},
        ],
    )
    def test_invalid_bundles(self, data):
        """Test malformed bundles raise ValueError."""
        with pytest.raises(ValueError):
            parse_chapter_response(data)


class TestLLMChapterEventProvider:
    """Tests for the LLM-backed provider."""

    def test_authored_chapter(self, mock_llm, request_hard):
        """Test a valid reply becomes a chapter event."""
        response = LLMChapterEventProvider(mock_llm).generate_chapter_event(request_hard)
        assert response.world_event_title == "Moonlit Assembly"
        assert response.lead_snippet.choice_options == ("Join the chorus", "Watch from the reeds", "Slip away")

        system_prompt, messages = mock_llm.get_mock_client().calls[0]
        assert "CRITICAL CONSTRAINTS" in system_prompt
        assert "player_id: jalmar" in messages[0].content

    def test_invalid_reply_uses_fallback(self, request_hard):
        """Test an unparseable reply falls back to the default provider."""
        manager = LLMManager(LLMConfig(provider=LLMProvider.MOCK))
        provider = LLMChapterEventProvider(manager, fallback=DefaultChapterEventProvider())
        response = provider.generate_chapter_event(request_hard)
        assert response.world_event_title == "Whispers Over JALMAR"

    def test_invalid_reply_without_fallback(self, request_hard):
        """Test an unparseable reply raises without a fallback."""
        manager = LLMManager(LLMConfig(provider=LLMProvider.MOCK))
        with pytest.raises(ChapterGenerationError):
            LLMChapterEventProvider(manager).generate_chapter_event(request_hard)

    def test_unavailable_llm(self, request_hard):
        """Test no request is sent when the LLM is unavailable."""
        manager = MagicMock()
        manager.is_available.return_value = False
        with pytest.raises(ChapterGenerationError) as exc_info:
            LLMChapterEventProvider(manager).generate_chapter_event(request_hard)
        assert "No LLM client available" in str(exc_info.value)
        manager.complete.assert_not_called()

    def test_failed_request(self, request_hard):
        """Test a failed completion raises ChapterGenerationError."""
        manager = MagicMock()
        manager.is_available.return_value = True
        manager.complete.return_value = LLMResponse(
            content="",
            model="mock",
            provider=LLMProvider.MOCK,
            authority_violations=["request_failed"],
        )
        with pytest.raises(ChapterGenerationError):
            LLMChapterEventProvider(manager).generate_chapter_event(request_hard)

    def test_authored_chapter_grants_no_rewards(self, mock_llm, make_machine, repository, store, ledger):
        """Test resolving an authored chapter never touches the reward ledger."""
        engine = SnippetEventEngine(
            repository,
            chapter_trigger=ChanceChapterTrigger(1.0),
            chapter_provider=LLMChapterEventProvider(mock_llm),
            clock=store.now,
        )
        machine = make_machine(engine)

        phase = machine.begin_exploration()
        assert isinstance(phase, Chapter)
        summary = machine.choose_option(0)

        assert ledger.seeds == 0
        assert "chapter_chorus" in store.current().choice_tags()
        assert "chapter:moonlit_assembly" in store.current().choice_tags()
        assert not any(line.startswith("Seeds") for line in summary.reward_summaries)
