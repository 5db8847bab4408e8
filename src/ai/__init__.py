"""
AI module for the exploration loop.

Two halves:
- AI Director: adaptive difficulty, pacing, and playstyle profiling
- Chapter authoring: optional LLM-written chapter events

The LLM is a NARRATIVE AUTHOR ONLY - it cannot:
- Grant or remove seeds, items, experience, or reputation
- Decide the outcome of a choice
- Alter player state in any way
"""

from src.ai.llm_provider import (
    LLMProvider,
    LLMRole,
    LLMMessage,
    LLMResponse,
    LLMConfig,
    LLMManager,
    BaseLLMClient,
    AnthropicClient,
    OpenAIClient,
    MockLLMClient,
    get_llm_manager,
)

from src.ai.director import (
    AIDirectorManager,
    DirectorConfig,
    EventRecommendation,
    classify_tag,
    compute_difficulty,
    performance_score,
    should_boost_chaos_events,
    should_suppress_chaos_events,
)

from src.ai.chapter_director import (
    ChapterPrompt,
    ChapterPromptBuilder,
    LLMChapterEventProvider,
    extract_json_payload,
    parse_chapter_response,
)

__all__ = [
    # LLM Provider
    "LLMProvider",
    "LLMRole",
    "LLMMessage",
    "LLMResponse",
    "LLMConfig",
    "LLMManager",
    "BaseLLMClient",
    "AnthropicClient",
    "OpenAIClient",
    "MockLLMClient",
    "get_llm_manager",
    # AI Director
    "AIDirectorManager",
    "DirectorConfig",
    "EventRecommendation",
    "classify_tag",
    "compute_difficulty",
    "performance_score",
    "should_boost_chaos_events",
    "should_suppress_chaos_events",
    # Chapter authoring
    "ChapterPrompt",
    "ChapterPromptBuilder",
    "LLMChapterEventProvider",
    "extract_json_payload",
    "parse_chapter_response",
]
