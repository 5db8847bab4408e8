"""
Encounter selection for the exploration loop.

This module decides whether the next exploration step is an ordinary snippet,
a chapter event, a chaos encounter, or a forced rest.
"""

from src.encounter.event_engine import (
    AnyChapterTrigger,
    CadenceChapterTrigger,
    ChanceChapterTrigger,
    ChaosEventTrigger,
    ChapterEventProvider,
    ChapterTrigger,
    DefaultChapterEventProvider,
    EventEngine,
    FixedResolutionEventEngine,
    SnippetEventEngine,
    director_intent,
)

__all__ = [
    "AnyChapterTrigger",
    "CadenceChapterTrigger",
    "ChanceChapterTrigger",
    "ChaosEventTrigger",
    "ChapterEventProvider",
    "ChapterTrigger",
    "DefaultChapterEventProvider",
    "EventEngine",
    "FixedResolutionEventEngine",
    "SnippetEventEngine",
    "director_intent",
]
