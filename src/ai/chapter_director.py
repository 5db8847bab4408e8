"""
LLM-authored chapter events.

The chapter director asks a language model for a world event bundle shaped
by the player's recent history and the AI Director's intent. The model is a
NARRATIVE AUTHOR ONLY: every authored consequence is reduced to choice tags
and narration before it reaches the game, so rewards, status effects, and
currency always come from curated content.
"""

from dataclasses import dataclass
from typing import Any, Optional
import json
import logging
import re

from src.ai.llm_provider import LLMManager, LLMMessage, LLMRole
from src.data_models import ChapterEventRequest, ChapterEventResponse, Snippet, slugify
from src.explore.errors import ChapterGenerationError

logger = logging.getLogger(__name__)


# Consequence keys an authored chapter may keep
NARRATIVE_CONSEQUENCE_KEYS = ("add_choice_tags", "narration")

MAX_RECENT_CHOICES = 5

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class ChapterPrompt:
    """The assembled prompt pair for one chapter request."""

    system_prompt: str
    user_prompt: str


class ChapterPromptBuilder:
    """Builds system and user prompts from a chapter event request."""

    def __init__(self, option_count: int = 3):
        self.option_count = option_count

    def build_system_prompt(self, request: ChapterEventRequest) -> str:
        return (
            "You are the chapter author for a cozy text-based exploration game.\n"
            "\n"
            "CRITICAL CONSTRAINTS - You MUST follow these rules:\n"
            "1. You may ONLY write narration and choice options\n"
            "2. You may NEVER grant or remove seeds, items, experience, or reputation\n"
            "3. You may NEVER decide the outcome of a player's choice\n"
            "4. Consequences may only contain add_choice_tags and narration\n"
            "\n"
            "Output MUST be a single JSON object with keys world_event_title, "
            "world_event_summary, and snippets[].\n"
            f"Each snippet requires: id, event_text, choice_options ({self.option_count} options), "
            "consequences (object keyed by the snake_case option text), conditions (object).\n"
            f"Never contradict the player's established history. Current player id: {request.player_id}"
        )

    def build_user_prompt(self, request: ChapterEventRequest) -> str:
        lines = [
            f"player_id: {request.player_id}",
            f"trigger_reason: {request.trigger_reason or 'unspecified'}",
            f"difficulty: {request.difficulty.value}",
            f"playstyle: {request.playstyle.value}",
            f"director_intent: {request.intent}",
            "recent_choices:",
            self._summarize_choices(request),
            "quest_log:",
            self._summarize_quests(request),
            "status_effects:",
            self._summarize_status(request),
            f"Guidance: craft a short, vivid world event plus {self.option_count} branching options.",
        ]
        if request.intent == "escalate":
            lines.append("The director wants rising tension: raise the stakes without granting rewards.")
        elif request.intent == "ease":
            lines.append("The director wants a gentler beat: offer comfort and safe choices.")
        return "\n".join(lines)

    def build(self, request: ChapterEventRequest) -> ChapterPrompt:
        return ChapterPrompt(
            system_prompt=self.build_system_prompt(request),
            user_prompt=self.build_user_prompt(request),
        )

    def _summarize_choices(self, request: ChapterEventRequest) -> str:
        if not request.choice_log:
            return "- none recorded"
        recent = request.choice_log[-MAX_RECENT_CHOICES:]
        return "\n".join(f"- tag: {e.tag}, timestamp: {e.timestamp_millis}" for e in recent)

    def _summarize_quests(self, request: ChapterEventRequest) -> str:
        quests = request.quest_log
        if not quests.active_quests and not quests.completed_quests:
            return "- no quests tracked"
        parts = []
        if quests.active_quests:
            parts.append("Active: " + ", ".join(quests.active_quests))
        if quests.completed_quests:
            parts.append(f"Completed: {len(quests.completed_quests)} quests")
        return "\n".join(parts)

    def _summarize_status(self, request: ChapterEventRequest) -> str:
        if not request.status_effects:
            return "- no active effects"
        return "\n".join(
            f"- {e.key} (expires: {e.expires_at_millis if e.expires_at_millis is not None else 'persistent'})"
            for e in request.status_effects
        )


def extract_json_payload(content: str) -> dict[str, Any]:
    """
    Pull the JSON object out of an LLM reply.

    Accepts bare JSON, a fenced ```json block, or prose wrapped around a
    single object. Raises ValueError when nothing parses to an object.
    """
    candidates = [content.strip()]
    fenced = _FENCE_PATTERN.search(content)
    if fenced:
        candidates.insert(0, fenced.group(1).strip())
    start, end = content.find("{"), content.rfind("}")
    if 0 <= start < end:
        candidates.append(content[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    raise ValueError("LLM reply did not contain a JSON object")


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _narrative_only(consequences: Any) -> dict[str, Any]:
    """Drop every consequence key except tags and narration."""
    if not isinstance(consequences, dict):
        return {}
    cleaned: dict[str, Any] = {}
    for option_key, payload in consequences.items():
        if not isinstance(payload, dict):
            continue
        kept = {k: v for k, v in payload.items() if k in NARRATIVE_CONSEQUENCE_KEYS}
        dropped = sorted(set(payload) - set(kept))
        if dropped:
            logger.warning(f"Stripped non-narrative consequence keys from {option_key}: {dropped}")
        cleaned[slugify(str(option_key))] = kept
    return cleaned


def parse_chapter_response(data: dict[str, Any]) -> ChapterEventResponse:
    """Validate an authored bundle and build a ChapterEventResponse."""
    title = data.get("world_event_title")
    if not isinstance(title, str) or not slugify(title):
        raise ValueError("world_event_title is missing or blank")
    summary = data.get("world_event_summary", "")
    if not isinstance(summary, str):
        raise ValueError("world_event_summary must be a string")

    raw_snippets = data.get("snippets")
    if not isinstance(raw_snippets, list) or not raw_snippets:
        raise ValueError("snippets must be a non-empty list")

    snippets = []
    for index, raw in enumerate(raw_snippets):
        if not isinstance(raw, dict):
            raise ValueError(f"snippet {index} is not an object")
        options = _first(raw, "choice_options", "choiceOptions", default=[])
        if not isinstance(options, list) or not options or not all(isinstance(o, str) and o.strip() for o in options):
            raise ValueError(f"snippet {index} has no usable choice options")
        snippet_id = _first(raw, "id", "snippet_id") or f"{slugify(title)}_{index}"
        conditions = raw.get("conditions")
        snippets.append(
            Snippet(
                snippet_id=str(snippet_id),
                event_text=str(_first(raw, "event_text", "eventText", default="")),
                choice_options=tuple(o.strip() for o in options),
                consequences=_narrative_only(raw.get("consequences")),
                conditions=conditions if isinstance(conditions, dict) else {},
            )
        )

    return ChapterEventResponse(
        world_event_title=title.strip(),
        world_event_summary=summary.strip(),
        snippets=tuple(snippets),
    )


class LLMChapterEventProvider:
    """
    Chapter event provider backed by an LLM.

    Any failure (no client, request failure, unparseable or invalid reply)
    goes to the fallback provider when one is configured, otherwise it is
    raised as ChapterGenerationError.
    """

    def __init__(
        self,
        llm: LLMManager,
        fallback: Optional[Any] = None,
        prompt_builder: Optional[ChapterPromptBuilder] = None,
    ):
        self._llm = llm
        self._fallback = fallback
        self._prompts = prompt_builder or ChapterPromptBuilder()

    def generate_chapter_event(self, request: ChapterEventRequest) -> ChapterEventResponse:
        try:
            response = self._author(request)
        except ChapterGenerationError as e:
            if self._fallback is None:
                raise
            logger.warning(f"Chapter authoring failed, using fallback provider: {e}")
            return self._fallback.generate_chapter_event(request)
        logger.info(f"LLM authored chapter '{response.world_event_title}' for {request.player_id}")
        return response

    def _author(self, request: ChapterEventRequest) -> ChapterEventResponse:
        if not self._llm.is_available():
            raise ChapterGenerationError("No LLM client available")

        prompt = self._prompts.build(request)
        reply = self._llm.complete(
            messages=[LLMMessage(role=LLMRole.USER, content=prompt.user_prompt)],
            system_prompt=prompt.system_prompt,
        )
        if reply.failed:
            raise ChapterGenerationError(f"LLM request failed: {reply.authority_violations}")

        try:
            return parse_chapter_response(extract_json_payload(reply.content))
        except ValueError as e:
            raise ChapterGenerationError(f"Invalid chapter payload: {e}") from e
