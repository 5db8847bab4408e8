"""Snippet repository for the exploration loop.

Holds the catalog of narrative snippets and answers the two lookups the
exploration core needs: fetch a snippet by id, and list the snippets a player
is currently eligible for.

Catalog files live as JSON and may use either format:
1) A list of snippet record objects:
    [ { "id": "explore_garden_gate", "title": "...", "event_text": "...",
        "choice_options": [...], "choice_keys": [...], "consequences": {...} } ]

2) Wrapper file (consistent with the other content loaders):
    { "_metadata": {...}, "items": [ <snippet record objects> ] }

Interpretation of consequences is out of scope here; see
src.narrative.consequence_interpreter.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from src.data_models import PlayerState, Snippet, slugify
from src.game_state.condition_parser import SnippetConditionParser, get_condition_parser

logger = logging.getLogger(__name__)


COMPLETION_TAG_PREFIX = "explore_completed_"


def default_completion_tag(snippet_id: str) -> str:
    """explore_garden_gate -> explore_completed_garden_gate"""
    stem = snippet_id[len("explore_"):] if snippet_id.startswith("explore_") else snippet_id
    return f"{COMPLETION_TAG_PREFIX}{stem}"


def consequence_for_option(
    snippet: Snippet,
    option_index: int,
    explicit_key: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """
    Look up the consequence payload for an option by position.

    Keys tried in order: the explicit key, the slug of the option text, then
    "option_<index>". Out-of-range indices and missing entries yield None.
    """
    text = snippet.option_text(option_index)
    if text is None:
        return None
    candidates = [explicit_key] if explicit_key else [slugify(text), f"option_{option_index}"]
    for key in candidates:
        payload = snippet.consequences.get(key)
        if isinstance(payload, dict):
            return payload
    return None


# =============================================================================
# RECORDS
# =============================================================================


@dataclass(frozen=True)
class SnippetRecord:
    """
    A catalog entry: the snippet plus the bookkeeping the explore loop needs.

    choice_keys maps option index to consequence key. Where no explicit key
    is given the key is the slug of the option text. A record that is not
    selectable is never offered by eligibility; only a trigger presents it.
    """

    snippet: Snippet
    title: str
    history_summary: str = ""
    choice_keys: tuple[str, ...] = ()
    completion_tag: Optional[str] = None
    prerequisites: frozenset[str] = frozenset()
    repeatable: bool = False
    selectable: bool = True

    @property
    def snippet_id(self) -> str:
        return self.snippet.snippet_id

    @property
    def specificity(self) -> int:
        """2 = location specific, 1 = biome specific, 0 = universal."""
        if self.snippet.allowed_locations:
            return 2
        if self.snippet.allowed_biomes:
            return 1
        return 0

    def choice_key(self, option_index: int) -> Optional[str]:
        text = self.snippet.option_text(option_index)
        if text is None:
            return None
        if option_index < len(self.choice_keys) and self.choice_keys[option_index]:
            return self.choice_keys[option_index]
        return slugify(text)

    def consequence_for(self, option_index: int) -> Optional[dict[str, Any]]:
        """The consequence payload for an option, or None for no consequence."""
        explicit = self.choice_keys[option_index] if 0 <= option_index < len(self.choice_keys) else None
        return consequence_for_option(self.snippet, option_index, explicit or None)

    def to_dict(self) -> dict[str, Any]:
        data = self.snippet.to_dict()
        data.update(
            {
                "title": self.title,
                "history_summary": self.history_summary,
                "choice_keys": list(self.choice_keys),
                "completion_tag": self.completion_tag,
                "prerequisites": sorted(self.prerequisites),
                "repeatable": self.repeatable,
                "selectable": self.selectable,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnippetRecord":
        snippet = Snippet.from_dict(data)
        completion = data.get("completion_tag", default_completion_tag(snippet.snippet_id))
        return cls(
            snippet=snippet,
            title=data.get("title") or snippet.snippet_id,
            history_summary=data.get("history_summary", ""),
            choice_keys=tuple(data.get("choice_keys", [])),
            completion_tag=completion,
            prerequisites=frozenset(data.get("prerequisites", [])),
            repeatable=bool(data.get("repeatable", False)),
            selectable=bool(data.get("selectable", True)),
        )


# =============================================================================
# LOADER
# =============================================================================


@dataclass
class SnippetFileLoadResult:
    file_path: Path
    success: bool
    records_loaded: int = 0
    records_failed: int = 0
    errors: list[str] = field(default_factory=list)
    loaded_records: list[SnippetRecord] = field(default_factory=list)


class SnippetDataLoader:
    """Loads snippet records from JSON catalog files."""

    def load_file(self, file_path: Path) -> SnippetFileLoadResult:
        result = SnippetFileLoadResult(file_path=file_path, success=False)

        try:
            raw = json.loads(Path(file_path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            result.errors.append(f"Failed to read JSON: {e}")
            return result

        if isinstance(raw, dict) and isinstance(raw.get("items"), list):
            items = raw["items"]
        elif isinstance(raw, list):
            items = raw
        else:
            items = [raw]

        for item in items:
            if not isinstance(item, dict) or "id" not in item:
                result.records_failed += 1
                result.errors.append("Snippet entry is not an object with an id")
                continue
            try:
                record = SnippetRecord.from_dict(item)
            except (TypeError, ValueError) as e:
                result.records_failed += 1
                result.errors.append(f"Failed to parse snippet {item.get('id')}: {e}")
                continue
            result.loaded_records.append(record)
            result.records_loaded += 1

        result.success = result.records_loaded > 0 and result.records_failed == 0
        for error in result.errors:
            logger.warning(f"{file_path}: {error}")
        return result


# =============================================================================
# REPOSITORY
# =============================================================================


class SnippetRepository:
    """
    Lookup over an ordered snippet catalog.

    Catalog order is significant: it is the final tie-break when the event
    engine chooses among equally fresh eligible snippets.
    """

    def __init__(
        self,
        records: Optional[list[SnippetRecord]] = None,
        condition_parser: Optional[SnippetConditionParser] = None,
    ):
        self._records: dict[str, SnippetRecord] = {}
        self._conditions = condition_parser or get_condition_parser()
        for record in records or []:
            self.register(record)

    def __len__(self) -> int:
        return len(self._records)

    def register(self, record: SnippetRecord) -> None:
        if record.snippet_id in self._records:
            logger.warning(f"Replacing snippet {record.snippet_id}")
        self._records[record.snippet_id] = record

    def records(self) -> list[SnippetRecord]:
        return list(self._records.values())

    def catalog_index(self, snippet_id: str) -> int:
        for i, sid in enumerate(self._records):
            if sid == snippet_id:
                return i
        return len(self._records)

    def get_record(self, snippet_id: str) -> Optional[SnippetRecord]:
        return self._records.get(snippet_id)

    def get_snippet(self, snippet_id: str) -> Optional[Snippet]:
        record = self._records.get(snippet_id)
        return record.snippet if record else None

    def is_eligible(self, record: SnippetRecord, player: PlayerState, now: Optional[int] = None) -> bool:
        """
        A record is eligible when:
        - its location and biome whitelists are empty or contain the player's position
        - every prerequisite tag is in the choice log
        - it is repeatable or its completion tag is not yet in the choice log
        - it is selectable
        - its conditions predicate holds
        """
        if not record.selectable:
            return False
        snippet = record.snippet
        if snippet.allowed_locations and player.location_id not in snippet.allowed_locations:
            return False
        if snippet.allowed_biomes and player.biome not in snippet.allowed_biomes:
            return False

        tags = set(player.choice_tags())
        if not record.prerequisites.issubset(tags):
            return False
        if not record.repeatable and record.completion_tag and record.completion_tag in tags:
            return False

        satisfied, reason = self._conditions.check(snippet.conditions, player, now)
        if not satisfied:
            logger.debug(f"Snippet {record.snippet_id} gated: {reason}")
        return satisfied

    def find_eligible(self, player: PlayerState, now: Optional[int] = None) -> list[Snippet]:
        """Snippets the player may encounter right now, in catalog order."""
        eligible = [
            record.snippet
            for record in self._records.values()
            if self.is_eligible(record, player, now)
        ]
        logger.debug(
            f"{len(eligible)}/{len(self._records)} snippets eligible at "
            f"location={player.location_id} biome={player.biome}"
        )
        return eligible

    def load_file(self, file_path: Path) -> SnippetFileLoadResult:
        """Load a JSON catalog file and register its records."""
        result = SnippetDataLoader().load_file(file_path)
        for record in result.loaded_records:
            self.register(record)
        logger.info(f"Loaded {result.records_loaded} snippets from {file_path}")
        return result

    @classmethod
    def from_file(cls, file_path: Path) -> "SnippetRepository":
        repository = cls()
        repository.load_file(file_path)
        return repository


# =============================================================================
# DEFAULT CATALOG
# =============================================================================


def _status(key: str, minutes: Optional[int] = None) -> dict[str, Any]:
    effect: dict[str, Any] = {"key": key}
    if minutes is not None:
        effect["duration_minutes"] = minutes
    return effect


def default_catalog() -> SnippetRepository:
    """The built-in starter catalog."""
    garden_gate = Snippet(
        snippet_id="explore_garden_gate",
        event_text=(
            "Jalmar pads up to the garden gate. The moonlight turns a humble puddle "
            "into a shimmering lake, while clover towers like a forest canopy."
        ),
        choice_options=(
            "Inspect the puddle",
            "Stride through the clover",
            "Retreat to the nest",
        ),
        consequences={
            "inspect": {
                "add_choice_tags": ["explore_puddle_reflection"],
                "grant_status_effects": [_status("dampened_feathers", 30)],
                "narration": (
                    "Jalmar spots glittering beetle shells and feels the chill of the "
                    "water seep into their feathers."
                ),
            },
            "stride": {
                "add_choice_tags": ["explore_clover_trail"],
                "grant_status_effects": [_status("forest_poise", 60)],
                "narration": "Clover stems sway aside as Jalmar charts a path fit for tiny legends.",
            },
            "retreat": {
                "add_choice_tags": ["explore_retreat"],
                "narration": "The nest's warmth calls louder tonight; Jalmar promises to return at dawn.",
            },
        },
    )

    clover_copse = Snippet(
        snippet_id="explore_clover_copse",
        event_text=(
            "Beyond the gate the clover opens into a clearing where a garden gnome "
            "stands like a silent titan."
        ),
        choice_options=(
            "Challenge the gnome",
            "Salvage fallen twigs",
            "Circle back quietly",
        ),
        consequences={
            "challenge": {
                "add_choice_tags": ["explore_gnome_challenge"],
                "grant_status_effects": [_status("bristled_bravery", 45)],
                "narration": "Jalmar's chirp echoes; the gnome's shadow falls in respectful silence.",
            },
            "salvage": {
                "add_choice_tags": ["explore_gather_twigs"],
                "grant_seeds": 3,
                "narration": "A bundle of twigs becomes future armor and stories to trade back home.",
            },
            "circle": {
                "add_choice_tags": ["explore_circle_back"],
                "narration": "No need to wake the titan tonight; the path is safely mapped.",
            },
        },
    )

    nest_perimeter = Snippet(
        snippet_id="explore_nest_perimeter",
        event_text="The roots around the nest rustle with small lives going about their night.",
        choice_options=(
            "Sweep for shiny seeds",
            "Chat with the beetle sentries",
            "Hide beneath the leaves",
        ),
        consequences={
            "sweep": {
                "add_choice_tags": ["explore_perimeter_sweep"],
                "grant_seeds": 2,
            },
            "chat": {
                "add_choice_tags": ["explore_beetle_talk"],
                "grant_faction_reputation": [{"faction_id": "beetle_sentries", "amount": 5}],
            },
            "hide": {
                "add_choice_tags": ["explore_leaf_hide"],
                "narration": "Jalmar waits out a passing shadow beneath a curled oak leaf.",
            },
        },
    )

    return SnippetRepository(
        [
            SnippetRecord(
                snippet=garden_gate,
                title="Garden Gate Recon",
                history_summary="Scouted the garden gate under moonlit clover.",
                choice_keys=("inspect", "stride", "retreat"),
                completion_tag="explore_completed_garden_gate",
            ),
            SnippetRecord(
                snippet=clover_copse,
                title="Clover Copse Watch",
                history_summary="Mapped the clover clearing and its towering guardian.",
                choice_keys=("challenge", "salvage", "circle"),
                completion_tag="explore_completed_clover_copse",
                prerequisites=frozenset({"explore_completed_garden_gate"}),
            ),
            SnippetRecord(
                snippet=nest_perimeter,
                title="Nest Perimeter Patrol",
                history_summary="Walked the familiar loop around the nest.",
                choice_keys=("sweep", "chat", "hide"),
                completion_tag="explore_completed_nest_perimeter",
                prerequisites=frozenset({"explore_completed_garden_gate"}),
                repeatable=True,
            ),
        ]
    )


# =============================================================================
# CHAOS ENCOUNTERS
# =============================================================================

CHAOS_MARKER = "borken"
CHAOS_INTRODUCTION_ID = "borken_chaos_introduction"
CHAOS_TITLE = "Borken Appears!"


def _chaos_record(snippet: Snippet, choice_keys: tuple[str, ...]) -> SnippetRecord:
    return SnippetRecord(
        snippet=snippet,
        title=CHAOS_TITLE,
        history_summary="A chaotic encounter with Borken the button quail.",
        choice_keys=choice_keys,
        completion_tag=None,
        repeatable=True,
        selectable=False,
    )


def chaos_records() -> list[SnippetRecord]:
    """
    Borken the button quail's chaos encounters.

    The introduction comes first; the rest only appear once Borken is known.
    None of them is selectable: the chaos trigger presents them.
    """
    introduction = Snippet(
        snippet_id=CHAOS_INTRODUCTION_ID,
        event_text=(
            "*A quirky button quail appears from behind a barrel, holding a stick*\n\n"
            "\"Oh, another adventurer!\" Borken chirps, poking the ground curiously. "
            "\"Let me guess, you think collecting shiny treasures will make everything better?\"\n\n"
            "They tap the stick thoughtfully. \"I'm Borken. This is my trusty stick. "
            "We're both a bit eccentric. Nice to meet you!\""
        ),
        choice_options=(
            "\"Are you... okay?\"",
            "\"Nice stick. Very pointy.\"",
            "\"I should probably go...\"",
        ),
        consequences={
            "okay": {
                "add_choice_tags": ["borken_met_concerned"],
                "narration": "Borken chuckles. \"Okay is relative! But I'm managing. The stick helps.\"",
            },
            "stick": {
                "add_choice_tags": ["borken_met_complimented"],
                "grant_items": [{"item_id": "item_borkens_pointy_stick", "quantity": 1}],
                "narration": (
                    "Borken beams with pride. \"You get it! Here, take this spare stick. "
                    "Pointy things solve problems.\""
                ),
            },
            "go": {
                "add_choice_tags": ["borken_met_fled"],
                "narration": "\"Smart quail,\" Borken calls after you. \"Self-preservation is underrated!\"",
            },
        },
    )

    stick_philosophy = Snippet(
        snippet_id="borken_chaos_stick_philosophy",
        event_text=(
            "Borken is poking their stick into the dirt playfully.\n\n"
            "\"You know what this stick represents? Determination! In a world full of challenges, "
            "this trusty stick says 'I can handle this.' It's simple but effective.\""
        ),
        choice_options=(
            "\"That's... surprisingly deep.\"",
            "\"It's just a stick, Borken.\"",
            "\"Can I borrow your stick?\"",
        ),
        consequences={
            "deep": {
                "add_choice_tags": ["borken_philosophy_appreciated"],
                "grant_status_effects": [{"key": "contemplative", "duration_seconds": 180}],
                "narration": "\"Thanks! Sometimes the simple things teach us the most important lessons.\"",
            },
            "just_stick": {
                "add_choice_tags": ["borken_philosophy_dismissed"],
                "narration": (
                    "Borken sighs. \"And you're 'just a quail.' "
                    "Doesn't make you any less complicated inside.\""
                ),
            },
            "borrow": {
                "add_choice_tags": ["borken_stick_borrowed"],
                "consume_seeds": 50,
                "narration": "\"Sure! 50 seeds rental fee. Pointy wisdom isn't free, friend.\"",
            },
        },
    )

    midnight_ramble = Snippet(
        snippet_id="borken_chaos_midnight_ramble",
        event_text=(
            "*You find Borken chatting with their stick late at night*\n\n"
            "\"...and that's why I think we should organize our seed storage better! "
            "Stick, you agree, right? No? Well, you're a stick, so...\""
        ),
        choice_options=(
            "\"Borken, it's 2 AM. Sleep exists.\"",
            "Join the rambling session",
            "\"I'll leave you two alone...\"",
        ),
        consequences={
            "sleep": {
                "add_choice_tags": ["borken_ramble_interrupted"],
                "narration": "\"Sleep? But I have so many ideas! ...Fine, you're probably right.\"",
            },
            "join": {
                "add_choice_tags": ["borken_ramble_joined"],
                "grant_status_effects": [{"key": "sleep_deprived", "duration_seconds": 300}],
                "grant_seeds": 100,
                "narration": "You spend three hours discussing the universe with Borken. Exhausted, but oddly enlightened.",
            },
            "leave": {
                "add_choice_tags": ["borken_ramble_avoided"],
                "narration": "Borken doesn't notice your departure.",
            },
        },
    )

    predator_encounter = Snippet(
        snippet_id="borken_chaos_predator_encounter",
        event_text=(
            "*A hawk shadow passes overhead. Borken waves their stick!*\n\n"
            "\"Hey hawk! Not today!\" Borken shouts cheerfully. "
            "The hawk, possibly amused, circles away."
        ),
        choice_options=(
            "\"That was... reckless but effective?\"",
            "\"Teach me your ways, Borken.\"",
            "\"I'm hiding next time.\"",
        ),
        consequences={
            "reckless": {
                "add_choice_tags": ["borken_tactics_questioned"],
                "narration": "\"Sometimes the unexpected approach works best! Keep them guessing!\"",
            },
            "teach": {
                "add_choice_tags": ["borken_tactics_learned"],
                "grant_status_effects": [{"key": "fearless", "duration_seconds": 600}],
                "narration": "Borken teaches you the art of calculated chaos.",
            },
            "hide": {
                "add_choice_tags": ["borken_tactics_declined"],
                "narration": "\"Also valid! Survival strategies are personal.\"",
            },
        },
    )

    seed_hoarding = Snippet(
        snippet_id="borken_chaos_seed_hoarding",
        event_text=(
            "Borken watches you organize seeds with curiosity.\n\n"
            "\"Interesting! I think experiences matter more than accumulation. "
            "But hey, everyone has their own priorities!\""
        ),
        choice_options=(
            "\"Seeds are important for survival!\"",
            "\"You're probably right...\"",
            "\"Want some seeds, Borken?\"",
        ),
        consequences={
            "survival": {
                "add_choice_tags": ["borken_seed_defended"],
                "narration": "\"Fair point! Practicality matters. I respect your planning!\"",
            },
            "right": {
                "add_choice_tags": ["borken_seed_agreed"],
                "grant_status_effects": [{"key": "introspective", "duration_seconds": 240}],
                "narration": "Borken nods sagely. You feel more philosophical about possessions.",
            },
            "share": {
                "add_choice_tags": ["borken_seed_shared"],
                "consume_seeds": 200,
                "grant_items": [{"item_id": "item_borkens_pointy_stick", "quantity": 1}],
                "narration": "\"Generosity in a harsh world. Here, take a spare stick. You've earned it.\"",
            },
        },
    )

    return [
        _chaos_record(introduction, ("okay", "stick", "go")),
        _chaos_record(stick_philosophy, ("deep", "just_stick", "borrow")),
        _chaos_record(midnight_ramble, ("sleep", "join", "leave")),
        _chaos_record(predator_encounter, ("reckless", "teach", "hide")),
        _chaos_record(seed_hoarding, ("survival", "right", "share")),
    ]
