"""
Snippet Condition Parser

This module provides extensible parsing and evaluation of the gating
conditions attached to narrative snippets. A snippet is eligible only when
every parsed condition is satisfied by the player's choice log, quest log,
status effects, and director difficulty tier.

Supported condition keys:
- "requires" / "required_choice_tags" - every listed choice tag is present
- "forbidden_choice_tags" - none of the listed choice tags is present
- "required_active_quests" - every listed quest is active
- "required_completed_quests" - every listed quest is completed
- "required_status_effects" - every listed status effect is active now
- "forbidden_status_effects" - none of the listed status effects is active now
- "min_difficulty" - the director tier is at least this level
- Custom keys via register_evaluator(); any other key is ignored
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from src.data_models import DifficultyLevel, PlayerState

logger = logging.getLogger(__name__)


class ConditionType(Enum):
    """Types of snippet gating conditions."""
    REQUIRED_CHOICE_TAGS = "required_choice_tags"
    FORBIDDEN_CHOICE_TAGS = "forbidden_choice_tags"
    REQUIRED_ACTIVE_QUESTS = "required_active_quests"
    REQUIRED_COMPLETED_QUESTS = "required_completed_quests"
    REQUIRED_STATUS_EFFECTS = "required_status_effects"
    FORBIDDEN_STATUS_EFFECTS = "forbidden_status_effects"
    MIN_DIFFICULTY = "min_difficulty"
    CUSTOM = "custom"


# Payload keys accepted for each built-in condition type
KEY_ALIASES: dict[str, ConditionType] = {
    "requires": ConditionType.REQUIRED_CHOICE_TAGS,
    "required_choice_tags": ConditionType.REQUIRED_CHOICE_TAGS,
    "forbidden_choice_tags": ConditionType.FORBIDDEN_CHOICE_TAGS,
    "required_active_quests": ConditionType.REQUIRED_ACTIVE_QUESTS,
    "required_completed_quests": ConditionType.REQUIRED_COMPLETED_QUESTS,
    "required_status_effects": ConditionType.REQUIRED_STATUS_EFFECTS,
    "forbidden_status_effects": ConditionType.FORBIDDEN_STATUS_EFFECTS,
    "min_difficulty": ConditionType.MIN_DIFFICULTY,
}


@dataclass
class ParsedCondition:
    """A parsed snippet condition."""
    condition_type: ConditionType
    targets: list[str]  # tags, quest ids, status keys, or a difficulty name
    original_key: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ConditionEvaluator(Protocol):
    """Protocol for custom condition evaluation functions."""
    def __call__(
        self,
        condition: ParsedCondition,
        player: PlayerState,
        now: Optional[int],
    ) -> tuple[bool, str]:
        """
        Evaluate if a condition is satisfied.

        Returns:
            Tuple of (is_satisfied, reason_message)
        """
        ...


def _as_list(value: Any) -> Optional[list[str]]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    return None


class SnippetConditionParser:
    """
    Extensible parser for snippet gating conditions.

    Parses the loosely-typed conditions mapping carried by a snippet and
    evaluates it against a player snapshot.
    """

    def __init__(self):
        """Initialize the condition parser."""
        self._custom_evaluators: dict[str, ConditionEvaluator] = {}

    def register_evaluator(
        self,
        key: str,
        evaluator: ConditionEvaluator,
    ) -> None:
        """
        Register an evaluator for a custom condition key.

        Args:
            key: The conditions-mapping key this evaluator handles
            evaluator: Function that evaluates conditions
        """
        self._custom_evaluators[key] = evaluator

    def parse(self, conditions: Optional[dict[str, Any]]) -> list[ParsedCondition]:
        """
        Parse a conditions mapping into structured conditions.

        Unknown keys and malformed values are skipped.

        Args:
            conditions: The raw conditions mapping from snippet data

        Returns:
            List of ParsedCondition, possibly empty
        """
        if not conditions:
            return []

        parsed: list[ParsedCondition] = []
        for key, value in conditions.items():
            if key in self._custom_evaluators:
                parsed.append(
                    ParsedCondition(
                        condition_type=ConditionType.CUSTOM,
                        targets=_as_list(value) or [],
                        original_key=key,
                        metadata={"value": value},
                    )
                )
                continue

            cond_type = KEY_ALIASES.get(key)
            if cond_type is None:
                logger.debug(f"Ignoring unknown condition key: {key}")
                continue

            targets = _as_list(value)
            if targets is None:
                logger.debug(f"Ignoring malformed condition {key}={value!r}")
                continue

            parsed.append(
                ParsedCondition(
                    condition_type=cond_type,
                    targets=targets,
                    original_key=key,
                )
            )
        return parsed

    def evaluate(
        self,
        condition: ParsedCondition,
        player: PlayerState,
        now: Optional[int] = None,
    ) -> tuple[bool, str]:
        """
        Evaluate if a parsed condition is satisfied.

        Args:
            condition: The parsed condition to evaluate
            player: Player snapshot to test against
            now: Timestamp used to decide whether status effects are active

        Returns:
            Tuple of (is_satisfied, reason_message)
        """
        ctype = condition.condition_type

        if ctype == ConditionType.REQUIRED_CHOICE_TAGS:
            tags = set(player.choice_tags())
            missing = [t for t in condition.targets if t not in tags]
            if missing:
                return (False, f"Missing choice tags: {', '.join(missing)}")
            return (True, "Required choice tags present.")

        elif ctype == ConditionType.FORBIDDEN_CHOICE_TAGS:
            tags = set(player.choice_tags())
            present = [t for t in condition.targets if t in tags]
            if present:
                return (False, f"Forbidden choice tags present: {', '.join(present)}")
            return (True, "No forbidden choice tags.")

        elif ctype == ConditionType.REQUIRED_ACTIVE_QUESTS:
            missing = [q for q in condition.targets if q not in player.quest_log.active_quests]
            if missing:
                return (False, f"Quests not active: {', '.join(missing)}")
            return (True, "Required quests active.")

        elif ctype == ConditionType.REQUIRED_COMPLETED_QUESTS:
            missing = [q for q in condition.targets if q not in player.quest_log.completed_quests]
            if missing:
                return (False, f"Quests not completed: {', '.join(missing)}")
            return (True, "Required quests completed.")

        elif ctype == ConditionType.REQUIRED_STATUS_EFFECTS:
            active = player.active_status_keys(now)
            missing = [k for k in condition.targets if k not in active]
            if missing:
                return (False, f"Status effects not active: {', '.join(missing)}")
            return (True, "Required status effects active.")

        elif ctype == ConditionType.FORBIDDEN_STATUS_EFFECTS:
            active = player.active_status_keys(now)
            present = [k for k in condition.targets if k in active]
            if present:
                return (False, f"Forbidden status effects active: {', '.join(present)}")
            return (True, "No forbidden status effects.")

        elif ctype == ConditionType.MIN_DIFFICULTY:
            return self._evaluate_min_difficulty(condition, player)

        elif ctype == ConditionType.CUSTOM:
            evaluator = self._custom_evaluators.get(condition.original_key)
            if evaluator is None:
                return (True, f"No evaluator for {condition.original_key}.")
            return evaluator(condition, player, now)

        return (False, f"Unknown condition type: {ctype}")

    def _evaluate_min_difficulty(
        self,
        condition: ParsedCondition,
        player: PlayerState,
    ) -> tuple[bool, str]:
        """Evaluate the director difficulty floor."""
        try:
            required = DifficultyLevel(condition.targets[0].lower())
        except (ValueError, IndexError):
            logger.debug(f"Ignoring malformed min_difficulty: {condition.targets}")
            return (True, "Malformed difficulty floor ignored.")

        # Recomputed from the counters; the cached tier may be stale after a load
        from src.ai.director import compute_difficulty

        current = compute_difficulty(player.ai_director.performance)
        if current.rank >= required.rank:
            return (True, f"Difficulty {current.value} meets {required.value}.")
        return (False, f"Difficulty {current.value} is below {required.value}.")

    def check(
        self,
        conditions: Optional[dict[str, Any]],
        player: PlayerState,
        now: Optional[int] = None,
    ) -> tuple[bool, str]:
        """Evaluate every condition; the first failure is reported."""
        for condition in self.parse(conditions):
            satisfied, reason = self.evaluate(condition, player, now)
            if not satisfied:
                return (False, reason)
        return (True, "All conditions met.")


# Singleton instance for convenience
_default_parser: Optional[SnippetConditionParser] = None


def get_condition_parser() -> SnippetConditionParser:
    """Get the default condition parser instance."""
    global _default_parser
    if _default_parser is None:
        _default_parser = SnippetConditionParser()
    return _default_parser


def check_snippet_conditions(
    conditions: Optional[dict[str, Any]],
    player: PlayerState,
    now: Optional[int] = None,
) -> tuple[bool, str]:
    """
    Convenience function to check a snippet's conditions mapping.

    Args:
        conditions: Raw conditions mapping from snippet data
        player: Player snapshot
        now: Timestamp for status-effect activity checks

    Returns:
        Tuple of (is_satisfied, reason_message)
    """
    return get_condition_parser().check(conditions, player, now)
