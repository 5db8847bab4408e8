"""
Consequence Interpreter for the exploration loop.

Translates the loosely-typed consequence payload attached to a snippet option
into discrete effect commands, then executes them against a player snapshot.

This bridges the gap between:
- Authored content ({"grant_status_effects": [{"key": "forest_poise", ...}]})
- Effect commands (EffectCommand(GRANT_STATUS, {"key": ..., "duration_ms": ...}))
- The new player snapshot and the reward summary shown to the player

The key principle: the interpreter is pure over the player snapshot. The only
outside effects are reward requests, which go through a RewardGateway so the
wallet and inventory keep sole ownership of their invariants.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional
import logging

from src.data_models import PlayerState, StatusEffect
from src.narrative.reward_gateway import RewardGateway, RewardReceipt, UnavailableRewardGateway

logger = logging.getLogger(__name__)


CONSEQUENCE_SCHEMA_VERSION = 1

MILLIS_PER_SECOND = 1_000
MILLIS_PER_MINUTE = 60_000


# =============================================================================
# EFFECT TYPES
# =============================================================================


class EffectType(str, Enum):
    """
    Closed set of consequence keys the interpreter executes.

    Declaration order is execution order. Any other key in a payload is
    ignored so older builds tolerate newer content.
    """

    NARRATION = "narration"
    ADD_CHOICE_TAGS = "add_choice_tags"
    GRANT_STATUS_EFFECTS = "grant_status_effects"
    CLEAR_STATUS_EFFECTS = "clear_status_effects"
    GRANT_SEEDS = "grant_seeds"
    CONSUME_SEEDS = "consume_seeds"
    GRANT_EXPERIENCE = "grant_experience"
    GRANT_ITEMS = "grant_items"
    GRANT_FACTION_REPUTATION = "grant_faction_reputation"


_RESERVED_KEYS = {"schema_version"}


# =============================================================================
# EFFECT COMMAND
# =============================================================================


@dataclass
class EffectCommand:
    """A single parsed, well-formed effect."""

    effect_type: EffectType
    parameters: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        params = ", ".join(f"{k}={v}" for k, v in self.parameters.items())
        return f"{self.effect_type.value}({params})"


@dataclass
class EffectResult:
    """Result of executing one effect command."""

    success: bool
    command: EffectCommand
    description: str = ""
    error: str = ""

    def __str__(self) -> str:
        if self.success:
            return f"Success: {self.description}"
        return f"Failed: {self.error}"


@dataclass
class ConsequenceOutcome:
    """What one consequence application produced."""

    player: PlayerState
    reward_summaries: list[str] = field(default_factory=list)
    results: list[EffectResult] = field(default_factory=list)
    choice_tags: list[str] = field(default_factory=list)
    narration: Optional[str] = None

    @property
    def all_succeeded(self) -> bool:
        return all(r.success for r in self.results)


# =============================================================================
# PARSER
# =============================================================================


def _int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def format_duration(duration_ms: int) -> str:
    """Whole minutes, or seconds (rounded up) below one minute."""
    if duration_ms < MILLIS_PER_MINUTE:
        return f"{-(-duration_ms // MILLIS_PER_SECOND)} sec"
    return f"{duration_ms // MILLIS_PER_MINUTE} min"


class ConsequenceParser:
    """
    Parses a consequence payload into effect commands.

    Malformed entries are dropped one by one; the rest of the payload still
    applies.
    """

    def parse(self, consequences: Optional[dict[str, Any]]) -> list[EffectCommand]:
        if not consequences:
            return []

        version = consequences.get("schema_version", CONSEQUENCE_SCHEMA_VERSION)
        if version != CONSEQUENCE_SCHEMA_VERSION:
            logger.debug(
                f"Consequence schema {version} differs from {CONSEQUENCE_SCHEMA_VERSION}; "
                f"applying known keys only"
            )

        known = {e.value for e in EffectType}
        for key in consequences:
            if key not in known and key not in _RESERVED_KEYS:
                logger.debug(f"Ignoring unknown consequence key: {key}")

        commands: list[EffectCommand] = []
        for effect_type in EffectType:
            if effect_type.value not in consequences:
                continue
            value = consequences[effect_type.value]
            parser = getattr(self, f"_parse_{effect_type.value}")
            commands.extend(parser(value))
        return commands

    def _malformed(self, effect_type: EffectType, value: Any) -> list[EffectCommand]:
        logger.debug(f"Ignoring malformed {effect_type.value} entry: {value!r}")
        return []

    def _parse_narration(self, value: Any) -> list[EffectCommand]:
        if not isinstance(value, str) or not value.strip():
            return self._malformed(EffectType.NARRATION, value)
        return [EffectCommand(EffectType.NARRATION, {"text": value.strip()})]

    def _parse_add_choice_tags(self, value: Any) -> list[EffectCommand]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return self._malformed(EffectType.ADD_CHOICE_TAGS, value)
        tags = []
        for tag in value:
            if isinstance(tag, str) and tag.strip():
                tags.append(tag.strip())
            else:
                self._malformed(EffectType.ADD_CHOICE_TAGS, tag)
        if not tags:
            return []
        return [EffectCommand(EffectType.ADD_CHOICE_TAGS, {"tags": tags})]

    def _parse_grant_status_effects(self, value: Any) -> list[EffectCommand]:
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return self._malformed(EffectType.GRANT_STATUS_EFFECTS, value)

        grants = []
        for entry in value:
            if not isinstance(entry, dict) or not isinstance(entry.get("key"), str):
                self._malformed(EffectType.GRANT_STATUS_EFFECTS, entry)
                continue
            duration_ms: Optional[int] = None
            if "duration_ms" in entry:
                duration_ms = _int_or_none(entry["duration_ms"])
                if duration_ms is None:
                    self._malformed(EffectType.GRANT_STATUS_EFFECTS, entry)
                    continue
            elif "duration_minutes" in entry:
                minutes = _int_or_none(entry["duration_minutes"])
                if minutes is None:
                    self._malformed(EffectType.GRANT_STATUS_EFFECTS, entry)
                    continue
                duration_ms = minutes * MILLIS_PER_MINUTE
            elif "duration_seconds" in entry:
                seconds = _int_or_none(entry["duration_seconds"])
                if seconds is None:
                    self._malformed(EffectType.GRANT_STATUS_EFFECTS, entry)
                    continue
                duration_ms = seconds * MILLIS_PER_SECOND
            if duration_ms is not None and duration_ms < 0:
                self._malformed(EffectType.GRANT_STATUS_EFFECTS, entry)
                continue
            grants.append({"key": entry["key"], "duration_ms": duration_ms})
        if not grants:
            return []
        return [EffectCommand(EffectType.GRANT_STATUS_EFFECTS, {"grants": grants})]

    def _parse_clear_status_effects(self, value: Any) -> list[EffectCommand]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(k, str) for k in value):
            return self._malformed(EffectType.CLEAR_STATUS_EFFECTS, value)
        if not value:
            return []
        return [EffectCommand(EffectType.CLEAR_STATUS_EFFECTS, {"keys": list(value)})]

    def _parse_amount(self, effect_type: EffectType, value: Any) -> list[EffectCommand]:
        amount = _int_or_none(value)
        if amount is None:
            return self._malformed(effect_type, value)
        if amount == 0:
            return []
        return [EffectCommand(effect_type, {"amount": amount})]

    def _parse_grant_seeds(self, value: Any) -> list[EffectCommand]:
        return self._parse_amount(EffectType.GRANT_SEEDS, value)

    def _parse_consume_seeds(self, value: Any) -> list[EffectCommand]:
        return self._parse_amount(EffectType.CONSUME_SEEDS, value)

    def _parse_grant_experience(self, value: Any) -> list[EffectCommand]:
        return self._parse_amount(EffectType.GRANT_EXPERIENCE, value)

    def _parse_grant_items(self, value: Any) -> list[EffectCommand]:
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return self._malformed(EffectType.GRANT_ITEMS, value)
        commands = []
        for entry in value:
            quantity = _int_or_none(entry.get("quantity", 1)) if isinstance(entry, dict) else None
            if quantity is None or not isinstance(entry.get("item_id"), str):
                self._malformed(EffectType.GRANT_ITEMS, entry)
                continue
            commands.append(
                EffectCommand(EffectType.GRANT_ITEMS, {"item_id": entry["item_id"], "quantity": quantity})
            )
        return commands

    def _parse_grant_faction_reputation(self, value: Any) -> list[EffectCommand]:
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return self._malformed(EffectType.GRANT_FACTION_REPUTATION, value)
        commands = []
        for entry in value:
            amount = _int_or_none(entry.get("amount")) if isinstance(entry, dict) else None
            if amount is None or not isinstance(entry.get("faction_id"), str):
                self._malformed(EffectType.GRANT_FACTION_REPUTATION, entry)
                continue
            commands.append(
                EffectCommand(
                    EffectType.GRANT_FACTION_REPUTATION,
                    {"faction_id": entry["faction_id"], "amount": amount},
                )
            )
        return commands


# =============================================================================
# INTERPRETER
# =============================================================================


class ConsequenceInterpreter:
    """
    Executes consequence payloads against player snapshots.

    Each effect type has a handler method; handlers for snapshot effects
    return a new PlayerState, handlers for rewards call the gateway.
    """

    def __init__(self, reward_gateway: Optional[RewardGateway] = None):
        self._rewards: RewardGateway = reward_gateway or UnavailableRewardGateway()
        self._parser = ConsequenceParser()

    @property
    def reward_gateway(self) -> RewardGateway:
        return self._rewards

    def apply(
        self,
        consequences: Optional[dict[str, Any]],
        player: PlayerState,
        now: int,
    ) -> ConsequenceOutcome:
        """
        Apply a consequence payload.

        Args:
            consequences: Effect-kind -> parameters mapping, or None for no effect
            player: Snapshot to start from
            now: Timestamp from the player state store

        Returns:
            ConsequenceOutcome with the new snapshot and ordered summary lines
        """
        outcome = ConsequenceOutcome(player=player)
        status_lines: list[str] = []
        cleared_lines: list[str] = []
        reward_lines: list[str] = []
        notices: list[str] = []

        for command in self._parser.parse(consequences):
            handler = getattr(self, f"_execute_{command.effect_type.value}")
            result = handler(command, outcome, now)
            outcome.results.append(result)

            if not result.success:
                logger.warning(f"Reward request failed: {command} ({result.error})")
                notices.append(f"Notice: {result.error}")
            elif command.effect_type == EffectType.GRANT_STATUS_EFFECTS:
                status_lines.append(result.description)
            elif command.effect_type == EffectType.CLEAR_STATUS_EFFECTS:
                cleared_lines.append(result.description)
            elif command.effect_type not in (EffectType.NARRATION, EffectType.ADD_CHOICE_TAGS):
                reward_lines.append(result.description)

        if outcome.narration:
            outcome.reward_summaries.append(outcome.narration)
        if outcome.choice_tags:
            outcome.reward_summaries.append("Choice tags: " + ", ".join(outcome.choice_tags))
        outcome.reward_summaries.extend(status_lines)
        outcome.reward_summaries.extend(cleared_lines)
        outcome.reward_summaries.extend(reward_lines)
        outcome.reward_summaries.extend(notices)
        return outcome

    # =========================================================================
    # EFFECT HANDLERS
    # =========================================================================

    def _execute_narration(self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int) -> EffectResult:
        outcome.narration = cmd.parameters["text"]
        return EffectResult(success=True, command=cmd, description=outcome.narration)

    def _execute_add_choice_tags(self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int) -> EffectResult:
        player = outcome.player
        for tag in cmd.parameters["tags"]:
            player = player.append_choice(tag, now)
            outcome.choice_tags.append(tag)
        outcome.player = player
        return EffectResult(success=True, command=cmd, description=", ".join(cmd.parameters["tags"]))

    def _execute_grant_status_effects(
        self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int
    ) -> EffectResult:
        effects = list(outcome.player.status_effects)
        labels = []
        for grant in cmd.parameters["grants"]:
            key = grant["key"]
            duration_ms = grant["duration_ms"]
            expires = now + duration_ms if duration_ms is not None else None
            effects = _refresh_status(effects, StatusEffect(key=key, expires_at_millis=expires))
            if duration_ms is None:
                labels.append(key)
            else:
                labels.append(f"{key} ({format_duration(duration_ms)})")
        outcome.player = replace(outcome.player, status_effects=tuple(effects))
        return EffectResult(success=True, command=cmd, description="Status: " + ", ".join(labels))

    def _execute_clear_status_effects(
        self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int
    ) -> EffectResult:
        keys = set(cmd.parameters["keys"])
        remaining = tuple(e for e in outcome.player.status_effects if e.key not in keys)
        outcome.player = replace(outcome.player, status_effects=remaining)
        return EffectResult(
            success=True, command=cmd, description="Cleared: " + ", ".join(cmd.parameters["keys"])
        )

    def _reward_result(self, cmd: EffectCommand, receipt: RewardReceipt, description: str) -> EffectResult:
        if receipt.success:
            return EffectResult(success=True, command=cmd, description=description)
        return EffectResult(success=False, command=cmd, error=receipt.message or "reward refused")

    def _execute_grant_seeds(self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int) -> EffectResult:
        amount = cmd.parameters["amount"]
        receipt = self._rewards.grant_seeds(amount)
        label = f"Seeds gathered: {amount}" if amount > 0 else f"Seeds spent: {-amount}"
        return self._reward_result(cmd, receipt, label)

    def _execute_consume_seeds(self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int) -> EffectResult:
        amount = abs(cmd.parameters["amount"])
        receipt = self._rewards.grant_seeds(-amount)
        return self._reward_result(cmd, receipt, f"Seeds spent: {amount}")

    def _execute_grant_experience(
        self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int
    ) -> EffectResult:
        amount = cmd.parameters["amount"]
        receipt = self._rewards.grant_experience(amount)
        label = f"Experience gained: {amount}" if amount > 0 else f"Experience lost: {-amount}"
        return self._reward_result(cmd, receipt, label)

    def _execute_grant_items(self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int) -> EffectResult:
        item_id = cmd.parameters["item_id"]
        quantity = cmd.parameters["quantity"]
        receipt = self._rewards.grant_item(item_id, quantity)
        return self._reward_result(cmd, receipt, f"Item: {item_id} x{quantity}")

    def _execute_grant_faction_reputation(
        self, cmd: EffectCommand, outcome: ConsequenceOutcome, now: int
    ) -> EffectResult:
        faction_id = cmd.parameters["faction_id"]
        amount = cmd.parameters["amount"]
        receipt = self._rewards.adjust_faction_reputation(faction_id, amount)
        return self._reward_result(cmd, receipt, f"Reputation: {faction_id} {amount:+d}")


def _refresh_status(effects: list[StatusEffect], incoming: StatusEffect) -> list[StatusEffect]:
    """Add or refresh one status; the later expiration wins and permanent beats timed."""
    for i, existing in enumerate(effects):
        if existing.key != incoming.key:
            continue
        if existing.expires_at_millis is None:
            return effects
        if incoming.expires_at_millis is None or incoming.expires_at_millis > existing.expires_at_millis:
            effects[i] = incoming
        return effects
    effects.append(incoming)
    return effects
