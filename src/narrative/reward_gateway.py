"""
Reward gateway for consequence application.

The consequence interpreter never changes currency, experience, inventory, or
reputation itself. It asks a RewardGateway, and the gateway owner enforces
its own invariants (non-negative balances, capacity caps) and answers with a
RewardReceipt the interpreter folds into the reward summary.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewardReceipt:
    """Confirmation or refusal of one reward request."""

    success: bool
    message: str = ""

    def __str__(self) -> str:
        if self.success:
            return f"Granted: {self.message}"
        return f"Refused: {self.message}"


class RewardGateway(Protocol):
    """Reward-granting managers invoked by the consequence interpreter."""

    def grant_seeds(self, amount: int) -> RewardReceipt:
        ...

    def grant_experience(self, amount: int) -> RewardReceipt:
        ...

    def grant_item(self, item_id: str, quantity: int) -> RewardReceipt:
        ...

    def adjust_faction_reputation(self, faction_id: str, amount: int) -> RewardReceipt:
        ...


class UnavailableRewardGateway:
    """Refuses everything. Used when no reward managers are wired in."""

    def _refuse(self, what: str) -> RewardReceipt:
        return RewardReceipt(success=False, message=f"{what} unavailable right now")

    def grant_seeds(self, amount: int) -> RewardReceipt:
        return self._refuse("Seed pouch")

    def grant_experience(self, amount: int) -> RewardReceipt:
        return self._refuse("Experience")

    def grant_item(self, item_id: str, quantity: int) -> RewardReceipt:
        return self._refuse("Inventory")

    def adjust_faction_reputation(self, faction_id: str, amount: int) -> RewardReceipt:
        return self._refuse("Faction standing")


@dataclass
class LedgerRewardGateway:
    """
    In-memory wallet, experience, inventory, and reputation ledger.

    Seeds and experience never go below zero; the inventory holds at most
    inventory_capacity items in total (None means unlimited).
    """

    seeds: int = 0
    experience: int = 0
    inventory: dict[str, int] = field(default_factory=dict)
    faction_reputation: dict[str, int] = field(default_factory=dict)
    inventory_capacity: Optional[int] = None

    @property
    def inventory_count(self) -> int:
        return sum(self.inventory.values())

    def grant_seeds(self, amount: int) -> RewardReceipt:
        if self.seeds + amount < 0:
            logger.info(f"Seed request {amount} refused with balance {self.seeds}")
            return RewardReceipt(
                success=False,
                message=f"Not enough seeds (have {self.seeds}, need {-amount})",
            )
        self.seeds += amount
        return RewardReceipt(success=True, message=f"seeds {amount:+d}, balance {self.seeds}")

    def grant_experience(self, amount: int) -> RewardReceipt:
        self.experience = max(0, self.experience + amount)
        return RewardReceipt(success=True, message=f"experience {amount:+d}, total {self.experience}")

    def grant_item(self, item_id: str, quantity: int) -> RewardReceipt:
        held = self.inventory.get(item_id, 0)
        if quantity < 0 and held + quantity < 0:
            return RewardReceipt(
                success=False,
                message=f"Not enough {item_id} (have {held}, need {-quantity})",
            )
        if (
            quantity > 0
            and self.inventory_capacity is not None
            and self.inventory_count + quantity > self.inventory_capacity
        ):
            logger.info(f"Inventory full, refused {quantity} x {item_id}")
            return RewardReceipt(
                success=False,
                message=f"Inventory full, {item_id} x{quantity} left behind",
            )
        remaining = held + quantity
        if remaining:
            self.inventory[item_id] = remaining
        else:
            self.inventory.pop(item_id, None)
        return RewardReceipt(success=True, message=f"{item_id} x{quantity}")

    def adjust_faction_reputation(self, faction_id: str, amount: int) -> RewardReceipt:
        standing = self.faction_reputation.get(faction_id, 0) + amount
        self.faction_reputation[faction_id] = standing
        return RewardReceipt(success=True, message=f"{faction_id} {amount:+d}, standing {standing}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "seeds": self.seeds,
            "experience": self.experience,
            "inventory": dict(self.inventory),
            "faction_reputation": dict(self.faction_reputation),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], inventory_capacity: Optional[int] = None) -> "LedgerRewardGateway":
        return cls(
            seeds=int(data.get("seeds", 0)),
            experience=int(data.get("experience", 0)),
            inventory={k: int(v) for k, v in data.get("inventory", {}).items()},
            faction_reputation={k: int(v) for k, v in data.get("faction_reputation", {}).items()},
            inventory_capacity=inventory_capacity,
        )

    def restore(self, data: dict[str, Any]) -> None:
        """Replace balances in place with saved ones; capacity is configuration and stays."""
        saved = LedgerRewardGateway.from_dict(data, self.inventory_capacity)
        self.seeds = saved.seeds
        self.experience = saved.experience
        self.inventory = saved.inventory
        self.faction_reputation = saved.faction_reputation
