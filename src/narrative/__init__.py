"""
Consequence handling for the exploration loop.

Main Components:
- ConsequenceInterpreter: applies option consequences to player snapshots
- RewardGateway: contract for the wallet/inventory/reputation managers
"""

from src.narrative.consequence_interpreter import (
    CONSEQUENCE_SCHEMA_VERSION,
    ConsequenceInterpreter,
    ConsequenceOutcome,
    ConsequenceParser,
    EffectCommand,
    EffectResult,
    EffectType,
)
from src.narrative.reward_gateway import (
    LedgerRewardGateway,
    RewardGateway,
    RewardReceipt,
    UnavailableRewardGateway,
)

__all__ = [
    "CONSEQUENCE_SCHEMA_VERSION",
    "ConsequenceInterpreter",
    "ConsequenceOutcome",
    "ConsequenceParser",
    "EffectCommand",
    "EffectResult",
    "EffectType",
    "LedgerRewardGateway",
    "RewardGateway",
    "RewardReceipt",
    "UnavailableRewardGateway",
]
