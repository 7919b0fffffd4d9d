# src/tokenfarm/ledger/accrual.py
from __future__ import annotations

"""Global reward-per-share accumulator.

acc_reward_per_share is the reward one unit of stake has earned since genesis,
scaled by SCALE. It only moves forward through update_pool(), which folds the
blocks elapsed since last_reward_block at the current reward_per_block.

While nothing is staked the accumulator does not move, but last_reward_block
still advances: reward emitted into an empty pool is never credited to anyone.
"""

from typing import Any, Dict

from tokenfarm.ledger.constants import SCALE

Json = Dict[str, Any]


def current_index(farm: Json, block: int) -> int:
    """Return acc_reward_per_share as it would be at `block` (pure)."""
    acc = int(farm.get("acc_reward_per_share", 0))
    last = int(farm.get("last_reward_block", 0))
    b = int(block)
    if b < last:
        raise ValueError(f"block {b} is before last_reward_block {last}")

    total = int(farm.get("total_staked", 0))
    if total == 0:
        return acc

    reward = int(farm.get("reward_per_block", 0)) * (b - last)
    return acc + (reward * SCALE) // total


def update_pool(farm: Json, block: int) -> int:
    """Advance the accumulator to `block` and return the new index."""
    idx = current_index(farm, block)
    farm["acc_reward_per_share"] = int(idx)
    farm["last_reward_block"] = int(block)
    return idx


__all__ = ["current_index", "update_pool"]
