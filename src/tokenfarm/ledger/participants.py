# src/tokenfarm/ledger/participants.py
from __future__ import annotations

from typing import Any, Dict

from tokenfarm.ledger.constants import SCALE

Json = Dict[str, Any]


def _new_user() -> Json:
    return {
        "staking_balance": 0,
        "reward_per_share_paid": 0,
        "pending_rewards": 0,
        "staker_slot": 0,
        "is_staking": False,
        "has_staked": False,
    }


def ensure_users(state: Json) -> Json:
    users = state.get("users")
    if not isinstance(users, dict):
        users = {}
        state["users"] = users
    return users


def ensure_user(state: Json, account: str) -> Json:
    """Return the user record, creating a zero-valued one on first reference."""
    users = ensure_users(state)
    user = users.get(account)
    if not isinstance(user, dict):
        user = _new_user()
        users[account] = user
    return user


def pending_reward_of(user: Json, index: int) -> int:
    """Settled rewards plus what the current stake earned since the last snapshot."""
    stake = int(user.get("staking_balance", 0))
    paid = int(user.get("reward_per_share_paid", 0))
    pending = int(user.get("pending_rewards", 0))
    return (stake * (int(index) - paid)) // SCALE + pending


def settle_user(user: Json, index: int) -> int:
    """Fold accrued rewards into pending_rewards and re-base on `index`.

    Must run with the stake that earned the reward, i.e. before any change
    to staking_balance. Returns the newly credited amount.
    """
    before = int(user.get("pending_rewards", 0))
    after = pending_reward_of(user, index)
    user["pending_rewards"] = int(after)
    user["reward_per_share_paid"] = int(index)
    return after - before


__all__ = ["ensure_user", "ensure_users", "pending_reward_of", "settle_user"]
