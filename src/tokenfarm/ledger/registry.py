# src/tokenfarm/ledger/registry.py
from __future__ import annotations

"""Enumerable set of active stakers.

state["stakers"] is the sequence; each user record carries a 1-based
"staker_slot" into it (0 == not registered). Removal moves the last staker
into the freed slot, so enumeration order is NOT stable across withdrawals.
"""

from typing import Any, Dict, List

from tokenfarm.ledger.participants import ensure_user

Json = Dict[str, Any]


def ensure_stakers(state: Json) -> List[str]:
    stakers = state.get("stakers")
    if not isinstance(stakers, list):
        stakers = []
        state["stakers"] = stakers
    return stakers


def is_registered(state: Json, account: str) -> bool:
    users = state.get("users")
    if not isinstance(users, dict):
        return False
    user = users.get(account)
    return isinstance(user, dict) and int(user.get("staker_slot", 0)) > 0


def add_staker(state: Json, account: str) -> int:
    """Append `account` and return its slot. No-op when already registered."""
    user = ensure_user(state, account)
    slot = int(user.get("staker_slot", 0))
    if slot > 0:
        return slot
    stakers = ensure_stakers(state)
    stakers.append(account)
    user["staker_slot"] = len(stakers)
    return len(stakers)


def remove_staker(state: Json, account: str) -> None:
    """Swap-remove `account`. No-op when not registered."""
    user = ensure_user(state, account)
    slot = int(user.get("staker_slot", 0))
    if slot <= 0:
        return

    stakers = ensure_stakers(state)
    pos = slot - 1
    last = stakers[-1]
    if last != account:
        stakers[pos] = last
        ensure_user(state, last)["staker_slot"] = slot
    stakers.pop()
    user["staker_slot"] = 0


def stakers(state: Json) -> List[str]:
    return list(ensure_stakers(state))


def registry_problems(state: Json) -> List[str]:
    """Return human-readable registry inconsistencies (empty when healthy)."""
    out: List[str] = []
    seq = ensure_stakers(state)
    users = state.get("users") if isinstance(state.get("users"), dict) else {}

    seen: set[str] = set()
    for i, acct in enumerate(seq):
        if acct in seen:
            out.append(f"duplicate staker {acct!r}")
            continue
        seen.add(acct)
        user = users.get(acct)
        if not isinstance(user, dict):
            out.append(f"staker {acct!r} has no user record")
            continue
        if int(user.get("staker_slot", 0)) != i + 1:
            out.append(f"staker {acct!r} at position {i} has slot {user.get('staker_slot')}")

    for acct, user in users.items():
        if not isinstance(user, dict):
            continue
        if acct not in seen and int(user.get("staker_slot", 0)) != 0:
            out.append(f"unregistered user {acct!r} has slot {user.get('staker_slot')}")

    return out


__all__ = [
    "add_staker",
    "ensure_stakers",
    "is_registered",
    "registry_problems",
    "remove_staker",
    "stakers",
]
