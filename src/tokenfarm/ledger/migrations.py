# src/tokenfarm/ledger/migrations.py
from __future__ import annotations

from typing import Any, Callable, Dict, List

from tokenfarm.ledger.constants import DEFAULT_REWARD_PER_BLOCK

Json = Dict[str, Any]

# Increment this when you add a new migration step.
CURRENT_STATE_VERSION = 1


def _as_int(v: Any, default: int = 0) -> int:
    try:
        if isinstance(v, bool):
            return default
        return int(v)
    except Exception:
        return default


def _ensure_dict(root: Json, key: str) -> Json:
    v = root.get(key)
    if not isinstance(v, dict):
        v = {}
        root[key] = v
    return v


def _ensure_list(root: Json, key: str) -> List[Any]:
    v = root.get(key)
    if not isinstance(v, list):
        v = []
        root[key] = v
    return v


def _ensure_int(root: Json, key: str, default: int = 0) -> int:
    if key not in root:
        root[key] = int(default)
        return int(default)
    x = _as_int(root.get(key), default)
    root[key] = int(x)
    return int(x)


def _ensure_bool(root: Json, key: str, default: bool = False) -> bool:
    if key not in root:
        root[key] = bool(default)
        return bool(default)
    v = root.get(key)
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)) and v in (0, 1):
        root[key] = bool(v)
        return bool(v)
    if isinstance(v, str):
        s = v.strip().lower()
        if s in {"1", "true", "yes", "y", "on"}:
            root[key] = True
            return True
        if s in {"0", "false", "no", "n", "off"}:
            root[key] = False
            return False
    root[key] = bool(default)
    return bool(default)


def _migrate_v0_to_v1(st: Json) -> Json:
    """
    v0 -> v1: introduce explicit state_version and normalize farm roots.

    v0 characteristics:
      - no 'state_version'
      - may have missing roots, string-encoded ints or wrong shapes
    """
    farm = _ensure_dict(st, "farm")
    _ensure_int(farm, "reward_per_block", DEFAULT_REWARD_PER_BLOCK)
    _ensure_int(farm, "total_staked", 0)
    _ensure_int(farm, "acc_reward_per_share", 0)
    _ensure_int(farm, "last_reward_block", 0)

    users = _ensure_dict(st, "users")
    for aid, user in list(users.items()):
        if not isinstance(user, dict):
            users[aid] = {}
            user = users[aid]
        _ensure_int(user, "staking_balance", 0)
        _ensure_int(user, "reward_per_share_paid", 0)
        _ensure_int(user, "pending_rewards", 0)
        _ensure_int(user, "staker_slot", 0)
        _ensure_bool(user, "is_staking", user["staking_balance"] > 0)
        _ensure_bool(user, "has_staked", user["staking_balance"] > 0)

    stakers = _ensure_list(st, "stakers")
    st["stakers"] = [str(s) for s in stakers if isinstance(s, str) and s.strip()]

    st["state_version"] = 1
    return st


_MIGRATIONS: Dict[int, Callable[[Json], Json]] = {
    0: _migrate_v0_to_v1,
}


def migrate_state_dict(raw: Any) -> Json:
    """
    Upgrade a raw persisted farm snapshot to CURRENT_STATE_VERSION.

    - Best-effort: never raises for simple shape issues; it normalizes.
    - If raw isn't a dict, returns an empty vCURRENT state skeleton.
    """
    st: Json = raw if isinstance(raw, dict) else {}

    v = _as_int(st.get("state_version"), 0)
    if v > CURRENT_STATE_VERSION:
        # Snapshot written by a newer binary; refuse to downgrade silently.
        raise ValueError(
            f"Farm state version {v} is newer than this binary supports (max {CURRENT_STATE_VERSION})."
        )

    while v < CURRENT_STATE_VERSION:
        step = _MIGRATIONS.get(v)
        if step is None:
            raise ValueError(f"No migration path from state_version={v} to {CURRENT_STATE_VERSION}.")
        st = step(st)
        v = _as_int(st.get("state_version"), v + 1)

    st["state_version"] = CURRENT_STATE_VERSION
    return st


def initial_farm_state(*, reward_per_block: int = DEFAULT_REWARD_PER_BLOCK, block: int = 0) -> Json:
    st = migrate_state_dict({})
    st["farm"]["reward_per_block"] = int(reward_per_block)
    st["farm"]["last_reward_block"] = int(block)
    return st
