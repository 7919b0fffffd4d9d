# src/tokenfarm/runtime/state_invariants.py
from __future__ import annotations

"""Farm state invariants.

Farm state is a JSON-like dict mutated only by the settlement engine. This
module is the single place that:

  - validates the state is dict-like with the core roots present
  - checks the accounting invariants that must hold between operations

The executor calls check_farm_invariants() on load and refuses to start on a
violation.
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

from tokenfarm.ledger.registry import registry_problems

Json = Dict[str, Any]


class InvariantViolation(RuntimeError):
    def __init__(self, problems: List[str]) -> None:
        super().__init__("; ".join(problems))
        self.problems = list(problems)


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains the farm roots.

    Raises:
        TypeError: if st (or one of its roots) has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key, typ in (("farm", dict), ("users", dict), ("stakers", list)):
        v = st.get(key)
        if v is None:
            st[key] = typ()
        elif not isinstance(v, typ):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be {typ.__name__}, got {type(v)}")

    return st  # type: ignore[return-value]


def farm_problems(st: Json) -> List[str]:
    ensure_state(st)
    farm = st["farm"]
    users = st["users"]
    out: List[str] = []

    staked_sum = 0
    acc = int(farm.get("acc_reward_per_share", 0))
    for acct, user in users.items():
        if not isinstance(user, dict):
            out.append(f"user {acct!r} is not an object")
            continue
        bal = int(user.get("staking_balance", 0))
        if bal < 0:
            out.append(f"user {acct!r} has negative staking_balance")
        staked_sum += bal
        if int(user.get("reward_per_share_paid", 0)) > acc:
            out.append(f"user {acct!r} reward_per_share_paid is ahead of acc_reward_per_share")
        if int(user.get("pending_rewards", 0)) < 0:
            out.append(f"user {acct!r} has negative pending_rewards")
        registered = int(user.get("staker_slot", 0)) > 0
        if (bal > 0) != registered:
            out.append(f"user {acct!r} staking_balance={bal} but registered={registered}")

    if staked_sum != int(farm.get("total_staked", 0)):
        out.append(f"total_staked {farm.get('total_staked')} != sum of balances {staked_sum}")

    out.extend(registry_problems(st))
    return out


def check_farm_invariants(st: Json) -> None:
    problems = farm_problems(st)
    if problems:
        raise InvariantViolation(problems)


__all__ = ["InvariantViolation", "check_farm_invariants", "ensure_state", "farm_problems"]
