# src/tokenfarm/runtime/farm.py
from __future__ import annotations

"""
Settlement engine.

Every mutating operation:
  1) is rejected if another operation is still in progress (re-entrancy)
  2) runs on a deep copy of the farm state
  3) advances the reward index to `block` before touching stake or rate
  4) commits in place only if nothing raised, then emits its events

Asset ledger calls happen after all validation, so a failure there also
leaves the farm state untouched.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from tokenfarm.ledger.accrual import update_pool
from tokenfarm.ledger.amounts import strict_int
from tokenfarm.ledger.constants import FARM_ACCOUNT_ID, MAX_REWARD_PER_BLOCK
from tokenfarm.ledger.migrations import initial_farm_state, migrate_state_dict
from tokenfarm.ledger.participants import ensure_user, settle_user
from tokenfarm.ledger.registry import add_staker, remove_staker, stakers
from tokenfarm.ledger.state import FarmView, UserInfo
from tokenfarm.runtime.assets import RewardAssetLedger, StakeAssetLedger
from tokenfarm.runtime.errors import (
    AssetError,
    AuthorizationError,
    InvalidInputError,
    PreconditionError,
    ReentrancyError,
)
from tokenfarm.runtime.events import EventSink, LogEventSink
from tokenfarm.runtime.gates import AdminGate, resolve_admin_authz
from tokenfarm.runtime.state_invariants import ensure_state

Json = Dict[str, Any]
Event = Tuple[str, Json]

log = logging.getLogger("tokenfarm.farm")


def _as_amount(v: Any, *, field: str) -> int:
    n = strict_int(v)
    if n is None:
        raise InvalidInputError("amount_not_int", {field: repr(v)})
    return n


def _require_caller(caller: Any) -> str:
    c = str(caller or "").strip()
    if not c:
        raise InvalidInputError("missing_caller", {})
    return c


class TokenFarm:
    """Staking farm: stake LP, accrue DAPP per block pro rata, withdraw / harvest."""

    def __init__(
        self,
        *,
        stake_token: StakeAssetLedger,
        reward_token: RewardAssetLedger,
        gate: AdminGate,
        state: Optional[Json] = None,
        address: str = FARM_ACCOUNT_ID,
        events: Optional[EventSink] = None,
        max_reward_per_block: int = MAX_REWARD_PER_BLOCK,
    ) -> None:
        self.state: Json = ensure_state(migrate_state_dict(state if state is not None else initial_farm_state()))
        self.stake_token = stake_token
        self.reward_token = reward_token
        self.gate = gate
        self.address = str(address)
        self.events: EventSink = events if events is not None else LogEventSink()
        self.max_reward_per_block = int(max_reward_per_block)
        self._guard = threading.Lock()
        self._in_progress: Optional[str] = None

    # ----------------------------
    # Execution helpers
    # ----------------------------

    @contextmanager
    def _non_reentrant(self, op: str) -> Iterator[None]:
        # Nested and concurrent calls are rejected, never queued.
        if not self._guard.acquire(blocking=False):
            raise ReentrancyError(details={"op": op, "in_progress": self._in_progress})
        self._in_progress = op
        try:
            yield
        finally:
            self._in_progress = None
            self._guard.release()

    def _execute(self, op: str, fn: Callable[[Json, List[Event]], Json]) -> Json:
        events: List[Event] = []
        with self._non_reentrant(op):
            snapshot = copy.deepcopy(self.state)
            receipt = fn(snapshot, events)
            # Commit in place so holders of `self.state` see the new view.
            self.state.clear()
            self.state.update(snapshot)

        for name, fields in events:
            self._emit(name, fields)
        return receipt

    def _emit(self, name: str, fields: Json) -> None:
        try:
            self.events.emit(name, **fields)
        except Exception:
            log.warning("event sink failed for %s", name, exc_info=True)

    @staticmethod
    def _require_block(st: Json, block: Any) -> int:
        b = _as_amount(block, field="block")
        last = int(st["farm"].get("last_reward_block", 0))
        if b < last:
            raise InvalidInputError("block_regressed", {"block": b, "last_reward_block": last})
        return b

    def _require_admin(self, caller: str, op: str) -> None:
        ok, meta = resolve_admin_authz(self.gate, caller)
        if not ok:
            details = dict(meta)
            details["op"] = op
            raise AuthorizationError("not_authorized", details)

    def _pull_stake(self, owner: str, amount: int) -> None:
        try:
            ok = self.stake_token.transfer_from(self.address, owner, self.address, amount)
        except AssetError as e:
            raise InvalidInputError("transfer_failed", {"asset_code": e.code, "asset_reason": e.reason})
        if ok is False:
            raise InvalidInputError("transfer_failed", {"owner": owner, "amount": amount})

    def _push_stake(self, to: str, amount: int) -> None:
        try:
            ok = self.stake_token.transfer(self.address, to, amount)
        except AssetError as e:
            raise InvalidInputError("transfer_failed", {"asset_code": e.code, "asset_reason": e.reason})
        if ok is False:
            raise InvalidInputError("transfer_failed", {"to": to, "amount": amount})

    def _mint_reward(self, to: str, amount: int) -> None:
        try:
            self.reward_token.mint_to(self.address, to, amount)
        except AssetError as e:
            raise InvalidInputError("mint_failed", {"asset_code": e.code, "asset_reason": e.reason})

    @staticmethod
    def _distribute(st: Json, block: int) -> int:
        # One index for the whole batch: the split depends only on stake at `block`.
        idx = update_pool(st["farm"], block)
        total = 0
        for acct in stakers(st):
            total += settle_user(ensure_user(st, acct), idx)
        return total

    # ----------------------------
    # Operations
    # ----------------------------

    def deposit(self, caller: str, amount: Any, *, block: int) -> Json:
        """Stake `amount` LP. Requires a prior allowance to the farm address."""

        def _apply(st: Json, events: List[Event]) -> Json:
            c = _require_caller(caller)
            a = _as_amount(amount, field="amount")
            if a <= 0:
                raise InvalidInputError("zero_amount", {"amount": a})
            b = self._require_block(st, block)

            allowed = int(self.stake_token.allowance(c, self.address))
            if allowed < a:
                raise InvalidInputError("insufficient_allowance", {"allowance": allowed, "amount": a})

            farm = st["farm"]
            idx = update_pool(farm, b)
            self._pull_stake(c, a)

            user = ensure_user(st, c)
            # Settle on the stake that earned the reward, before it grows.
            settle_user(user, idx)
            user["staking_balance"] = int(user["staking_balance"]) + a
            farm["total_staked"] = int(farm["total_staked"]) + a
            user["is_staking"] = True
            user["has_staked"] = True
            add_staker(st, c)

            events.append(("Deposit", {"user": c, "amount": a, "block": b}))
            return {
                "applied": "DEPOSIT",
                "user": c,
                "amount": a,
                "block": b,
                "staking_balance": int(user["staking_balance"]),
                "total_staked": int(farm["total_staked"]),
            }

        return self._execute("deposit", _apply)

    def withdraw(self, caller: str, *, block: int) -> Json:
        """Withdraw the caller's whole stake. Accrued rewards stay harvestable."""

        def _apply(st: Json, events: List[Event]) -> Json:
            c = _require_caller(caller)
            b = self._require_block(st, block)

            user = st["users"].get(c)
            if not isinstance(user, dict) or int(user.get("staking_balance", 0)) <= 0:
                raise PreconditionError("nothing_staked", {"user": c})

            farm = st["farm"]
            idx = update_pool(farm, b)
            settle_user(user, idx)

            balance = int(user["staking_balance"])
            user["staking_balance"] = 0
            farm["total_staked"] = int(farm["total_staked"]) - balance
            user["is_staking"] = False
            remove_staker(st, c)

            self._push_stake(c, balance)

            events.append(("Withdraw", {"user": c, "amount": balance, "block": b}))
            return {
                "applied": "WITHDRAW",
                "user": c,
                "amount": balance,
                "block": b,
                "pending_rewards": int(user["pending_rewards"]),
                "total_staked": int(farm["total_staked"]),
            }

        return self._execute("withdraw", _apply)

    def harvest(self, caller: str, *, block: int) -> Json:
        """Mint all settled rewards to the caller."""

        def _apply(st: Json, events: List[Event]) -> Json:
            c = _require_caller(caller)
            b = self._require_block(st, block)

            idx = update_pool(st["farm"], b)
            user = st["users"].get(c)
            amount = 0
            if isinstance(user, dict):
                settle_user(user, idx)
                amount = int(user["pending_rewards"])
            if amount <= 0:
                raise PreconditionError("nothing_to_harvest", {"user": c})

            user["pending_rewards"] = 0
            self._mint_reward(c, amount)

            events.append(("Harvest", {"user": c, "amount": amount, "block": b}))
            return {"applied": "HARVEST", "user": c, "amount": amount, "block": b}

        return self._execute("harvest", _apply)

    def distribute_rewards_all(self, caller: str, *, block: int) -> Json:
        """Settle every active staker at one index snapshot (admin)."""

        def _apply(st: Json, events: List[Event]) -> Json:
            c = _require_caller(caller)
            self._require_admin(c, "distribute_rewards_all")
            b = self._require_block(st, block)

            total = self._distribute(st, b)

            events.append(("Distribute", {"amount": total, "block": b}))
            return {
                "applied": "DISTRIBUTE",
                "amount": total,
                "block": b,
                "stakers": len(st["stakers"]),
            }

        return self._execute("distribute_rewards_all", _apply)

    def update_reward_per_block(self, caller: str, reward_per_block: Any, *, block: int) -> Json:
        """Change the emission rate (admin). Rewards under the old rate are settled first."""

        def _apply(st: Json, events: List[Event]) -> Json:
            c = _require_caller(caller)
            self._require_admin(c, "update_reward_per_block")
            new_rate = _as_amount(reward_per_block, field="reward_per_block")
            if new_rate < 0:
                raise InvalidInputError("negative_reward", {"reward_per_block": new_rate})
            if new_rate > self.max_reward_per_block:
                raise InvalidInputError(
                    "reward_exceeds_max",
                    {"reward_per_block": new_rate, "max_reward_per_block": self.max_reward_per_block},
                )
            b = self._require_block(st, block)

            total = self._distribute(st, b)
            farm = st["farm"]
            old_rate = int(farm["reward_per_block"])
            farm["reward_per_block"] = new_rate

            events.append(("Distribute", {"amount": total, "block": b}))
            events.append(("RewardPerBlockUpdated", {"old": old_rate, "new": new_rate, "block": b}))
            return {
                "applied": "REWARD_PER_BLOCK_UPDATE",
                "old": old_rate,
                "new": new_rate,
                "distributed": total,
                "block": b,
            }

        return self._execute("update_reward_per_block", _apply)

    # ----------------------------
    # Views
    # ----------------------------

    def view(self) -> FarmView:
        return FarmView.from_state(self.state)

    def user(self, account: str) -> UserInfo:
        return UserInfo.from_record(account, self.state["users"].get(account))

    def pending_rewards(self, account: str, *, block: int) -> int:
        b = self._require_block(self.state, block)
        return self.view().pending_rewards(account, b)

    def stakers(self) -> List[str]:
        return stakers(self.state)


__all__ = ["TokenFarm"]
