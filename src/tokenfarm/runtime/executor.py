from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from tokenfarm.ledger.migrations import initial_farm_state, migrate_state_dict
from tokenfarm.ledger.state import FarmView, UserInfo
from tokenfarm.runtime.account_keys import AccountKeys
from tokenfarm.runtime.assets import JsonToken, new_token_state
from tokenfarm.runtime.clock import AutoMineClock, BlockClock, WallClock
from tokenfarm.runtime.errors import (
    AssetError,
    AuthenticationError,
    AuthorizationError,
    FarmError,
    InvalidInputError,
    PreconditionError,
)
from tokenfarm.runtime.events import EventSink, FanoutEventSink, LogEventSink, MemoryEventSink, log_event
from tokenfarm.runtime.farm import TokenFarm
from tokenfarm.runtime.farm_config import FarmConfig, validate_farm_config
from tokenfarm.runtime.gates import StaticAdminGate
from tokenfarm.runtime.metrics import inc_counter, set_gauge
from tokenfarm.runtime.sqlite_db import SqliteDB, SqliteFarmStore
from tokenfarm.runtime.state_invariants import InvariantViolation, check_farm_invariants

Json = Dict[str, Any]

log = logging.getLogger("tokenfarm.executor")


def _now_ms() -> int:
    return int(time.time() * 1000)


class ExecutorError(RuntimeError):
    pass


class FarmExecutor:
    """TokenFarm runtime using SQLite for persistence (farm + asset ledgers + events).

    Each transaction runs in the next block of the clock, under one process
    lock, and is persisted in a single write transaction. Rejected
    transactions still consume their block.
    """

    def __init__(
        self,
        *,
        config: FarmConfig,
        clock: Optional[BlockClock] = None,
        events: Optional[EventSink] = None,
    ) -> None:
        validate_farm_config(config)
        self.cfg = config
        self.chain_id = str(config.chain_id)
        self.mode = str(config.mode)

        self._db = SqliteDB(path=config.db_path)
        self._store = SqliteFarmStore(db=self._db)

        # Fail-closed on chain_id mismatch once the DB is bound to a chain.
        st_chain_id = (self._store.get_meta("chain_id") or "").strip()
        if st_chain_id and st_chain_id != self.chain_id:
            raise ExecutorError(
                f"chain_id mismatch: db={st_chain_id!r} executor={self.chain_id!r}. Refuse to start."
            )

        genesis = not self._store.exists()
        if genesis:
            state = initial_farm_state(reward_per_block=config.reward_per_block)
            height = 0
            assets: Dict[str, Json] = {}
            self._store.set_meta("chain_id", self.chain_id)
            self._store.set_meta("genesis_ms", str(_now_ms()))
        else:
            raw, height = self._store.read()
            state = migrate_state_dict(raw)
            assets = self._store.read_assets()

        try:
            check_farm_invariants(state)
        except InvariantViolation as e:
            raise ExecutorError(f"farm_invariant_violation: {e}. Refuse to start.") from e

        self.stake_token = JsonToken(
            assets.get(config.stake_token)
            or new_token_state(config.stake_token, name="LP Token")
        )
        self.reward_token = JsonToken(
            assets.get(config.reward_token)
            or new_token_state(config.reward_token, name="Dapp Token")
        )

        self.accounts = AccountKeys(self._store.read_account_keys())
        self._seed_config_keys()

        self.clock: BlockClock = clock or self._build_clock(height)

        self._pending = MemoryEventSink()
        sinks: List[EventSink] = [LogEventSink(), self._pending]
        if events is not None:
            sinks.append(events)

        self.farm = TokenFarm(
            stake_token=self.stake_token,
            reward_token=self.reward_token,
            gate=StaticAdminGate(config.admins),
            state=state,
            address=config.farm_address,
            events=FanoutEventSink(sinks),
        )

        self._lock = threading.RLock()

        if genesis:
            self._grant_genesis_roles()
            self._persist(self.clock.current_block())
            log_event(
                log,
                "farm_deployed",
                chain_id=self.chain_id,
                farm=config.farm_address,
                stake_token=config.stake_token,
                reward_token=config.reward_token,
                reward_per_block=config.reward_per_block,
                lp_minters=list(config.admins),
            )
        self.refresh_gauges()

    def _seed_config_keys(self) -> None:
        changed: Dict[str, Json] = {}
        for acct, keys in self.cfg.account_keys.items():
            if self.accounts.set_config_keys(acct, keys):
                changed[acct] = self.accounts.records[acct]
        self._store.put_account_keys(changed)

    def _grant_genesis_roles(self) -> None:
        # Admins run the LP faucet; only the farm may mint DAPP.
        for admin in self.cfg.admins:
            self.stake_token.grant_minter(admin)
        self.reward_token.grant_minter(self.farm.address)

    def _build_clock(self, height: int) -> BlockClock:
        if self.cfg.clock == "automine":
            return AutoMineClock(height=height)
        genesis_ms = int(self._store.get_meta("genesis_ms") or _now_ms())
        return WallClock(genesis_ms=genesis_ms, block_interval_ms=self.cfg.block_interval_ms)

    # ----------------------------
    # Persistence
    # ----------------------------

    def _assets_json(self) -> Dict[str, Json]:
        return {
            self.stake_token.token_id: self.stake_token.to_json(),
            self.reward_token.token_id: self.reward_token.to_json(),
        }

    def _persist(self, block: int) -> None:
        self._store.commit(
            self.farm.state,
            block=int(block),
            assets=self._assets_json(),
            events=list(self._pending.events),
        )
        self._pending.clear()

    def _backup(self) -> Json:
        return {
            "farm": copy.deepcopy(self.farm.state),
            "stake": copy.deepcopy(self.stake_token.root),
            "reward": copy.deepcopy(self.reward_token.root),
        }

    def _restore(self, backup: Json) -> None:
        for live, saved in (
            (self.farm.state, backup["farm"]),
            (self.stake_token.root, backup["stake"]),
            (self.reward_token.root, backup["reward"]),
        ):
            live.clear()
            live.update(saved)
        self._pending.clear()

    def refresh_gauges(self) -> None:
        v = self.farm.view()
        set_gauge("total_staked", v.total_staked)
        set_gauge("stakers", len(v.stakers))
        set_gauge("reward_per_block", v.reward_per_block)
        set_gauge("block", self.clock.current_block())

    def _run(self, op: str, fn: Callable[[int], Json]) -> Json:
        with self._lock:
            block = self.clock.next_block()
            backup = self._backup()
            try:
                receipt = fn(block)
            except (FarmError, AssetError) as e:
                inc_counter("tx_rejected_total", op=op, reason=e.reason)
                log_event(log, "tx_rejected", op=op, block=block, code=e.code, reason=e.reason)
                # Only the consumed block is persisted for a rejected tx.
                self._restore(backup)
                self._persist(block)
                raise

            try:
                self._persist(block)
            except Exception:
                self._restore(backup)
                log.exception("persist failed; rolled back in-memory state for %s", op)
                raise

            inc_counter("tx_applied_total", op=op)
            self.refresh_gauges()
            return receipt

    # ----------------------------
    # Request authentication
    # ----------------------------

    def authenticate(self, *, op: str, signer: str, nonce: Any, payload: Json, sig: Any) -> str:
        """Verify a signed write for `signer` and consume its nonce. Returns the signing pubkey.

        The nonce is spent even if the transaction that follows is rejected.
        """
        with self._lock:
            try:
                pk, n = self.accounts.verify(
                    chain_id=self.chain_id, op=op, signer=signer, nonce=nonce, payload=payload, sig=sig
                )
            except AuthenticationError as e:
                inc_counter("auth_rejected_total", reason=e.reason)
                log_event(log, "auth_rejected", op=op, signer=signer, reason=e.reason)
                raise
            rec = self.accounts.consume_nonce(signer, n)
            self._store.put_account_keys({signer: rec})
            return pk

    def register_key(self, *, account: str, pubkey: str, nonce: Any, sig: Any) -> Json:
        """Bind a first key to an unkeyed account. The request must be signed by that key."""
        with self._lock:
            acct = str(account or "").strip()
            if not acct:
                raise InvalidInputError("missing_account", {})
            if acct in self.cfg.admins or acct == self.farm.address:
                raise AuthorizationError("reserved_account", {"account": acct})
            if self.accounts.active_pubkeys(acct):
                raise PreconditionError("account_has_keys", {"account": acct})
            try:
                staged = AccountKeys()
                staged.register(acct, pubkey)
            except ValueError as e:
                raise InvalidInputError("bad_pubkey", {"account": acct, "error": str(e)})

            staged.verify(
                chain_id=self.chain_id,
                op="register_key",
                signer=acct,
                nonce=nonce,
                payload={"account": acct, "pubkey": pubkey},
                sig=sig,
            )
            self.accounts.register(acct, pubkey)
            rec = self.accounts.consume_nonce(acct, int(nonce))
            self._store.put_account_keys({acct: rec})
            log_event(log, "account_key_registered", account=acct)
            return {"applied": "REGISTER_KEY", **self.accounts.to_json(acct)}

    def account_keys(self, account: str) -> Json:
        return self.accounts.to_json(account)

    # ----------------------------
    # Farm transactions
    # ----------------------------

    def deposit(self, caller: str, amount: Any) -> Json:
        return self._run("deposit", lambda b: self.farm.deposit(caller, amount, block=b))

    def withdraw(self, caller: str) -> Json:
        return self._run("withdraw", lambda b: self.farm.withdraw(caller, block=b))

    def harvest(self, caller: str) -> Json:
        receipt = self._run("harvest", lambda b: self.farm.harvest(caller, block=b))
        inc_counter("rewards_harvested_total", int(receipt["amount"]))
        return receipt

    def distribute_rewards_all(self, caller: str) -> Json:
        return self._run("distribute_rewards_all", lambda b: self.farm.distribute_rewards_all(caller, block=b))

    def update_reward_per_block(self, caller: str, reward_per_block: Any) -> Json:
        return self._run(
            "update_reward_per_block",
            lambda b: self.farm.update_reward_per_block(caller, reward_per_block, block=b),
        )

    # ----------------------------
    # Stake-token transactions
    # ----------------------------

    def approve(self, owner: str, amount: Any) -> Json:
        def _apply(block: int) -> Json:
            self.stake_token.approve(owner, self.farm.address, amount)
            allowance = self.stake_token.allowance(owner, self.farm.address)
            return {"applied": "APPROVE", "owner": owner, "spender": self.farm.address, "allowance": allowance, "block": block}

        return self._run("approve", _apply)

    def increase_allowance(self, owner: str, added: Any) -> Json:
        def _apply(block: int) -> Json:
            self.stake_token.increase_allowance(owner, self.farm.address, added)
            allowance = self.stake_token.allowance(owner, self.farm.address)
            return {
                "applied": "INCREASE_ALLOWANCE",
                "owner": owner,
                "spender": self.farm.address,
                "allowance": allowance,
                "block": block,
            }

        return self._run("increase_allowance", _apply)

    def mint_stake(self, sender: str, to: str, amount: Any) -> Json:
        """LP faucet (non-prod only); `sender` must hold the LP minter role."""

        def _apply(block: int) -> Json:
            if self.mode == "prod":
                raise AssetError("forbidden", "faucet_disabled_in_prod", {"token": self.stake_token.token_id})
            self.stake_token.mint_to(sender, to, amount)
            return {"applied": "MINT", "token": self.stake_token.token_id, "to": to, "amount": int(amount), "block": block}

        return self._run("mint_stake", _apply)

    def mine(self, blocks: int = 1) -> int:
        with self._lock:
            if not isinstance(self.clock, AutoMineClock):
                raise ExecutorError("mine() requires the automine clock")
            height = self.clock.mine(blocks)
            self._persist(height)
            self.refresh_gauges()
            return height

    # ----------------------------
    # Views
    # ----------------------------

    def current_block(self) -> int:
        return self.clock.current_block()

    def read_state(self) -> Json:
        return copy.deepcopy(self.farm.state)

    def view(self) -> FarmView:
        return self.farm.view()

    def user(self, account: str) -> UserInfo:
        return self.farm.user(account)

    def pending_rewards(self, account: str) -> int:
        with self._lock:
            block = max(self.clock.current_block(), self.farm.view().last_reward_block)
            return self.farm.pending_rewards(account, block=block)

    def stakers(self) -> List[str]:
        return self.farm.stakers()

    def balances(self, account: str) -> Json:
        return {
            "account": account,
            self.stake_token.token_id: self.stake_token.balance_of(account),
            self.reward_token.token_id: self.reward_token.balance_of(account),
            "allowance": self.stake_token.allowance(account, self.farm.address),
        }

    def recent_events(self, *, limit: int = 50, event: str = "") -> List[Json]:
        return self._store.recent_events(limit=limit, event=event)

    @property
    def db(self) -> SqliteDB:
        return self._db
