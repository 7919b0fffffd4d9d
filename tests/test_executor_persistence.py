from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from tokenfarm.ledger.constants import TOKEN
from tokenfarm.runtime.assets import JsonToken
from tokenfarm.runtime.executor import ExecutorError, FarmExecutor
from tokenfarm.runtime.executor_boot import build_executor
from tokenfarm.runtime.farm_config import default_farm_config
from tokenfarm.runtime.sqlite_db import SqliteDB, SqliteFarmStore


def _cfg(tmp_path: Path, **kw):
    base = replace(
        default_farm_config(),
        chain_id="farm-test",
        mode="dev",
        clock="automine",
        db_path=str(tmp_path / "farm.db"),
        admins=("owner",),
    )
    return replace(base, **kw)


def test_restart_resumes_farm_tokens_and_height(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    ex = FarmExecutor(config=cfg)
    ex.mint_stake("owner", "alice", 100)
    ex.approve("alice", 100)
    ex.deposit("alice", 100)
    ex.mine(4)
    ex.harvest("alice")
    state = ex.read_state()
    height = ex.current_block()

    ex2 = FarmExecutor(config=cfg)
    assert ex2.read_state() == state
    assert ex2.current_block() == height
    assert ex2.balances("alice") == ex.balances("alice")
    assert ex2.balances("alice")["DAPP"] == 5 * TOKEN

    # Accrual continues from the restored clock.
    ex2.mine(1)
    w = ex2.withdraw("alice")
    assert w["pending_rewards"] == 2 * TOKEN


def test_events_are_persisted_with_their_block(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    ex.mint_stake("owner", "alice", 100)
    ex.approve("alice", 100)
    ex.deposit("alice", 100)
    ex.withdraw("alice")

    events = ex.recent_events(limit=10)
    assert [e["event"] for e in events] == ["Withdraw", "Deposit"]
    assert events[0]["block"] == 4
    assert events[1]["amount"] == 100

    only = ex.recent_events(event="Deposit")
    assert len(only) == 1


def test_chain_id_mismatch_refuses_to_start(tmp_path: Path) -> None:
    FarmExecutor(config=_cfg(tmp_path))
    with pytest.raises(ExecutorError):
        FarmExecutor(config=_cfg(tmp_path, chain_id="other-chain"))


def test_corrupted_snapshot_refuses_to_start(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    ex = FarmExecutor(config=cfg)
    bad = ex.read_state()
    bad["farm"]["total_staked"] = 5

    store = SqliteFarmStore(db=SqliteDB(path=cfg.db_path))
    store.commit(bad, block=1, assets={})

    with pytest.raises(ExecutorError):
        FarmExecutor(config=cfg)


def test_genesis_grants_reward_minting_to_the_farm_only(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    assert ex.reward_token.is_minter(ex.farm.address)
    assert not ex.reward_token.is_minter("owner")
    assert ex.stake_token.is_minter("owner")


def test_minter_roles_are_granted_once_at_deployment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    granted = []
    real_grant = JsonToken.grant_minter

    def _recording_grant(self: JsonToken, account: str) -> None:
        granted.append((self.token_id, account))
        real_grant(self, account)

    monkeypatch.setattr(JsonToken, "grant_minter", _recording_grant)

    cfg = _cfg(tmp_path, admins=("owner", "ops"))
    ex = FarmExecutor(config=cfg)
    assert sorted(granted) == [("DAPP", ex.farm.address), ("LPT", "ops"), ("LPT", "owner")]
    assert ex.stake_token.root["minters"] == ["ops", "owner"]

    granted.clear()
    ex2 = FarmExecutor(config=cfg)
    assert granted == []
    assert ex2.reward_token.root["minters"] == [ex.farm.address]


def test_build_executor_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENFARM_MODE", "dev")
    monkeypatch.setenv("TOKENFARM_CLOCK", "automine")
    monkeypatch.setenv("TOKENFARM_CHAIN_ID", "env-chain")
    monkeypatch.setenv("TOKENFARM_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("TOKENFARM_ADMINS", "owner")

    ex = build_executor()
    assert ex.chain_id == "env-chain"
    assert ex.cfg.admins == ("owner",)
    assert (tmp_path / "env.db").exists()
