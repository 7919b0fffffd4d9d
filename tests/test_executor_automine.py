from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from tokenfarm.ledger.constants import TOKEN
from tokenfarm.runtime.errors import AssetError, AuthorizationError, InvalidInputError, PreconditionError
from tokenfarm.runtime.events import MemoryEventSink
from tokenfarm.runtime.executor import ExecutorError, FarmExecutor
from tokenfarm.runtime.farm_config import default_farm_config
from tokenfarm.testing.sigtools import deterministic_ed25519_keypair


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


def _stake_ready(ex: FarmExecutor, account: str, amount: int) -> None:
    ex.mint_stake("owner", account, amount)
    ex.approve(account, amount)


def test_each_transaction_is_its_own_block(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    assert ex.current_block() == 0
    r = ex.mint_stake("owner", "alice", 100)
    assert r["block"] == 1
    r = ex.approve("alice", 100)
    assert r["block"] == 2
    assert r["allowance"] == 100
    assert ex.mine(9) == 11


def test_single_staker_over_ten_blocks(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    _stake_ready(ex, "alice", 100)

    ex.deposit("alice", 100)
    ex.mine(9)
    assert ex.pending_rewards("alice") == 9 * TOKEN

    w = ex.withdraw("alice")
    assert w["pending_rewards"] == 10 * TOKEN

    h = ex.harvest("alice")
    assert h["amount"] == 10 * TOKEN
    bal = ex.balances("alice")
    assert bal["DAPP"] == 10 * TOKEN
    assert bal["LPT"] == 100


def test_three_stakers_distribution_matches_floor_math(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    for acct in ("u1", "u2", "u3"):
        _stake_ready(ex, acct, 100)

    ex.deposit("u1", 100)
    ex.mine(9)
    ex.deposit("u2", 100)
    ex.mine(9)
    ex.deposit("u3", 100)
    ex.mine(9)
    r = ex.distribute_rewards_all("owner")

    assert ex.user("u1").pending_rewards == 18333333333333333333
    assert ex.user("u2").pending_rewards == 8333333333333333333
    assert ex.user("u3").pending_rewards == 3333333333333333333
    assert r["amount"] == 29999999999999999999


def test_top_up_deposits(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    _stake_ready(ex, "alice", 250)
    for amount in (100, 100, 50):
        ex.deposit("alice", amount)
        ex.mine(9)
    ex.withdraw("alice")
    assert ex.user("alice").pending_rewards == 30 * TOKEN


def test_raised_rate(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    ex.update_reward_per_block("owner", 15 * TOKEN)
    _stake_ready(ex, "alice", 100)
    ex.deposit("alice", 100)
    ex.mine(9)
    ex.withdraw("alice")
    assert ex.user("alice").pending_rewards == 150 * TOKEN


def test_rejections_consume_a_block_and_change_nothing(tmp_path: Path) -> None:
    sink = MemoryEventSink()
    ex = FarmExecutor(config=_cfg(tmp_path), events=sink)
    before = ex.read_state()

    with pytest.raises(InvalidInputError) as ei:
        ex.update_reward_per_block("owner", 101 * TOKEN)
    assert ei.value.reason == "reward_exceeds_max"
    with pytest.raises(AuthorizationError):
        ex.distribute_rewards_all("alice")
    with pytest.raises(PreconditionError):
        ex.withdraw("alice")
    with pytest.raises(InvalidInputError) as ei:
        ex.deposit("alice", 100)
    assert ei.value.reason == "insufficient_allowance"

    assert ex.read_state() == before
    assert ex.current_block() == 4
    assert sink.events == []


def test_faucet_requires_lp_minter(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    with pytest.raises(AssetError) as ei:
        ex.mint_stake("alice", "alice", 100)
    assert ei.value.reason == "missing_minter_role"


def test_faucet_and_mining_are_unavailable_in_prod(tmp_path: Path) -> None:
    owner_pk, _ = deterministic_ed25519_keypair(label="owner")
    ex = FarmExecutor(config=_cfg(tmp_path, mode="prod", clock="wall", account_keys={"owner": (owner_pk,)}))
    with pytest.raises(AssetError) as ei:
        ex.mint_stake("owner", "alice", 100)
    assert ei.value.reason == "faucet_disabled_in_prod"
    with pytest.raises(ExecutorError):
        ex.mine(1)


def test_increase_allowance(tmp_path: Path) -> None:
    ex = FarmExecutor(config=_cfg(tmp_path))
    ex.approve("alice", 10)
    r = ex.increase_allowance("alice", 5)
    assert r["allowance"] == 15
    assert ex.balances("alice")["allowance"] == 15


def test_state_holds_invariants_after_a_session(tmp_path: Path) -> None:
    from tokenfarm.runtime.state_invariants import farm_problems

    ex = FarmExecutor(config=_cfg(tmp_path))
    for acct in ("a", "b", "c", "d"):
        _stake_ready(ex, acct, 1_000)
        ex.deposit(acct, 250)
    ex.withdraw("b")
    ex.harvest("a")
    ex.distribute_rewards_all("owner")
    ex.withdraw("d")
    ex.deposit("b", 750)

    assert farm_problems(ex.read_state()) == []
    assert sorted(ex.stakers()) == ["a", "b", "c"]
    assert ex.view().total_staked == 1_250
    assert ex.balances(ex.farm.address)["LPT"] == 1_250
