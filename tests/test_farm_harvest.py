from __future__ import annotations

import copy

import pytest

from farm_helpers import OWNER, fund, make_farm
from tokenfarm.ledger.constants import TOKEN
from tokenfarm.runtime.assets import JsonToken, new_token_state
from tokenfarm.runtime.errors import InvalidInputError, PreconditionError


def test_harvest_mints_pending_and_zeroes_it() -> None:
    farm, lp, dapp, sink = make_farm()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)

    r = farm.harvest("alice", block=9)
    assert r["applied"] == "HARVEST"
    assert r["amount"] == 9 * TOKEN
    assert dapp.balance_of("alice") == 9 * TOKEN
    assert dapp.total_supply == 9 * TOKEN
    assert farm.user("alice").pending_rewards == 0
    # Stake is untouched by harvest.
    assert farm.user("alice").staking_balance == 100
    assert sink.named("Harvest")[0]["amount"] == 9 * TOKEN


def test_harvest_twice_in_same_block_pays_once() -> None:
    farm, lp, dapp, _sink = make_farm()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)
    farm.harvest("alice", block=9)

    with pytest.raises(PreconditionError) as ei:
        farm.harvest("alice", block=9)
    assert ei.value.reason == "nothing_to_harvest"
    assert dapp.balance_of("alice") == 9 * TOKEN


def test_harvest_after_withdraw_pays_accrued_rewards() -> None:
    farm, lp, dapp, _sink = make_farm()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)
    farm.withdraw("alice", block=4)
    farm.harvest("alice", block=50)
    assert dapp.balance_of("alice") == 4 * TOKEN


def test_harvest_for_unknown_user_is_rejected() -> None:
    farm, _lp, _dapp, _sink = make_farm()
    with pytest.raises(PreconditionError):
        farm.harvest("ghost", block=3)


def test_total_paid_never_exceeds_emission() -> None:
    farm, lp, dapp, _sink = make_farm()
    accounts = ["a", "b", "c"]
    for acct in accounts:
        fund(lp, acct, 10**6)
    farm.deposit("a", 7, block=0)
    farm.deposit("b", 13, block=3)
    farm.deposit("c", 999_983, block=5)
    farm.distribute_rewards_all(OWNER, block=11)
    farm.withdraw("b", block=17)
    for acct in accounts:
        farm.harvest(acct, block=23)

    emitted = 23 * TOKEN
    paid = sum(dapp.balance_of(a) for a in accounts)
    assert paid <= emitted
    # Floor division loses at most a few base units per settlement.
    assert emitted - paid < 100


def test_mint_failure_keeps_pending_rewards() -> None:
    no_role = JsonToken(new_token_state("DAPP", minters=[]))
    farm, lp, _dapp, _sink = make_farm(reward_token=no_role)
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)
    farm.distribute_rewards_all(OWNER, block=5)
    before = copy.deepcopy(farm.state)

    with pytest.raises(InvalidInputError) as ei:
        farm.harvest("alice", block=5)
    assert ei.value.reason == "mint_failed"
    assert farm.state == before
    assert farm.user("alice").pending_rewards == 5 * TOKEN
