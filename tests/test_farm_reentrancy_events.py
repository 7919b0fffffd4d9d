from __future__ import annotations

import copy
import threading

import pytest

from farm_helpers import OWNER, fund, make_farm
from tokenfarm.ledger.constants import FARM_ACCOUNT_ID, TOKEN
from tokenfarm.runtime.assets import JsonToken, new_token_state
from tokenfarm.runtime.errors import InvalidInputError, ReentrancyError


class _CallbackToken(JsonToken):
    """Stake token that calls back into the farm while moving funds."""

    def __init__(self) -> None:
        super().__init__(new_token_state("LPT", minters=[OWNER]))
        self.farm = None
        self.callback_block = 0
        self.armed = False

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        if self.armed:
            self.farm.withdraw(owner, block=self.callback_block)
        return super().transfer_from(spender, owner, to, amount)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        if self.armed:
            self.farm.harvest(to, block=self.callback_block)
        return super().transfer(sender, to, amount)


class _RefusingToken(JsonToken):
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return False


def test_reentrant_deposit_callback_is_rejected_and_rolled_back() -> None:
    lp = _CallbackToken()
    farm, _lp, _dapp, sink = make_farm(stake_token=lp)
    lp.farm = farm

    fund(lp, "alice", 200)
    farm.deposit("alice", 100, block=0)
    before = copy.deepcopy(farm.state)
    events_before = list(sink.events)

    lp.armed = True
    lp.callback_block = 5
    with pytest.raises(ReentrancyError) as ei:
        farm.deposit("alice", 100, block=5)
    assert ei.value.code == "reentrancy"

    assert farm.state == before
    assert sink.events == events_before
    assert lp.balance_of("alice") == 100

    # The guard is released once the outer call unwinds.
    lp.armed = False
    farm.deposit("alice", 100, block=6)
    assert farm.user("alice").staking_balance == 200


def test_reentrant_withdraw_callback_is_rejected() -> None:
    lp = _CallbackToken()
    farm, _lp, dapp, _sink = make_farm(stake_token=lp)
    lp.farm = farm
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)

    lp.armed = True
    lp.callback_block = 3
    with pytest.raises(ReentrancyError):
        farm.withdraw("alice", block=3)

    assert farm.user("alice").staking_balance == 100
    assert lp.balance_of(FARM_ACCOUNT_ID) == 100
    assert dapp.balance_of("alice") == 0


def test_refused_payout_aborts_withdraw() -> None:
    lp = _RefusingToken(new_token_state("LPT", minters=[OWNER]))
    farm, _lp, _dapp, _sink = make_farm(stake_token=lp)
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)
    before = copy.deepcopy(farm.state)

    with pytest.raises(InvalidInputError) as ei:
        farm.withdraw("alice", block=2)
    assert ei.value.reason == "transfer_failed"
    assert farm.state == before
    assert farm.stakers() == ["alice"]


def test_failing_event_sink_does_not_abort_operation() -> None:
    class _Broken:
        def emit(self, event: str, **fields) -> None:
            raise RuntimeError("sink down")

    farm, lp, _dapp, _sink = make_farm()
    farm.events = _Broken()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)
    assert farm.user("alice").staking_balance == 100


def test_event_payloads() -> None:
    farm, lp, _dapp, sink = make_farm()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=1)
    farm.harvest("alice", block=3)
    farm.withdraw("alice", block=4)

    assert sink.events == [
        {"event": "Deposit", "user": "alice", "amount": 100, "block": 1},
        {"event": "Harvest", "user": "alice", "amount": 2 * TOKEN, "block": 3},
        {"event": "Withdraw", "user": "alice", "amount": 100, "block": 4},
    ]


def test_views_are_detached_from_state() -> None:
    farm, lp, _dapp, _sink = make_farm()
    fund(lp, "alice", 100)
    farm.deposit("alice", 100, block=0)

    v = farm.view()
    v.users["alice"]["staking_balance"] = 10**30
    v.stakers.append("mallory")
    assert farm.user("alice").staking_balance == 100
    assert farm.stakers() == ["alice"]

    j = v.to_json()
    assert j["staker_count"] == 2
    assert farm.view().to_json()["staker_count"] == 1


def test_concurrent_call_from_another_thread_is_rejected() -> None:
    entered = threading.Event()
    release = threading.Event()

    class _SlowToken(JsonToken):
        def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
            entered.set()
            release.wait(timeout=5)
            return super().transfer_from(spender, owner, to, amount)

    lp = _SlowToken(new_token_state("LPT", minters=[OWNER]))
    farm, _lp, _dapp, _sink = make_farm(stake_token=lp)
    fund(lp, "alice", 100)

    errors = []

    def _deposit() -> None:
        try:
            farm.deposit("alice", 100, block=1)
        except Exception as e:  # pragma: no cover
            errors.append(e)

    t = threading.Thread(target=_deposit)
    t.start()
    assert entered.wait(timeout=5)
    try:
        with pytest.raises(ReentrancyError) as ei:
            farm.harvest("alice", block=1)
        assert ei.value.details["in_progress"] == "deposit"
    finally:
        release.set()
        t.join(timeout=5)

    assert errors == []
    assert farm.user("alice").staking_balance == 100
