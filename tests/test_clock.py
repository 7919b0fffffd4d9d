from __future__ import annotations

import pytest

from tokenfarm.runtime.clock import AutoMineClock, WallClock


def test_automine_gives_each_tx_its_own_block() -> None:
    c = AutoMineClock()
    assert c.current_block() == 0
    assert c.next_block() == 1
    assert c.next_block() == 2
    assert c.mine(9) == 11
    assert c.height == 11


def test_automine_rejects_negative_inputs() -> None:
    with pytest.raises(ValueError):
        AutoMineClock(height=-1)
    with pytest.raises(ValueError):
        AutoMineClock().mine(-2)


def test_wall_clock_counts_intervals_and_never_goes_back() -> None:
    now = {"ms": 1_000}
    c = WallClock(genesis_ms=1_000, block_interval_ms=500, now_ms=lambda: now["ms"])
    assert c.current_block() == 0

    now["ms"] = 3_499
    assert c.next_block() == 4
    # Same block for every tx inside one interval.
    assert c.next_block() == 4

    now["ms"] = 2_000  # system clock stepped back
    assert c.current_block() == 4

    now["ms"] = 0  # before genesis
    assert c.current_block() == 4


def test_wall_clock_rejects_zero_interval() -> None:
    with pytest.raises(ValueError):
        WallClock(genesis_ms=0, block_interval_ms=0)
