# src/tokenfarm/runtime/clock.py
from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Protocol


def _now_ms() -> int:
    return int(time.time() * 1000)


class BlockClock(Protocol):
    def current_block(self) -> int: ...

    def next_block(self) -> int: ...


class AutoMineClock:
    """Every transaction is mined in its own block.

    next_block() returns the block a transaction executes in and advances the
    height; mine(n) skips n empty blocks.
    """

    def __init__(self, height: int = 0) -> None:
        if int(height) < 0:
            raise ValueError(f"height must be >= 0; got: {height}")
        self._height = int(height)
        self._lock = threading.Lock()

    @property
    def height(self) -> int:
        return self._height

    def current_block(self) -> int:
        return self._height

    def next_block(self) -> int:
        with self._lock:
            self._height += 1
            return self._height

    def mine(self, blocks: int = 1) -> int:
        n = int(blocks)
        if n < 0:
            raise ValueError(f"blocks must be >= 0; got: {blocks}")
        with self._lock:
            self._height += n
            return self._height


class WallClock:
    """Block number derived from wall time: (now_ms - genesis_ms) // block_interval_ms.

    The returned value never decreases even if the system clock steps back.
    """

    def __init__(self, *, genesis_ms: int, block_interval_ms: int, now_ms: Optional[Callable[[], int]] = None) -> None:
        if int(block_interval_ms) <= 0:
            raise ValueError(f"block_interval_ms must be > 0; got: {block_interval_ms}")
        self.genesis_ms = int(genesis_ms)
        self.block_interval_ms = int(block_interval_ms)
        self._now_ms = now_ms or _now_ms
        self._last = 0
        self._lock = threading.Lock()

    @property
    def height(self) -> int:
        return self.current_block()

    def current_block(self) -> int:
        elapsed = max(0, int(self._now_ms()) - self.genesis_ms)
        with self._lock:
            self._last = max(self._last, elapsed // self.block_interval_ms)
            return self._last

    def next_block(self) -> int:
        return self.current_block()


__all__ = ["AutoMineClock", "BlockClock", "WallClock"]
