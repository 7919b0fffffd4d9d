# src/tokenfarm/runtime/events.py
from __future__ import annotations

"""Observability sinks for farm events.

Events are fire-and-forget: the engine never waits on, nor fails because of,
a sink. Event names: Deposit, Withdraw, Harvest, Distribute and
RewardPerBlockUpdated.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

from tokenfarm.runtime.metrics import inc_counter

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _jsonable(v: Any) -> Any:
    # Amounts routinely exceed 2**53; keep them exact for JS consumers.
    if isinstance(v, int) and not isinstance(v, bool) and abs(v) > 2**53:
        return str(v)
    return v


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit a single JSONL log event."""
    payload: Json = {"ts_ms": _now_ms(), "event": str(event)}
    payload.update({k: _jsonable(v) for k, v in fields.items()})
    try:
        logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))
    except Exception:
        parts = [f"event={event}"] + [f"{k}={fields.get(k)!r}" for k in sorted(fields.keys())]
        logger.info(" ".join(parts))


class EventSink(Protocol):
    def emit(self, event: str, **fields: Any) -> None: ...


class LogEventSink:
    """JSONL log line + a per-event counter."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("tokenfarm.farm")

    def emit(self, event: str, **fields: Any) -> None:
        log_event(self._logger, event, **fields)
        inc_counter("farm_events_total", event=str(event))


class MemoryEventSink:
    """Keeps every event in order; handy for tests and local tooling."""

    def __init__(self) -> None:
        self.events: List[Json] = []

    def emit(self, event: str, **fields: Any) -> None:
        rec: Json = {"event": str(event)}
        rec.update(fields)
        self.events.append(rec)

    def named(self, event: str) -> List[Json]:
        return [e for e in self.events if e.get("event") == event]

    def clear(self) -> None:
        self.events.clear()


class FanoutEventSink:
    def __init__(self, sinks: Sequence[EventSink]) -> None:
        self._sinks = list(sinks)

    def emit(self, event: str, **fields: Any) -> None:
        for s in self._sinks:
            s.emit(event, **fields)


__all__ = [
    "EventSink",
    "FanoutEventSink",
    "LogEventSink",
    "MemoryEventSink",
    "log_event",
]
