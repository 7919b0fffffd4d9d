from __future__ import annotations

"""
In-process farm metrics with Prometheus text exposition.

Series are keyed by metric name plus sorted labels, e.g.
  tokenfarm_tx_applied_total{op="deposit"} 3
Only the families listed in FAMILIES get HELP / TYPE lines; anything else is
still exported as an untyped series.
"""

import os
import threading
import time
from typing import Dict, Tuple

LabelSet = Tuple[Tuple[str, str], ...]

FAMILIES: Dict[str, Tuple[str, str]] = {
    "tx_applied_total": ("counter", "Farm and stake-token transactions committed, by op."),
    "tx_rejected_total": ("counter", "Transactions rejected by the farm or a token ledger, by op and reason."),
    "auth_rejected_total": ("counter", "Signed API writes refused before execution, by reason."),
    "farm_events_total": ("counter", "Farm events emitted, by event name."),
    "rewards_harvested_total": ("counter", "DAPP base units minted to stakers through harvest."),
    "total_staked": ("gauge", "LP base units currently held by the farm."),
    "stakers": ("gauge", "Accounts with a non-zero stake."),
    "reward_per_block": ("gauge", "DAPP base units emitted per block."),
    "block": ("gauge", "Current block of the farm clock."),
}

_lock = threading.Lock()
_counters: Dict[Tuple[str, LabelSet], int] = {}
_gauges: Dict[Tuple[str, LabelSet], int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("TOKENFARM_METRICS_ENABLED") or "").strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _key(name: str, labels: Dict[str, object]) -> Tuple[str, LabelSet]:
    return str(name).strip(), tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def inc_counter(name: str, value: int = 1, **labels: object) -> None:
    k = _key(name, labels)
    if not k[0]:
        return
    with _lock:
        _counters[k] = _counters.get(k, 0) + int(value)


def set_gauge(name: str, value: int, **labels: object) -> None:
    k = _key(name, labels)
    if not k[0]:
        return
    with _lock:
        _gauges[k] = int(value)


def counter_value(name: str, **labels: object) -> int:
    with _lock:
        return _counters.get(_key(name, labels), 0)


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def _escape(v: str) -> str:
    return v.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _series(pre: str, name: str, labels: LabelSet, value: int) -> str:
    if not labels:
        return f"{pre}{name} {value}"
    body = ",".join(f'{k}="{_escape(v)}"' for k, v in labels)
    return f"{pre}{name}{{{body}}} {value}"


def format_prometheus(prefix: str = "tokenfarm_") -> str:
    """Prometheus exposition text (integer counters/gauges only)."""
    pre = str(prefix or "").strip() or "tokenfarm_"
    with _lock:
        series = dict(_counters)
        series.update(_gauges)
    uptime = int(time.time() * 1000) - _started_ms

    lines = [f"# TYPE {pre}uptime_ms gauge", f"{pre}uptime_ms {uptime}"]
    by_name: Dict[str, list] = {}
    for (name, labels), value in series.items():
        by_name.setdefault(name, []).append((labels, value))

    for name in sorted(by_name):
        fam = FAMILIES.get(name)
        if fam is not None:
            lines.append(f"# HELP {pre}{name} {fam[1]}")
            lines.append(f"# TYPE {pre}{name} {fam[0]}")
        for labels, value in sorted(by_name[name]):
            lines.append(_series(pre, name, labels, int(value)))

    return "\n".join(lines) + "\n"
