# src/tokenfarm/runtime/gates.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Protocol, Tuple

Json = Dict[str, Any]


class AdminGate(Protocol):
    def is_authorized(self, caller: str) -> bool: ...


def _uniq_strs(xs: Iterable[Any]) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for it in xs:
        s = str(it).strip() if it is not None else ""
        if s and s not in seen:
            seen.add(s)
            out.append(s)
    return out


class StaticAdminGate:
    """Admin allowlist fixed at boot (the farm owner plus any configured operators)."""

    def __init__(self, admins: Iterable[Any] = ()) -> None:
        self._admins = _uniq_strs(admins)

    @property
    def admins(self) -> List[str]:
        return list(self._admins)

    def is_authorized(self, caller: str) -> bool:
        c = str(caller or "").strip()
        return bool(c) and c in self._admins


def resolve_admin_authz(gate: AdminGate, caller: str) -> Tuple[bool, Json]:
    """
    Returns (ok, meta). On deny, meta carries a stable 'reason'.
    """
    c = str(caller or "").strip()
    if not c:
        return False, {"reason": "missing_caller"}
    try:
        ok = bool(gate.is_authorized(c))
    except Exception:
        # Fail closed on a broken gate.
        return False, {"reason": "gate_error", "caller": c}
    if ok:
        return True, {}
    return False, {"reason": "admin_required", "caller": c}


__all__ = ["AdminGate", "StaticAdminGate", "resolve_admin_authz"]
