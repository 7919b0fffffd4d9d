from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Request

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _health_payload(request: Request) -> dict[str, object]:
    # Health must never crash: an unreadable executor reports ok=false.
    ex: Any = getattr(request.app.state, "executor", None)
    chain_id = None
    block = None
    mode = None
    ok = ex is not None
    if ex is not None:
        try:
            chain_id = str(ex.chain_id)
            mode = str(ex.mode)
            block = int(ex.current_block())
        except Exception:
            ok = False

    return {
        "ok": ok,
        "service": "tokenfarm",
        "version": "v1",
        "ts_ms": _now_ms(),
        "chain_id": chain_id,
        "mode": mode,
        "block": block,
    }


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    return _health_payload(request)


@router.get("/healthz")
def healthz(request: Request) -> dict[str, object]:
    # Kubernetes-style alias
    return _health_payload(request)
