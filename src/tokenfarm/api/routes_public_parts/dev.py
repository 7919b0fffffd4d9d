from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from tokenfarm.api.errors import ApiError
from tokenfarm.api.routes_public_parts.common import _authenticate, _executor
from tokenfarm.api.schemas import FaucetRequest, MineRequest
from tokenfarm.runtime.clock import AutoMineClock

router = APIRouter()

Json = Dict[str, Any]


def _require_dev(ex: Any) -> None:
    if str(ex.mode) == "prod":
        raise ApiError.not_found("not_found", "dev routes are disabled in prod", {})


@router.post("/dev/mine")
def dev_mine(body: MineRequest, request: Request) -> Json:
    ex = _executor(request)
    _require_dev(ex)
    if not isinstance(ex.clock, AutoMineClock):
        raise ApiError.conflict("wrong_clock", "mining requires the automine clock", {"clock": ex.cfg.clock})
    return {"ok": True, "block": ex.mine(body.blocks)}


@router.post("/dev/faucet")
def dev_faucet(body: FaucetRequest, request: Request) -> Json:
    ex = _executor(request)
    _require_dev(ex)
    _authenticate(request, body, op="mint_stake", signer=body.sender)
    return {"ok": True, "receipt": ex.mint_stake(body.sender, body.to, body.amount)}
