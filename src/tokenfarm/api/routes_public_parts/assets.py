from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from tokenfarm.api.routes_public_parts.common import _account_param, _authenticate, _executor
from tokenfarm.api.schemas import ApproveRequest, RegisterKeyRequest

router = APIRouter()

Json = Dict[str, Any]


@router.get("/accounts/{account}/balances")
def account_balances(account: str, request: Request) -> Json:
    return {"ok": True, "balances": _executor(request).balances(_account_param(account))}


@router.get("/accounts/{account}/keys")
def account_keys(account: str, request: Request) -> Json:
    """Active signing keys and the last accepted nonce (clients sign with nonce + 1)."""
    return {"ok": True, "keys": _executor(request).account_keys(_account_param(account))}


@router.post("/accounts/keys")
def register_account_key(body: RegisterKeyRequest, request: Request) -> Json:
    request.state.farm_op = "register_key"
    request.state.signer = body.account
    receipt = _executor(request).register_key(
        account=body.account, pubkey=body.pubkey, nonce=body.nonce, sig=body.sig
    )
    return {"ok": True, "receipt": receipt}


@router.post("/stake-token/approve")
def stake_token_approve(body: ApproveRequest, request: Request) -> Json:
    """Allow the farm to pull `amount` LP from `owner` (or add to the allowance)."""
    if body.increase:
        ex = _authenticate(request, body, op="increase_allowance", signer=body.owner)
        receipt = ex.increase_allowance(body.owner, body.amount)
    else:
        ex = _authenticate(request, body, op="approve", signer=body.owner)
        receipt = ex.approve(body.owner, body.amount)
    return {"ok": True, "receipt": receipt}
