from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from tokenfarm.api.routes_public_parts.common import _account_param, _authenticate, _executor, _int_param
from tokenfarm.api.schemas import CallerRequest, DepositRequest, RewardRateRequest

router = APIRouter()

Json = Dict[str, Any]


# ----------------------------
# Reads
# ----------------------------


@router.get("/farm")
def farm_info(request: Request) -> Json:
    ex = _executor(request)
    out = ex.view().to_json()
    out["block"] = ex.current_block()
    out["address"] = ex.farm.address
    return {"ok": True, "farm": out}


@router.get("/farm/stakers")
def farm_stakers(request: Request) -> Json:
    stakers = _executor(request).stakers()
    return {"ok": True, "stakers": stakers, "count": len(stakers)}


@router.get("/farm/users/{account}")
def farm_user(account: str, request: Request) -> Json:
    ex = _executor(request)
    acct = _account_param(account)
    return {
        "ok": True,
        "user": ex.user(acct).to_json(),
        "pending_rewards": ex.pending_rewards(acct),
    }


@router.get("/farm/users/{account}/pending")
def farm_user_pending(account: str, request: Request) -> Json:
    ex = _executor(request)
    acct = _account_param(account)
    return {"ok": True, "account": acct, "pending_rewards": ex.pending_rewards(acct), "block": ex.current_block()}


@router.get("/farm/events")
def farm_events(request: Request) -> Json:
    q = request.query_params
    events = _executor(request).recent_events(limit=_int_param(q.get("limit"), 50), event=str(q.get("event") or ""))
    return {"ok": True, "events": events}


# ----------------------------
# Transactions
# ----------------------------


@router.post("/farm/deposit")
def farm_deposit(body: DepositRequest, request: Request) -> Json:
    ex = _authenticate(request, body, op="deposit", signer=body.caller)
    return {"ok": True, "receipt": ex.deposit(body.caller, body.amount)}


@router.post("/farm/withdraw")
def farm_withdraw(body: CallerRequest, request: Request) -> Json:
    ex = _authenticate(request, body, op="withdraw", signer=body.caller)
    return {"ok": True, "receipt": ex.withdraw(body.caller)}


@router.post("/farm/harvest")
def farm_harvest(body: CallerRequest, request: Request) -> Json:
    ex = _authenticate(request, body, op="harvest", signer=body.caller)
    return {"ok": True, "receipt": ex.harvest(body.caller)}


@router.post("/farm/distribute")
def farm_distribute(body: CallerRequest, request: Request) -> Json:
    ex = _authenticate(request, body, op="distribute_rewards_all", signer=body.caller)
    return {"ok": True, "receipt": ex.distribute_rewards_all(body.caller)}


@router.post("/farm/reward-per-block")
def farm_reward_per_block(body: RewardRateRequest, request: Request) -> Json:
    ex = _authenticate(request, body, op="update_reward_per_block", signer=body.caller)
    receipt = ex.update_reward_per_block(body.caller, body.reward_per_block)
    return {"ok": True, "receipt": receipt}
