from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from tokenfarm.api.errors import ApiError
from tokenfarm.runtime.errors import AuthenticationError

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "executor not attached to app.state", {})
    return ex


def _account_param(v: Any) -> str:
    s = str(v or "").strip()
    if not s:
        raise ApiError.bad_request("invalid_account", "account must be a non-empty string", {})
    return s


def _int_param(v: Any, default: int) -> int:
    """Parse an int-ish query param safely."""
    if v is None:
        return int(default)
    try:
        s = str(v).strip()
        return int(s) if s else int(default)
    except ValueError:
        return int(default)


def _authenticate(request: Request, body: Any, *, op: str, signer: str) -> Any:
    """Reject the request unless `signer` signed this exact body for `op`. Returns the executor."""
    ex = _executor(request)
    request.state.farm_op = op
    request.state.signer = signer
    try:
        ex.authenticate(op=op, signer=signer, nonce=body.nonce, payload=body.signed_payload(), sig=body.sig)
    except AuthenticationError as e:
        request.state.auth = e.reason
        raise
    request.state.auth = "ok"
    return ex
