from __future__ import annotations

"""Pydantic request schemas for the public API.

Amounts are integers in base units (18 decimals). They are accepted as JSON
integers or decimal strings so JS clients can send values above 2**53.

Every write is signed: `nonce` and `sig` carry an Ed25519 signature by the
acting account over the rest of the body (see tokenfarm.crypto.sig).
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, StrictInt

Amount = Union[StrictInt, str]


class SignedRequest(BaseModel):
    nonce: Optional[int] = Field(default=None, description="Per-account nonce, strictly increasing")
    sig: Optional[str] = Field(default=None, description="Ed25519 signature (hex or base64)")

    model_config = {"extra": "forbid"}

    def signed_payload(self) -> Dict[str, Any]:
        """The body as sent, minus the signature envelope."""
        return self.model_dump(exclude_unset=True, exclude={"nonce", "sig"})


class DepositRequest(SignedRequest):
    caller: str = Field(..., description="Staking account id")
    amount: Amount = Field(..., description="LP amount in base units")


class CallerRequest(SignedRequest):
    """Body for withdraw / harvest / distribute: only the acting account."""

    caller: str = Field(..., description="Acting account id")


class RewardRateRequest(SignedRequest):
    caller: str = Field(..., description="Admin account id")
    reward_per_block: Amount = Field(..., description="New DAPP emission per block in base units")


class ApproveRequest(SignedRequest):
    owner: str = Field(..., description="LP holder granting the farm an allowance")
    amount: Amount = Field(..., description="Allowance in base units")
    increase: bool = Field(default=False, description="Add to the current allowance instead of replacing it")


class FaucetRequest(SignedRequest):
    sender: str = Field(..., description="LP minter account")
    to: str = Field(..., description="Recipient account")
    amount: Amount = Field(..., description="LP amount in base units")


class RegisterKeyRequest(SignedRequest):
    """First key for an account, signed by that same key."""

    account: str = Field(..., description="Account id to claim")
    pubkey: str = Field(..., description="Ed25519 public key (hex or base64)")


class MineRequest(BaseModel):
    blocks: int = Field(default=1, ge=1, le=100_000, description="Empty blocks to mine (automine clock only)")
