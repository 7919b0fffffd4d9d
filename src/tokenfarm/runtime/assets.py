# src/tokenfarm/runtime/assets.py
from __future__ import annotations

"""
Asset ledgers consumed by the farm.

The farm only depends on the two protocols below. JsonToken is the ledger the
executor runs with: a fungible token whose whole state is one JSON dict, so it
persists next to the farm snapshot. Every method validates before it mutates;
a raised AssetError leaves the token untouched.
"""

from typing import Any, Dict, Iterable, List, Optional, Protocol

from tokenfarm.ledger.amounts import strict_int
from tokenfarm.runtime.errors import AssetError

Json = Dict[str, Any]


class StakeAssetLedger(Protocol):
    def allowance(self, owner: str, spender: str) -> int: ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...


class RewardAssetLedger(Protocol):
    def mint_to(self, sender: str, recipient: str, amount: int) -> None: ...


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def _ensure_root_dict(root: Json, key: str) -> Json:
    cur = root.get(key)
    if not isinstance(cur, dict):
        cur = {}
        root[key] = cur
    return cur


def _ensure_root_list(root: Json, key: str) -> List[Any]:
    cur = root.get(key)
    if not isinstance(cur, list):
        cur = []
        root[key] = cur
    return cur


def _require_amount(amount: Any, *, token_id: str) -> int:
    a = strict_int(amount)
    if a is None:
        raise AssetError("invalid_amount", "amount_not_int", {"token": token_id, "amount": repr(amount)})
    if a < 0:
        raise AssetError("invalid_amount", "negative_amount", {"token": token_id, "amount": a})
    return a


def new_token_state(token_id: str, *, name: str = "", minters: Iterable[str] = ()) -> Json:
    return {
        "token_id": str(token_id),
        "name": str(name or token_id),
        "decimals": 18,
        "total_supply": 0,
        "balances": {},
        "allowances": {},
        "minters": sorted({str(m) for m in minters if str(m).strip()}),
    }


class JsonToken:
    """Fungible token over a JSON root dict (balances, allowances, minter role)."""

    def __init__(self, root: Optional[Json] = None, *, token_id: str = "", name: str = "") -> None:
        if root is None:
            root = new_token_state(token_id, name=name)
        self.root = root
        self.root.setdefault("token_id", str(token_id))
        self.root.setdefault("decimals", 18)
        self.root.setdefault("total_supply", 0)
        _ensure_root_dict(self.root, "balances")
        _ensure_root_dict(self.root, "allowances")
        _ensure_root_list(self.root, "minters")

    @property
    def token_id(self) -> str:
        return str(self.root.get("token_id") or "")

    @property
    def total_supply(self) -> int:
        return _as_int(self.root.get("total_supply"), 0)

    # ----------------------------
    # Reads
    # ----------------------------

    def balance_of(self, account: str) -> int:
        return _as_int(self.root["balances"].get(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        per_owner = self.root["allowances"].get(owner)
        if not isinstance(per_owner, dict):
            return 0
        return _as_int(per_owner.get(spender), 0)

    def is_minter(self, account: str) -> bool:
        return str(account) in self.root["minters"]

    # ----------------------------
    # Roles
    # ----------------------------

    def grant_minter(self, account: str) -> None:
        acct = str(account).strip()
        if not acct:
            raise AssetError("invalid_account", "empty_account", {"token": self.token_id})
        minters = self.root["minters"]
        if acct not in minters:
            minters.append(acct)
            minters.sort()

    def revoke_minter(self, account: str) -> None:
        minters = self.root["minters"]
        if account in minters:
            minters.remove(account)

    # ----------------------------
    # Writes
    # ----------------------------

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        a = _require_amount(amount, token_id=self.token_id)
        _ensure_root_dict(self.root["allowances"], owner)[spender] = a
        return True

    def increase_allowance(self, owner: str, spender: str, added: int) -> bool:
        a = _require_amount(added, token_id=self.token_id)
        return self.approve(owner, spender, self.allowance(owner, spender) + a)

    def _move(self, sender: str, to: str, amount: int) -> None:
        bal = self.balance_of(sender)
        if bal < amount:
            raise AssetError(
                "insufficient_balance",
                "transfer_amount_exceeds_balance",
                {"token": self.token_id, "account": sender, "balance": bal, "amount": amount},
            )
        balances = self.root["balances"]
        balances[sender] = bal - amount
        balances[to] = self.balance_of(to) + amount

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        a = _require_amount(amount, token_id=self.token_id)
        self._move(sender, to, a)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        a = _require_amount(amount, token_id=self.token_id)
        allowed = self.allowance(owner, spender)
        if allowed < a:
            raise AssetError(
                "insufficient_allowance",
                "transfer_amount_exceeds_allowance",
                {"token": self.token_id, "owner": owner, "spender": spender, "allowance": allowed, "amount": a},
            )
        self._move(owner, to, a)
        _ensure_root_dict(self.root["allowances"], owner)[spender] = allowed - a
        return True

    def mint_to(self, sender: str, recipient: str, amount: int) -> None:
        a = _require_amount(amount, token_id=self.token_id)
        if not self.is_minter(sender):
            raise AssetError("forbidden", "missing_minter_role", {"token": self.token_id, "sender": sender})
        balances = self.root["balances"]
        balances[recipient] = self.balance_of(recipient) + a
        self.root["total_supply"] = self.total_supply + a

    def to_json(self) -> Json:
        return self.root


__all__ = ["JsonToken", "RewardAssetLedger", "StakeAssetLedger", "new_token_state"]
