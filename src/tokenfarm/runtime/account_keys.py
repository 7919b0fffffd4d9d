# src/tokenfarm/runtime/account_keys.py
from __future__ import annotations

"""
Per-account Ed25519 keys and replay nonces for signed API writes.

Record shape:

  {
    "keys": [{"pubkey": "<hex>", "active": true, "source": "config"|"registered"}],
    "nonce": <last accepted nonce>,
  }

Keys listed in operator config are authoritative for their account. Any
other account may register one key for itself, first come first served.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from tokenfarm.crypto.sig import canonical_request_message, normalize_pubkey, verify_ed25519_signature
from tokenfarm.runtime.errors import AuthenticationError

Json = Dict[str, Any]


class AccountKeys:
    def __init__(self, records: Optional[Dict[str, Json]] = None) -> None:
        self.records: Dict[str, Json] = {}
        for acct, rec in (records or {}).items():
            if isinstance(rec, dict):
                self.records[str(acct)] = rec

    def _record(self, account: str) -> Json:
        rec = self.records.get(account)
        if not isinstance(rec, dict):
            rec = {"keys": [], "nonce": 0}
            self.records[account] = rec
        if not isinstance(rec.get("keys"), list):
            rec["keys"] = []
        rec["nonce"] = int(rec.get("nonce") or 0)
        return rec

    def active_pubkeys(self, account: str) -> List[str]:
        rec = self.records.get(account)
        if not isinstance(rec, dict) or not isinstance(rec.get("keys"), list):
            return []
        out: List[str] = []
        for k in rec["keys"]:
            if isinstance(k, dict) and k.get("active", True):
                pk = k.get("pubkey")
                if isinstance(pk, str) and pk.strip() and pk not in out:
                    out.append(pk)
        return out

    def last_nonce(self, account: str) -> int:
        rec = self.records.get(account)
        if not isinstance(rec, dict):
            return 0
        return int(rec.get("nonce") or 0)

    def set_config_keys(self, account: str, pubkeys: Iterable[str]) -> bool:
        """Replace `account`'s keys with operator-configured ones. Returns True if changed."""
        rec = self._record(account)
        keys = [{"pubkey": normalize_pubkey(pk), "active": True, "source": "config"} for pk in pubkeys]
        if rec["keys"] == keys:
            return False
        rec["keys"] = keys
        return True

    def register(self, account: str, pubkey: str) -> Json:
        rec = self._record(account)
        rec["keys"].append({"pubkey": normalize_pubkey(pubkey), "active": True, "source": "registered"})
        return rec

    def verify(self, *, chain_id: str, op: str, signer: str, nonce: Any, payload: Json, sig: Any) -> Tuple[str, int]:
        """Check one signed request. Returns (pubkey, nonce) without consuming the nonce."""
        if not isinstance(sig, str) or not sig.strip() or nonce is None:
            raise AuthenticationError("signature_missing", {"signer": signer, "op": op})
        if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce <= 0:
            raise AuthenticationError("bad_nonce", {"signer": signer, "nonce": repr(nonce)})

        keys = self.active_pubkeys(signer)
        if not keys:
            raise AuthenticationError("no_active_keys", {"signer": signer})

        last = self.last_nonce(signer)
        if nonce <= last:
            raise AuthenticationError("stale_nonce", {"signer": signer, "nonce": nonce, "last_nonce": last})

        msg = canonical_request_message(chain_id=chain_id, op=op, signer=signer, nonce=nonce, payload=payload)
        for pk in keys:
            if verify_ed25519_signature(message=msg, sig=sig, pubkey=pk):
                return pk, nonce
        raise AuthenticationError("invalid_signature", {"signer": signer, "op": op})

    def consume_nonce(self, account: str, nonce: int) -> Json:
        rec = self._record(account)
        rec["nonce"] = max(int(rec["nonce"]), int(nonce))
        return rec

    def to_json(self, account: str) -> Json:
        return {
            "account": account,
            "pubkeys": self.active_pubkeys(account),
            "nonce": self.last_nonce(account),
        }


__all__ = ["AccountKeys"]
