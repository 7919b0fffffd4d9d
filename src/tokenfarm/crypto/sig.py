# src/tokenfarm/crypto/sig.py
from __future__ import annotations

import base64
import json
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except Exception as e:
        raise ValueError("not hex or base64") from e


def normalize_pubkey(pubkey: str) -> str:
    """Return the lowercase hex form of a 32-byte Ed25519 public key."""
    if not isinstance(pubkey, str):
        raise ValueError("pubkey must be a string")
    raw = _decode_bytes(pubkey)
    if len(raw) != 32:
        raise ValueError("ed25519 pubkey must be 32 bytes")
    Ed25519PublicKey.from_public_bytes(raw)
    return raw.hex()


def canonical_request_message(
    *,
    chain_id: str,
    op: str,
    signer: str,
    nonce: int,
    payload: Json,
) -> bytes:
    """Bytes a client signs for one farm write.

    `payload` is the JSON request body without its `nonce` and `sig` fields.
    Binding chain_id keeps a signature from being replayed on another farm.
    """
    obj: Json = {
        "chain_id": str(chain_id),
        "op": str(op),
        "signer": str(signer),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        key = Ed25519PublicKey.from_public_bytes(pk_b)
        key.verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def _private_key(privkey: str) -> Ed25519PrivateKey:
    pk_b = _decode_bytes(privkey)
    # 64-byte expanded keys carry the seed in their first half.
    if len(pk_b) == 64:
        pk_b = pk_b[:32]
    if len(pk_b) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(pk_b)


def pubkey_of(privkey: str) -> str:
    return _private_key(privkey).public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    """Sign a message with an Ed25519 private key (hex or base64 seed)."""
    sig_b = _private_key(privkey).sign(message)
    if encoding == "hex":
        return sig_b.hex()
    if encoding in {"b64", "base64"}:
        return base64.b64encode(sig_b).decode("ascii")
    raise ValueError("unsupported encoding")


def sign_request_body(
    *,
    body: Json,
    chain_id: str,
    op: str,
    signer: str,
    nonce: int,
    privkey: str,
) -> Json:
    """Return a copy of `body` with `nonce` and `sig` populated."""
    payload = {k: v for k, v in body.items() if k not in {"nonce", "sig"}}
    msg = canonical_request_message(chain_id=chain_id, op=op, signer=signer, nonce=nonce, payload=payload)
    out = dict(payload)
    out["nonce"] = int(nonce)
    out["sig"] = sign_ed25519(message=msg, privkey=privkey)
    return out


__all__ = [
    "canonical_request_message",
    "normalize_pubkey",
    "pubkey_of",
    "sign_ed25519",
    "sign_request_body",
    "verify_ed25519_signature",
]
