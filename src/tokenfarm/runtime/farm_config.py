# src/tokenfarm/runtime/farm_config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from tokenfarm.crypto.sig import normalize_pubkey
from tokenfarm.ledger.constants import (
    DEFAULT_REWARD_PER_BLOCK,
    FARM_ACCOUNT_ID,
    MAX_REWARD_PER_BLOCK,
    REWARD_TOKEN_ID,
    STAKE_TOKEN_ID,
)

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_key_map(v: Any, default: Mapping[str, Tuple[str, ...]]) -> Dict[str, Tuple[str, ...]]:
    if v is None:
        return dict(default)
    if isinstance(v, str):
        v = json.loads(v) if v.strip() else {}
    if not isinstance(v, dict):
        raise ValueError("account_keys must be a JSON object of account -> [pubkey]")
    return {str(acct).strip(): _as_str_tuple(keys, ()) for acct, keys in v.items() if str(acct).strip()}


def _as_str_tuple(v: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if v is None:
        return tuple(default)
    if isinstance(v, str):
        parts = [p.strip() for p in v.split(",")]
    elif isinstance(v, (list, tuple)):
        parts = [str(p).strip() for p in v]
    else:
        return tuple(default)
    return tuple(p for p in parts if p)


@dataclass(frozen=True)
class FarmConfig:
    chain_id: str
    mode: str  # "dev" | "testnet" | "prod"

    # Single SQLite DB file for farm state, asset ledgers and events.
    db_path: str

    # Identity the farm acts as on the asset ledgers.
    farm_address: str
    # Accounts passing the admin gate (distribute, rate change, LP faucet).
    admins: Tuple[str, ...]
    # Ed25519 pubkeys (hex) that may sign API writes, per account.
    account_keys: Mapping[str, Tuple[str, ...]]

    stake_token: str
    reward_token: str

    # Genesis emission; changed later only through update_reward_per_block.
    reward_per_block: int

    clock: str  # "automine" | "wall"
    block_interval_ms: int

    api_host: str
    api_port: int

    log_level: str


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_CLOCKS = {"automine", "wall"}


def validate_farm_config(cfg: FarmConfig) -> None:
    """Fail-fast validation for operator config."""

    if not isinstance(cfg.chain_id, str) or not cfg.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {_ALLOWED_MODES}; got: {cfg.mode!r}")

    clock = str(cfg.clock or "").strip().lower()
    if clock not in _ALLOWED_CLOCKS:
        raise ValueError(f"clock must be one of {_ALLOWED_CLOCKS}; got: {cfg.clock!r}")

    if mode == "prod" and clock == "automine":
        # Automine lets any caller advance reward time by submitting txs.
        raise ValueError("clock 'automine' is not allowed in prod mode")

    if int(cfg.block_interval_ms) < 250:
        raise ValueError(f"block_interval_ms must be >= 250; got: {cfg.block_interval_ms}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if not 0 <= int(cfg.reward_per_block) <= MAX_REWARD_PER_BLOCK:
        raise ValueError(
            f"reward_per_block must be 0..{MAX_REWARD_PER_BLOCK}; got: {cfg.reward_per_block}"
        )

    for name, v in (
        ("db_path", cfg.db_path),
        ("farm_address", cfg.farm_address),
        ("stake_token", cfg.stake_token),
        ("reward_token", cfg.reward_token),
    ):
        if not isinstance(v, str) or not v.strip():
            raise ValueError(f"{name} must be a non-empty string")

    if cfg.stake_token == cfg.reward_token:
        raise ValueError("stake_token and reward_token must differ")

    if cfg.farm_address in cfg.admins:
        raise ValueError("farm_address must not be an admin")

    for acct, keys in cfg.account_keys.items():
        if acct == cfg.farm_address:
            raise ValueError("farm_address cannot sign API requests")
        for pk in keys:
            try:
                normalize_pubkey(pk)
            except ValueError as e:
                raise ValueError(f"account_keys[{acct!r}]: {e}") from e

    if mode == "prod":
        unkeyed = [a for a in cfg.admins if not cfg.account_keys.get(a)]
        if unkeyed:
            raise ValueError(f"admins without account_keys in prod: {unkeyed}")


def default_farm_config() -> FarmConfig:
    return FarmConfig(
        chain_id="tokenfarm-dev",
        # Production-safe default: never drop into a permissive posture silently.
        mode="prod",
        db_path="./data/tokenfarm.db",
        farm_address=FARM_ACCOUNT_ID,
        admins=(),
        account_keys={},
        stake_token=STAKE_TOKEN_ID,
        reward_token=REWARD_TOKEN_ID,
        reward_per_block=DEFAULT_REWARD_PER_BLOCK,
        clock="wall",
        block_interval_ms=12_000,
        api_host="127.0.0.1",
        api_port=8080,
        log_level="INFO",
    )


def farm_config_from_dict(raw: Any) -> FarmConfig:
    if not isinstance(raw, dict):
        raise ValueError("farm config must be a JSON object")

    d = default_farm_config()
    cfg = FarmConfig(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        mode=_as_str(raw.get("mode"), d.mode).strip().lower(),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        farm_address=_as_str(raw.get("farm_address"), d.farm_address),
        admins=_as_str_tuple(raw.get("admins"), d.admins),
        account_keys=_as_key_map(raw.get("account_keys"), d.account_keys),
        stake_token=_as_str(raw.get("stake_token"), d.stake_token),
        reward_token=_as_str(raw.get("reward_token"), d.reward_token),
        reward_per_block=_as_int(raw.get("reward_per_block"), d.reward_per_block),
        clock=_as_str(raw.get("clock"), d.clock).strip().lower(),
        block_interval_ms=_as_int(raw.get("block_interval_ms"), d.block_interval_ms),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )
    validate_farm_config(cfg)
    return cfg


def read_farm_config_file(path: str) -> FarmConfig:
    p = Path(path)
    return farm_config_from_dict(json.loads(p.read_text(encoding="utf-8")))


def farm_config_from_env(base: Optional[FarmConfig] = None) -> FarmConfig:
    """Overlay TOKENFARM_* env vars on `base` (defaults when omitted)."""
    b = base or default_farm_config()
    env = os.environ
    raw: Json = {
        "chain_id": env.get("TOKENFARM_CHAIN_ID", b.chain_id),
        "mode": env.get("TOKENFARM_MODE", b.mode),
        "db_path": env.get("TOKENFARM_DB_PATH", b.db_path),
        "farm_address": env.get("TOKENFARM_FARM_ADDRESS", b.farm_address),
        "admins": env.get("TOKENFARM_ADMINS", list(b.admins)),
        "account_keys": env.get("TOKENFARM_ACCOUNT_KEYS_JSON", {k: list(v) for k, v in b.account_keys.items()}),
        "stake_token": env.get("TOKENFARM_STAKE_TOKEN", b.stake_token),
        "reward_token": env.get("TOKENFARM_REWARD_TOKEN", b.reward_token),
        "reward_per_block": env.get("TOKENFARM_REWARD_PER_BLOCK", b.reward_per_block),
        "clock": env.get("TOKENFARM_CLOCK", b.clock),
        "block_interval_ms": env.get("TOKENFARM_BLOCK_INTERVAL_MS", b.block_interval_ms),
        "api_host": env.get("TOKENFARM_API_HOST", b.api_host),
        "api_port": env.get("TOKENFARM_API_PORT", b.api_port),
        "log_level": env.get("TOKENFARM_LOG_LEVEL", b.log_level),
    }
    return farm_config_from_dict(raw)


def load_farm_config(*, config_path: Optional[str] = None) -> FarmConfig:
    """Config file (TOKENFARM_CONFIG_PATH) first, then TOKENFARM_* env overrides."""
    p = config_path or os.environ.get("TOKENFARM_CONFIG_PATH")
    base = read_farm_config_file(p) if p else None
    return farm_config_from_env(base)
