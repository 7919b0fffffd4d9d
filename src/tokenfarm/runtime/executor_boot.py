# src/tokenfarm/runtime/executor_boot.py

from __future__ import annotations

from typing import Optional

from tokenfarm.runtime.executor import FarmExecutor
from tokenfarm.runtime.farm_config import FarmConfig, load_farm_config


def build_executor(cfg: Optional[FarmConfig] = None) -> FarmExecutor:
    """
    Build a FarmExecutor from an explicit config or, if omitted, from
    TOKENFARM_CONFIG_PATH + TOKENFARM_* environment variables.

    `tokenfarm.api.app` calls this with no args in production.
    """
    return FarmExecutor(config=cfg or load_farm_config())
