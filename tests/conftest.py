from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "tokenfarm" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _clean_tokenfarm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Operator env must never leak into tests.
    import os

    for k in list(os.environ):
        if k.startswith("TOKENFARM_"):
            monkeypatch.delenv(k, raising=False)

    from tokenfarm.runtime import metrics

    metrics.reset()
