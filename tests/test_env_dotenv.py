from __future__ import annotations

import os
from pathlib import Path

import pytest

from tokenfarm import env as tf_env


def test_dotenv_loads_once_without_overriding(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / ".env"
    p.write_text("TOKENFARM_CHAIN_ID=from-dotenv\nTOKENFARM_MODE=dev\n", encoding="utf-8")
    monkeypatch.setenv("TOKENFARM_MODE", "testnet")
    tf_env.reset_dotenv_state()

    assert tf_env.load_dotenv_if_present(str(p)) is True
    assert os.environ["TOKENFARM_CHAIN_ID"] == "from-dotenv"
    assert os.environ["TOKENFARM_MODE"] == "testnet"

    # Second call is a no-op.
    assert tf_env.load_dotenv_if_present(str(p)) is False
    os.environ.pop("TOKENFARM_CHAIN_ID", None)
    tf_env.reset_dotenv_state()


def test_missing_dotenv_is_not_an_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENFARM_DOTENV_PATH", str(tmp_path / "absent.env"))
    tf_env.reset_dotenv_state()
    assert tf_env.load_dotenv_if_present() is False
    tf_env.reset_dotenv_state()
