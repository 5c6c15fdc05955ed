"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from parley.services.settings import ENV_VARIABLES


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep developer environment variables and log directories out of tests."""

    for name in (*ENV_VARIABLES, "PARLEY_DEBUG", "PARLEY_SETTINGS_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PARLEY_LOG_DIR", str(tmp_path / "logs"))
