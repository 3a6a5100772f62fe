"""Integration test fixtures.

Provides Settings pointing at an isolated on-disk database and a fully wired
AppState built by the real lifespan. The upstream API is mocked per test with
respx.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from openshelf.app import lifespan
from openshelf.config import ApiSettings, Settings, StorageSettings
from tests.conftest import API_BASE

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from openshelf.state import AppState


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        api=ApiSettings(base_url=API_BASE, per_page=2),
        storage=StorageSettings(db_path=str(tmp_path / "data" / "openshelf.db")),
    )


@pytest.fixture()
async def app_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    async with lifespan(settings) as state:
        yield state


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``openshelf.app.main`` at an isolated database and the mock API."""
    db_path = tmp_path / "cli" / "openshelf.db"
    monkeypatch.setenv("OPENSHELF__STORAGE__DB_PATH", str(db_path))
    monkeypatch.setenv("OPENSHELF__API__BASE_URL", API_BASE)
    # structlog is configured process-wide; keep the suite's defaults intact
    monkeypatch.setattr("openshelf.app._setup_logging", lambda _settings: None)
    return db_path
