"""
Shared API fixtures and dependency override helpers for testing.
"""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from liquidation_engine.api.dependencies import set_engine
from liquidation_engine.config import Settings, get_settings_dep
from liquidation_engine.engine import LiquidationEngine
from liquidation_engine.main import app
from tests.fakes import FakeClock, build_test_engine


class DependencyOverrider:
    """Helper to manage FastAPI dependency overrides in tests."""

    def __init__(self, app):
        self.app = app
        self.overrides = {}

    def override(self, dependency, value):
        """Register an override."""
        self.app.dependency_overrides[dependency] = value
        self.overrides[dependency] = value

    def clear(self):
        """Clear all overrides."""
        self.app.dependency_overrides.clear()
        self.overrides.clear()


@pytest.fixture
def overrider():
    """Fixture that provides a DependencyOverrider and clears it after the test."""
    overrider = DependencyOverrider(app)
    yield overrider
    overrider.clear()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with a real filesystem path and no backoff delays."""
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return Settings(data_dir=data_dir, audit_enabled=False, retry_base_delay_s=0)


@pytest.fixture
def api_engine(test_settings: Settings) -> LiquidationEngine:
    """Seeded engine installed as the API singleton."""
    engine = build_test_engine(test_settings, clock=FakeClock())
    set_engine(engine)
    return engine


@pytest.fixture
def api_client(
    overrider: DependencyOverrider,
    test_settings: Settings,
    api_engine: LiquidationEngine,
) -> Generator[TestClient, None, None]:
    """TestClient bound to the seeded engine."""
    overrider.override(get_settings_dep, lambda: test_settings)
    with TestClient(app) as client:
        yield client
