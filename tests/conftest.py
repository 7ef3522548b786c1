"""
Pytest configuration and shared fixtures.
"""

import os
from collections.abc import Generator

import pytest

# Import shared fixtures from api_fixtures
from tests.api_fixtures import *  # noqa: F403

# Set test environment variables before importing app modules
os.environ.setdefault("LIQ_ENV", "development")
os.environ.setdefault("LIQ_AUDIT_ENABLED", "false")
os.environ.setdefault("LIQ_RETRY_BASE_DELAY_S", "0")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure no real endpoints or credentials leak into tests from local .env."""
    external_vars = [
        "LIQ_PRICE_SOURCE_URL",
        "LIQ_PRICE_SOURCE_API_KEY",
        "LIQ_DATA_DIR",
    ]
    for var in external_vars:
        monkeypatch.delenv(var, raising=False)

    # Force test environment
    monkeypatch.setenv("LIQ_ENV", "development")


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level singletons between tests."""
    # Run the test
    yield

    # Reset singletons after each test
    from liquidation_engine.api import dependencies
    from liquidation_engine.config import get_settings
    from liquidation_engine.runtime import event_bus

    dependencies.reset_engine()
    event_bus.reset_event_bus()
    get_settings.cache_clear()
