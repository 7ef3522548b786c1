"""
Tests for settings loading and component config assembly.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from liquidation_engine.adapters import HttpPriceSource, SimulatedPriceSource
from liquidation_engine.config import AppEnvironment, Settings, get_settings
from liquidation_engine.engine import default_price_source, executor_config, matcher_config, quote_config


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.env == AppEnvironment.DEVELOPMENT
        assert settings.quote_validity_minutes == 5
        assert settings.platform_fee_percentage == Decimal("0.25")
        assert settings.reversal_window_minutes == 30
        assert settings.audit_dir == settings.data_dir / "audit"

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LIQ_QUOTE_VALIDITY_MINUTES", "2")
        monkeypatch.setenv("LIQ_MAX_SLIPPAGE_PERCENT", "3.5")
        settings = Settings()
        assert settings.quote_validity_minutes == 2
        assert settings.max_slippage_percent == Decimal("3.5")

    def test_log_level_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="chatty")

    def test_provider_ranking_validated(self) -> None:
        assert Settings(provider_ranking=["rating", "fee"]).provider_ranking == ["rating", "fee"]
        with pytest.raises(ValidationError):
            Settings(provider_ranking=["cheapest"])
        with pytest.raises(ValidationError):
            Settings(provider_ranking=[])

    def test_api_key_redacted(self) -> None:
        settings = Settings(price_source_api_key="secret-value")
        assert "secret-value" not in repr(settings)
        assert settings.price_source_api_key.get_secret_value() == "secret-value"

    def test_settings_cached(self) -> None:
        assert get_settings() is get_settings()


class TestComponentConfigs:
    """Tests for building component configs from Settings."""

    def test_quote_config(self) -> None:
        config = quote_config(Settings(quote_validity_minutes=2, pricing_max_retries=1))
        assert config.validity_minutes == 2
        assert config.max_retries == 1

    def test_executor_config(self) -> None:
        config = executor_config(Settings(platform_fee_percentage=Decimal("0.1"), reversal_window_minutes=0))
        assert config.platform_fee_percentage == Decimal("0.1")
        assert config.reversal_window_minutes == 0

    def test_matcher_config(self) -> None:
        assert matcher_config(Settings(provider_ranking=["liquidity"])).ranking == ["liquidity"]

    def test_price_source_selection(self) -> None:
        assert isinstance(default_price_source(Settings()), SimulatedPriceSource)
        http = default_price_source(Settings(price_source_url="https://prices.example.com"))
        assert isinstance(http, HttpPriceSource)
