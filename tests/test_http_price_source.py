"""
Tests for the HTTP price source with mocked HTTP responses.
"""

from decimal import Decimal

import httpx
import pytest
import respx
from httpx import Response

from liquidation_engine.adapters import HttpPriceSource
from liquidation_engine.errors import PriceSourceError

BASE_URL = "https://prices.example.com/v1"
BTC_USD = f"{BASE_URL}/prices/BTC/USD"


@pytest.fixture
def source() -> HttpPriceSource:
    return HttpPriceSource(BASE_URL + "/", timeout=1.0, max_retries=2, backoff_base=0, api_key="test-key")


def price_payload(**overrides) -> dict:
    payload = {
        "price": "65000.5",
        "bid": "64990",
        "ask": "65010",
        "confidence": 92,
        "source": "example",
    }
    payload.update(overrides)
    return payload


class TestGetPrice:
    """Tests for successful price lookups."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_parses_payload(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(return_value=Response(200, json=price_payload()))

        observation = await source.get_price("btc", "usd")

        assert route.called
        assert observation.price == Decimal("65000.5")
        assert observation.bid == Decimal("64990")
        assert observation.confidence == Decimal("92")
        assert observation.source == "example"
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_sends_api_key(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(return_value=Response(200, json=price_payload()))

        await source.get_price("BTC", "USD")

        request = route.calls.last.request
        assert request.headers["X-API-KEY"] == "test-key"
        assert request.headers["Accept"] == "application/json"
        await source.close()


class TestRetries:
    """Tests for retry and error mapping."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_retries_server_errors(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(
            side_effect=[Response(503), Response(429), Response(200, json=price_payload())]
        )

        observation = await source.get_price("BTC", "USD")

        assert observation.price == Decimal("65000.5")
        assert route.call_count == 3
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(return_value=Response(500))

        with pytest.raises(PriceSourceError) as exc_info:
            await source.get_price("BTC", "USD")

        assert "after 3 attempts" in str(exc_info.value)
        assert route.call_count == 3
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_retries_timeouts(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(
            side_effect=[httpx.ReadTimeout("slow"), Response(200, json=price_payload())]
        )

        await source.get_price("BTC", "USD")
        assert route.call_count == 2
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(PriceSourceError):
            await source.get_price("BTC", "USD")
        assert route.call_count == 3
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_not_found_not_retried(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(return_value=Response(404))

        with pytest.raises(PriceSourceError, match="No price"):
            await source.get_price("BTC", "USD")
        assert route.call_count == 1
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, source: HttpPriceSource) -> None:
        route = respx.get(BTC_USD).mock(return_value=Response(401))

        with pytest.raises(PriceSourceError, match="401"):
            await source.get_price("BTC", "USD")
        assert route.call_count == 1
        await source.close()

    @respx.mock
    @pytest.mark.asyncio
    async def test_malformed_payload(self, source: HttpPriceSource) -> None:
        respx.get(BTC_USD).mock(return_value=Response(200, json={"price": "-1"}))

        with pytest.raises(PriceSourceError, match="Malformed"):
            await source.get_price("BTC", "USD")
        await source.close()
