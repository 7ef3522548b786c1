"""
HTTP price source.

Fetches prices from a JSON endpoint:

    GET {base_url}/prices/{asset}/{output}
    -> {"price": "65000.5", "bid": ..., "ask": ..., "confidence": 92, ...}

Transient failures (429, 5xx, timeouts, connection errors) are retried
with exponential backoff; anything left over raises PriceSourceError.
"""

import asyncio
from typing import Any

import httpx
from pydantic import ValidationError

from liquidation_engine.errors import PriceSourceError
from liquidation_engine.interfaces import PriceObservation, PriceSource
from liquidation_engine.logging import get_logger

logger = get_logger(__name__)


class HttpPriceSource(PriceSource):
    """
    Async client for an HTTP price feed.

    Handles:
    - Per-request timeout
    - Retry/backoff for 429, 5xx and network errors
    - Mapping of the JSON payload onto PriceObservation
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 2,
        backoff_base: float = 1.0,
        api_key: str | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._api_key = api_key
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-API-KEY"] = self._api_key
        return headers

    async def get_price(self, asset_symbol: str, output_symbol: str) -> PriceObservation:
        path = f"/prices/{asset_symbol.upper()}/{output_symbol.upper()}"
        payload = await self._request(path)
        try:
            return PriceObservation(**payload)
        except ValidationError as e:
            raise PriceSourceError(f"Malformed price payload for {path}: {e}", provider="http") from e

    async def _request(self, path: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        last_error: str | None = None

        for attempt in range(self._max_retries + 1):
            try:
                client = await self._get_client()
                response = await client.get(url, headers=self._headers())

                if response.status_code == 429:
                    last_error = "rate limited (429)"
                    await self._backoff("Rate limited (429)", attempt)
                    continue

                if response.status_code >= 500:
                    last_error = f"server error {response.status_code}"
                    await self._backoff(f"Server error {response.status_code}", attempt)
                    continue

                if response.status_code == 404:
                    raise PriceSourceError(f"No price for {path}", provider="http")

                if response.status_code >= 400:
                    raise PriceSourceError(
                        f"Price request {path} rejected with status {response.status_code}",
                        provider="http",
                    )

                return response.json()

            except httpx.TimeoutException:
                last_error = "timeout"
                await self._backoff("Request timeout", attempt)
                continue

            except httpx.RequestError as e:
                last_error = str(e)
                await self._backoff(f"Request error: {e}", attempt)
                continue

        raise PriceSourceError(
            f"Price request failed after {self._max_retries + 1} attempts: {last_error}",
            provider="http",
        )

    async def _backoff(self, what: str, attempt: int) -> None:
        if attempt >= self._max_retries:
            return
        backoff = self._backoff_base * 2**attempt
        logger.warning(
            "%s, backing off %.1fs (attempt %d/%d)",
            what,
            backoff,
            attempt + 1,
            self._max_retries + 1,
            extra={"context": {"base_url": self._base_url, "headers": self._headers()}},
        )
        await asyncio.sleep(backoff)
