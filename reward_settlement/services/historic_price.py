"""
CoinGecko service for historic USD token prices.

Prices are memoized per (coingecko id, UTC calendar day) for the lifetime of
the process; the cache is read-through and never invalidated.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import aiohttp
import structlog

from reward_settlement.core.config import AssetConfig, settings
from reward_settlement.core.exceptions import InvalidAsset, PriceFeedError


logger = structlog.get_logger(__name__)


class HistoricPrice:
    """Historic USD price lookups from the CoinGecko pro API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        network: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.coingecko_api_key
        self.network = network or settings.network
        self.base_url = base_url or settings.coingecko_base_url
        self.timeout = timeout or settings.coingecko_timeout
        self.max_retries = max_retries or settings.coingecko_max_retries
        self.retry_delay_base = 2
        self.cache: Dict[str, Dict[str, float]] = {}
        self._pending: Dict[Tuple[str, str], asyncio.Future] = {}
        self.logger = logger.bind(service="historic_price")

    async def get_historic_token_price(self, asset: AssetConfig, date: datetime) -> float:
        """
        Get the USD price of an asset on the UTC day of `date`.

        Args:
            asset: Asset configuration with its price source
            date: Any moment of the requested day

        Returns:
            USD price

        Raises:
            InvalidAsset: asset has no price feed id (and is not a testnet stable)
            PriceFeedError: the price feed failed after retries
        """
        coingecko_id = asset.price.coingecko_id
        if not coingecko_id:
            if asset.price.is_stable and self.network == "testnet":
                # Testnet stables have no feed, treat them as USD
                return 1.0
            raise InvalidAsset(asset.address, {"symbol": asset.symbol, "reason": "no price feed"})

        day = date.astimezone(timezone.utc)
        cache_key = day.strftime("%d/%m/%Y")
        prices = self.cache.setdefault(coingecko_id, {})
        if cache_key not in prices:
            # concurrent misses on the same day share one request
            pending_key = (coingecko_id, cache_key)
            task = self._pending.get(pending_key)
            if task is None:
                task = asyncio.ensure_future(self._fetch_historic_price(coingecko_id, day.strftime("%d-%m-%Y")))
                self._pending[pending_key] = task
            try:
                prices[cache_key] = await task
            finally:
                self._pending.pop(pending_key, None)
        return prices[cache_key]

    async def _fetch_historic_price(self, coingecko_id: str, formatted_date: str) -> float:
        url = f"{self.base_url}/coins/{coingecko_id}/history"
        params = {"date": formatted_date, "localization": "false"}
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key

        last_error: Optional[str] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        url,
                        params=params,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=self.timeout)
                    ) as response:
                        if response.status == 200:
                            data = await response.json()
                            price = data["market_data"]["current_price"]["usd"]
                            self.logger.info(
                                "Historic price fetched",
                                coingecko_id=coingecko_id,
                                date=formatted_date,
                                price=price
                            )
                            return float(price)
                        last_error = f"HTTP {response.status}"
            except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError) as e:
                last_error = str(e) or type(e).__name__

            self.logger.warning(
                "Historic price request failed",
                coingecko_id=coingecko_id,
                date=formatted_date,
                attempt=attempt,
                error=last_error
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay_base ** attempt)

        raise PriceFeedError(
            f"Unable to fetch historic price for {coingecko_id}",
            {"coingecko_id": coingecko_id, "date": formatted_date, "error": last_error}
        )
