"""CoinGecko BTC/USD reference price (market guard feed)."""
import asyncio
from decimal import Decimal
from typing import Optional

import aiohttp

from solscalp.exceptions import FeedError

COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


class CoinGeckoClient:
    """ReferencePriceFeed for a single CoinGecko asset id (default bitcoin)."""

    def __init__(
        self,
        asset_id: str = "bitcoin",
        url: str = COINGECKO_SIMPLE_PRICE_URL,
        timeout_seconds: float = 10.0,
    ):
        self.asset_id = asset_id
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def fetch_price(self) -> Optional[Decimal]:
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                params = {"ids": self.asset_id, "vs_currencies": "usd"}
                async with session.get(self.url, params=params) as resp:
                    if resp.status != 200:
                        raise FeedError(f"CoinGecko price fetch error: {resp.status}")
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FeedError(f"CoinGecko request failed: {e}") from e

        usd = ((data or {}).get(self.asset_id) or {}).get("usd")
        return Decimal(str(usd)) if usd is not None else None
