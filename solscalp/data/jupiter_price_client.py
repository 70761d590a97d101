"""
Jupiter Price API v3 client (fast stop-loss feed).

One request prices a whole batch: GET /price/v3?ids=mint1,mint2,...
Response: {"data": {mint: {"price": ...}}} on older deployments, or the
mint map at top level on newer ones. Mints without a price are omitted.
"""
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

import aiohttp

from solscalp.exceptions import FeedError

JUPITER_PRICE_URL = "https://api.jup.ag/price/v3"


def parse_prices(payload: Dict[str, Any]) -> Dict[str, Decimal]:
    entries = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    prices: Dict[str, Decimal] = {}
    for mint, info in (entries or {}).items():
        if not isinstance(info, dict):
            continue
        raw = info.get("price", info.get("usdPrice"))
        if raw in (None, ""):
            continue
        try:
            price = Decimal(str(raw))
        except InvalidOperation:
            continue
        if price > 0:
            prices[mint] = price
    return prices


class JupiterPriceClient:
    """PriceFeed backed by Jupiter."""

    def __init__(self, url: str = JUPITER_PRICE_URL, api_key: Optional[str] = None, timeout_seconds: float = 5.0):
        self.url = url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds

    async def fetch_prices(self, token_addresses: Iterable[str]) -> Dict[str, Decimal]:
        """
        Raises:
            FeedError: HTTP error, timeout or malformed response
        """
        mints = list(token_addresses)
        if not mints:
            return {}

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                async with session.get(self.url, params={"ids": ",".join(mints)}, headers=headers) as resp:
                    if resp.status != 200:
                        raise FeedError(f"Jupiter price API returned {resp.status}")
                    payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FeedError(f"Jupiter price request failed: {e}") from e

        if not isinstance(payload, dict):
            raise FeedError("Jupiter price API returned an unexpected payload")
        return parse_prices(payload)
