"""
DexScreener market-data client (slow monitor feed).

GET /latest/dex/tokens/{address} returns every pair that trades the token;
we keep the Solana pair with the deepest liquidity and normalize it into
MarketData.
"""
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from solscalp.domain.models import NEUTRAL_BUY_PRESSURE, MarketData
from solscalp.exceptions import FeedError
from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)

DEXSCREENER_BASE_URL = "https://api.dexscreener.com"


def _num(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def select_best_pair(pairs: List[Dict[str, Any]], chain_id: str = "solana") -> Optional[Dict[str, Any]]:
    """Pick the pair on `chain_id` with the highest USD liquidity."""
    candidates = [p for p in pairs if p.get("chainId") == chain_id]
    if not candidates:
        return None
    return max(candidates, key=lambda p: _num((p.get("liquidity") or {}).get("usd")))


def parse_pair(pair: Dict[str, Any], token_address: str) -> MarketData:
    """Normalize a DexScreener pair payload."""
    volume = pair.get("volume") or {}
    changes = pair.get("priceChange") or {}
    txns_5m = (pair.get("txns") or {}).get("m5") or {}

    buys = int(txns_5m.get("buys") or 0)
    sells = int(txns_5m.get("sells") or 0)
    total = buys + sells
    buy_pressure = Decimal(buys) / Decimal(total) * Decimal("100") if total > 0 else NEUTRAL_BUY_PRESSURE

    return MarketData(
        token_address=token_address,
        symbol=(pair.get("baseToken") or {}).get("symbol", ""),
        price_usd=_num(pair.get("priceUsd")),
        market_cap=_num(pair.get("marketCap") or pair.get("fdv")),
        liquidity_usd=_num((pair.get("liquidity") or {}).get("usd")),
        volume_5m=_num(volume.get("m5")),
        volume_1h=_num(volume.get("h1")),
        volume_6h=_num(volume.get("h6")),
        volume_24h=_num(volume.get("h24")),
        buys_5m=buys,
        sells_5m=sells,
        buy_pressure=buy_pressure,
        price_change_5m=_num(changes.get("m5")),
        price_change_1h=_num(changes.get("h1")),
        price_change_24h=_num(changes.get("h24")),
    )


class DexScreenerClient:
    """MarketDataFeed backed by the DexScreener public API."""

    def __init__(self, base_url: str = DEXSCREENER_BASE_URL, timeout_seconds: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def fetch_token_data(self, token_address: str) -> Optional[MarketData]:
        """
        Fetch current market data for a token.

        Returns:
            MarketData, or None when DexScreener lists no usable pair

        Raises:
            FeedError: HTTP error, timeout or malformed response
        """
        url = f"{self.base_url}/latest/dex/tokens/{token_address}"
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                async with session.get(url, headers={"Accept": "application/json"}) as resp:
                    if resp.status != 200:
                        raise FeedError(f"DexScreener token fetch error: {resp.status}")
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FeedError(f"DexScreener request failed: {e}") from e

        pair = select_best_pair((data or {}).get("pairs") or [])
        if pair is None:
            return None

        market_data = parse_pair(pair, token_address)
        if market_data.price_usd <= 0:
            logger.warning("DexScreener pair without price", token_address=token_address)
            return None
        return market_data
