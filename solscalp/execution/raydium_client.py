"""
Raydium trade API client: token → SOL sell quote + unsigned transaction.

Two calls per sell:
    GET  /compute/swap-base-in  quote for an exact input amount
    POST /swap                  build the V0 transaction for that quote
"""
import asyncio
from typing import Any, Dict

import aiohttp

from solscalp.domain.protocols import SwapTransaction
from solscalp.exceptions import SwapError
from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
RAYDIUM_BASE_URL = "https://transaction-v1.raydium.io"


class RaydiumSwapClient:
    """SwapService backed by the Raydium trade API."""

    def __init__(
        self,
        base_url: str = RAYDIUM_BASE_URL,
        priority_fee_micro_lamports: int = 10000,
        timeout_seconds: float = 15.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.priority_fee_micro_lamports = priority_fee_micro_lamports
        self.timeout_seconds = timeout_seconds

    async def build_sell_transaction(
        self,
        token_address: str,
        token_amount: int,
        slippage_bps: int,
        wallet_address: str,
    ) -> SwapTransaction:
        """
        Quote and build a sell of `token_amount` raw units into SOL.

        Raises:
            SwapError: quote or build failed
        """
        logger.info(
            "Requesting sell quote",
            token_address=token_address,
            token_amount=token_amount,
            slippage_bps=slippage_bps,
        )
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)) as session:
                quote = await self._get_quote(session, token_address, SOL_MINT, token_amount, slippage_bps)
                transaction = await self._build_transaction(session, quote, wallet_address)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SwapError(f"Raydium request failed: {e}") from e

        out_amount = int(quote.get("outputAmount") or 0)
        logger.info("Sell transaction built", token_address=token_address, out_lamports=out_amount)
        return SwapTransaction(
            transaction=transaction,
            in_amount=int(quote.get("inputAmount") or token_amount),
            out_amount=out_amount,
            slippage_bps=slippage_bps,
        )

    async def _get_quote(
        self,
        session: aiohttp.ClientSession,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "txVersion": "V0",
        }
        async with session.get(f"{self.base_url}/compute/swap-base-in", params=params) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise SwapError(f"Raydium quote failed ({resp.status}): {body[:200]}")
            data = await resp.json()
        if not data.get("success"):
            raise SwapError(f"Raydium quote error: {str(data)[:200]}")
        return data["data"]

    async def _build_transaction(
        self,
        session: aiohttp.ClientSession,
        quote: Dict[str, Any],
        wallet_address: str,
    ) -> str:
        payload = {
            "computeUnitPriceMicroLamports": str(self.priority_fee_micro_lamports),
            "swapResponse": quote,
            "txVersion": "V0",
            "wallet": wallet_address,
            "wrapSol": True,
            "unwrapSol": True,
        }
        async with session.post(f"{self.base_url}/swap", json=payload) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise SwapError(f"Raydium swap build failed ({resp.status}): {body[:200]}")
            data = await resp.json()
        if not data.get("success"):
            raise SwapError(f"Raydium swap error: {str(data)[:200]}")

        transactions = data.get("data") or []
        transaction = transactions[0].get("transaction") if transactions else None
        if not transaction:
            raise SwapError("Raydium returned no transaction")
        return transaction
