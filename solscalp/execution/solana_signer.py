"""
Transaction signers.

SolanaRpcSigner signs a base64 VersionedTransaction with the custodial
keypair, broadcasts it with JSON-RPC `sendTransaction` and polls
`getSignatureStatuses` until it is confirmed.

PaperSigner never touches the chain and returns `PAPER_TX_<ms>` references.
"""
import asyncio
import base64
import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from solscalp.domain.models import utc_now
from solscalp.exceptions import TransactionSubmitError
from solscalp.monitoring.logger import get_logger

logger = get_logger(__name__)

_CONFIRMED_STATES = ("confirmed", "finalized")


def load_keypair(secret: str) -> Keypair:
    """Load a keypair from a base58 secret or a JSON byte array (solana-keygen format)."""
    secret = secret.strip()
    if secret.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(secret)))
    return Keypair.from_base58_string(secret)


class SolanaRpcSigner:
    """TransactionSigner for a custodial wallet over Solana JSON-RPC."""

    def __init__(
        self,
        keypair: Keypair,
        rpc_url: str,
        confirm_timeout_seconds: float = 60.0,
        poll_interval_seconds: float = 2.0,
        request_timeout_seconds: float = 30.0,
    ):
        self._keypair = keypair
        self.rpc_url = rpc_url
        self.confirm_timeout_seconds = confirm_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.request_timeout_seconds = request_timeout_seconds

    @property
    def wallet_address(self) -> str:
        return str(self._keypair.pubkey())

    def sign(self, transaction: str) -> str:
        """Sign a base64 unsigned transaction; returns base64 signed bytes."""
        try:
            unsigned = VersionedTransaction.from_bytes(base64.b64decode(transaction))
            signed = VersionedTransaction(unsigned.message, [self._keypair])
        except (ValueError, TypeError) as e:
            raise TransactionSubmitError(f"Could not sign transaction: {e}") from e
        return base64.b64encode(bytes(signed)).decode()

    async def sign_and_send(self, transaction: str) -> str:
        """
        Raises:
            TransactionSubmitError: sign, broadcast or confirmation failed
        """
        signed_b64 = self.sign(transaction)
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout_seconds)
            ) as session:
                signature = await self._rpc(
                    session,
                    "sendTransaction",
                    [signed_b64, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"}],
                )
                logger.info("Transaction sent", signature=signature)
                await self._wait_for_confirmation(session, signature)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransactionSubmitError(f"RPC request failed: {e}") from e
        return signature

    async def _wait_for_confirmation(self, session: aiohttp.ClientSession, signature: str) -> None:
        attempts = max(1, int(self.confirm_timeout_seconds / self.poll_interval_seconds))
        for _ in range(attempts):
            await asyncio.sleep(self.poll_interval_seconds)
            result = await self._rpc(
                session,
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            statuses: List[Optional[Dict[str, Any]]] = (result or {}).get("value") or []
            status = statuses[0] if statuses else None
            if not status:
                continue
            if status.get("err"):
                raise TransactionSubmitError(f"Transaction {signature} failed: {status['err']}")
            if status.get("confirmationStatus") in _CONFIRMED_STATES:
                return
        raise TransactionSubmitError(
            f"Transaction {signature} not confirmed within {self.confirm_timeout_seconds:.0f}s"
        )

    async def _rpc(self, session: aiohttp.ClientSession, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        async with session.post(self.rpc_url, json=payload) as resp:
            if resp.status != 200:
                raise TransactionSubmitError(f"RPC {method} HTTP {resp.status}")
            body = await resp.json()
        if "error" in body:
            raise TransactionSubmitError(f"RPC {method} error: {body['error']}")
        return body.get("result")


class PaperSigner:
    """TransactionSigner for paper trading: nothing is signed or sent."""

    def __init__(self, wallet_address: str, clock: Callable[[], datetime] = utc_now):
        self._wallet_address = wallet_address
        self._clock = clock

    @property
    def wallet_address(self) -> str:
        return self._wallet_address

    async def sign_and_send(self, transaction: str) -> str:
        reference = f"PAPER_TX_{int(self._clock().timestamp() * 1000)}"
        logger.info("Paper trading — transaction not sent", reference=reference)
        return reference
