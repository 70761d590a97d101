"""
Domain protocols (interfaces) for dependency inversion.

These protocols define the contracts the external collaborators must
implement, allowing the ledger, guard, monitors and executor to depend on
abstractions rather than concrete HTTP/RPC clients. Tests substitute
in-memory fakes.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from solscalp.domain.models import MarketData, Notification


@runtime_checkable
class MarketDataFeed(Protocol):
    """Rich per-token market data (slow monitor)."""

    async def fetch_token_data(self, token_address: str) -> Optional[MarketData]: ...


@runtime_checkable
class PriceFeed(Protocol):
    """Batched current USD price lookup (fast monitor)."""

    async def fetch_prices(self, token_addresses: Iterable[str]) -> Dict[str, Decimal]: ...


@runtime_checkable
class ReferencePriceFeed(Protocol):
    """Macro reference-asset USD price (market guard)."""

    async def fetch_price(self) -> Optional[Decimal]: ...


@dataclass(frozen=True)
class SwapTransaction:
    """Unsigned sell transaction plus the quote it was built from."""
    transaction: str  # base64-encoded unsigned transaction
    in_amount: int
    out_amount: int
    slippage_bps: int


@runtime_checkable
class SwapService(Protocol):
    """Quote + unsigned transaction build for a token → SOL sell."""

    async def build_sell_transaction(
        self,
        token_address: str,
        token_amount: int,
        slippage_bps: int,
        wallet_address: str,
    ) -> SwapTransaction: ...


@runtime_checkable
class TransactionSigner(Protocol):
    """Signs, broadcasts and confirms a transaction; returns its signature."""

    @property
    def wallet_address(self) -> str: ...

    async def sign_and_send(self, transaction: str) -> str: ...


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget event delivery. Must never raise into core code."""

    async def send(self, notification: Notification) -> None: ...


class NullNotifier:
    """No-op sink for use in tests or when alerts are disabled."""

    async def send(self, notification: Notification) -> None:
        pass
