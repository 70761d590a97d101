"""
Pytest configuration and shared fixtures.

Every stateful component takes an injected clock and persistence path, so
tests build real ledgers/registers/guards under tmp_path and drive time
with MutableClock. External collaborators are in-memory fakes.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pytest

from solscalp.domain.models import MarketData, Notification, PositionSpec, Strategy
from solscalp.domain.protocols import SwapTransaction
from solscalp.exceptions import TransactionSubmitError
from solscalp.execution.ledger import PositionLedger
from solscalp.execution.sell_executor import SellExecutor
from solscalp.execution.submitter import TransactionSubmitter
from solscalp.risk.cooldown import CooldownRegister
from solscalp.risk.market_guard import MarketGuard
from solscalp.storage.json_store import JsonDocumentStore


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


class MutableClock:
    """Injectable clock; `advance()` moves time forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMarketFeed:
    def __init__(self):
        self.data: Dict[str, MarketData] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def set_price(self, token: str, price, **fields) -> None:
        self.data[token] = MarketData(token_address=token, price_usd=Decimal(str(price)), **fields)

    async def fetch_token_data(self, token_address: str) -> Optional[MarketData]:
        self.calls.append(token_address)
        if token_address in self.errors:
            raise self.errors[token_address]
        return self.data.get(token_address)


class FakePriceFeed:
    def __init__(self):
        self.prices: Dict[str, Decimal] = {}
        self.error: Optional[Exception] = None
        self.calls: List[List[str]] = []

    async def fetch_prices(self, token_addresses: Iterable[str]) -> Dict[str, Decimal]:
        tokens = list(token_addresses)
        self.calls.append(tokens)
        if self.error is not None:
            raise self.error
        return {t: self.prices[t] for t in tokens if t in self.prices}


class FakeReferenceFeed:
    """Returns queued prices in order; None or an exception simulates a failure."""

    def __init__(self, prices=None):
        self.queue: List = list(prices or [])
        self.calls = 0

    def push(self, *prices) -> None:
        self.queue.extend(prices)

    async def fetch_price(self) -> Optional[Decimal]:
        self.calls += 1
        value = self.queue.pop(0) if self.queue else None
        if isinstance(value, Exception):
            raise value
        return Decimal(str(value)) if value is not None else None


class FakeSwapService:
    def __init__(self):
        self.calls: List[dict] = []
        self.fail_with: Optional[Exception] = None

    async def build_sell_transaction(self, token_address, token_amount, slippage_bps, wallet_address) -> SwapTransaction:
        self.calls.append({
            "token_address": token_address,
            "token_amount": token_amount,
            "slippage_bps": slippage_bps,
            "wallet_address": wallet_address,
        })
        if self.fail_with is not None:
            raise self.fail_with
        return SwapTransaction(
            transaction=f"unsigned-{len(self.calls)}",
            in_amount=token_amount,
            out_amount=1_000_000,
            slippage_bps=slippage_bps,
        )


class FakeSigner:
    """Fails the first `failures` calls with TransactionSubmitError."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.sent: List[str] = []

    @property
    def wallet_address(self) -> str:
        return "TestWallet1111111111111111111111111111111111"

    async def sign_and_send(self, transaction: str) -> str:
        self.sent.append(transaction)
        if len(self.sent) <= self.failures:
            raise TransactionSubmitError("blockhash not found")
        return f"sig-{len(self.sent)}"


class RecordingNotifier:
    def __init__(self):
        self.sent: List[Notification] = []

    async def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def types(self) -> List[str]:
        return [n.event_type.value for n in self.sent]


async def _no_sleep(seconds: float) -> None:
    return None


def make_spec(**overrides) -> PositionSpec:
    fields = dict(
        strategy=Strategy.SCALP,
        token_address="TokenMint1111111111111111111111111111111111",
        token_symbol="TEST",
        entry_price=Decimal("1.00"),
        amount_sol=Decimal("1.0"),
        token_quantity=1_000_000,
        stop_loss_percent=Decimal("20"),
        target_gain_percent=Decimal("70"),
    )
    fields.update(overrides)
    return PositionSpec(**fields)


@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def ledger(data_dir, clock):
    return PositionLedger(
        JsonDocumentStore(data_dir / "trades.json"),
        JsonDocumentStore(data_dir / "state.json"),
        clock=clock,
    )


@pytest.fixture
def cooldowns(data_dir, clock):
    return CooldownRegister(JsonDocumentStore(data_dir / "cooldowns.json"), clock=clock)


@pytest.fixture
def reference_feed():
    return FakeReferenceFeed()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def guard(data_dir, clock, reference_feed, notifier):
    return MarketGuard(
        reference_feed,
        JsonDocumentStore(data_dir / "btc_guard.json"),
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def market_feed():
    return FakeMarketFeed()


@pytest.fixture
def price_feed():
    return FakePriceFeed()


@pytest.fixture
def swap_service():
    return FakeSwapService()


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def submitter(signer):
    return TransactionSubmitter(signer, max_attempts=3, retry_interval=2.0, sleep=_no_sleep)


@pytest.fixture
def executor(ledger, cooldowns, swap_service, submitter, notifier):
    return SellExecutor(ledger, cooldowns, swap_service, submitter, notifier=notifier)


@pytest.fixture
def open_position(ledger):
    """Create an ACTIVE position in the ledger; kwargs override the spec."""
    def _open(**overrides):
        return ledger.create(make_spec(**overrides))
    return _open
