"""
Domain models for the exit desk.

These are the core business objects used throughout the application.
All timestamps use UTC timezone-aware datetimes; prices and SOL amounts
are Decimals and are persisted as strings.
"""
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from solscalp.exceptions import InvalidExitError


def utc_now() -> datetime:
    """Default clock for every stateful component."""
    return datetime.now(timezone.utc)


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _dt(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class Strategy(str, Enum):
    """Strategy tag of the scanner that opened a position."""
    SCALP = "scalp"
    MOMENTUM = "momentum"
    BREAKOUT = "breakout"


class PositionStatus(str, Enum):
    """Position lifecycle: ACTIVE → COMPLETED | STOPPED, never back."""
    ACTIVE = "active"
    COMPLETED = "completed"
    STOPPED = "stopped"


class ExitReason(str, Enum):
    """Reason for a (partial or full) exit."""
    MARKET_GUARD_RED = "market_guard_red"
    MARKET_GUARD_ORANGE = "market_guard_orange"
    TRAILING_STOP = "trailing_stop"
    STOP_LOSS = "stop_loss"
    PARTIAL_TARGET = "partial_target"
    FINAL_TARGET = "final_target"
    MC_TARGET = "mc_target"
    TARGET = "target"
    SELL_PRESSURE = "sell_pressure"

    @property
    def is_stop(self) -> bool:
        """Only a plain stop-loss closes a position as STOPPED."""
        return self is ExitReason.STOP_LOSS

    @property
    def is_protective(self) -> bool:
        """Exits reported through the stop-loss notification channel."""
        return self in (
            ExitReason.STOP_LOSS,
            ExitReason.MARKET_GUARD_ORANGE,
            ExitReason.MARKET_GUARD_RED,
        )


class AlertLevel(str, Enum):
    """Market guard alert level."""
    NONE = "NONE"
    YELLOW = "YELLOW"
    ORANGE = "ORANGE"
    RED = "RED"


@dataclass
class PositionSpec:
    """
    Entry details supplied by a strategy scanner when opening a position.

    Stop-loss and target percentages are copied into the position so later
    config changes never alter an open position.
    """
    strategy: Strategy
    token_address: str
    token_symbol: str
    entry_price: Decimal
    amount_sol: Decimal
    token_quantity: int
    stop_loss_percent: Decimal
    target_gain_percent: Decimal
    entry_market_cap: Decimal = Decimal("0")
    exit_market_cap: Optional[Decimal] = None
    entry_tx: Optional[str] = None


@dataclass
class Position:
    """
    A single automated buy-then-sell cycle for a token (a "trade").

    Invariants:
        status == ACTIVE  <=>  exit_time is None
        highest_price >= entry_price, non-decreasing while active
    """
    id: str
    strategy: Strategy
    token_address: str
    token_symbol: str
    entry_price: Decimal
    amount_sol: Decimal
    token_quantity: int
    stop_loss_percent: Decimal
    target_gain_percent: Decimal
    entry_time: datetime
    entry_market_cap: Decimal = Decimal("0")
    exit_market_cap: Optional[Decimal] = None
    highest_price: Decimal = Decimal("0")
    partial_exit_executed: bool = False
    partial_exit_percent: Optional[Decimal] = None
    partial_exit_tx: Optional[str] = None
    status: PositionStatus = PositionStatus.ACTIVE
    entry_tx: Optional[str] = None
    exit_price: Optional[Decimal] = None
    exit_tx: Optional[str] = None
    exit_reason: Optional[ExitReason] = None
    pnl_percent: Decimal = Decimal("0")
    pnl_sol: Decimal = Decimal("0")
    exit_time: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    def pnl_percent_at(self, price: Decimal) -> Decimal:
        """Unrealized P&L percent if the position were valued at `price`."""
        return (price - self.entry_price) / self.entry_price * Decimal("100")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            out[f.name] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        known = {f.name for f in fields(cls)}
        d = {k: v for k, v in data.items() if k in known}
        for name in (
            "entry_price", "amount_sol", "stop_loss_percent", "target_gain_percent",
            "entry_market_cap", "highest_price", "pnl_percent", "pnl_sol",
        ):
            if name in d:
                d[name] = _dec(d[name])
        for name in ("exit_market_cap", "partial_exit_percent", "exit_price"):
            d[name] = _dec(d.get(name))
        d["strategy"] = Strategy(d["strategy"])
        d["status"] = PositionStatus(d.get("status", PositionStatus.ACTIVE.value))
        d["exit_reason"] = ExitReason(d["exit_reason"]) if d.get("exit_reason") else None
        d["entry_time"] = _dt(d["entry_time"])
        d["exit_time"] = _dt(d.get("exit_time"))
        d["token_quantity"] = int(d["token_quantity"])
        return cls(**d)


@dataclass
class AggregateState:
    """Running realized P&L counters (SOL)."""
    daily_pnl_sol: Decimal = Decimal("0")
    daily_reset_date: Optional[date] = None
    total_pnl_sol: Decimal = Decimal("0")
    trade_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily_pnl_sol": str(self.daily_pnl_sol),
            "daily_reset_date": self.daily_reset_date.isoformat() if self.daily_reset_date else None,
            "total_pnl_sol": str(self.total_pnl_sol),
            "trade_count": self.trade_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregateState":
        reset = data.get("daily_reset_date")
        return cls(
            daily_pnl_sol=Decimal(str(data.get("daily_pnl_sol", "0"))),
            daily_reset_date=date.fromisoformat(reset) if reset else None,
            total_pnl_sol=Decimal(str(data.get("total_pnl_sol", "0"))),
            trade_count=int(data.get("trade_count", 0)),
        )


# Placeholders used when only a price is known (fast stop-loss path)
PLACEHOLDER_LIQUIDITY_USD = Decimal("50000")
NEUTRAL_BUY_PRESSURE = Decimal("50")


@dataclass(frozen=True)
class MarketData:
    """
    Current market snapshot for one token.

    Both monitors consume this one contract; the fast monitor fills the
    fields it cannot observe with conservative placeholders.
    """
    token_address: str
    price_usd: Decimal
    symbol: str = ""
    market_cap: Decimal = Decimal("0")
    liquidity_usd: Decimal = PLACEHOLDER_LIQUIDITY_USD
    volume_5m: Decimal = Decimal("0")
    volume_1h: Decimal = Decimal("0")
    volume_6h: Decimal = Decimal("0")
    volume_24h: Decimal = Decimal("0")
    buys_5m: int = 0
    sells_5m: int = 0
    buy_pressure: Decimal = NEUTRAL_BUY_PRESSURE
    price_change_5m: Decimal = Decimal("0")
    price_change_1h: Decimal = Decimal("0")
    price_change_24h: Decimal = Decimal("0")

    @classmethod
    def price_only(cls, token_address: str, price_usd: Decimal, symbol: str = "") -> "MarketData":
        return cls(token_address=token_address, price_usd=price_usd, symbol=symbol)


@dataclass(frozen=True)
class ExitDecision:
    """Outcome of exit-rule evaluation for one position."""
    reason: ExitReason
    sell_percent: Decimal = Decimal("100")
    records_cooldown: bool = False

    def __post_init__(self):
        if not Decimal("0") < self.sell_percent <= Decimal("100"):
            raise InvalidExitError(f"sell_percent must be in (0, 100], got {self.sell_percent}")

    @property
    def is_full_exit(self) -> bool:
        return self.sell_percent >= Decimal("100")


class NotificationType(str, Enum):
    """Typed events delivered to the notification sink."""
    POSITION_OPENED = "POSITION_OPENED"
    POSITION_CLOSED = "POSITION_CLOSED"
    STOP_LOSS = "STOP_LOSS"
    PARTIAL_EXIT = "PARTIAL_EXIT"
    GUARD_ALERT = "GUARD_ALERT"
    GUARD_CLEARED = "GUARD_CLEARED"


@dataclass
class Notification:
    """Fire-and-forget event for the notification sink."""
    event_type: NotificationType
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    urgent: bool = False
