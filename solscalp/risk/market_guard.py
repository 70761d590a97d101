"""
MarketGuard: BTC cascade protection.

Watches the reference asset (BTC/USD) and raises a market-wide alert level
that strategy scanners and exit monitors read:

    YELLOW — BTC down 3%+ in 1 hour       → pause all entries
    ORANGE — BTC down 4%+ in 4 hours      → pause entries + tighten stops
    RED    — BTC down 5%+ in 30 minutes,
             or volatility 10x baseline   → pause entries + force-close
                                            guard-sensitive positions
    NONE   — stable for 4+ accumulated hours after an alert

Levels are evaluated from raw signals each cycle and jump directly to
whichever level qualifies. Only `check()` changes the level; everything
else reads it.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from solscalp.domain.models import AlertLevel, Notification, NotificationType, utc_now
from solscalp.domain.protocols import NotificationSink, NullNotifier, ReferencePriceFeed
from solscalp.monitoring.logger import get_logger
from solscalp.storage.json_store import JsonDocumentStore

logger = get_logger(__name__)

PRICE_HISTORY_WINDOW = timedelta(hours=5)
VOLATILITY_HISTORY_WINDOW = timedelta(hours=2)
BASELINE_SAMPLES = 6
CURRENT_VOLATILITY_SAMPLES = 3

# Stand-in for an hourly liquidation feed: the 4h drop maps to a USD figure
LIQUIDATION_PROXY_ELEVATED_USD = Decimal("200000000")
ORANGE_LIQUIDATION_USD = Decimal("150000000")
STABLE_LIQUIDATION_USD = Decimal("50000000")

_HUNDRED = Decimal("100")


@dataclass
class PriceSample:
    price: Decimal
    timestamp: datetime


@dataclass
class VolatilitySample:
    change_pct: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class GuardReading:
    """Signals computed in one check cycle."""
    price: Decimal
    drop_30m: Decimal
    drop_1h: Decimal
    drop_4h: Decimal
    liquidation_proxy: Decimal
    volatility_multiplier: Decimal


class MarketGuard:
    """
    Market-wide circuit breaker with its own durable state (btc_guard.json).
    """

    def __init__(
        self,
        price_feed: ReferencePriceFeed,
        store: JsonDocumentStore,
        notifier: Optional[NotificationSink] = None,
        check_interval: timedelta = timedelta(minutes=5),
        yellow_drop_1h_pct: float = 3.0,
        orange_drop_4h_pct: float = 4.0,
        red_drop_30m_pct: float = 5.0,
        red_volatility_multiplier: float = 10.0,
        stable_drop_pct: float = 1.0,
        all_clear_stable_hours: float = 4.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize MarketGuard and restore persisted state.

        Args:
            price_feed: Reference-asset price source
            store: Persistence for btc_guard.json
            notifier: Sink for alert raised/cleared events
            check_interval: Minimum time between check cycles (default 5 min)
            yellow_drop_1h_pct: 1h drop for YELLOW (default 3%)
            orange_drop_4h_pct: 4h drop that elevates the liquidation proxy (default 4%)
            red_drop_30m_pct: 30m drop for RED (default 5%)
            red_volatility_multiplier: Volatility vs baseline for RED (default 10x)
            stable_drop_pct: 1h and 30m drop below which a cycle counts as stable (default 1%)
            all_clear_stable_hours: Accumulated stable hours before NONE (default 4h)
        """
        self._price_feed = price_feed
        self._store = store
        self._notifier = notifier or NullNotifier()
        self._clock = clock
        self._lock = threading.RLock()

        self.check_interval = check_interval
        self.yellow_drop_1h_pct = Decimal(str(yellow_drop_1h_pct))
        self.orange_drop_4h_pct = Decimal(str(orange_drop_4h_pct))
        self.red_drop_30m_pct = Decimal(str(red_drop_30m_pct))
        self.red_volatility_multiplier = Decimal(str(red_volatility_multiplier))
        self.stable_drop_pct = Decimal(str(stable_drop_pct))
        self.all_clear_stable_hours = Decimal(str(all_clear_stable_hours))

        # State
        self._alert_level = AlertLevel.NONE
        self._alert_triggered_at: Optional[datetime] = None
        self._stable_hours = Decimal("0")
        self._baseline_volatility: Optional[Decimal] = None
        self._price_history: List[PriceSample] = []
        self._volatility_history: List[VolatilitySample] = []
        self._last_check_at: Optional[datetime] = None

        self._restore(store.load())

    # ============ PUBLIC READS ============

    @property
    def alert_level(self) -> AlertLevel:
        with self._lock:
            return self._alert_level

    def is_market_dangerous(self) -> bool:
        return self.alert_level != AlertLevel.NONE

    def is_red_alert(self) -> bool:
        return self.alert_level == AlertLevel.RED

    def is_orange_or_above(self) -> bool:
        return self.alert_level in (AlertLevel.ORANGE, AlertLevel.RED)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "alert_level": self._alert_level.value,
                "alert_triggered_at": self._alert_triggered_at.isoformat() if self._alert_triggered_at else None,
                "stable_hours": f"{self._stable_hours:.1f}",
                "baseline_volatility": str(self._baseline_volatility) if self._baseline_volatility is not None else None,
                "price_points": len(self._price_history),
                "volatility_points": len(self._volatility_history),
            }

    # ============ CHECK CYCLE ============

    async def check(self) -> bool:
        """
        Run one guard cycle if the check interval has elapsed.

        Returns:
            True if a cycle ran (price fetched and evaluated), False if it
            was rate-limited or skipped on a feed failure.
        """
        now = self._clock()
        if self._last_check_at and now - self._last_check_at < self.check_interval:
            return False
        self._last_check_at = now

        try:
            price = await self._price_feed.fetch_price()
        except Exception as e:
            logger.warning("Reference price fetch failed — skipping guard check", error=str(e))
            return False
        if not price or price <= 0:
            logger.warning("Could not fetch reference price — skipping guard check")
            return False

        transition: Optional[Tuple[AlertLevel, AlertLevel, str]] = None
        with self._lock:
            self._record_price(Decimal(str(price)), now)
            self._record_volatility(now)
            reading = self._read_signals(now)

            logger.info(
                "Market guard reading",
                btc_price=str(reading.price),
                drop_1h=f"{reading.drop_1h:.2f}",
                drop_30m=f"{reading.drop_30m:.2f}",
                drop_4h=f"{reading.drop_4h:.2f}",
                volatility_multiplier=f"{reading.volatility_multiplier:.1f}",
                alert_level=self._alert_level.value,
            )

            matched = self._evaluate_thresholds(reading)
            if matched is not None:
                level, reason = matched
                # A qualifying threshold is never a stable cycle
                self._stable_hours = Decimal("0")
                transition = self._set_level(level, reason, now)
            elif self._alert_level != AlertLevel.NONE:
                transition = self._check_if_stable(reading, now)

            self._save(now)

        if transition is not None:
            await self._notify_transition(*transition, price=Decimal(str(price)))
        return True

    def _evaluate_thresholds(self, reading: GuardReading) -> Optional[Tuple[AlertLevel, str]]:
        """RED, then ORANGE, then YELLOW; first match wins."""
        if reading.drop_30m >= self.red_drop_30m_pct:
            return AlertLevel.RED, f"BTC dropped {reading.drop_30m:.2f}% in 30 minutes"
        if self._baseline_volatility and reading.volatility_multiplier >= self.red_volatility_multiplier:
            return AlertLevel.RED, f"BTC volatility spiked {reading.volatility_multiplier:.1f}x above baseline"
        if reading.liquidation_proxy >= ORANGE_LIQUIDATION_USD:
            return AlertLevel.ORANGE, f"BTC dropped {reading.drop_4h:.2f}% in 4 hours — liquidation cascade risk"
        if reading.drop_1h >= self.yellow_drop_1h_pct:
            return AlertLevel.YELLOW, f"BTC dropped {reading.drop_1h:.2f}% in the last hour"
        return None

    def _check_if_stable(self, reading: GuardReading, now: datetime) -> Optional[Tuple[AlertLevel, AlertLevel, str]]:
        is_stable = (
            reading.drop_1h < self.stable_drop_pct
            and reading.drop_30m < self.stable_drop_pct
            and reading.liquidation_proxy < STABLE_LIQUIDATION_USD
        )
        if not is_stable:
            if self._stable_hours > 0:
                logger.info("Market not stable — all-clear countdown reset", stable_hours=f"{self._stable_hours:.2f}")
            self._stable_hours = Decimal("0")
            return None

        self._stable_hours += Decimal(str(self.check_interval.total_seconds())) / Decimal("3600")
        if round(self._stable_hours, 6) >= self.all_clear_stable_hours:
            return self._set_level(AlertLevel.NONE, f"Market stable for {self.all_clear_stable_hours}h", now)

        logger.info(
            "Market stabilizing",
            alert_level=self._alert_level.value,
            hours_until_all_clear=f"{self.all_clear_stable_hours - self._stable_hours:.1f}",
        )
        return None

    def _set_level(self, level: AlertLevel, reason: str, now: datetime) -> Optional[Tuple[AlertLevel, AlertLevel, str]]:
        """Apply a level change. Returns (previous, new, reason) or None if unchanged."""
        if level == self._alert_level:
            return None

        previous = self._alert_level
        self._alert_level = level
        self._stable_hours = Decimal("0")
        if level == AlertLevel.NONE:
            self._alert_triggered_at = None
            logger.info("MARKET_GUARD_ALL_CLEAR", previous=previous.value, reason=reason)
        else:
            self._alert_triggered_at = now
            logger.warning("MARKET_GUARD_ALERT", previous=previous.value, level=level.value, reason=reason)
        return previous, level, reason

    async def _notify_transition(self, previous: AlertLevel, level: AlertLevel, reason: str, price: Decimal) -> None:
        if level == AlertLevel.NONE:
            notification = Notification(
                event_type=NotificationType.GUARD_CLEARED,
                message=f"All clear — {reason}. Resuming normal operations.",
                details={"previous_level": previous.value, "btc_price": str(price)},
            )
        else:
            notification = Notification(
                event_type=NotificationType.GUARD_ALERT,
                message=f"{level.value} alert — {reason}",
                details={"previous_level": previous.value, "level": level.value, "btc_price": str(price)},
                urgent=level == AlertLevel.RED,
            )
        try:
            await self._notifier.send(notification)
        except Exception as e:
            logger.warning("Guard notification failed (non-fatal)", level=level.value, error=str(e))

    # ============ SIGNALS ============

    def _record_price(self, price: Decimal, now: datetime) -> None:
        self._price_history.append(PriceSample(price=price, timestamp=now))
        cutoff = now - PRICE_HISTORY_WINDOW
        self._price_history = [s for s in self._price_history if s.timestamp >= cutoff]

    def _record_volatility(self, now: datetime) -> None:
        if len(self._price_history) < 2:
            return
        prev = self._price_history[-2].price
        current = self._price_history[-1].price
        change_pct = abs((current - prev) / prev) * _HUNDRED

        self._volatility_history.append(VolatilitySample(change_pct=change_pct, timestamp=now))
        cutoff = now - VOLATILITY_HISTORY_WINDOW
        self._volatility_history = [s for s in self._volatility_history if s.timestamp >= cutoff]

        if self._baseline_volatility is None and len(self._volatility_history) >= BASELINE_SAMPLES:
            first = self._volatility_history[:BASELINE_SAMPLES]
            self._baseline_volatility = sum((s.change_pct for s in first), Decimal("0")) / len(first)
            logger.info("Baseline BTC volatility set", baseline_pct=f"{self._baseline_volatility:.4f}")

    def _drop_over_window(self, window: timedelta, now: datetime) -> Decimal:
        cutoff = now - window
        entries = [s for s in self._price_history if s.timestamp >= cutoff]
        if len(entries) < 2:
            return Decimal("0")
        oldest, newest = entries[0].price, entries[-1].price
        return (oldest - newest) / oldest * _HUNDRED

    def _current_volatility(self) -> Decimal:
        if not self._volatility_history:
            return Decimal("0")
        recent = self._volatility_history[-CURRENT_VOLATILITY_SAMPLES:]
        return sum((s.change_pct for s in recent), Decimal("0")) / len(recent)

    def _read_signals(self, now: datetime) -> GuardReading:
        drop_4h = self._drop_over_window(timedelta(hours=4), now)
        if drop_4h >= self.orange_drop_4h_pct:
            logger.warning("BTC 4h drop — elevated liquidation risk", drop_4h=f"{drop_4h:.2f}")
            liquidation_proxy = LIQUIDATION_PROXY_ELEVATED_USD
        else:
            liquidation_proxy = Decimal("0")

        if self._baseline_volatility and self._baseline_volatility > 0:
            multiplier = self._current_volatility() / self._baseline_volatility
        else:
            multiplier = Decimal("0")

        return GuardReading(
            price=self._price_history[-1].price,
            drop_30m=self._drop_over_window(timedelta(minutes=30), now),
            drop_1h=self._drop_over_window(timedelta(hours=1), now),
            drop_4h=drop_4h,
            liquidation_proxy=liquidation_proxy,
            volatility_multiplier=multiplier,
        )

    # ============ PERSISTENCE ============

    def _restore(self, saved: Optional[Dict[str, Any]]) -> None:
        if not saved:
            return
        now = self._clock()
        try:
            price_cutoff = now - PRICE_HISTORY_WINDOW
            self._price_history = [
                PriceSample(price=Decimal(str(e["price"])), timestamp=datetime.fromisoformat(e["timestamp"]))
                for e in saved.get("price_history") or []
            ]
            self._price_history = [s for s in self._price_history if s.timestamp >= price_cutoff]

            vol_cutoff = now - VOLATILITY_HISTORY_WINDOW
            self._volatility_history = [
                VolatilitySample(change_pct=Decimal(str(e["change_pct"])), timestamp=datetime.fromisoformat(e["timestamp"]))
                for e in saved.get("volatility_history") or []
            ]
            self._volatility_history = [s for s in self._volatility_history if s.timestamp >= vol_cutoff]

            baseline = saved.get("baseline_volatility")
            self._baseline_volatility = Decimal(str(baseline)) if baseline is not None else None

            level = saved.get("current_alert_level")
            self._alert_level = AlertLevel(level) if level in AlertLevel._value2member_map_ else AlertLevel.NONE
            triggered = saved.get("alert_triggered_at")
            self._alert_triggered_at = datetime.fromisoformat(triggered) if triggered else None
            self._stable_hours = Decimal(str(saved.get("stable_hours", "0")))
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning("Failed to parse btc_guard.json — starting fresh", error=str(e))
            self._price_history, self._volatility_history = [], []
            self._baseline_volatility, self._alert_triggered_at = None, None
            self._alert_level, self._stable_hours = AlertLevel.NONE, Decimal("0")
            return

        logger.info(
            "Market guard restored from disk",
            price_points=len(self._price_history),
            volatility_points=len(self._volatility_history),
            alert_level=self._alert_level.value,
        )

    def _save(self, now: datetime) -> None:
        self._store.save({
            "price_history": [{"price": str(s.price), "timestamp": s.timestamp.isoformat()} for s in self._price_history],
            "volatility_history": [
                {"change_pct": str(s.change_pct), "timestamp": s.timestamp.isoformat()}
                for s in self._volatility_history
            ],
            "baseline_volatility": str(self._baseline_volatility) if self._baseline_volatility is not None else None,
            "current_alert_level": self._alert_level.value,
            "alert_triggered_at": self._alert_triggered_at.isoformat() if self._alert_triggered_at else None,
            "stable_hours": str(self._stable_hours),
            "saved_at": now.isoformat(),
        })
