"""
Fast stop-loss monitor.

Polls one batched price lookup for every active token (default every 10s)
to catch stop-loss breaches between slow-monitor cycles. Only the guard and
stop-loss rules run here: no trailing stop, no targets, no partial exits.
Sells go through the same SellExecutor with a price-only MarketData record.
"""
from decimal import Decimal
from typing import Optional, Sequence

from solscalp.domain.models import AlertLevel, MarketData, Position
from solscalp.domain.protocols import PriceFeed
from solscalp.exceptions import DataError, PositionAlreadyClosedError
from solscalp.execution.ledger import PositionLedger
from solscalp.execution.sell_executor import SellExecutor
from solscalp.live.exit_rules import FAST_RULES, ExitContext, ExitRule, ExitSettings, evaluate_rules
from solscalp.monitoring.logger import get_logger
from solscalp.risk.market_guard import MarketGuard

logger = get_logger(__name__)


class FastStopLossMonitor:
    def __init__(
        self,
        ledger: PositionLedger,
        guard: MarketGuard,
        price_feed: PriceFeed,
        executor: SellExecutor,
        settings: Optional[ExitSettings] = None,
        rules: Sequence[ExitRule] = FAST_RULES,
    ):
        self._ledger = ledger
        self._guard = guard
        self._feed = price_feed
        self._executor = executor
        self._settings = settings or ExitSettings()
        self._rules = rules

    async def run_cycle(self) -> int:
        """Returns number of sells executed."""
        positions = self._ledger.active_positions()
        if not positions:
            return 0

        tokens = sorted({p.token_address for p in positions})
        try:
            prices = await self._feed.fetch_prices(tokens)
        except Exception as e:
            logger.warning("Price fetch failed — skipping fast stop-loss cycle", tokens=len(tokens), error=str(e))
            return 0

        alert_level = self._guard.alert_level
        executed = 0
        for position in positions:
            price = prices.get(position.token_address)
            if not price:
                continue

            try:
                if await self._check_position(position, price, alert_level):
                    executed += 1
            except PositionAlreadyClosedError as e:
                logger.info("Position closed elsewhere — skipping", position_id=position.id, detail=str(e))
            except (DataError, ArithmeticError) as e:
                logger.warning(
                    "Bad data for position — skipping",
                    position_id=position.id,
                    token=position.token_symbol,
                    strategy=position.strategy.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return executed

    async def _check_position(self, position: Position, price: Decimal, alert_level: AlertLevel) -> bool:
        market_data = MarketData.price_only(position.token_address, price, position.token_symbol)
        ctx = ExitContext(
            position=position,
            market_data=market_data,
            alert_level=alert_level,
            settings=self._settings,
        )
        decision = evaluate_rules(self._rules, ctx)
        if decision is None:
            return False

        logger.warning(
            "Fast stop-loss triggered",
            position_id=position.id,
            token=position.token_symbol,
            strategy=position.strategy.value,
            reason=decision.reason.value,
            pnl_percent=f"{ctx.pnl_percent:.2f}",
        )
        return await self._executor.execute(position, market_data, decision) is not None
