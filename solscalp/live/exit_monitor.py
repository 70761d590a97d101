"""
Slow exit monitor: full rule evaluation for every active position.

Runs every `monitor_interval_seconds` (default 60s). Per position:
fetch rich market data, refresh highest_price / pnl_percent in the ledger,
evaluate SLOW_RULES and hand any decision to the sell executor.
Feed failures skip the position; they never count as a stop-loss.
"""
from typing import Optional, Sequence

from solscalp.domain.models import Position
from solscalp.domain.protocols import MarketDataFeed
from solscalp.exceptions import DataError, PositionAlreadyClosedError
from solscalp.execution.ledger import PositionLedger
from solscalp.execution.sell_executor import SellExecutor
from solscalp.live.exit_rules import SLOW_RULES, ExitContext, ExitRule, ExitSettings, evaluate_rules
from solscalp.monitoring.logger import get_logger
from solscalp.risk.cooldown import CooldownRegister
from solscalp.risk.market_guard import MarketGuard

logger = get_logger(__name__)


class ExitMonitor:
    """Slow monitor loop body. One `run_cycle()` per interval."""

    def __init__(
        self,
        ledger: PositionLedger,
        guard: MarketGuard,
        cooldowns: CooldownRegister,
        market_feed: MarketDataFeed,
        executor: SellExecutor,
        settings: Optional[ExitSettings] = None,
        rules: Sequence[ExitRule] = SLOW_RULES,
    ):
        self._ledger = ledger
        self._guard = guard
        self._cooldowns = cooldowns
        self._feed = market_feed
        self._executor = executor
        self._settings = settings or ExitSettings()
        self._rules = rules

    async def run_cycle(self) -> int:
        """
        Evaluate every active position once.

        Returns:
            Number of sells executed (partial or full)
        """
        positions = self._ledger.active_positions()
        executed = 0
        if positions:
            logger.debug("Exit monitor cycle", active_positions=len(positions))

        for position in positions:
            try:
                if await self._check_position(position):
                    executed += 1
            except PositionAlreadyClosedError as e:
                logger.info(
                    "Position closed elsewhere — skipping",
                    position_id=position.id,
                    token=position.token_symbol,
                    detail=str(e),
                )
            except (DataError, ArithmeticError) as e:
                logger.warning(
                    "Bad data for position — skipping",
                    position_id=position.id,
                    token=position.token_symbol,
                    strategy=position.strategy.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._cooldowns.prune_expired_cooldowns()
        return executed

    async def _check_position(self, position: Position) -> bool:
        try:
            market_data = await self._feed.fetch_token_data(position.token_address)
        except Exception as e:
            logger.warning(
                "Market data fetch failed — skipping position",
                position_id=position.id,
                token=position.token_symbol,
                strategy=position.strategy.value,
                error=str(e),
            )
            return False
        if market_data is None:
            logger.warning(
                "No market data — skipping position",
                position_id=position.id,
                token=position.token_symbol,
                token_address=position.token_address,
            )
            return False

        price = market_data.price_usd
        pnl_percent = position.pnl_percent_at(price)
        changes = {"pnl_percent": pnl_percent}
        if price > position.highest_price:
            changes["highest_price"] = price
        position = self._ledger.update(position.id, **changes)

        alert_level = self._guard.alert_level
        logger.info(
            "Position check",
            token=position.token_symbol,
            strategy=position.strategy.value,
            pnl_percent=f"{pnl_percent:.2f}",
            market_cap=str(market_data.market_cap),
            alert_level=alert_level.value,
        )

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
            "Exit triggered",
            position_id=position.id,
            token=position.token_symbol,
            strategy=position.strategy.value,
            reason=decision.reason.value,
            sell_percent=str(decision.sell_percent),
            pnl_percent=f"{pnl_percent:.2f}",
        )
        result = await self._executor.execute(position, market_data, decision)
        return result is not None
