"""
Sell executor: turns an ExitDecision into a confirmed sell and ledger update.

Both monitors call `execute()`. The exit claim on the ledger is held for the
whole quote → build → submit → close sequence so the fast and slow loops can
never sell the same position twice.

On success:
    partial (< 100%) → partial_exit_executed, reduced token_quantity
    full (100%)      → ledger close (+ stop-loss cooldown when flagged)

On any build/submit failure the position is left ACTIVE and untouched; the
next monitor cycle retries. The executor itself does not retry.
"""
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from solscalp.domain.models import ExitDecision, MarketData, Notification, NotificationType, Position
from solscalp.domain.protocols import NotificationSink, NullNotifier, SwapService
from solscalp.execution.ledger import PositionLedger
from solscalp.execution.submitter import TransactionSubmitter
from solscalp.monitoring.logger import get_logger
from solscalp.risk.cooldown import CooldownRegister

logger = get_logger(__name__)

DEFAULT_SOL_PRICE_USD = Decimal("150")
BASE_SLIPPAGE_BPS = 100
MAX_SLIPPAGE_BPS = 500

_HUNDRED = Decimal("100")


def calculate_slippage_bps(
    amount_sol: Decimal,
    liquidity_usd: Decimal,
    sol_price_usd: Decimal = DEFAULT_SOL_PRICE_USD,
    price_change_5m: Decimal = Decimal("0"),
) -> int:
    """
    Slippage tolerance in basis points.

    Widens with trade size relative to pool liquidity and with 5-minute
    volatility, capped at MAX_SLIPPAGE_BPS.

    Args:
        amount_sol: SOL value being sold
        liquidity_usd: Pool liquidity in USD
        sol_price_usd: SOL/USD used to size the trade
        price_change_5m: Recent 5m price change (percent)
    """
    trade_usd = Decimal(str(amount_sol)) * Decimal(str(sol_price_usd))
    liquidity = Decimal(str(liquidity_usd))
    # No liquidity figure: treat as maximum impact
    impact = trade_usd / liquidity if liquidity > 0 else Decimal("1")

    bps = BASE_SLIPPAGE_BPS
    if impact > Decimal("0.05"):
        bps += 200
    elif impact > Decimal("0.02"):
        bps += 100
    elif impact > Decimal("0.01"):
        bps += 50

    volatility = abs(Decimal(str(price_change_5m)))
    if volatility > 20:
        bps += 150
    elif volatility > 10:
        bps += 75

    return min(bps, MAX_SLIPPAGE_BPS)


class SellExecutor:
    """Single sell path shared by the slow and fast monitors."""

    def __init__(
        self,
        ledger: PositionLedger,
        cooldowns: CooldownRegister,
        swap_service: SwapService,
        submitter: TransactionSubmitter,
        notifier: Optional[NotificationSink] = None,
        sol_price_usd: Decimal = DEFAULT_SOL_PRICE_USD,
    ):
        self._ledger = ledger
        self._cooldowns = cooldowns
        self._swap = swap_service
        self._submitter = submitter
        self._notifier = notifier or NullNotifier()
        self.sol_price_usd = sol_price_usd

    async def execute(
        self,
        position: Position,
        market_data: MarketData,
        decision: ExitDecision,
    ) -> Optional[Position]:
        """
        Sell `decision.sell_percent` of a position.

        Returns:
            The updated (partial) or closed (full) position, or None when the
            sell failed or was rejected and the position is unchanged.

        Raises:
            PositionAlreadyClosedError: position closed, or another caller is
                already selling it (ExitInProgressError)
        """
        with self._ledger.claim_exit(position.id) as current:
            return await self._sell(current, market_data, decision)

    async def _sell(self, position: Position, market_data: MarketData, decision: ExitDecision) -> Optional[Position]:
        log = logger.bind(
            position_id=position.id,
            token=position.token_symbol,
            strategy=position.strategy.value,
            reason=decision.reason.value,
        )

        if not decision.is_full_exit and position.partial_exit_executed:
            log.warning("Partial exit already executed — request rejected")
            return None

        if decision.is_full_exit:
            token_amount = position.token_quantity
        else:
            token_amount = int(
                (Decimal(position.token_quantity) * decision.sell_percent / _HUNDRED).to_integral_value(ROUND_DOWN)
            )
        if token_amount <= 0:
            log.warning("Nothing to sell", token_quantity=position.token_quantity)
            return None

        slippage_bps = calculate_slippage_bps(
            position.amount_sol * decision.sell_percent / _HUNDRED,
            market_data.liquidity_usd,
            self.sol_price_usd,
            market_data.price_change_5m,
        )

        try:
            swap = await self._swap.build_sell_transaction(
                position.token_address,
                token_amount,
                slippage_bps,
                self._submitter.wallet_address,
            )
            signature = await self._submitter.submit(swap.transaction)
        except Exception as e:
            log.error(
                "Sell failed — position left active for retry",
                error=str(e),
                error_type=type(e).__name__,
                token_amount=token_amount,
                slippage_bps=slippage_bps,
            )
            return None

        price = market_data.price_usd
        pnl_percent = position.pnl_percent_at(price)
        pnl_sol = position.amount_sol * pnl_percent / _HUNDRED

        if not decision.is_full_exit:
            remaining = position.token_quantity - token_amount
            updated = self._ledger.update(
                position.id,
                partial_exit_executed=True,
                partial_exit_percent=decision.sell_percent,
                partial_exit_tx=signature,
                token_quantity=remaining,
            )
            log.info(
                "Partial exit executed",
                sell_percent=str(decision.sell_percent),
                tx=signature,
                tokens_remaining=remaining,
            )
            await self._notify(Notification(
                event_type=NotificationType.PARTIAL_EXIT,
                message=f"{position.token_symbol} partial exit {decision.sell_percent}% at {pnl_percent:+.1f}%",
                details={
                    "position_id": position.id,
                    "token": position.token_symbol,
                    "pnl_percent": f"{pnl_percent:.2f}",
                    "pnl_sol": f"{pnl_sol * decision.sell_percent / _HUNDRED:.4f}",
                    "tx": signature,
                },
            ))
            return updated

        closed = self._ledger.close(position.id, price, signature, decision.reason)
        if decision.records_cooldown:
            self._cooldowns.record_stop_loss(position.token_address)

        event_type = NotificationType.STOP_LOSS if decision.reason.is_protective else NotificationType.POSITION_CLOSED
        await self._notify(Notification(
            event_type=event_type,
            message=f"{position.token_symbol} closed ({decision.reason.value}) at {closed.pnl_percent:+.1f}%",
            details={
                "position_id": position.id,
                "token": position.token_symbol,
                "strategy": position.strategy.value,
                "reason": decision.reason.value,
                "pnl_percent": f"{closed.pnl_percent:.2f}",
                "pnl_sol": f"{closed.pnl_sol:.4f}",
                "tx": signature,
            },
            urgent=decision.reason.is_protective,
        ))
        return closed

    async def _notify(self, notification: Notification) -> None:
        try:
            await self._notifier.send(notification)
        except Exception as e:
            logger.warning("Notification failed (non-fatal)", event_type=notification.event_type.value, error=str(e))
