"""
Exit rules: an ordered list of predicate → decision functions.

Each rule looks at one ExitContext and either returns an ExitDecision or
None. `evaluate_rules()` walks the list top to bottom and the first rule
that returns a decision wins, so the order of SLOW_RULES / FAST_RULES is
the priority contract:

    1. market_guard_red     RED + guard-sensitive strategy → sell all
    2. market_guard_orange  ORANGE/RED + guard-sensitive + P&L ≤ −stop × 0.5
    3. trailing_stop        enabled, in profit, fell trailing% from high
    4. stop_loss            P&L ≤ −stop
    5. strategy_target      per-strategy profit / market-cap / pressure exits

The fast stop-loss loop only runs rules 1, 2 and 4.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, FrozenSet, Optional, Sequence

from solscalp.domain.models import (
    AlertLevel,
    ExitDecision,
    ExitReason,
    MarketData,
    Position,
    Strategy,
)

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ExitSettings:
    """Thresholds used by the exit rules when the position carries none."""
    default_stop_loss_percent: Decimal = Decimal("20")
    trailing_stop_enabled: bool = False
    trailing_stop_percent: Decimal = Decimal("10")
    guard_sensitive_strategies: FrozenSet[Strategy] = field(
        default_factory=lambda: frozenset({Strategy.MOMENTUM})
    )
    orange_stop_multiplier: Decimal = Decimal("0.5")
    scalp_partial_trigger_percent: Decimal = Decimal("70")
    scalp_partial_sell_percent: Decimal = Decimal("80")
    scalp_final_target_percent: Decimal = Decimal("100")
    scalp_exit_mc: Decimal = Decimal("500000")
    momentum_exit_mc: Decimal = Decimal("135000")
    breakout_target_gain_percent: Decimal = Decimal("20")
    breakout_min_buy_pressure: Decimal = Decimal("40")

    @classmethod
    def from_config(cls, exit_config) -> "ExitSettings":
        """Build from an `ExitConfig` section."""
        return cls(
            default_stop_loss_percent=Decimal(str(exit_config.stop_loss_percent)),
            trailing_stop_enabled=exit_config.trailing_stop_enabled,
            trailing_stop_percent=Decimal(str(exit_config.trailing_stop_percent)),
            guard_sensitive_strategies=frozenset(Strategy(s) for s in exit_config.guard_sensitive_strategies),
            orange_stop_multiplier=Decimal(str(exit_config.orange_stop_multiplier)),
            scalp_partial_trigger_percent=Decimal(str(exit_config.scalp_partial_trigger_percent)),
            scalp_partial_sell_percent=Decimal(str(exit_config.scalp_partial_sell_percent)),
            scalp_final_target_percent=Decimal(str(exit_config.scalp_final_target_percent)),
            scalp_exit_mc=Decimal(str(exit_config.scalp_exit_mc)),
            momentum_exit_mc=Decimal(str(exit_config.momentum_exit_mc)),
            breakout_target_gain_percent=Decimal(str(exit_config.breakout_target_gain_percent)),
            breakout_min_buy_pressure=Decimal(str(exit_config.breakout_min_buy_pressure)),
        )


@dataclass(frozen=True)
class ExitContext:
    """Everything a rule may look at for one position in one cycle."""
    position: Position
    market_data: MarketData
    alert_level: AlertLevel
    settings: ExitSettings

    @property
    def price(self) -> Decimal:
        return self.market_data.price_usd

    @property
    def pnl_percent(self) -> Decimal:
        return self.position.pnl_percent_at(self.price)

    @property
    def stop_loss_percent(self) -> Decimal:
        return self.position.stop_loss_percent or self.settings.default_stop_loss_percent

    @property
    def is_guard_sensitive(self) -> bool:
        return self.position.strategy in self.settings.guard_sensitive_strategies


ExitRule = Callable[[ExitContext], Optional[ExitDecision]]


# ---------------------------------------------------------------------------
# Protective rules
# ---------------------------------------------------------------------------

def market_guard_red_rule(ctx: ExitContext) -> Optional[ExitDecision]:
    # Unconditional force-close; no cooldown regardless of P&L sign
    if ctx.alert_level == AlertLevel.RED and ctx.is_guard_sensitive:
        return ExitDecision(reason=ExitReason.MARKET_GUARD_RED)
    return None


def market_guard_orange_rule(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.alert_level not in (AlertLevel.ORANGE, AlertLevel.RED) or not ctx.is_guard_sensitive:
        return None
    tightened_stop = ctx.stop_loss_percent * ctx.settings.orange_stop_multiplier
    if ctx.pnl_percent <= -tightened_stop:
        return ExitDecision(reason=ExitReason.MARKET_GUARD_ORANGE, records_cooldown=True)
    return None


def trailing_stop_rule(ctx: ExitContext) -> Optional[ExitDecision]:
    if not ctx.settings.trailing_stop_enabled:
        return None
    high = max(ctx.position.highest_price, ctx.price)
    if high <= 0:
        return None
    drop_from_high = (ctx.price - high) / high * _HUNDRED
    if drop_from_high <= -ctx.settings.trailing_stop_percent and ctx.pnl_percent > 0:
        return ExitDecision(reason=ExitReason.TRAILING_STOP)
    return None


def stop_loss_rule(ctx: ExitContext) -> Optional[ExitDecision]:
    if ctx.pnl_percent <= -ctx.stop_loss_percent:
        return ExitDecision(reason=ExitReason.STOP_LOSS, records_cooldown=True)
    return None


# ---------------------------------------------------------------------------
# Strategy targets
# ---------------------------------------------------------------------------

def _scalp_exit(ctx: ExitContext) -> Optional[ExitDecision]:
    s = ctx.settings
    partial_done = ctx.position.partial_exit_executed

    if not partial_done and ctx.pnl_percent >= s.scalp_partial_trigger_percent:
        return ExitDecision(reason=ExitReason.PARTIAL_TARGET, sell_percent=s.scalp_partial_sell_percent)
    if partial_done and ctx.pnl_percent >= s.scalp_final_target_percent:
        return ExitDecision(reason=ExitReason.FINAL_TARGET)

    exit_mc = ctx.position.exit_market_cap or s.scalp_exit_mc
    if ctx.market_data.market_cap >= exit_mc:
        sell_percent = _HUNDRED if partial_done else s.scalp_partial_sell_percent
        return ExitDecision(reason=ExitReason.MC_TARGET, sell_percent=sell_percent)
    return None


def _momentum_exit(ctx: ExitContext) -> Optional[ExitDecision]:
    exit_mc = ctx.position.exit_market_cap or ctx.settings.momentum_exit_mc
    if ctx.market_data.market_cap >= exit_mc:
        return ExitDecision(reason=ExitReason.MC_TARGET)
    return None


def _breakout_exit(ctx: ExitContext) -> Optional[ExitDecision]:
    target = ctx.position.target_gain_percent or ctx.settings.breakout_target_gain_percent
    if ctx.pnl_percent >= target:
        return ExitDecision(reason=ExitReason.TARGET)
    if ctx.market_data.buy_pressure < ctx.settings.breakout_min_buy_pressure and ctx.pnl_percent > 0:
        return ExitDecision(reason=ExitReason.SELL_PRESSURE)
    return None


STRATEGY_EXITS = {
    Strategy.SCALP: _scalp_exit,
    Strategy.MOMENTUM: _momentum_exit,
    Strategy.BREAKOUT: _breakout_exit,
}


def strategy_target_rule(ctx: ExitContext) -> Optional[ExitDecision]:
    handler = STRATEGY_EXITS.get(ctx.position.strategy)
    if handler is None:
        return None
    return handler(ctx)


SLOW_RULES: Sequence[ExitRule] = (
    market_guard_red_rule,
    market_guard_orange_rule,
    trailing_stop_rule,
    stop_loss_rule,
    strategy_target_rule,
)

FAST_RULES: Sequence[ExitRule] = (
    market_guard_red_rule,
    market_guard_orange_rule,
    stop_loss_rule,
)


def evaluate_rules(rules: Sequence[ExitRule], ctx: ExitContext) -> Optional[ExitDecision]:
    """Return the first decision produced by `rules`, or None to hold."""
    for rule in rules:
        decision = rule(ctx)
        if decision is not None:
            return decision
    return None
