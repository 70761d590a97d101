"""
Tests for exit rule priority and per-strategy targets.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from solscalp.config.config import ExitConfig
from solscalp.domain.models import (
    AlertLevel,
    ExitDecision,
    ExitReason,
    MarketData,
    Position,
    Strategy,
)
from solscalp.exceptions import InvalidExitError
from solscalp.live.exit_rules import (
    FAST_RULES,
    SLOW_RULES,
    ExitContext,
    ExitSettings,
    evaluate_rules,
)


def _position(**overrides) -> Position:
    fields = dict(
        id="trade_1",
        strategy=Strategy.SCALP,
        token_address="Mint",
        token_symbol="TEST",
        entry_price=Decimal("1.00"),
        amount_sol=Decimal("1"),
        token_quantity=1_000_000,
        stop_loss_percent=Decimal("20"),
        target_gain_percent=Decimal("70"),
        entry_time=datetime(2026, 3, 2, tzinfo=timezone.utc),
        highest_price=Decimal("1.00"),
    )
    fields.update(overrides)
    return Position(**fields)


def _decide(position, price, level=AlertLevel.NONE, settings=None, rules=SLOW_RULES, **market):
    ctx = ExitContext(
        position=position,
        market_data=MarketData(token_address=position.token_address, price_usd=Decimal(str(price)), **market),
        alert_level=level,
        settings=settings or ExitSettings(),
    )
    return evaluate_rules(rules, ctx)


class TestProtectiveRules:

    def test_red_force_closes_guard_sensitive_even_in_profit(self):
        decision = _decide(_position(strategy=Strategy.MOMENTUM), "1.5", AlertLevel.RED)

        assert decision.reason == ExitReason.MARKET_GUARD_RED
        assert decision.is_full_exit
        assert decision.records_cooldown is False

    def test_red_ignores_other_strategies(self):
        assert _decide(_position(strategy=Strategy.BREAKOUT, target_gain_percent=Decimal("50")), "1.1", AlertLevel.RED) is None

    def test_red_outranks_stop_loss(self):
        decision = _decide(_position(strategy=Strategy.MOMENTUM), "0.5", AlertLevel.RED)
        assert decision.reason == ExitReason.MARKET_GUARD_RED

    @pytest.mark.parametrize("price,expected", [
        ("0.90", ExitReason.MARKET_GUARD_ORANGE),
        ("0.91", None),
    ])
    def test_orange_halves_the_stop(self, price, expected):
        decision = _decide(_position(strategy=Strategy.MOMENTUM), price, AlertLevel.ORANGE)

        if expected is None:
            assert decision is None
        else:
            assert decision.reason == expected
            assert decision.records_cooldown is True

    def test_orange_leaves_scalp_on_normal_stop(self):
        assert _decide(_position(), "0.85", AlertLevel.ORANGE) is None
        assert _decide(_position(), "0.80", AlertLevel.ORANGE).reason == ExitReason.STOP_LOSS

    def test_yellow_does_not_touch_exits(self):
        assert _decide(_position(strategy=Strategy.MOMENTUM), "0.85", AlertLevel.YELLOW) is None

    @pytest.mark.parametrize("price,expected", [
        ("0.80", ExitReason.STOP_LOSS),
        ("0.79", ExitReason.STOP_LOSS),
        ("0.81", None),
    ])
    def test_stop_loss_boundary(self, price, expected):
        decision = _decide(_position(), price)
        assert (decision.reason if decision else None) == expected

    def test_stop_loss_records_cooldown(self):
        assert _decide(_position(), "0.70").records_cooldown is True

    def test_missing_stop_uses_default(self):
        settings = ExitSettings(default_stop_loss_percent=Decimal("10"))
        decision = _decide(_position(stop_loss_percent=Decimal("0")), "0.90", settings=settings)
        assert decision.reason == ExitReason.STOP_LOSS


class TestTrailingStop:

    def test_disabled_by_default(self):
        position = _position(highest_price=Decimal("2.00"), partial_exit_executed=True)
        assert _decide(position, "1.50") is None

    def test_fires_on_pullback_in_profit(self):
        settings = ExitSettings(trailing_stop_enabled=True)
        position = _position(highest_price=Decimal("2.00"))

        decision = _decide(position, "1.75", settings=settings)

        # Outranks the scalp partial target at +75%
        assert decision.reason == ExitReason.TRAILING_STOP
        assert decision.records_cooldown is False

    def test_not_when_under_water(self):
        settings = ExitSettings(trailing_stop_enabled=True)
        position = _position(highest_price=Decimal("1.20"))
        assert _decide(position, "0.95", settings=settings) is None

    def test_uses_current_price_as_high_when_higher(self):
        settings = ExitSettings(trailing_stop_enabled=True)
        position = _position(highest_price=Decimal("1.00"), strategy=Strategy.MOMENTUM)
        assert _decide(position, "1.30", settings=settings) is None


class TestStrategyTargets:

    def test_scalp_partial_at_trigger(self):
        decision = _decide(_position(), "1.70")

        assert decision.reason == ExitReason.PARTIAL_TARGET
        assert decision.sell_percent == Decimal("80")
        assert not decision.is_full_exit

    def test_scalp_final_after_partial(self):
        position = _position(partial_exit_executed=True)

        assert _decide(position, "1.80") is None
        decision = _decide(position, "2.00")
        assert decision.reason == ExitReason.FINAL_TARGET
        assert decision.is_full_exit

    def test_scalp_market_cap_target(self):
        decision = _decide(_position(), "1.10", market_cap=Decimal("500000"))
        assert decision.reason == ExitReason.MC_TARGET
        assert decision.sell_percent == Decimal("80")

        decision = _decide(_position(partial_exit_executed=True), "1.10", market_cap=Decimal("500000"))
        assert decision.sell_percent == Decimal("100")

    def test_momentum_exit_zone(self):
        assert _decide(_position(strategy=Strategy.MOMENTUM), "1.2", market_cap=Decimal("134999")) is None
        decision = _decide(_position(strategy=Strategy.MOMENTUM), "1.2", market_cap=Decimal("135000"))
        assert decision.reason == ExitReason.MC_TARGET
        assert decision.is_full_exit

    def test_position_exit_market_cap_overrides_default(self):
        position = _position(strategy=Strategy.MOMENTUM, exit_market_cap=Decimal("200000"))
        assert _decide(position, "1.2", market_cap=Decimal("150000")) is None

    def test_breakout_target_gain(self):
        position = _position(strategy=Strategy.BREAKOUT, target_gain_percent=Decimal("20"))
        assert _decide(position, "1.20").reason == ExitReason.TARGET

    def test_breakout_sell_pressure_only_in_profit(self):
        position = _position(strategy=Strategy.BREAKOUT, target_gain_percent=Decimal("20"))

        decision = _decide(position, "1.10", buy_pressure=Decimal("30"))
        assert decision.reason == ExitReason.SELL_PRESSURE

        assert _decide(position, "0.95", buy_pressure=Decimal("30")) is None
        assert _decide(position, "1.10", buy_pressure=Decimal("45")) is None


class TestFastRules:

    def test_never_take_profit(self):
        assert _decide(_position(), "1.75", rules=FAST_RULES) is None
        assert _decide(_position(strategy=Strategy.MOMENTUM), "1.2", rules=FAST_RULES,
                       market_cap=Decimal("900000")) is None

    def test_stop_and_guard_rules_apply(self):
        assert _decide(_position(), "0.79", rules=FAST_RULES).reason == ExitReason.STOP_LOSS
        decision = _decide(_position(strategy=Strategy.MOMENTUM), "1.5", AlertLevel.RED, rules=FAST_RULES)
        assert decision.reason == ExitReason.MARKET_GUARD_RED


@pytest.mark.parametrize("sell_percent", [Decimal("0"), Decimal("-5"), Decimal("120")])
def test_decision_rejects_impossible_sell_percent(sell_percent):
    with pytest.raises(InvalidExitError):
        ExitDecision(reason=ExitReason.TARGET, sell_percent=sell_percent)


def test_settings_from_config_match_defaults():
    assert ExitSettings.from_config(ExitConfig()) == ExitSettings()


def test_settings_from_config_overrides():
    settings = ExitSettings.from_config(ExitConfig(
        guard_sensitive_strategies=["scalp", "breakout"],
        trailing_stop_enabled=True,
        trailing_stop_percent=15,
    ))

    assert settings.guard_sensitive_strategies == frozenset({Strategy.SCALP, Strategy.BREAKOUT})
    assert settings.trailing_stop_enabled is True
    assert settings.trailing_stop_percent == Decimal("15.0")
