"""
Tests for MarketGuard alert levels, all-clear countdown and persistence.

Each tick advances the injected clock by the check interval and feeds one
reference price.
"""
import json
from datetime import timedelta
from decimal import Decimal

import pytest

from solscalp.domain.models import AlertLevel
from solscalp.risk.market_guard import MarketGuard
from solscalp.storage.json_store import JsonDocumentStore


async def _tick(guard, clock, feed, price, minutes=5):
    clock.advance(minutes=minutes)
    feed.push(price)
    return await guard.check()


def _reload(data_dir, clock, feed):
    return MarketGuard(feed, JsonDocumentStore(data_dir / "btc_guard.json"), clock=clock)


@pytest.mark.asyncio
async def test_fast_drop_raises_red(guard, clock, reference_feed, notifier, data_dir):
    reference_feed.push(100)
    assert await guard.check() is True
    assert guard.alert_level == AlertLevel.NONE

    assert await _tick(guard, clock, reference_feed, "94.5") is True

    assert guard.alert_level == AlertLevel.RED
    assert guard.is_red_alert()
    assert guard.is_orange_or_above()
    assert guard.is_market_dangerous()
    assert guard.status()["alert_triggered_at"] == clock().isoformat()

    assert notifier.types() == ["GUARD_ALERT"]
    assert notifier.sent[0].urgent is True
    assert "30 minutes" in notifier.sent[0].message

    saved = json.loads((data_dir / "btc_guard.json").read_text())
    assert saved["current_alert_level"] == "RED"
    assert _reload(data_dir, clock, reference_feed).alert_level == AlertLevel.RED


@pytest.mark.asyncio
async def test_check_is_rate_limited(guard, clock, reference_feed):
    reference_feed.push(100, 100)
    assert await guard.check() is True

    clock.advance(minutes=4)
    assert await guard.check() is False
    assert reference_feed.calls == 1

    clock.advance(minutes=1)
    assert await guard.check() is True
    assert reference_feed.calls == 2


@pytest.mark.asyncio
async def test_feed_failure_skips_cycle(guard, clock, reference_feed, data_dir):
    reference_feed.push(RuntimeError("coingecko down"))
    assert await guard.check() is False

    clock.advance(minutes=5)
    reference_feed.push(None)
    assert await guard.check() is False

    assert guard.status()["price_points"] == 0
    assert guard.alert_level == AlertLevel.NONE
    assert not (data_dir / "btc_guard.json").exists()


@pytest.mark.asyncio
async def test_one_hour_drop_raises_yellow(guard, clock, reference_feed, notifier):
    reference_feed.push(100)
    await guard.check()

    # Outside the 30m window, inside the 1h window
    await _tick(guard, clock, reference_feed, "96.5", minutes=35)

    assert guard.alert_level == AlertLevel.YELLOW
    assert guard.is_market_dangerous()
    assert not guard.is_orange_or_above()
    assert notifier.sent[0].urgent is False


@pytest.mark.asyncio
async def test_four_hour_drop_raises_orange(guard, clock, reference_feed):
    reference_feed.push(100)
    await guard.check()

    await _tick(guard, clock, reference_feed, "95.5", minutes=120)

    assert guard.alert_level == AlertLevel.ORANGE
    assert guard.is_orange_or_above()
    assert not guard.is_red_alert()


@pytest.mark.asyncio
async def test_volatility_spike_raises_red(guard, clock, reference_feed, notifier):
    reference_feed.push(100)
    await guard.check()
    for price in ("100.1", "100", "100.1", "100", "100.1", "100"):
        await _tick(guard, clock, reference_feed, price)
    assert guard.status()["baseline_volatility"] is not None
    assert guard.alert_level == AlertLevel.NONE

    # A 3% move up is still a volatility event
    await _tick(guard, clock, reference_feed, "103")

    assert guard.alert_level == AlertLevel.RED
    assert "volatility" in notifier.sent[-1].message


@pytest.mark.asyncio
async def test_baseline_set_once_from_first_samples(guard, clock, reference_feed):
    reference_feed.push(100)
    await guard.check()
    for price in ("101", "100", "101", "100", "101"):
        await _tick(guard, clock, reference_feed, price)
    assert guard.status()["baseline_volatility"] is None
    assert guard.status()["volatility_points"] == 5

    await _tick(guard, clock, reference_feed, "100")
    baseline = guard.status()["baseline_volatility"]
    assert baseline is not None

    await _tick(guard, clock, reference_feed, "100.5")
    assert guard.status()["baseline_volatility"] == baseline


@pytest.mark.asyncio
async def test_all_clear_after_four_stable_hours(guard, clock, reference_feed, notifier):
    reference_feed.push(100)
    await guard.check()
    await _tick(guard, clock, reference_feed, "96.5", minutes=35)
    assert guard.alert_level == AlertLevel.YELLOW

    # The 100 print stays in the 1h window for five more cycles
    for _ in range(5):
        await _tick(guard, clock, reference_feed, "96.5")
        assert guard.status()["stable_hours"] == "0.0"
    assert guard.alert_level == AlertLevel.YELLOW

    for _ in range(47):
        await _tick(guard, clock, reference_feed, "96.5")
    assert guard.alert_level == AlertLevel.YELLOW

    await _tick(guard, clock, reference_feed, "96.5")

    assert guard.alert_level == AlertLevel.NONE
    assert guard.status()["alert_triggered_at"] is None
    assert guard.status()["stable_hours"] == "0.0"
    assert notifier.types() == ["GUARD_ALERT", "GUARD_CLEARED"]


@pytest.mark.asyncio
async def test_unstable_cycle_resets_countdown(guard, clock, reference_feed):
    reference_feed.push(100)
    await guard.check()
    await _tick(guard, clock, reference_feed, "97", minutes=35)
    for _ in range(5):
        await _tick(guard, clock, reference_feed, "97")

    for _ in range(3):
        await _tick(guard, clock, reference_feed, "97")
    assert guard.status()["stable_hours"] == "0.2"

    # 1% slide: not stable, not an alert on its own
    await _tick(guard, clock, reference_feed, "96.02")

    assert guard.alert_level == AlertLevel.YELLOW
    assert guard.status()["stable_hours"] == "0.0"


@pytest.mark.asyncio
async def test_notifier_failure_does_not_break_check(data_dir, clock, reference_feed):
    class BrokenNotifier:
        async def send(self, notification):
            raise RuntimeError("telegram down")

    guard = MarketGuard(
        reference_feed,
        JsonDocumentStore(data_dir / "btc_guard.json"),
        notifier=BrokenNotifier(),
        clock=clock,
    )
    reference_feed.push(100)
    await guard.check()

    assert await _tick(guard, clock, reference_feed, "90") is True
    assert guard.alert_level == AlertLevel.RED


def test_restore_prunes_history_and_rejects_unknown_level(data_dir, clock, reference_feed):
    data_dir.mkdir(parents=True, exist_ok=True)
    now = clock()
    (data_dir / "btc_guard.json").write_text(json.dumps({
        "price_history": [
            {"price": "100", "timestamp": (now - timedelta(hours=6)).isoformat()},
            {"price": "99", "timestamp": (now - timedelta(minutes=10)).isoformat()},
        ],
        "volatility_history": [
            {"change_pct": "0.5", "timestamp": (now - timedelta(hours=3)).isoformat()},
            {"change_pct": "0.2", "timestamp": (now - timedelta(minutes=10)).isoformat()},
        ],
        "baseline_volatility": "0.3",
        "current_alert_level": "PURPLE",
        "alert_triggered_at": None,
        "stable_hours": "1.5",
    }))

    guard = _reload(data_dir, clock, reference_feed)
    status = guard.status()

    assert guard.alert_level == AlertLevel.NONE
    assert status["price_points"] == 1
    assert status["volatility_points"] == 1
    assert status["baseline_volatility"] == "0.3"
    assert status["stable_hours"] == "1.5"


def test_restore_keeps_alert_level(data_dir, clock, reference_feed):
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "btc_guard.json").write_text(json.dumps({
        "price_history": [],
        "volatility_history": [],
        "baseline_volatility": None,
        "current_alert_level": "ORANGE",
        "alert_triggered_at": clock().isoformat(),
        "stable_hours": "0",
    }))

    guard = _reload(data_dir, clock, reference_feed)

    assert guard.alert_level == AlertLevel.ORANGE
    assert guard.is_orange_or_above()
    assert guard.status()["alert_triggered_at"] == clock().isoformat()


@pytest.mark.asyncio
async def test_non_positive_price_skipped(guard, reference_feed):
    reference_feed.push(Decimal("0"))
    assert await guard.check() is False
    assert guard.status()["price_points"] == 0
