"""
Tests for DexScreener and Jupiter payload normalization.
"""
from decimal import Decimal

from solscalp.data.dexscreener_client import parse_pair, select_best_pair
from solscalp.data.jupiter_price_client import parse_prices
from solscalp.domain.models import NEUTRAL_BUY_PRESSURE

MINT = "TokenMint1111111111111111111111111111111111"


def _pair(chain="solana", liquidity=10000, **extra):
    pair = {
        "chainId": chain,
        "baseToken": {"symbol": "TEST"},
        "priceUsd": "0.0123",
        "marketCap": 123000,
        "liquidity": {"usd": liquidity},
        "volume": {"m5": 100, "h1": 1000, "h6": 5000, "h24": 20000},
        "priceChange": {"m5": -2.5, "h1": 4, "h24": 30},
        "txns": {"m5": {"buys": 30, "sells": 10}},
    }
    pair.update(extra)
    return pair


def test_best_pair_is_deepest_solana_pool():
    pairs = [
        _pair(liquidity=5000, priceUsd="1"),
        _pair(chain="ethereum", liquidity=900000, priceUsd="2"),
        _pair(liquidity=25000, priceUsd="3"),
        _pair(liquidity=None, priceUsd="4"),
    ]
    assert select_best_pair(pairs)["priceUsd"] == "3"


def test_no_solana_pair():
    assert select_best_pair([_pair(chain="bsc")]) is None
    assert select_best_pair([]) is None


def test_parse_pair_fields():
    data = parse_pair(_pair(), MINT)

    assert data.token_address == MINT
    assert data.symbol == "TEST"
    assert data.price_usd == Decimal("0.0123")
    assert data.market_cap == Decimal("123000")
    assert data.liquidity_usd == Decimal("10000")
    assert data.volume_1h == Decimal("1000")
    assert data.buys_5m == 30
    assert data.sells_5m == 10
    assert data.buy_pressure == Decimal("75")
    assert data.price_change_5m == Decimal("-2.5")


def test_parse_pair_without_trades_is_neutral():
    data = parse_pair(_pair(txns={}), MINT)
    assert data.buy_pressure == NEUTRAL_BUY_PRESSURE


def test_parse_pair_falls_back_to_fdv_and_tolerates_junk():
    data = parse_pair(_pair(marketCap=None, fdv="98000", volume={"m5": "n/a"}), MINT)

    assert data.market_cap == Decimal("98000")
    assert data.volume_5m == Decimal("0")


def test_jupiter_prices_under_data_key():
    payload = {"data": {"A": {"price": "1.5"}, "B": {"price": None}, "C": {"price": "0"}}}
    assert parse_prices(payload) == {"A": Decimal("1.5")}


def test_jupiter_prices_top_level_map():
    payload = {"A": {"usdPrice": 0.25}, "B": {"usdPrice": "bad"}, "C": "not-a-dict"}
    assert parse_prices(payload) == {"A": Decimal("0.25")}
