import pytest

from spreadscan.core.arb import (
    analyze_spread,
    compare_exchanges,
    detect_cross_exchange,
    summarize_spreads,
)
from spreadscan.core.engine import calculate_potential_profit
from spreadscan.core.models import Direction, OrderBookSnapshot, OrderLevel


def book(exchange, bid, ask, symbol="BTC", spread=None):
    bids = (OrderLevel(bid, 1.0),) if bid is not None else ()
    asks = (OrderLevel(ask, 1.0),) if ask is not None else ()
    if spread is None:
        spread = (ask - bid) / bid * 100 if bid and ask else 0.001
    return OrderBookSnapshot(exchange=exchange, symbol=symbol, bids=bids, asks=asks, spread_pct=spread, volume_24h=10.0)


def test_intra_opportunity_uses_threshold():
    snap = book("binance", 100.0, 100.5)
    opp = analyze_spread(snap, threshold=0.01)
    assert opp.is_profitable
    assert opp.spread_pct == pytest.approx(0.5)
    assert opp.venue == "binance"

    quiet = analyze_spread(book("binance", 100.0, 100.005), threshold=0.01)
    assert not quiet.is_profitable


def test_cross_spread_picks_profitable_direction():
    a = book("a", 100.0, 101.0)
    b = book("b", 103.0, 104.0)

    opp = compare_exchanges("BTC", a, b, threshold=0.01)

    assert opp.direction == Direction(buy_on="a", sell_on="b")
    assert str(opp.direction) == "buy_a_sell_b"
    assert opp.spread_pct == pytest.approx(1.980198, rel=1e-5)
    assert opp.buy_price == 101.0
    assert opp.sell_price == 103.0
    assert opp.is_profitable
    assert opp.venue == "a->b"


def test_cross_spread_other_direction():
    opp = compare_exchanges("BTC", book("a", 103.0, 104.0), book("b", 100.0, 101.0), threshold=0.01)
    assert opp.direction == Direction(buy_on="b", sell_on="a")
    assert opp.exchange_from == "a"
    assert opp.exchange_to == "b"


def test_cross_tie_prefers_first_direction():
    opp = compare_exchanges("BTC", book("x", 105.0, 100.0), book("y", 105.0, 100.0), threshold=0.01)
    assert opp.direction == Direction(buy_on="x", sell_on="y")
    assert opp.spread_pct == pytest.approx(5.0)


def test_cross_without_positive_spread_has_no_direction():
    opp = compare_exchanges("BTC", book("a", 100.0, 101.0), book("b", 100.5, 101.5), threshold=0.01)
    assert opp.direction is None
    assert opp.spread_pct == 0.0
    assert not opp.is_profitable


def test_cross_skips_books_missing_a_side():
    assert compare_exchanges("BTC", book("a", None, 101.0), book("b", 100.0, 101.0), 0.01) is None


def test_detect_cross_covers_every_pair_in_order():
    books = {
        "binance": {"BTC": book("binance", 100.0, 101.0), "ETH": book("binance", 10.0, 10.1, "ETH")},
        "bybit": {"BTC": book("bybit", 103.0, 104.0)},
        "okx": {"BTC": book("okx", 100.0, 100.2), "ETH": book("okx", 10.2, 10.3, "ETH")},
    }
    opps = detect_cross_exchange(books, threshold=0.01)
    assert [(o.exchange_from, o.exchange_to, o.symbol) for o in opps] == [
        ("binance", "bybit", "BTC"),
        ("binance", "okx", "BTC"),
        ("binance", "okx", "ETH"),
        ("bybit", "okx", "BTC"),
    ]


def test_detection_is_idempotent():
    books = {
        "a": {"BTC": book("a", 100.0, 101.0)},
        "b": {"BTC": book("b", 103.0, 104.0)},
    }
    first = detect_cross_exchange(books, 0.01)
    second = detect_cross_exchange(books, 0.01)
    assert first == second
    assert analyze_spread(books["a"]["BTC"], 0.01) == analyze_spread(books["a"]["BTC"], 0.01)


def test_summarize_spreads():
    stats = summarize_spreads([0.1, 0.2, 0.3, 0.4])
    assert stats["count"] == 4
    assert stats["avg_spread"] == pytest.approx(0.25)
    assert stats["max_spread"] == pytest.approx(0.4)
    assert 0.3 < stats["p95_spread"] <= 0.4
    assert summarize_spreads([])["count"] == 0


def test_potential_profit():
    opp = analyze_spread(book("a", 100.0, 101.0), 0.01)
    profit = calculate_potential_profit(opp, investment=1000.0)
    assert profit["gross_profit"] == pytest.approx(10.0)
    assert profit["fees"] == pytest.approx(2.0)
    assert profit["net_profit"] == pytest.approx(8.0)
    assert profit["roi"] == pytest.approx(0.8)

    small = analyze_spread(book("a", 100.0, 100.1), 0.01)
    assert calculate_potential_profit(small)["net_profit"] == 0.0
