"""Arbitrage detection algorithms.

This module contains the pure detection logic. Nothing here does I/O, so
the same snapshots always produce the same opportunities. It includes:
- Intra-exchange spread analysis (the gap inside one book)
- Cross-exchange comparison (buy on one exchange's ask, sell into another's bid)
- Summary statistics over observed spreads
"""

from __future__ import annotations

from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np

from spreadscan.core.models import (
    CrossExchangeOpportunity,
    Direction,
    IntraExchangeOpportunity,
    OrderBookSnapshot,
)


def analyze_spread(snapshot: OrderBookSnapshot, threshold: float) -> IntraExchangeOpportunity:
    return IntraExchangeOpportunity(
        symbol=snapshot.symbol,
        exchange=snapshot.exchange,
        spread_pct=snapshot.spread_pct,
        threshold=threshold,
        is_profitable=snapshot.spread_pct >= threshold,
        volume=snapshot.volume_24h,
        best_bid=snapshot.best_bid,
        best_ask=snapshot.best_ask,
        taken_at=snapshot.taken_at,
    )


def directional_spread(buy_ask: float, sell_bid: float) -> float:
    """Percent gained buying at `buy_ask` and selling at `sell_bid`."""
    return (sell_bid - buy_ask) / buy_ask * 100


def compare_exchanges(
    symbol: str,
    x: OrderBookSnapshot,
    y: OrderBookSnapshot,
    threshold: float,
) -> Optional[CrossExchangeOpportunity]:
    """Best direction between two books for one symbol.

    Returns None when either book is missing a side. When neither direction
    has a positive spread the result carries a zero spread and no direction.
    """
    if None in (x.best_bid, x.best_ask, y.best_bid, y.best_ask):
        return None

    x_to_y = directional_spread(x.best_ask, y.best_bid)
    y_to_x = directional_spread(y.best_ask, x.best_bid)

    direction: Optional[Direction] = None
    buy_price = sell_price = None
    spread = 0.0
    # On a tie the first direction (x -> y) wins
    if x_to_y > 0 and x_to_y >= y_to_x:
        direction = Direction(buy_on=x.exchange, sell_on=y.exchange)
        spread, buy_price, sell_price = x_to_y, x.best_ask, y.best_bid
    elif y_to_x > 0:
        direction = Direction(buy_on=y.exchange, sell_on=x.exchange)
        spread, buy_price, sell_price = y_to_x, y.best_ask, x.best_bid

    return CrossExchangeOpportunity(
        symbol=symbol,
        exchange_from=x.exchange,
        exchange_to=y.exchange,
        direction=direction,
        spread_pct=spread,
        threshold=threshold,
        is_profitable=direction is not None and spread >= threshold,
        buy_price=buy_price,
        sell_price=sell_price,
        mid_from=x.mid_price,
        mid_to=y.mid_price,
        taken_at=max(x.taken_at, y.taken_at),
    )


def detect_cross_exchange(
    books_by_exchange: Mapping[str, Mapping[str, OrderBookSnapshot]],
    threshold: float,
) -> List[CrossExchangeOpportunity]:
    """Compare every unordered exchange pair on every symbol both carry.

    Pairs follow the mapping's order (the registry order), so the output
    order is deterministic.
    """
    results: List[CrossExchangeOpportunity] = []
    for ex_a, ex_b in combinations(list(books_by_exchange.keys()), 2):
        books_a = books_by_exchange[ex_a]
        books_b = books_by_exchange[ex_b]
        for symbol in books_a:
            if symbol not in books_b:
                continue
            opportunity = compare_exchanges(symbol, books_a[symbol], books_b[symbol], threshold)
            if opportunity is not None:
                results.append(opportunity)
    return results


def summarize_spreads(spreads: Iterable[float]) -> Dict[str, float]:
    values = np.asarray(list(spreads), dtype=float)
    if values.size == 0:
        return {"count": 0, "avg_spread": 0.0, "max_spread": 0.0, "p95_spread": 0.0}
    return {
        "count": int(values.size),
        "avg_spread": float(np.mean(values)),
        "max_spread": float(np.max(values)),
        "p95_spread": float(np.percentile(values, 95)),
    }
