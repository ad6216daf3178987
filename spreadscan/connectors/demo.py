from __future__ import annotations

import random
from typing import Dict, List, Optional

from spreadscan.connectors.base import ExchangeConnector


BASE_PRICES = {
    "BTC": 65000.0,
    "ETH": 3200.0,
    "BNB": 580.0,
    "XRP": 0.52,
    "ADA": 0.45,
    "DOGE": 0.12,
    "SOL": 145.0,
    "DOT": 6.5,
    "MATIC": 0.7,
    "AVAX": 28.0,
}

LEVELS = 10


def _clip_price(p: float) -> float:
    return max(1e-6, p)


class DemoConnector(ExchangeConnector):
    """Offline venue producing synthetic books around a random walk.

    Used for demo runs and smoke tests. Each instance takes the name of the
    exchange it stands in for, so cross-exchange detection has pairs to
    compare without network access.
    """

    name = "demo"
    default_endpoints = ("demo://offline",)
    batch_delay = 0.0

    def __init__(self, settings, name: Optional[str] = None, seed: Optional[int] = None, **kwargs):
        if name:
            self.name = name
        super().__init__(settings, **kwargs)
        self._random = random.Random(seed)
        self._mids: Dict[str, float] = {}

    async def resolve_pair(self, symbol: str) -> str:
        return symbol.upper()

    def _next_mid(self, symbol: str) -> float:
        mid = self._mids.get(symbol) or BASE_PRICES.get(symbol, 100.0)
        mid = _clip_price(mid * (1 + self._random.uniform(-0.002, 0.002)))
        self._mids[symbol] = mid
        return mid

    async def _fetch_depth(self, pair: str, symbol: str):
        mid = self._next_mid(pair)
        half_spread = mid * self._random.uniform(0.00002, 0.0003)
        tick = mid * 0.0001
        bids: List[List[str]] = []
        asks: List[List[str]] = []
        for level in range(LEVELS):
            size = self._random.uniform(0.1, 5.0)
            bids.append([f"{_clip_price(mid - half_spread - level * tick):.8f}", f"{size:.4f}"])
            asks.append([f"{mid + half_spread + level * tick:.8f}", f"{size:.4f}"])
        # Exchanges do not promise level order
        self._random.shuffle(bids)
        self._random.shuffle(asks)
        return bids, asks, None

    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        return self._random.uniform(1_000, 50_000)

    async def _ping(self) -> None:
        return None
