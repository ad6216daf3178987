from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from spreadscan.config import constants
from spreadscan.config.settings import Settings
from spreadscan.core.alerts import AlertService
from spreadscan.core.arb import analyze_spread, detect_cross_exchange, summarize_spreads
from spreadscan.core.exceptions import PersistenceError
from spreadscan.core.models import (
    CrossExchangeOpportunity,
    CycleResult,
    IntraExchangeOpportunity,
    OrderBookSnapshot,
    utcnow,
)
from spreadscan.storage.gateway import Opportunity, PersistenceGateway, exchanges_of
from spreadscan.utils.cache import TTLCache
from spreadscan.utils.logging import get_logger


logger = get_logger("engine")

BooksByExchange = Mapping[str, Mapping[str, OrderBookSnapshot]]

SPREAD_HISTORY = 10_000


def calculate_potential_profit(
    opportunity: Opportunity,
    investment: float = 1000.0,
    fee_rate: float = constants.ROUND_TRIP_FEE_RATE,
) -> Dict[str, float]:
    """Theoretical profit of trading `investment` at the opportunity's spread."""
    gross = investment * opportunity.spread_pct / 100
    fees = investment * fee_rate
    net = gross - fees
    return {
        "gross_profit": gross,
        "fees": fees,
        "net_profit": max(0.0, net),
        "roi": net / investment * 100 if investment else 0.0,
    }


class EngineState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    ANALYZING = "analyzing"
    PERSISTING = "persisting"


class ArbitrageEngine:
    """Runs analysis, persistence and alerting for one cycle of order books.

    Analysis is pure. Every write is isolated: a failed write is logged and
    dropped without affecting the others.
    """

    calculate_potential_profit = staticmethod(calculate_potential_profit)

    def __init__(
        self,
        settings: Settings,
        persistence: PersistenceGateway,
        alerts: AlertService,
        id_cache: Optional[TTLCache] = None,
    ):
        self.threshold = settings.arbitrage.threshold_pct
        self.persistence = persistence
        self.alerts = alerts
        self.state = EngineState.IDLE
        self._ids = id_cache or TTLCache(default_ttl=constants.ID_CACHE_TTL)
        self._intra_spreads: Deque[float] = deque(maxlen=SPREAD_HISTORY)
        self._cross_spreads: Deque[float] = deque(maxlen=SPREAD_HISTORY)
        self._totals = {
            "cycles": 0,
            "snapshots": 0,
            "opportunities": 0,
            "cross_opportunities": 0,
            "profitable": 0,
            "alerts": 0,
            "persist_failures": 0,
        }
        self._last_cycle_at = None

    def begin_collection(self) -> None:
        self.state = EngineState.COLLECTING

    def analyze(
        self, books_by_exchange: BooksByExchange
    ) -> Tuple[List[IntraExchangeOpportunity], List[CrossExchangeOpportunity]]:
        intra: List[IntraExchangeOpportunity] = []
        for exchange, books in books_by_exchange.items():
            for symbol, snapshot in books.items():
                try:
                    opportunity = analyze_spread(snapshot, self.threshold)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Analysis failed for %s on %s: %s", symbol, exchange, exc)
                    continue
                intra.append(opportunity)
                if opportunity.is_profitable:
                    logger.info(
                        "Intra-exchange opportunity: %s on %s at %.4f%%",
                        symbol,
                        exchange,
                        opportunity.spread_pct,
                    )

        cross = detect_cross_exchange(books_by_exchange, self.threshold)
        for opportunity in cross:
            if opportunity.is_profitable:
                logger.info(
                    "Cross-exchange opportunity: %s %.4f%% (%s)",
                    opportunity.symbol,
                    opportunity.spread_pct,
                    opportunity.direction,
                )
        return intra, cross

    async def _cached_id(self, kind: str, key: str) -> str:
        cached = self._ids.get((kind, key))
        if cached is not None:
            return cached
        if kind == "exchange":
            value = await self.persistence.ensure_exchange(key)
        else:
            value = await self.persistence.ensure_asset(key)
        self._ids.set((kind, key), value)
        return value

    async def resolve_ids(
        self, exchanges: List[str], symbols: List[str]
    ) -> Tuple[Dict[str, str], Dict[str, str]]:
        exchange_ids: Dict[str, str] = {}
        asset_ids: Dict[str, str] = {}
        for kind, keys, target in (("exchange", exchanges, exchange_ids), ("asset", symbols, asset_ids)):
            for key in keys:
                try:
                    target[key] = await self._cached_id(kind, key)
                except PersistenceError as exc:
                    logger.warning("Could not resolve %s id for %s: %s", kind, key, exc)
        return exchange_ids, asset_ids

    async def _persist(
        self,
        books_by_exchange: BooksByExchange,
        opportunities: List[Opportunity],
        exchange_ids: Mapping[str, str],
        asset_ids: Mapping[str, str],
    ) -> Tuple[int, int]:
        saved = failures = 0
        for exchange, books in books_by_exchange.items():
            for symbol, snapshot in books.items():
                if exchange not in exchange_ids or symbol not in asset_ids:
                    failures += 1
                    continue
                try:
                    await self.persistence.save_order_book(snapshot, exchange_ids[exchange], asset_ids[symbol])
                    saved += 1
                except PersistenceError as exc:
                    failures += 1
                    logger.warning("Failed to save order book %s/%s: %s", exchange, symbol, exc)

        for opportunity in opportunities:
            if opportunity.symbol not in asset_ids or any(e not in exchange_ids for e in exchanges_of(opportunity)):
                failures += 1
                continue
            try:
                await self.persistence.save_opportunity(opportunity, asset_ids[opportunity.symbol], exchange_ids)
                saved += 1
            except PersistenceError as exc:
                failures += 1
                logger.warning("Failed to save opportunity %s on %s: %s", opportunity.symbol, opportunity.venue, exc)
        return saved, failures

    async def process_cycle(self, books_by_exchange: BooksByExchange) -> CycleResult:
        self.state = EngineState.ANALYZING
        try:
            intra, cross = self.analyze(books_by_exchange)
            opportunities: List[Opportunity] = [*intra, *cross]

            self.state = EngineState.PERSISTING
            expired = self._ids.cleanup()
            if expired:
                logger.debug("Dropped %d expired id lookups", expired)
            symbols = sorted({s for books in books_by_exchange.values() for s in books})
            exchange_ids, asset_ids = await self.resolve_ids(list(books_by_exchange.keys()), symbols)
            saved, failures = await self._persist(books_by_exchange, opportunities, exchange_ids, asset_ids)
            alerts = await self.alerts.generate(opportunities, exchange_ids, asset_ids)
        finally:
            self.state = EngineState.IDLE

        result = CycleResult(
            processed=sum(len(books) for books in books_by_exchange.values()),
            saved=saved,
            alerts=alerts,
            failures=failures,
            opportunities=intra,
            cross_opportunities=cross,
        )
        self._record(result)
        return result

    def _record(self, result: CycleResult) -> None:
        totals = self._totals
        totals["cycles"] += 1
        totals["snapshots"] += result.processed
        totals["opportunities"] += len(result.opportunities)
        totals["cross_opportunities"] += len(result.cross_opportunities)
        totals["profitable"] += len(result.profitable)
        totals["alerts"] += result.alerts
        totals["persist_failures"] += result.failures
        self._intra_spreads.extend(o.spread_pct for o in result.opportunities)
        self._cross_spreads.extend(o.spread_pct for o in result.cross_opportunities if o.direction is not None)
        self._last_cycle_at = utcnow()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "threshold": self.threshold,
            **self._totals,
            "intra_spreads": summarize_spreads(self._intra_spreads),
            "cross_spreads": summarize_spreads(self._cross_spreads),
            "cached_ids": self._ids.stats()["size"],
            "last_cycle_at": self._last_cycle_at.isoformat() if self._last_cycle_at else None,
        }
