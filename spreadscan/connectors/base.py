from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import httpx

from spreadscan.config.settings import Settings
from spreadscan.core.exceptions import (
    AllEndpointsBlockedError,
    FatalExchangeError,
    InvalidOrderBookError,
    NoMarketPairError,
)
from spreadscan.core.models import ConnectionStatus, ConnectionStatusView, OrderBookSnapshot, OrderLevel
from spreadscan.utils.failover import EndpointFailover
from spreadscan.utils.logging import get_logger
from spreadscan.utils.retry import retry_with_backoff
from spreadscan.utils.timing import chunked
from spreadscan.utils.validation import ValidationError, parse_level


logger = get_logger("connectors")

RawLevels = Optional[Iterable[Any]]


def normalize_levels(raw: RawLevels, descending: bool) -> Tuple[OrderLevel, ...]:
    """Sort levels by price and merge duplicates, dropping empty ones."""
    merged: Dict[float, float] = {}
    for entry in raw or ():
        price, quantity = parse_level(entry)
        if price <= 0 or quantity <= 0:
            continue
        merged[price] = merged.get(price, 0.0) + quantity
    return tuple(OrderLevel(p, q) for p, q in sorted(merged.items(), reverse=descending))


def compute_spread_pct(best_bid: Optional[float], best_ask: Optional[float]) -> Optional[float]:
    """Percentage spread of a book, or None when it is empty, locked or crossed."""
    if best_bid is None or best_ask is None:
        return None
    spread = (best_ask - best_bid) / best_bid * 100
    return spread if spread > 0 else None


def build_snapshot(
    exchange: str,
    symbol: str,
    bids_raw: RawLevels,
    asks_raw: RawLevels,
    volume_24h: Optional[float],
    minimum_spread: float,
    exclude_crossed: bool = False,
    last_update_id: Optional[Any] = None,
) -> OrderBookSnapshot:
    try:
        bids = normalize_levels(bids_raw, descending=True)
        asks = normalize_levels(asks_raw, descending=False)
    except ValidationError as exc:
        raise InvalidOrderBookError(exchange, f"{symbol}: {exc}") from exc

    spread = compute_spread_pct(bids[0].price if bids else None, asks[0].price if asks else None)
    if spread is None:
        if exclude_crossed:
            raise InvalidOrderBookError(exchange, f"{symbol}: empty or crossed book")
        logger.debug("%s %s: empty or crossed book, flooring spread", exchange, symbol)
        volume_24h = None
        spread = minimum_spread

    return OrderBookSnapshot(
        exchange=exchange,
        symbol=symbol,
        bids=bids,
        asks=asks,
        spread_pct=max(spread, minimum_spread),
        volume_24h=volume_24h,
        last_update_id=str(last_update_id) if last_update_id is not None else None,
    )


class ExchangeConnector(ABC):
    """Read-only order book client for one exchange.

    Subclasses describe the wire format; this class owns the HTTP client,
    retry and endpoint failover, batching, and connection status.
    """

    name: str
    default_endpoints: Sequence[str] = ()
    batch_delay: float = 0.2
    max_batch_size: Optional[int] = None

    def __init__(
        self,
        settings: Settings,
        endpoints: Optional[Sequence[str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.auth = settings.auth_for(self.name)
        self.quote = settings.collection.quote_currency
        urls = list(endpoints or self.auth.endpoints or self.default_endpoints)
        self.status = ConnectionStatus(current_endpoint=urls[0] if urls else None)
        self.failover = EndpointFailover(self.name, urls, on_switch=self.status.set_endpoint)
        batch_size = settings.collection.batch_size
        self.batch_size = min(batch_size, self.max_batch_size) if self.max_batch_size else batch_size
        self._client = client or httpx.AsyncClient(timeout=settings.collection.request_timeout)
        self._owns_client = client is None
        self._sleep = sleep
        self._available = True

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    @property
    def is_available(self) -> bool:
        return self._available

    def get_connection_status(self) -> ConnectionStatusView:
        return self.status.snapshot()

    # -- wire hooks -------------------------------------------------------

    @abstractmethod
    async def resolve_pair(self, symbol: str) -> str:
        """Exchange-native pair for `symbol`, or `NoMarketPairError`."""
        raise NotImplementedError

    @abstractmethod
    async def _fetch_depth(self, pair: str, symbol: str) -> Tuple[RawLevels, RawLevels, Optional[Any]]:
        raise NotImplementedError

    @abstractmethod
    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        raise NotImplementedError

    @abstractmethod
    async def _ping(self) -> None:
        raise NotImplementedError

    def _headers(self, path: str, params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        return {}

    def _check_response(self, response: httpx.Response, symbol: Optional[str]) -> Any:
        """Raise for HTTP and exchange-level errors, return the decoded body."""
        response.raise_for_status()
        return response.json()

    def _no_pair(self, symbol: Optional[str]) -> NoMarketPairError:
        return NoMarketPairError(self.name, symbol or "?", self.quote)

    async def _get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        symbol: Optional[str] = None,
    ) -> Any:
        async def request(base_url: str) -> Any:
            response = await self._client.get(
                f"{base_url}{path}",
                params=params,
                headers=self._headers(path, params),
            )
            return self._check_response(response, symbol)

        return await retry_with_backoff(
            self.failover.call,
            request,
            max_retries=self.settings.retry.max_retries,
            initial_delay=self.settings.retry.delay_seconds,
            fatal=(FatalExchangeError,),
            context=f"{self.name} {path} {symbol or ''}".strip(),
            sleep=self._sleep,
        )

    # -- public operations ------------------------------------------------

    def build_snapshot(self, symbol, bids_raw, asks_raw, volume_24h, last_update_id=None) -> OrderBookSnapshot:
        arbitrage = self.settings.arbitrage
        return build_snapshot(
            self.name,
            symbol,
            bids_raw,
            asks_raw,
            volume_24h,
            minimum_spread=arbitrage.minimum_spread_pct,
            exclude_crossed=arbitrage.exclude_crossed_books,
            last_update_id=last_update_id,
        )

    async def fetch_order_book(self, symbol: str) -> OrderBookSnapshot:
        pair = await self.resolve_pair(symbol)
        depth = asyncio.create_task(self._fetch_depth(pair, symbol))
        volume_task = asyncio.create_task(self._fetch_volume(pair, symbol))
        try:
            (bids, asks, update_id), volume = await asyncio.gather(depth, volume_task)
        except BaseException:
            # One request failed: cancel the other and collect its outcome
            for task in (depth, volume_task):
                task.cancel()
            await asyncio.gather(depth, volume_task, return_exceptions=True)
            raise
        snapshot = self.build_snapshot(symbol, bids, asks, volume, update_id)
        self.status.record_success()
        return snapshot

    async def fetch_batch(self, symbols: Iterable[str]) -> Dict[str, OrderBookSnapshot]:
        """Fetch many symbols in fixed-size groups; failures stay per symbol."""
        results: Dict[str, OrderBookSnapshot] = {}
        if not self._available:
            return results

        groups = chunked(list(symbols), self.batch_size)
        for index, group in enumerate(groups):
            outcomes = await asyncio.gather(
                *(self.fetch_order_book(symbol) for symbol in group),
                return_exceptions=True,
            )
            for symbol, outcome in zip(group, outcomes):
                if isinstance(outcome, OrderBookSnapshot):
                    results[symbol] = outcome
                elif isinstance(outcome, NoMarketPairError):
                    logger.info("%s: skipping %s, %s", self.name, symbol, outcome.message)
                elif isinstance(outcome, AllEndpointsBlockedError):
                    self.mark_unavailable(outcome)
                elif isinstance(outcome, Exception):
                    self.status.record_error(outcome)
                    logger.warning("%s: failed to fetch %s: %s", self.name, symbol, outcome)
                else:
                    raise outcome
            if not self._available:
                break
            if index < len(groups) - 1:
                await self._sleep(self.batch_delay)

        logger.info("%s: fetched %d/%d order books", self.name, len(results), sum(len(g) for g in groups))
        return results

    def mark_unavailable(self, error: BaseException) -> None:
        if self._available:
            logger.error("%s: disabling adapter: %s", self.name, error)
        self._available = False
        self.status.record_error(error, disconnect=True)

    async def test_connection(self) -> bool:
        try:
            await self._ping()
        except Exception as exc:  # noqa: BLE001
            self.status.record_error(exc, disconnect=True)
            logger.warning("%s: connection test failed: %s", self.name, exc)
            return False
        self.status.set_connected(True)
        self.status.reset_errors()
        return True

    async def try_recover(self) -> bool:
        """Rewind endpoint rotation and re-probe a disabled adapter."""
        await self.failover.reset()
        ok = await self.test_connection()
        if ok:
            if not self._available:
                logger.info("%s: adapter recovered on %s", self.name, self.failover.current)
            self._available = True
        return ok
