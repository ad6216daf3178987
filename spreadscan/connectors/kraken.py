from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

import httpx

from spreadscan.config import constants
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.core.exceptions import ExchangeAPIError, InvalidOrderBookError
from spreadscan.utils.cache import TTLCache
from spreadscan.utils.logging import get_logger
from spreadscan.utils.validation import optional_float


logger = get_logger("kraken")

UNKNOWN_PAIR_ERROR = "EQuery:Unknown asset pair"
PAIR_TABLE_KEY = "asset_pairs"


def parse_asset_pairs(result: Dict[str, Any]) -> Dict[Tuple[str, str], str]:
    """Map (base, quote) from each pair's `wsname` to Kraken's pair name."""
    table: Dict[Tuple[str, str], str] = {}
    for pair_name, info in result.items():
        wsname = (info or {}).get("wsname")
        if not wsname or "/" not in wsname:
            continue
        base, quote = wsname.upper().split("/", 1)
        table[(base, quote)] = pair_name
    return table


class KrakenConnector(ExchangeConnector):
    """Kraken public REST API.

    Kraken names assets its own way (XBT for BTC) and has no USDT book for
    several assets. Pairs are resolved only from the live AssetPairs table;
    the only quote substitution allowed is the explicit alias table, and a
    symbol with no match raises `NoMarketPairError` rather than guessing.
    """

    name = "kraken"
    default_endpoints = constants.KRAKEN_ENDPOINTS
    batch_delay = 1.0
    max_batch_size = 3

    def __init__(self, settings, endpoints=None, client=None, cache: Optional[TTLCache] = None, **kwargs):
        super().__init__(settings, endpoints=endpoints, client=client, **kwargs)
        self._cache = cache or TTLCache(default_ttl=constants.KRAKEN_PAIR_CACHE_TTL)
        self._pairs_lock = asyncio.Lock()

    def _check_response(self, response: httpx.Response, symbol: Optional[str]) -> Any:
        payload = super()._check_response(response, symbol)
        errors = payload.get("error") or []
        if any(str(e).startswith(UNKNOWN_PAIR_ERROR) for e in errors):
            raise self._no_pair(symbol)
        if errors:
            raise ExchangeAPIError(self.name, ", ".join(str(e) for e in errors))
        return payload.get("result") or {}

    async def pair_table(self) -> Dict[Tuple[str, str], str]:
        table = self._cache.get(PAIR_TABLE_KEY)
        if table is not None:
            return table
        async with self._pairs_lock:
            table = self._cache.get(PAIR_TABLE_KEY)
            if table is None:
                result = await self._get_json("/public/AssetPairs")
                table = parse_asset_pairs(result)
                self._cache.set(PAIR_TABLE_KEY, table)
                logger.info("Loaded %d Kraken asset pairs", len(table))
        return table

    async def resolve_pair(self, symbol: str) -> str:
        table = await self.pair_table()
        symbol = symbol.upper()
        bases = [constants.KRAKEN_ASSET_ALIASES.get(symbol, symbol)]
        if symbol not in bases:
            bases.append(symbol)
        quotes = (self.quote,) + tuple(constants.KRAKEN_QUOTE_ALIASES.get(self.quote, ()))
        for quote in quotes:
            for base in bases:
                pair = table.get((base, quote))
                if pair:
                    if quote != self.quote:
                        logger.debug("%s: using %s quote alias %s (%s)", symbol, self.quote, quote, pair)
                    return pair
        raise self._no_pair(symbol)

    async def _fetch_depth(self, pair: str, symbol: str):
        result = await self._get_json(
            "/public/Depth",
            {"pair": pair, "count": constants.KRAKEN_DEPTH_COUNT},
            symbol=symbol,
        )
        # The result key is Kraken's canonical name, which may differ from the request
        book = result.get(pair) or next(iter(result.values()), None)
        if not book:
            raise InvalidOrderBookError(self.name, f"{symbol}: no order book data returned")
        return book.get("bids"), book.get("asks"), None

    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        result = await self._get_json("/public/Ticker", {"pair": pair}, symbol=symbol)
        ticker = result.get(pair) or next(iter(result.values()), None)
        if not ticker:
            return None
        volumes = ticker.get("v") or []
        # v = [today, last 24 hours]
        return optional_float(volumes[1]) if len(volumes) > 1 else None

    async def _ping(self) -> None:
        await self._get_json("/public/Time")
