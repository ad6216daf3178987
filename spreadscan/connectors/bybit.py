from __future__ import annotations

from typing import Any, Optional

import httpx

from spreadscan.config import constants
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.core.exceptions import ExchangeAPIError
from spreadscan.utils.validation import optional_float


class BybitConnector(ExchangeConnector):
    """Bybit v5 spot market data. Every response is wrapped in `retCode`/`result`."""

    name = "bybit"
    default_endpoints = constants.BYBIT_ENDPOINTS
    batch_delay = 0.3

    async def resolve_pair(self, symbol: str) -> str:
        return f"{symbol.upper()}{self.quote}"

    def _check_response(self, response: httpx.Response, symbol: Optional[str]) -> Any:
        payload = super()._check_response(response, symbol)
        code = payload.get("retCode")
        if code in constants.BYBIT_INVALID_SYMBOL_CODES:
            raise self._no_pair(symbol)
        if code != 0:
            raise ExchangeAPIError(self.name, payload.get("retMsg") or "request failed", code=str(code))
        return payload.get("result") or {}

    async def _fetch_depth(self, pair: str, symbol: str):
        result = await self._get_json(
            "/v5/market/orderbook",
            {"category": "spot", "symbol": pair, "limit": constants.BYBIT_DEPTH_LIMIT},
            symbol=symbol,
        )
        return result.get("b"), result.get("a"), result.get("u")

    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        result = await self._get_json(
            "/v5/market/tickers",
            {"category": "spot", "symbol": pair},
            symbol=symbol,
        )
        tickers = result.get("list") or []
        if not tickers:
            return None
        return optional_float(tickers[0].get("volume24h"))

    async def _ping(self) -> None:
        await self._get_json("/v5/market/time")
