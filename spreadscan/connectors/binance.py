from __future__ import annotations

from typing import Any, Optional

import httpx

from spreadscan.config import constants
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.utils.validation import optional_float


class BinanceConnector(ExchangeConnector):
    name = "binance"
    default_endpoints = constants.BINANCE_ENDPOINTS
    batch_delay = 0.2

    async def resolve_pair(self, symbol: str) -> str:
        return f"{symbol.upper()}{self.quote}"

    def _check_response(self, response: httpx.Response, symbol: Optional[str]) -> Any:
        if response.status_code == 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            if isinstance(payload, dict) and payload.get("code") == constants.BINANCE_INVALID_SYMBOL_CODE:
                raise self._no_pair(symbol)
        return super()._check_response(response, symbol)

    async def _fetch_depth(self, pair: str, symbol: str):
        payload = await self._get_json(
            "/api/v3/depth",
            {"symbol": pair, "limit": constants.BINANCE_DEPTH_LIMIT},
            symbol=symbol,
        )
        return payload.get("bids"), payload.get("asks"), payload.get("lastUpdateId")

    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        payload = await self._get_json("/api/v3/ticker/24hr", {"symbol": pair}, symbol=symbol)
        return optional_float(payload.get("volume"))

    async def _ping(self) -> None:
        await self._get_json("/api/v3/ping")
