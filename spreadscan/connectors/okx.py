from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from spreadscan.config import constants
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.core.exceptions import ExchangeAPIError, InvalidOrderBookError
from spreadscan.utils.validation import optional_float


def sign_request(secret: str, timestamp: str, method: str, request_path: str, body: str = "") -> str:
    """OKX signature: base64(HMAC-SHA256(secret, timestamp + method + path + body))."""
    message = f"{timestamp}{method.upper()}{request_path}{body}"
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def _timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class OKXConnector(ExchangeConnector):
    name = "okx"
    default_endpoints = constants.OKX_ENDPOINTS
    batch_delay = 0.3

    async def resolve_pair(self, symbol: str) -> str:
        return f"{symbol.upper()}-{self.quote}"

    def _headers(self, path: str, params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        # Market data is public; sign only when a full credential set is configured
        if not (self.auth.has_credentials and self.auth.passphrase):
            return {}
        request_path = f"{path}?{urlencode(params)}" if params else path
        timestamp = _timestamp()
        return {
            "OK-ACCESS-KEY": self.auth.api_key,
            "OK-ACCESS-SIGN": sign_request(self.auth.api_secret, timestamp, "GET", request_path),
            "OK-ACCESS-TIMESTAMP": timestamp,
            "OK-ACCESS-PASSPHRASE": self.auth.passphrase,
        }

    def _check_response(self, response: httpx.Response, symbol: Optional[str]) -> Any:
        payload = super()._check_response(response, symbol)
        code = str(payload.get("code", ""))
        if code in constants.OKX_INVALID_INSTRUMENT_CODES:
            raise self._no_pair(symbol)
        if code != "0":
            raise ExchangeAPIError(self.name, payload.get("msg") or "request failed", code=code)
        return payload.get("data") or []

    async def _fetch_depth(self, pair: str, symbol: str):
        data = await self._get_json(
            "/api/v5/market/books",
            {"instId": pair, "sz": constants.OKX_DEPTH_SIZE},
            symbol=symbol,
        )
        if not data:
            raise InvalidOrderBookError(self.name, f"{symbol}: no order book data returned")
        book = data[0]
        return book.get("bids"), book.get("asks"), book.get("ts")

    async def _fetch_volume(self, pair: str, symbol: str) -> Optional[float]:
        data = await self._get_json("/api/v5/market/ticker", {"instId": pair}, symbol=symbol)
        if not data:
            return None
        return optional_float(data[0].get("volCcy24h"))

    async def _ping(self) -> None:
        await self._get_json("/api/v5/public/time")
