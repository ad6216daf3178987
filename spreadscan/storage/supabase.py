"""Supabase (PostgREST) persistence over httpx.

Tables follow the hosted schema: `exchanges`, `assets`, `orderbooks`,
`arbitrage_opportunities`, `alerts` and `subscriptions`. Every transport or
HTTP failure surfaces as `PersistenceError`.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import httpx

from spreadscan.config import constants
from spreadscan.core.exceptions import PersistenceError
from spreadscan.core.models import (
    Alert,
    AlertStatus,
    CrossExchangeOpportunity,
    OrderBookSnapshot,
    utcnow,
)
from spreadscan.storage.gateway import Opportunity, PersistenceGateway, exchange_id_for, opportunity_type
from spreadscan.utils.logging import get_logger


logger = get_logger("storage.supabase")

_CONTENT_RANGE = re.compile(r"/(\d+|\*)$")
SNAPSHOT_LEVELS = 20


def parse_content_range(value: Optional[str]) -> int:
    """Total from a PostgREST `Content-Range` header such as `0-9/42` or `*/0`."""
    if not value:
        return 0
    match = _CONTENT_RANGE.search(value.strip())
    if not match or match.group(1) == "*":
        return 0
    return int(match.group(1))


def snapshot_payload(snapshot: OrderBookSnapshot) -> Dict[str, Any]:
    return {
        "bids": [[level.price, level.quantity] for level in snapshot.bids[:SNAPSHOT_LEVELS]],
        "asks": [[level.price, level.quantity] for level in snapshot.asks[:SNAPSHOT_LEVELS]],
        "lastUpdateId": snapshot.last_update_id,
    }


class SupabasePersistence(PersistenceGateway):
    def __init__(
        self,
        url: str,
        service_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        minimum_spread: float = constants.MINIMUM_SPREAD,
    ):
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.minimum_spread = minimum_spread

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        extra_headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        if extra_headers:
            headers.update(extra_headers)
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=json,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(
                f"{method} {table} failed with {exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise PersistenceError(f"{method} {table} failed: {exc}") from exc
        return response

    async def _rows(self, *args, **kwargs) -> List[Dict[str, Any]]:
        response = await self._request(*args, **kwargs)
        try:
            data = response.json()
        except ValueError as exc:
            raise PersistenceError(f"invalid JSON from {args[1]}: {exc}") from exc
        return data if isinstance(data, list) else [data]

    async def _ensure(self, table: str, column: str, value: str, row: Dict[str, Any]) -> str:
        rows = await self._rows("GET", table, params={"select": "id", column: f"eq.{value}", "limit": 1})
        if rows:
            return rows[0]["id"]
        created = await self._rows("POST", table, json=row, prefer="return=representation")
        if not created or "id" not in created[0]:
            raise PersistenceError(f"insert into {table} returned no id")
        logger.info("Created %s row for %s", table, value)
        return created[0]["id"]

    async def ensure_exchange(self, name: str) -> str:
        return await self._ensure(
            "exchanges",
            "name",
            name,
            {"name": name, "api_endpoint": "", "integration_status": "active"},
        )

    async def ensure_asset(self, symbol: str) -> str:
        return await self._ensure("assets", "symbol", symbol, {"symbol": symbol, "full_name": symbol})

    async def save_order_book(self, snapshot: OrderBookSnapshot, exchange_id: str, asset_id: str) -> None:
        await self._request(
            "POST",
            "orderbooks",
            json={
                "exchange_id": exchange_id,
                "asset_id": asset_id,
                "snapshot": snapshot_payload(snapshot),
                "timestamp": snapshot.taken_at.isoformat(),
                "volume": snapshot.volume_24h,
                "spread": snapshot.spread_pct,
            },
            prefer="return=minimal",
        )

    async def save_opportunity(
        self,
        opportunity: Opportunity,
        asset_id: str,
        exchange_ids: Mapping[str, str],
    ) -> None:
        row: Dict[str, Any] = {
            "type": opportunity_type(opportunity),
            "asset_id": asset_id,
            # The column requires a positive value; the raw spread is kept in additional_data
            "spread_percentage": max(opportunity.spread_pct, self.minimum_spread),
            "potential_profit_percentage": opportunity.spread_pct,
            "threshold_used": opportunity.threshold,
            "is_profitable": opportunity.is_profitable,
            "timestamp": opportunity.taken_at.isoformat(),
        }
        if isinstance(opportunity, CrossExchangeOpportunity):
            row.update(
                exchange_from_id=exchange_id_for(exchange_ids, opportunity.exchange_from),
                exchange_to_id=exchange_id_for(exchange_ids, opportunity.exchange_to),
                buy_price=opportunity.buy_price,
                sell_price=opportunity.sell_price,
                additional_data={
                    "symbol": opportunity.symbol,
                    "direction": str(opportunity.direction) if opportunity.direction else None,
                    "raw_spread_pct": opportunity.spread_pct,
                    "mid_from": opportunity.mid_from,
                    "mid_to": opportunity.mid_to,
                },
            )
        else:
            row.update(
                exchange_id=exchange_id_for(exchange_ids, opportunity.exchange),
                buy_price=opportunity.best_ask,
                sell_price=opportunity.best_bid,
                volume=opportunity.volume,
                additional_data={"symbol": opportunity.symbol},
            )
        await self._request("POST", "arbitrage_opportunities", json=row, prefer="return=minimal")

    async def create_alert(self, alert: Alert, exchange_id: str, asset_id: str) -> Alert:
        rows = await self._rows(
            "POST",
            "alerts",
            json={
                "user_id": alert.user_id,
                "exchange_id": exchange_id,
                "asset_id": asset_id,
                "timestamp": alert.created_at.isoformat(),
                "spread": alert.spread_pct,
                "send_status": alert.status.value,
                "additional_info": {"symbol": alert.symbol, "exchange": alert.exchange, **alert.additional_data},
            },
            prefer="return=representation",
        )
        alert.alert_id = rows[0].get("id") if rows else None
        logger.info("Created alert for user %s: %s %.4f%%", alert.user_id, alert.symbol, alert.spread_pct)
        return alert

    async def update_alert_status(self, alert_id: str, status: AlertStatus) -> None:
        await self._request(
            "PATCH",
            "alerts",
            params={"id": f"eq.{alert_id}"},
            json={"send_status": status.value, "updated_at": utcnow().isoformat()},
            prefer="return=minimal",
        )

    async def get_active_users(self) -> List[str]:
        rows = await self._rows(
            "GET",
            "subscriptions",
            params={
                "select": "user_id",
                "status": "eq.active",
                "or": f"(end_date.is.null,end_date.gte.{utcnow().isoformat()})",
            },
        )
        users: List[str] = []
        for row in rows:
            user_id = row.get("user_id")
            if user_id and user_id not in users:
                users.append(user_id)
        return users

    async def get_user_alert_count(self, user_id: str, window_hours: int = 1) -> int:
        since = utcnow() - timedelta(hours=window_hours)
        response = await self._request(
            "GET",
            "alerts",
            params={"select": "id", "user_id": f"eq.{user_id}", "timestamp": f"gte.{since.isoformat()}"},
            prefer="count=exact",
            extra_headers={"Range-Unit": "items", "Range": "0-0"},
        )
        return parse_content_range(response.headers.get("content-range"))

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "exchanges", params={"select": "id", "limit": 1})
        except PersistenceError as exc:
            logger.error("Supabase connection test failed: %s", exc)
            return False
        return True
