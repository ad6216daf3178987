from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from spreadscan.core.models import Alert, AlertStatus, OrderBookSnapshot, utcnow
from spreadscan.storage.gateway import Opportunity, PersistenceGateway, opportunity_type
from spreadscan.utils.logging import get_logger


logger = get_logger("storage.memory")


class InMemoryPersistence(PersistenceGateway):
    """Process-local store used by tests and by runs without a database."""

    def __init__(self, users: Optional[Iterable[str]] = None, max_rows: int = 10_000):
        self.users: List[str] = list(users or [])
        self.max_rows = max_rows
        self.exchanges: Dict[str, str] = {}
        self.assets: Dict[str, str] = {}
        self.order_books: List[Dict[str, Any]] = []
        self.opportunities: List[Dict[str, Any]] = []
        self.alerts: Dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def ensure_exchange(self, name: str) -> str:
        async with self._lock:
            if name not in self.exchanges:
                self.exchanges[name] = str(uuid.uuid4())
                logger.debug("Created exchange %s", name)
            return self.exchanges[name]

    async def ensure_asset(self, symbol: str) -> str:
        async with self._lock:
            if symbol not in self.assets:
                self.assets[symbol] = str(uuid.uuid4())
                logger.debug("Created asset %s", symbol)
            return self.assets[symbol]

    def _append(self, rows: List[Dict[str, Any]], row: Dict[str, Any]) -> None:
        rows.append(row)
        if len(rows) > self.max_rows:
            del rows[: len(rows) - self.max_rows]

    async def save_order_book(self, snapshot: OrderBookSnapshot, exchange_id: str, asset_id: str) -> None:
        self._append(
            self.order_books,
            {"exchange_id": exchange_id, "asset_id": asset_id, "snapshot": snapshot},
        )

    async def save_opportunity(
        self,
        opportunity: Opportunity,
        asset_id: str,
        exchange_ids: Mapping[str, str],
    ) -> None:
        self._append(
            self.opportunities,
            {
                "type": opportunity_type(opportunity),
                "asset_id": asset_id,
                "exchange_ids": dict(exchange_ids),
                "opportunity": opportunity,
            },
        )

    async def create_alert(self, alert: Alert, exchange_id: str, asset_id: str) -> Alert:
        stored = replace(alert, alert_id=str(uuid.uuid4()))
        self.alerts[stored.alert_id] = stored
        return stored

    async def update_alert_status(self, alert_id: str, status: AlertStatus) -> None:
        if alert_id in self.alerts:
            self.alerts[alert_id].status = status

    async def get_active_users(self) -> List[str]:
        return list(self.users)

    async def get_user_alert_count(self, user_id: str, window_hours: int = 1) -> int:
        since = utcnow() - timedelta(hours=window_hours)
        return sum(1 for a in self.alerts.values() if a.user_id == user_id and a.created_at >= since)

    async def test_connection(self) -> bool:
        return True
