from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, Union

from spreadscan.core.models import (
    Alert,
    AlertStatus,
    CrossExchangeOpportunity,
    IntraExchangeOpportunity,
    OrderBookSnapshot,
)


Opportunity = Union[IntraExchangeOpportunity, CrossExchangeOpportunity]


class PersistenceGateway(ABC):
    """Storage for reference rows, snapshots, opportunities and alerts.

    Implementations raise `PersistenceError` on failure; callers decide
    whether a failed write is fatal.
    """

    @abstractmethod
    async def ensure_exchange(self, name: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def ensure_asset(self, symbol: str) -> str:
        raise NotImplementedError

    @abstractmethod
    async def save_order_book(self, snapshot: OrderBookSnapshot, exchange_id: str, asset_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def save_opportunity(
        self,
        opportunity: Opportunity,
        asset_id: str,
        exchange_ids: Mapping[str, str],
    ) -> None:
        """`exchange_ids` maps every exchange named by the opportunity to its id."""
        raise NotImplementedError

    @abstractmethod
    async def create_alert(self, alert: Alert, exchange_id: str, asset_id: str) -> Alert:
        raise NotImplementedError

    @abstractmethod
    async def update_alert_status(self, alert_id: str, status: AlertStatus) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_active_users(self) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def get_user_alert_count(self, user_id: str, window_hours: int = 1) -> int:
        raise NotImplementedError

    @abstractmethod
    async def test_connection(self) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def opportunity_type(opportunity: Opportunity) -> str:
    if isinstance(opportunity, CrossExchangeOpportunity):
        return "cross_exchange"
    return "intra_exchange"


def alert_exchange(opportunity: Opportunity) -> str:
    """Exchange an alert is filed against: the buy side for cross opportunities."""
    if isinstance(opportunity, CrossExchangeOpportunity):
        if opportunity.direction is not None:
            return opportunity.direction.buy_on
        return opportunity.exchange_from
    return opportunity.exchange


def exchanges_of(opportunity: Opportunity) -> List[str]:
    if isinstance(opportunity, CrossExchangeOpportunity):
        return [opportunity.exchange_from, opportunity.exchange_to]
    return [opportunity.exchange]


def exchange_id_for(exchange_ids: Mapping[str, str], name: Optional[str]) -> Optional[str]:
    return exchange_ids.get(name) if name else None
