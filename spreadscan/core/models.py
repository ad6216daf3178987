"""Core data models for order books, opportunities and alerts.

Snapshots and opportunities are cycle-scoped value objects: they are created
once per collection cycle, persisted, and never mutated. `ConnectionStatus`
is the only long-lived mutable state and guards its fields with a lock
because concurrent symbol batches update it.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OrderLevel:
    """Represents a single level in the order book."""
    price: float
    quantity: float


@dataclass(frozen=True)
class OrderBookSnapshot:
    exchange: str
    symbol: str
    bids: Tuple[OrderLevel, ...]  # descending by price
    asks: Tuple[OrderLevel, ...]  # ascending by price
    spread_pct: float  # floored to the configured minimum
    volume_24h: Optional[float]  # None when unknown or the book is degraded
    taken_at: datetime = field(default_factory=utcnow)
    last_update_id: Optional[str] = None

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2


@dataclass(frozen=True)
class IntraExchangeOpportunity:
    symbol: str
    exchange: str
    spread_pct: float
    threshold: float
    is_profitable: bool
    volume: Optional[float]
    best_bid: Optional[float]
    best_ask: Optional[float]
    taken_at: datetime = field(default_factory=utcnow)

    @property
    def venue(self) -> str:
        return self.exchange


@dataclass(frozen=True)
class Direction:
    """Buy on one exchange's ask, sell into another exchange's bid."""
    buy_on: str
    sell_on: str

    def __str__(self) -> str:
        return f"buy_{self.buy_on}_sell_{self.sell_on}"


@dataclass(frozen=True)
class CrossExchangeOpportunity:
    """Best of the two directions between one pair of exchanges.

    `exchange_from`/`exchange_to` keep the pair in registry order; the
    actual trade is described by `direction`, which is None when neither
    direction had a positive spread.
    """

    symbol: str
    exchange_from: str
    exchange_to: str
    direction: Optional[Direction]
    spread_pct: float
    threshold: float
    is_profitable: bool
    buy_price: Optional[float] = None
    sell_price: Optional[float] = None
    mid_from: Optional[float] = None
    mid_to: Optional[float] = None
    taken_at: datetime = field(default_factory=utcnow)

    @property
    def venue(self) -> str:
        return f"{self.exchange_from}->{self.exchange_to}"


class AlertStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class Alert:
    user_id: str
    exchange: str
    symbol: str
    spread_pct: float
    additional_data: Dict[str, Any] = field(default_factory=dict)
    status: AlertStatus = AlertStatus.PENDING
    alert_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ConnectionStatusView:
    is_connected: bool
    last_update_at: Optional[datetime]
    error_count: int
    last_error: Optional[str]
    current_endpoint: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "last_update_at": self.last_update_at.isoformat() if self.last_update_at else None,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "current_endpoint": self.current_endpoint,
        }


class ConnectionStatus:
    """Per-adapter connection state, mutated only through its methods."""

    def __init__(self, current_endpoint: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._view = ConnectionStatusView(
            is_connected=False,
            last_update_at=None,
            error_count=0,
            last_error=None,
            current_endpoint=current_endpoint,
        )

    def record_success(self) -> None:
        with self._lock:
            self._view = replace(self._view, is_connected=True, last_update_at=utcnow())

    def record_error(self, error: BaseException, disconnect: bool = False) -> None:
        with self._lock:
            self._view = replace(
                self._view,
                error_count=self._view.error_count + 1,
                last_error=str(error),
                is_connected=False if disconnect else self._view.is_connected,
            )

    def set_connected(self, connected: bool) -> None:
        with self._lock:
            self._view = replace(self._view, is_connected=connected, last_update_at=utcnow())

    def set_endpoint(self, endpoint: str) -> None:
        with self._lock:
            self._view = replace(self._view, current_endpoint=endpoint)

    def reset_errors(self) -> None:
        with self._lock:
            self._view = replace(self._view, error_count=0, last_error=None)

    def snapshot(self) -> ConnectionStatusView:
        with self._lock:
            return self._view

    @property
    def error_count(self) -> int:
        return self.snapshot().error_count


@dataclass
class CycleResult:
    processed: int = 0
    saved: int = 0
    alerts: int = 0
    failures: int = 0
    opportunities: List[IntraExchangeOpportunity] = field(default_factory=list)
    cross_opportunities: List[CrossExchangeOpportunity] = field(default_factory=list)

    @property
    def profitable(self) -> List[Any]:
        return [o for o in self.opportunities if o.is_profitable] + [
            o for o in self.cross_opportunities if o.is_profitable
        ]
