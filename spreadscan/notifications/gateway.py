from __future__ import annotations

from abc import ABC, abstractmethod

from spreadscan.core.models import Alert


class NotificationGateway(ABC):
    """Delivers a created alert to the user. Raises on delivery failure."""

    @abstractmethod
    async def deliver(self, alert: Alert) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def format_alert(alert: Alert) -> str:
    data = alert.additional_data
    lines = [
        f"Spread alert: {alert.symbol} on {data.get('venue', alert.exchange)}",
        f"Spread: {alert.spread_pct:.4f}% (threshold {data.get('threshold', 0):.4f}%)",
    ]
    if data.get("direction"):
        lines.append(f"Direction: {data['direction']}")
    if data.get("buy_price") is not None and data.get("sell_price") is not None:
        lines.append(f"Buy {data['buy_price']} / Sell {data['sell_price']}")
    lines.append(alert.created_at.strftime("%Y-%m-%d %H:%M:%S UTC"))
    return "\n".join(lines)
