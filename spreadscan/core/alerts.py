"""Alert generation for profitable opportunities.

Every active user gets at most one alert per (symbol, exchange) per
rate-limit window and at most `hourly_cap` alerts per rolling hour. A
cross-exchange alert counts against its buy-side exchange. The check and
the increment happen under a per-user lock so concurrent cycles cannot
both pass the same check. Delivery runs as a background task and never blocks
or fails the cycle.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from typing import Any, Callable, Deque, Dict, Iterable, Mapping, Optional, Set, Tuple

from spreadscan.config.settings import AlertSettings
from spreadscan.core.exceptions import PersistenceError
from spreadscan.core.models import Alert, AlertStatus, CrossExchangeOpportunity
from spreadscan.notifications.gateway import NotificationGateway
from spreadscan.storage.gateway import Opportunity, PersistenceGateway, alert_exchange
from spreadscan.utils.logging import get_logger


logger = get_logger("alerts")


class AlertRateLimiter:
    """In-process record of recently created alerts.

    Not thread-safe on its own; `AlertService` calls it under a per-user lock.
    """

    def __init__(
        self,
        rate_limit_seconds: float = 60.0,
        hourly_cap: int = 10,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate_limit_seconds = rate_limit_seconds
        self.hourly_cap = hourly_cap
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_sent: Dict[Tuple[str, str, str], float] = {}
        self._sent: Dict[str, Deque[float]] = defaultdict(deque)

    def within_rate_limit(self, user_id: str, symbol: str, exchange: str) -> bool:
        last = self._last_sent.get((user_id, symbol, exchange))
        return last is None or (self._clock() - last) >= self.rate_limit_seconds

    def recent_count(self, user_id: str) -> int:
        sent = self._sent[user_id]
        cutoff = self._clock() - self.window_seconds
        while sent and sent[0] <= cutoff:
            sent.popleft()
        return len(sent)

    def under_cap(self, user_id: str, persisted_count: int = 0) -> bool:
        return max(persisted_count, self.recent_count(user_id)) < self.hourly_cap

    def record(self, user_id: str, symbol: str, exchange: str) -> None:
        now = self._clock()
        self._last_sent[(user_id, symbol, exchange)] = now
        self._sent[user_id].append(now)


def alert_metadata(opportunity: Opportunity) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "venue": opportunity.venue,
        "threshold": opportunity.threshold,
    }
    if isinstance(opportunity, CrossExchangeOpportunity):
        data.update(
            type="cross_exchange",
            direction=str(opportunity.direction) if opportunity.direction else None,
            buy_price=opportunity.buy_price,
            sell_price=opportunity.sell_price,
        )
    else:
        data.update(
            type="intra_exchange",
            volume=opportunity.volume,
            best_bid=opportunity.best_bid,
            best_ask=opportunity.best_ask,
        )
    return data


class AlertService:
    def __init__(
        self,
        persistence: PersistenceGateway,
        notifier: NotificationGateway,
        settings: Optional[AlertSettings] = None,
        limiter: Optional[AlertRateLimiter] = None,
    ):
        self.persistence = persistence
        self.notifier = notifier
        self.settings = settings or AlertSettings()
        self.limiter = limiter or AlertRateLimiter(
            rate_limit_seconds=self.settings.rate_limit_seconds,
            hourly_cap=self.settings.hourly_cap,
            window_seconds=self.settings.window_hours * 3600.0,
        )
        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    async def generate(
        self,
        opportunities: Iterable[Opportunity],
        exchange_ids: Mapping[str, str],
        asset_ids: Mapping[str, str],
    ) -> int:
        """Create and queue alerts for profitable opportunities; returns alerts created."""
        profitable = [o for o in opportunities if o.is_profitable]
        if not profitable:
            return 0
        try:
            users = await self.persistence.get_active_users()
        except PersistenceError as exc:
            logger.warning("Could not load active users, skipping alerts: %s", exc)
            return 0
        if not users:
            logger.debug("No active users found for alerts")
            return 0

        created = 0
        for opportunity in profitable:
            for user_id in users:
                try:
                    alert = await self._create_for_user(user_id, opportunity, exchange_ids, asset_ids)
                except (PersistenceError, KeyError) as exc:
                    logger.warning("Failed to create alert for user %s on %s: %s", user_id, opportunity.symbol, exc)
                    continue
                if alert is not None:
                    created += 1
                    self._dispatch(alert)
        return created

    async def _create_for_user(
        self,
        user_id: str,
        opportunity: Opportunity,
        exchange_ids: Mapping[str, str],
        asset_ids: Mapping[str, str],
    ) -> Optional[Alert]:
        exchange = alert_exchange(opportunity)
        async with self._lock_for(user_id):
            if not self.limiter.within_rate_limit(user_id, opportunity.symbol, exchange):
                logger.debug("Rate limited: user %s, %s on %s", user_id, opportunity.symbol, exchange)
                return None
            persisted = await self.persistence.get_user_alert_count(user_id, self.settings.window_hours)
            if not self.limiter.under_cap(user_id, persisted):
                logger.debug("User %s reached the hourly alert cap (%d)", user_id, self.limiter.hourly_cap)
                return None

            alert = Alert(
                user_id=user_id,
                exchange=exchange,
                symbol=opportunity.symbol,
                spread_pct=opportunity.spread_pct,
                additional_data=alert_metadata(opportunity),
            )
            alert = await self.persistence.create_alert(alert, exchange_ids[exchange], asset_ids[opportunity.symbol])
            self.limiter.record(user_id, opportunity.symbol, exchange)
        logger.debug("Created alert for user %s: %s at %.4f%%", user_id, opportunity.symbol, opportunity.spread_pct)
        return alert

    def _dispatch(self, alert: Alert) -> None:
        task = asyncio.create_task(self._deliver(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, alert: Alert) -> None:
        try:
            await self.notifier.deliver(alert)
            alert.status = AlertStatus.SENT
        except Exception as exc:  # noqa: BLE001
            alert.status = AlertStatus.FAILED
            logger.warning("Delivery of alert %s to user %s failed: %s", alert.alert_id, alert.user_id, exc)
        if alert.alert_id is None:
            return
        try:
            await self.persistence.update_alert_status(alert.alert_id, alert.status)
        except PersistenceError as exc:
            logger.warning("Could not record status of alert %s: %s", alert.alert_id, exc)

    async def drain(self, timeout: float = 10.0) -> None:
        """Wait for queued deliveries; cancel whatever is left after `timeout`."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d undelivered alerts on shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Drained %d alert deliveries", len(done))
