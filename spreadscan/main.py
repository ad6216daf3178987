from __future__ import annotations

import asyncio
import os
import signal
from typing import Optional

from spreadscan.config.settings import Settings, load_settings
from spreadscan.connectors.registry import build_connectors
from spreadscan.core.alerts import AlertService
from spreadscan.core.engine import ArbitrageEngine
from spreadscan.core.scheduler import DataCollector
from spreadscan.notifications.gateway import NotificationGateway
from spreadscan.notifications.logging_notifier import LoggingNotifier
from spreadscan.notifications.telegram import TelegramNotifier
from spreadscan.storage.gateway import PersistenceGateway
from spreadscan.storage.memory import InMemoryPersistence
from spreadscan.storage.supabase import SupabasePersistence
from spreadscan.utils.logging import get_logger


logger = get_logger("main")


def build_persistence(settings: Settings) -> PersistenceGateway:
    storage = settings.storage
    if storage.configured and not settings.demo:
        return SupabasePersistence(
            storage.supabase_url,
            storage.supabase_key,
            minimum_spread=settings.arbitrage.minimum_spread_pct,
        )
    logger.info("No database configured, keeping results in memory")
    return InMemoryPersistence(users=storage.memory_users)


def build_notifier(settings: Settings) -> NotificationGateway:
    notifications = settings.notifications
    if notifications.telegram_configured:
        return TelegramNotifier(notifications.telegram_bot_token, notifications.telegram_chat_id)
    return LoggingNotifier()


def build_collector(
    settings: Settings,
    persistence: Optional[PersistenceGateway] = None,
    notifier: Optional[NotificationGateway] = None,
) -> DataCollector:
    persistence = persistence or build_persistence(settings)
    alerts = AlertService(persistence, notifier or build_notifier(settings), settings.alerts)
    engine = ArbitrageEngine(settings, persistence, alerts)
    return DataCollector(settings, build_connectors(settings), engine, persistence)


async def run_once(settings: Optional[Settings] = None) -> int:
    """Cold start, one cycle, shutdown. Returns the number of profitable opportunities."""
    settings = settings or load_settings()
    collector = build_collector(settings)
    try:
        await collector.initialize()
        result = await collector.collect_data()
    finally:
        await collector.stop()
    if result is None:
        logger.info("No opportunities found.")
        return 0
    logger.info("Found %d profitable opportunities", len(result.profitable))
    return len(result.profitable)


async def run_forever(settings: Optional[Settings] = None) -> None:
    settings = settings or load_settings()
    collector = build_collector(settings)
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises KeyboardInterrupt
            pass

    await collector.start()
    try:
        await stop.wait()
    finally:
        await collector.stop()


def cli():
    settings = load_settings()
    once = os.environ.get("RUN_ONCE", "0").lower() in {"1", "true", "yes"}
    if once:
        asyncio.run(run_once(settings))
    else:
        asyncio.run(run_forever(settings))


if __name__ == "__main__":
    cli()
