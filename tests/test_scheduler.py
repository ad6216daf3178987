import asyncio

import pytest

from spreadscan.config.settings import CollectionSettings, Settings
from spreadscan.connectors.demo import DemoConnector
from spreadscan.core.alerts import AlertService
from spreadscan.core.engine import ArbitrageEngine
from spreadscan.core.exceptions import ExchangeError, StartupError
from spreadscan.core.scheduler import DataCollector
from spreadscan.notifications.logging_notifier import LoggingNotifier
from spreadscan.storage.memory import InMemoryPersistence


ASSETS = ("BTC", "ETH")


class BlockingEngine(ArbitrageEngine):
    """Engine whose cycles park until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def process_cycle(self, books_by_exchange):
        self.calls += 1
        self.entered.set()
        await self.release.wait()
        return await super().process_cycle(books_by_exchange)


class Unreachable(DemoConnector):
    async def _ping(self):
        raise ExchangeError(self.name, "connection refused")


class Offline(InMemoryPersistence):
    async def test_connection(self):
        return False


def make_settings(**collection):
    collection.setdefault("assets", ASSETS)
    return Settings(collection=CollectionSettings(**collection))


def make_collector(settings=None, connectors=None, persistence=None, engine_cls=ArbitrageEngine):
    settings = settings or make_settings()
    persistence = persistence or InMemoryPersistence()
    connectors = connectors if connectors is not None else [
        DemoConnector(settings, name="binance", seed=1),
        DemoConnector(settings, name="okx", seed=2),
    ]
    engine = engine_cls(settings, persistence, AlertService(persistence, LoggingNotifier()))
    return DataCollector(settings, connectors, engine, persistence)


def test_single_cycle_collects_from_every_exchange():
    collector = make_collector()

    async def scenario():
        await collector.initialize()
        result = await collector.collect_data()
        await collector.stop()
        return result

    result = asyncio.run(scenario())
    assert result.processed == 4
    assert len(result.cross_opportunities) == 2
    assert collector.stats["successful_runs"] == 1
    assert collector.stats["failed_runs"] == 0
    assert not collector.is_running


def test_overlapping_ticks_are_skipped():
    async def scenario():
        collector = make_collector(engine_cls=BlockingEngine)
        engine = collector.engine
        first = collector.tick()
        assert first is not None
        assert collector.tick() is None
        await engine.entered.wait()
        assert collector.tick() is None
        engine.release.set()
        result = await first
        await collector.stop()
        return collector, engine, result

    collector, engine, result = asyncio.run(scenario())
    assert engine.calls == 1
    assert result is not None
    assert collector.stats["total_runs"] == 1
    assert collector.stats["skipped_runs"] == 2


def test_tick_runs_again_after_cycle_finishes():
    async def scenario():
        collector = make_collector()
        await collector.tick()
        await collector.tick()
        await collector.stop()
        return collector

    collector = asyncio.run(scenario())
    assert collector.stats["total_runs"] == 2
    assert collector.stats["skipped_runs"] == 0


def test_startup_fails_when_persistence_is_unreachable():
    collector = make_collector(persistence=Offline())
    with pytest.raises(StartupError):
        asyncio.run(collector.initialize())


def test_startup_fails_when_no_exchange_is_reachable():
    settings = make_settings()
    collector = make_collector(settings, connectors=[Unreachable(settings, name="binance")])
    with pytest.raises(StartupError):
        asyncio.run(collector.initialize())


def test_unreachable_exchange_is_excluded():
    settings = make_settings()
    bad = Unreachable(settings, name="bybit")
    collector = make_collector(settings, connectors=[DemoConnector(settings, name="binance", seed=3), bad])

    async def scenario():
        await collector.initialize()
        result = await collector.collect_data()
        await collector.stop()
        return result

    result = asyncio.run(scenario())
    assert not bad.is_available
    assert result.processed == 2
    assert result.cross_opportunities == []


def test_empty_cycle_counts_as_failure():
    collector = make_collector(make_settings(assets=()))

    async def scenario():
        result = await collector.collect_data()
        await collector.stop()
        return result

    assert asyncio.run(scenario()) is None
    assert collector.stats["failed_runs"] == 1
    assert "no order books" in collector.stats["last_error"]
    assert collector.engine.state.value == "idle"


def test_disabled_exchange_is_probed_and_recovers():
    settings = make_settings(recovery_interval_cycles=1)
    flaky = DemoConnector(settings, name="okx", seed=4)
    collector = make_collector(settings, connectors=[DemoConnector(settings, name="binance", seed=5), flaky])
    flaky.mark_unavailable(ExchangeError("okx", "blocked"))

    async def scenario():
        result = await collector.collect_data()
        await collector.stop()
        return result

    result = asyncio.run(scenario())
    assert flaky.is_available
    assert result.processed == 4


def test_stop_cancels_cycle_after_grace():
    async def scenario():
        collector = make_collector(engine_cls=BlockingEngine)
        task = collector.tick()
        await collector.engine.entered.wait()
        await collector.stop(grace=0.01)
        return collector, task

    collector, task = asyncio.run(scenario())
    assert task.done()
    assert not collector.is_running


def test_scheduled_collection_runs_until_stopped():
    async def scenario():
        collector = make_collector(make_settings(interval_seconds=0.05))
        await collector.start()
        assert collector.is_scheduled
        for _ in range(200):
            if collector.stats["successful_runs"] >= 2:
                break
            await asyncio.sleep(0.01)
        await collector.stop()
        return collector

    collector = asyncio.run(scenario())
    assert collector.stats["successful_runs"] >= 2
    assert not collector.is_scheduled


def test_stats_and_health_check():
    async def scenario():
        collector = make_collector()
        await collector.collect_data()
        health = await collector.health_check()
        await collector.stop()
        return collector, health

    collector, health = asyncio.run(scenario())
    stats = collector.get_stats()
    assert stats["success_rate"] == 100.0
    assert set(stats["exchanges"]) == {"binance", "okx"}
    assert stats["exchanges"]["binance"]["available"] is True
    assert stats["engine"]["cycles"] == 1
    assert health["status"] == "healthy"
    assert health["exchanges"] == {"binance": True, "okx": True}


def test_health_check_leaves_disabled_exchange_untouched():
    settings = make_settings()
    disabled = DemoConnector(settings, name="okx", seed=6)

    async def scenario():
        collector = make_collector(settings, connectors=[DemoConnector(settings, name="binance", seed=7), disabled])
        disabled.mark_unavailable(ExchangeError("okx", "all endpoints blocked"))
        health = await collector.health_check()
        await collector.stop()
        return health

    health = asyncio.run(scenario())
    status = disabled.get_connection_status()
    assert health["exchanges"] == {"binance": True, "okx": False}
    assert health["status"] == "healthy"
    assert not disabled.is_available
    assert not status.is_connected
    assert status.error_count == 1
    assert "all endpoints blocked" in status.last_error
    assert health["stats"]["exchanges"]["okx"]["available"] is False
