import asyncio

from spreadscan.config.settings import AlertSettings
from spreadscan.core.alerts import AlertRateLimiter, AlertService
from spreadscan.core.exceptions import PersistenceError
from spreadscan.core.models import (
    AlertStatus,
    CrossExchangeOpportunity,
    Direction,
    IntraExchangeOpportunity,
)
from spreadscan.notifications.gateway import NotificationGateway
from spreadscan.storage.memory import InMemoryPersistence


class Clock:
    def __init__(self):
        self.now = 5000.0

    def __call__(self):
        return self.now


class RecordingNotifier(NotificationGateway):
    def __init__(self, fail=False):
        self.fail = fail
        self.delivered = []

    async def deliver(self, alert):
        if self.fail:
            raise ConnectionError("chat API down")
        self.delivered.append(alert)


def intra(symbol="BTC", exchange="binance", spread=0.5, profitable=True):
    return IntraExchangeOpportunity(
        symbol=symbol,
        exchange=exchange,
        spread_pct=spread,
        threshold=0.01,
        is_profitable=profitable,
        volume=100.0,
        best_bid=100.0,
        best_ask=100.5,
    )


def cross(symbol="BTC"):
    return CrossExchangeOpportunity(
        symbol=symbol,
        exchange_from="binance",
        exchange_to="okx",
        direction=Direction(buy_on="okx", sell_on="binance"),
        spread_pct=1.2,
        threshold=0.01,
        is_profitable=True,
        buy_price=100.0,
        sell_price=101.2,
    )


def service(users=("u1",), notifier=None, clock=None, persistence=None):
    persistence = persistence or InMemoryPersistence(users=users)
    limiter = AlertRateLimiter(rate_limit_seconds=60, hourly_cap=10, clock=clock or Clock())
    return AlertService(persistence, notifier or RecordingNotifier(), AlertSettings(), limiter), persistence


EXCHANGE_IDS = {"binance": "ex-binance", "okx": "ex-okx"}
ASSET_IDS = {f"S{i}": f"asset-{i}" for i in range(20)}
ASSET_IDS.update(BTC="asset-btc", ETH="asset-eth")


def test_rate_limit_allows_one_alert_per_window():
    clock = Clock()
    alerts, store = service(clock=clock)

    async def scenario():
        first = await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        second = await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        clock.now += 61
        third = await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)
        return first, second, third

    assert asyncio.run(scenario()) == (1, 0, 1)
    assert len(store.alerts) == 2


def test_rate_limit_is_per_symbol_and_exchange():
    alerts, store = service()

    async def scenario():
        created = await alerts.generate(
            [intra("BTC"), intra("ETH"), intra("BTC", exchange="okx"), cross("BTC"), cross("ETH")],
            EXCHANGE_IDS,
            ASSET_IDS,
        )
        await alerts.drain(1.0)
        return created

    # cross BTC buys on okx, which already has a BTC alert
    assert asyncio.run(scenario()) == 4
    keys = sorted((a.symbol, a.exchange) for a in store.alerts.values())
    assert keys == [("BTC", "binance"), ("BTC", "okx"), ("ETH", "binance"), ("ETH", "okx")]


def test_cross_alert_shares_window_with_buy_side_intra_alert():
    clock = Clock()
    alerts, store = service(clock=clock)

    async def scenario():
        first = await alerts.generate([intra("BTC", exchange="okx")], EXCHANGE_IDS, ASSET_IDS)
        second = await alerts.generate([cross("BTC")], EXCHANGE_IDS, ASSET_IDS)
        clock.now += 61
        third = await alerts.generate([cross("BTC")], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)
        return first, second, third

    assert asyncio.run(scenario()) == (1, 0, 1)
    assert [(a.user_id, a.symbol, a.exchange) for a in store.alerts.values()] == [
        ("u1", "BTC", "okx"),
        ("u1", "BTC", "okx"),
    ]


def test_hourly_cap_suppresses_eleventh_alert():
    alerts, store = service()
    opportunities = [intra(f"S{i}") for i in range(11)]

    async def scenario():
        created = await alerts.generate(opportunities, EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)
        return created

    assert asyncio.run(scenario()) == 10
    assert len(store.alerts) == 10


def test_hourly_cap_counts_persisted_alerts():
    alerts, store = service()

    async def scenario():
        # alerts created by an earlier process are only visible in storage
        for i in range(10):
            await store.create_alert(_alert("u1", f"S{i}"), "ex-binance", f"asset-{i}")
        return await alerts.generate([intra("BTC")], EXCHANGE_IDS, ASSET_IDS)

    assert asyncio.run(scenario()) == 0


def _alert(user_id, symbol):
    from spreadscan.core.models import Alert

    return Alert(user_id=user_id, exchange="binance", symbol=symbol, spread_pct=0.5)


def test_unprofitable_opportunities_create_no_alerts():
    alerts, store = service()
    created = asyncio.run(alerts.generate([intra(profitable=False)], EXCHANGE_IDS, ASSET_IDS))
    assert created == 0
    assert store.alerts == {}


def test_every_active_user_is_alerted():
    alerts, store = service(users=("u1", "u2", "u3"))

    async def scenario():
        created = await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)
        return created

    assert asyncio.run(scenario()) == 3
    assert sorted(a.user_id for a in store.alerts.values()) == ["u1", "u2", "u3"]


def test_cross_alert_is_filed_against_buy_side():
    notifier = RecordingNotifier()
    alerts, store = service(notifier=notifier)

    async def scenario():
        await alerts.generate([cross()], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)

    asyncio.run(scenario())
    (alert,) = store.alerts.values()
    assert alert.exchange == "okx"
    assert alert.additional_data["venue"] == "binance->okx"
    assert alert.additional_data["direction"] == "buy_okx_sell_binance"
    assert alert.status is AlertStatus.SENT
    assert notifier.delivered == [alert]


def test_delivery_failure_marks_alert_failed_without_raising():
    alerts, store = service(notifier=RecordingNotifier(fail=True))

    async def scenario():
        created = await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(1.0)
        return created

    assert asyncio.run(scenario()) == 1
    (alert,) = store.alerts.values()
    assert alert.status is AlertStatus.FAILED
    assert alerts.pending_deliveries == 0


def test_drain_cancels_slow_deliveries():
    class SlowNotifier(NotificationGateway):
        async def deliver(self, alert):
            await asyncio.sleep(10)

    alerts, _ = service(notifier=SlowNotifier())

    async def scenario():
        await alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)
        await alerts.drain(0.01)
        return alerts.pending_deliveries

    assert asyncio.run(scenario()) == 0


def test_user_lookup_failure_skips_alerts():
    class BrokenStore(InMemoryPersistence):
        async def get_active_users(self):
            raise PersistenceError("subscriptions unavailable")

    alerts, _ = service(persistence=BrokenStore())
    assert asyncio.run(alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS)) == 0


def test_concurrent_generation_respects_rate_limit():
    alerts, store = service()

    async def scenario():
        results = await asyncio.gather(*(alerts.generate([intra()], EXCHANGE_IDS, ASSET_IDS) for _ in range(5)))
        await alerts.drain(1.0)
        return results

    assert sum(asyncio.run(scenario())) == 1
    assert len(store.alerts) == 1


def test_limiter_window_rolls_over():
    clock = Clock()
    limiter = AlertRateLimiter(rate_limit_seconds=60, hourly_cap=2, window_seconds=3600, clock=clock)
    limiter.record("u1", "BTC", "binance")
    limiter.record("u1", "ETH", "binance")
    assert not limiter.under_cap("u1")
    clock.now += 3601
    assert limiter.under_cap("u1")
    assert limiter.under_cap("u1", persisted_count=1)
    assert not limiter.under_cap("u1", persisted_count=2)
