"""Periodic order book collection.

`DataCollector` ticks on a fixed interval. A tick that arrives while the
previous cycle is still running is skipped and counted, never queued.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

from spreadscan.config.settings import Settings
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.core.engine import ArbitrageEngine, EngineState
from spreadscan.core.exceptions import CollectionError, ExchangeError, StartupError
from spreadscan.core.models import CycleResult, OrderBookSnapshot, utcnow
from spreadscan.storage.gateway import PersistenceGateway
from spreadscan.utils.logging import get_logger
from spreadscan.utils.timing import format_duration, timer


logger = get_logger("scheduler")


class DataCollector:
    def __init__(
        self,
        settings: Settings,
        connectors: Sequence[ExchangeConnector],
        engine: ArbitrageEngine,
        persistence: PersistenceGateway,
    ):
        self.settings = settings
        self.connectors: List[ExchangeConnector] = list(connectors)
        self.engine = engine
        self.persistence = persistence
        self.assets = list(settings.collection.assets)
        self.stats: Dict[str, Any] = {
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "skipped_runs": 0,
            "last_run": None,
            "last_error": None,
            "last_duration": None,
            "start_time": utcnow().isoformat(),
        }
        self._started = time.monotonic()
        self._initialized = False
        self._in_flight = False
        self._cycle_task: Optional[asyncio.Task] = None
        self._driver: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._in_flight

    @property
    def is_scheduled(self) -> bool:
        return self._driver is not None and not self._driver.done()

    async def initialize(self) -> None:
        """Cold start: check the backend, probe adapters, ensure reference rows."""
        logger.info("Initializing data collector with %d exchanges", len(self.connectors))
        try:
            persistence_ok = await self.persistence.test_connection()
        except Exception as exc:  # noqa: BLE001
            raise StartupError(f"persistence backend check failed: {exc}") from exc
        if not persistence_ok:
            raise StartupError("persistence backend is unreachable")

        results = await asyncio.gather(*(c.test_connection() for c in self.connectors))
        reachable = []
        for connector, ok in zip(self.connectors, results):
            if ok:
                reachable.append(connector.name)
            else:
                logger.warning("%s is unreachable, excluding it until it recovers", connector.name)
                connector.mark_unavailable(ExchangeError(connector.name, "unreachable at startup"))
        if not reachable:
            raise StartupError("no exchange is reachable")

        await self.engine.resolve_ids([c.name for c in self.connectors], self.assets)
        self._initialized = True
        logger.info("Data collector initialized; reachable exchanges: %s", ", ".join(reachable))

    async def _recover_adapters(self) -> None:
        interval = self.settings.collection.recovery_interval_cycles
        disabled = [c for c in self.connectors if not c.is_available]
        if not disabled or interval < 1 or self.stats["total_runs"] % interval != 0:
            return
        logger.info("Probing disabled exchanges: %s", ", ".join(c.name for c in disabled))
        await asyncio.gather(*(c.try_recover() for c in disabled))

    async def _gather_books(self) -> Dict[str, Dict[str, OrderBookSnapshot]]:
        available = [c for c in self.connectors if c.is_available]
        outcomes = await asyncio.gather(
            *(c.fetch_batch(self.assets) for c in available),
            return_exceptions=True,
        )
        books: Dict[str, Dict[str, OrderBookSnapshot]] = {}
        for connector, outcome in zip(available, outcomes):
            if isinstance(outcome, Exception):
                logger.error("%s: batch fetch failed: %s", connector.name, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome:
                books[connector.name] = outcome
        return books

    async def collect_data(self) -> Optional[CycleResult]:
        """Run one cycle. Returns None when the cycle failed."""
        self._in_flight = True
        self.stats["total_runs"] += 1
        run = self.stats["total_runs"]
        result: Optional[CycleResult] = None
        logger.info("Starting data collection cycle #%d", run)
        try:
            with timer() as elapsed:
                try:
                    self.engine.begin_collection()
                    await self._recover_adapters()
                    books = await self._gather_books()
                    if not books:
                        raise CollectionError("no order books retrieved from any exchange")
                    result = await self.engine.process_cycle(books)
                except Exception as exc:  # noqa: BLE001
                    self.stats["failed_runs"] += 1
                    self.stats["last_error"] = str(exc)
                    logger.error("Data collection cycle #%d failed: %s", run, exc)
            self.stats["last_duration"] = elapsed.elapsed
            if result is not None:
                self.stats["successful_runs"] += 1
                self.stats["last_run"] = utcnow().isoformat()
                logger.info(
                    "Cycle #%d done in %s: %d books, %d saved, %d profitable, %d alerts, %d failed writes",
                    run,
                    format_duration(elapsed.elapsed),
                    result.processed,
                    result.saved,
                    len(result.profitable),
                    result.alerts,
                    result.failures,
                )
        finally:
            if self.engine.state is EngineState.COLLECTING:
                self.engine.state = EngineState.IDLE
            self._in_flight = False
        return result

    def tick(self) -> Optional[asyncio.Task]:
        """Start a cycle unless one is in flight."""
        if self._in_flight:
            self.stats["skipped_runs"] += 1
            logger.warning("Previous cycle still running, skipping tick (%d skipped)", self.stats["skipped_runs"])
            return None
        # Set synchronously so a second tick in the same loop iteration sees it
        self._in_flight = True
        self._cycle_task = asyncio.create_task(self.collect_data())
        return self._cycle_task

    async def _drive(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.settings.collection.interval_seconds
        next_at = loop.time()
        while not self._stop_event.is_set():
            self.tick()
            next_at += interval
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, next_at - loop.time()))
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        if not self._initialized:
            await self.initialize()
        if self.is_scheduled:
            logger.warning("Data collector is already scheduled")
            return
        self._stop_event = asyncio.Event()
        self._driver = asyncio.create_task(self._drive())
        logger.info("Data collection scheduled every %.1fs", self.settings.collection.interval_seconds)

    async def run_forever(self) -> None:
        await self.start()
        await self._stop_event.wait()

    async def stop(self, grace: Optional[float] = None) -> None:
        """Stop ticking, let the running cycle finish within `grace`, then clean up."""
        grace = self.settings.collection.shutdown_grace_seconds if grace is None else grace
        logger.info("Stopping data collector")
        if self._stop_event is not None:
            self._stop_event.set()
        if self._driver is not None:
            await self._driver
            self._driver = None

        task = self._cycle_task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=grace)
            except asyncio.TimeoutError:
                logger.warning("Cycle still running after %.1fs grace, cancelling", grace)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        await self.engine.alerts.drain(grace)
        await asyncio.gather(*(c.close() for c in self.connectors), return_exceptions=True)
        await self.engine.alerts.notifier.close()
        await self.persistence.close()
        logger.info("Data collector stopped")

    def get_stats(self) -> Dict[str, Any]:
        uptime = time.monotonic() - self._started
        total = self.stats["total_runs"]
        return {
            **self.stats,
            "uptime_seconds": uptime,
            "uptime": format_duration(uptime),
            "success_rate": (self.stats["successful_runs"] / total * 100) if total else 0.0,
            "is_running": self.is_running,
            "is_scheduled": self.is_scheduled,
            "exchanges": {
                c.name: {"available": c.is_available, **c.get_connection_status().as_dict()}
                for c in self.connectors
            },
            "engine": self.engine.get_stats(),
        }

    async def health_check(self) -> Dict[str, Any]:
        try:
            persistence_ok = await self.persistence.test_connection()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Persistence health check failed: %s", exc)
            persistence_ok = False
        # Disabled adapters are probed only by the recovery step
        available = [c for c in self.connectors if c.is_available]
        results = await asyncio.gather(*(c.test_connection() for c in available))
        probed = {c.name: ok for c, ok in zip(available, results)}
        exchanges = {c.name: probed.get(c.name, False) for c in self.connectors}
        healthy = persistence_ok and any(exchanges.values())
        return {
            "status": "healthy" if healthy else "unhealthy",
            "persistence": persistence_ok,
            "exchanges": exchanges,
            "stats": self.get_stats(),
        }
