from __future__ import annotations

from typing import Dict, List, Type

from spreadscan.config.settings import Settings
from spreadscan.connectors.base import ExchangeConnector
from spreadscan.connectors.binance import BinanceConnector
from spreadscan.connectors.bybit import BybitConnector
from spreadscan.connectors.demo import DemoConnector
from spreadscan.connectors.kraken import KrakenConnector
from spreadscan.connectors.okx import OKXConnector
from spreadscan.core.exceptions import ConfigError


CONNECTORS: Dict[str, Type[ExchangeConnector]] = {
    "binance": BinanceConnector,
    "bybit": BybitConnector,
    "kraken": KrakenConnector,
    "okx": OKXConnector,
}


def build_connectors(settings: Settings) -> List[ExchangeConnector]:
    """Instantiate the enabled adapters in registry order.

    In demo mode every enabled exchange is replaced by an offline
    `DemoConnector` carrying its name.
    """
    unknown = [name for name in settings.enabled_exchanges if name not in CONNECTORS]
    if unknown:
        raise ConfigError(f"unknown exchanges in ENABLED_EXCHANGES: {', '.join(unknown)}")

    names = [name for name in CONNECTORS if name in settings.enabled_exchanges]
    if settings.demo:
        return [DemoConnector(settings, name=name) for name in names]
    return [CONNECTORS[name](settings) for name in names]
