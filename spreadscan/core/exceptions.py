"""Exception hierarchy for collection, persistence and startup failures.

Transient exchange errors are retried by the retry policy. Anything deriving
from `FatalExchangeError` is surfaced immediately.
"""

from __future__ import annotations

from typing import Optional


class ExchangeError(Exception):
    """Base class for errors raised while talking to an exchange."""

    def __init__(self, exchange: str, message: str) -> None:
        self.exchange = exchange
        self.message = message
        super().__init__(f"[{exchange}] {message}")


class ExchangeAPIError(ExchangeError):
    """The exchange answered with an application-level error code."""

    def __init__(self, exchange: str, message: str, code: Optional[str] = None) -> None:
        self.code = code
        if code is not None:
            message = f"{message} (code {code})"
        super().__init__(exchange, message)


class InvalidOrderBookError(ExchangeError):
    """The response could not be turned into a usable order book."""


class FatalExchangeError(ExchangeError):
    """Errors that must not be retried."""


class NoMarketPairError(FatalExchangeError):
    """The exchange has no tradable pair for the requested symbol."""

    def __init__(self, exchange: str, symbol: str, quote: str) -> None:
        self.symbol = symbol
        self.quote = quote
        super().__init__(exchange, f"no market pair for {symbol}/{quote}")


class AllEndpointsBlockedError(FatalExchangeError):
    """Every configured base URL for the adapter rejected the client."""

    def __init__(self, exchange: str, last_error: BaseException) -> None:
        self.last_error = last_error
        super().__init__(exchange, f"all endpoints blocked; last error: {last_error}")


class PersistenceError(Exception):
    """A persistence backend call failed."""


class StartupError(RuntimeError):
    """Startup cannot continue (backend unreachable or no exchange reachable)."""


class ConfigError(ValueError):
    """An environment value could not be parsed."""


class CollectionError(RuntimeError):
    """A collection cycle produced nothing to analyze."""
