from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from spreadscan.config import constants
from spreadscan.core.exceptions import ConfigError


@dataclass
class ExchangeAuth:
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    passphrase: Optional[str] = None
    endpoints: Optional[List[str]] = None  # overrides the adapter defaults

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


@dataclass
class CollectionSettings:
    assets: Tuple[str, ...] = constants.TOP_CRYPTO_ASSETS
    quote_currency: str = constants.QUOTE_CURRENCY
    interval_seconds: float = constants.DEFAULT_INTERVAL_SECONDS
    batch_size: int = constants.DEFAULT_BATCH_SIZE
    request_timeout: float = constants.DEFAULT_REQUEST_TIMEOUT
    shutdown_grace_seconds: float = constants.DEFAULT_SHUTDOWN_GRACE_SECONDS
    recovery_interval_cycles: int = constants.RECOVERY_INTERVAL_CYCLES


@dataclass
class RetrySettings:
    max_retries: int = constants.DEFAULT_MAX_RETRIES
    delay_seconds: float = constants.DEFAULT_RETRY_DELAY


@dataclass
class ArbitrageSettings:
    threshold_pct: float = constants.ARBITRAGE_THRESHOLD
    minimum_spread_pct: float = constants.MINIMUM_SPREAD
    exclude_crossed_books: bool = False


@dataclass
class AlertSettings:
    rate_limit_seconds: float = constants.ALERT_RATE_LIMIT_SECONDS
    hourly_cap: int = constants.ALERT_HOURLY_CAP
    window_hours: int = constants.ALERT_WINDOW_HOURS


@dataclass
class StorageSettings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    memory_users: Tuple[str, ...] = ()  # active users for the in-memory backend

    @property
    def configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


@dataclass
class NotificationSettings:
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@dataclass
class Settings:
    collection: CollectionSettings = field(default_factory=CollectionSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    arbitrage: ArbitrageSettings = field(default_factory=ArbitrageSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    binance: ExchangeAuth = field(default_factory=ExchangeAuth)
    bybit: ExchangeAuth = field(default_factory=ExchangeAuth)
    kraken: ExchangeAuth = field(default_factory=ExchangeAuth)
    okx: ExchangeAuth = field(default_factory=ExchangeAuth)
    enabled_exchanges: Tuple[str, ...] = ("binance", "bybit", "kraken", "okx")
    demo: bool = False
    env: str = "dev"

    def auth_for(self, exchange: str) -> ExchangeAuth:
        return getattr(self, exchange, None) or ExchangeAuth()


_TRUE = {"1", "true", "yes", "on"}


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from exc


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc


def _bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in _TRUE


def _auth(env: Mapping[str, str], prefix: str) -> ExchangeAuth:
    endpoints = env.get(f"{prefix}_ENDPOINTS")
    return ExchangeAuth(
        api_key=env.get(f"{prefix}_API_KEY") or None,
        api_secret=env.get(f"{prefix}_SECRET_KEY") or None,
        passphrase=env.get(f"{prefix}_PASSPHRASE") or None,
        endpoints=_split(endpoints) if endpoints else None,
    )


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build `Settings` from environment variables.

    Credentials are optional: every adapter falls back to public endpoints.
    """
    env = os.environ if environ is None else environ

    assets = tuple(s.upper() for s in _split(env["ASSETS"])) if env.get("ASSETS") else constants.TOP_CRYPTO_ASSETS
    collection = CollectionSettings(
        assets=assets,
        quote_currency=(env.get("QUOTE_CURRENCY") or constants.QUOTE_CURRENCY).upper(),
        interval_seconds=_float(env, "COLLECTION_INTERVAL_SECONDS", constants.DEFAULT_INTERVAL_SECONDS),
        batch_size=_int(env, "BATCH_SIZE", constants.DEFAULT_BATCH_SIZE),
        request_timeout=_float(env, "REQUEST_TIMEOUT_SECONDS", constants.DEFAULT_REQUEST_TIMEOUT),
        shutdown_grace_seconds=_float(env, "SHUTDOWN_GRACE_SECONDS", constants.DEFAULT_SHUTDOWN_GRACE_SECONDS),
        recovery_interval_cycles=_int(env, "RECOVERY_INTERVAL_CYCLES", constants.RECOVERY_INTERVAL_CYCLES),
    )
    if collection.batch_size < 1:
        raise ConfigError("BATCH_SIZE must be at least 1")
    if collection.interval_seconds <= 0:
        raise ConfigError("COLLECTION_INTERVAL_SECONDS must be positive")

    retry = RetrySettings(
        max_retries=_int(env, "MAX_RETRIES", constants.DEFAULT_MAX_RETRIES),
        delay_seconds=_float(env, "RETRY_DELAY_SECONDS", constants.DEFAULT_RETRY_DELAY),
    )
    if retry.max_retries < 1:
        raise ConfigError("MAX_RETRIES must be at least 1")

    arbitrage = ArbitrageSettings(
        threshold_pct=_float(env, "ARBITRAGE_THRESHOLD", constants.ARBITRAGE_THRESHOLD),
        minimum_spread_pct=_float(env, "MINIMUM_SPREAD", constants.MINIMUM_SPREAD),
        exclude_crossed_books=_bool(env, "EXCLUDE_CROSSED_BOOKS"),
    )
    if arbitrage.minimum_spread_pct <= 0:
        raise ConfigError("MINIMUM_SPREAD must be positive")

    alerts = AlertSettings(
        rate_limit_seconds=_float(env, "ALERT_RATE_LIMIT_SECONDS", constants.ALERT_RATE_LIMIT_SECONDS),
        hourly_cap=_int(env, "ALERT_HOURLY_CAP", constants.ALERT_HOURLY_CAP),
        window_hours=_int(env, "ALERT_WINDOW_HOURS", constants.ALERT_WINDOW_HOURS),
    )

    enabled = env.get("ENABLED_EXCHANGES")
    return Settings(
        collection=collection,
        retry=retry,
        arbitrage=arbitrage,
        alerts=alerts,
        storage=StorageSettings(
            supabase_url=env.get("SUPABASE_URL") or None,
            supabase_key=env.get("SUPABASE_SERVICE_KEY") or None,
            memory_users=tuple(_split(env.get("ALERT_USERS", ""))),
        ),
        notifications=NotificationSettings(
            telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=env.get("TELEGRAM_CHAT_ID") or None,
        ),
        binance=_auth(env, "BINANCE"),
        bybit=_auth(env, "BYBIT"),
        kraken=_auth(env, "KRAKEN"),
        okx=_auth(env, "OKX"),
        enabled_exchanges=tuple(s.lower() for s in _split(enabled)) if enabled else Settings().enabled_exchanges,
        demo=_bool(env, "DEMO"),
        env=env.get("APP_ENV", "dev"),
    )
