"""Constants used throughout the application.

This module centralizes default values and exchange endpoints that appear
across multiple modules. Anything an operator may want to tune is also
exposed through `spreadscan.config.settings`.
"""

# Asset universe
TOP_CRYPTO_ASSETS = ("BTC", "ETH", "BNB", "XRP", "ADA", "DOGE", "SOL", "DOT", "MATIC", "AVAX")
QUOTE_CURRENCY = "USDT"

# Collection cycle
DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_BATCH_SIZE = 5
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0
RECOVERY_INTERVAL_CYCLES = 10  # re-probe disabled adapters every N cycles

# Retry policy
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds, multiplied by the attempt number

# Arbitrage thresholds (percent)
ARBITRAGE_THRESHOLD = 0.01
MINIMUM_SPREAD = 0.001  # storage requires spread > 0

# Alerting
ALERT_RATE_LIMIT_SECONDS = 60.0
ALERT_HOURLY_CAP = 10
ALERT_WINDOW_HOURS = 1

# Fee estimate used by the profit calculator (two taker legs at 0.1%)
ROUND_TRIP_FEE_RATE = 0.002

# Order book depth requested per exchange
BINANCE_DEPTH_LIMIT = 100
BYBIT_DEPTH_LIMIT = 200  # Bybit spot max
KRAKEN_DEPTH_COUNT = 20
OKX_DEPTH_SIZE = 20

# Base URLs, primary first
BINANCE_ENDPOINTS = (
    "https://api.binance.com",
    "https://api1.binance.com",
    "https://api2.binance.com",
    "https://api3.binance.com",
)
BYBIT_ENDPOINTS = (
    "https://api.bybit.com",
    "https://api.bybit.us",
    "https://api.bybit.info",
    "https://api-testnet.bybit.com",
    "https://api.bytick.com",
)
KRAKEN_ENDPOINTS = ("https://api.kraken.com/0",)
OKX_ENDPOINTS = ("https://www.okx.com", "https://aws.okx.com")

# Kraken asset aliases and quote substitutions it is allowed to make
KRAKEN_ASSET_ALIASES = {"BTC": "XBT", "DOGE": "XDG"}
KRAKEN_QUOTE_ALIASES = {"USDT": ("USD",)}
KRAKEN_PAIR_CACHE_TTL = 3600.0

# Exchange-level error codes meaning "this market does not exist"
BINANCE_INVALID_SYMBOL_CODE = -1121
BYBIT_INVALID_SYMBOL_CODES = (10001,)
OKX_INVALID_INSTRUMENT_CODES = ("51001",)

# Id lookups cached by the engine
ID_CACHE_TTL = 300.0

# Telegram bot API
TELEGRAM_API_URL = "https://api.telegram.org"
