from pydantic_settings import BaseSettings, SettingsConfigDict

# Catalogue offered by the collector backend.
TIMEFRAMES = ("1m", "5m", "15m", "30m", "1h", "4h")
SYMBOLS = ("ETHUSDT", "BTCUSDT")
PAGE_SIZES = (10, 25, 50, 100)

# (label, style, timeframe, symbol)
QUICK_START_PRESETS = (
    ("ETH 1m", "Scalping", "1m", "ETHUSDT"),
    ("ETH 5m", "Day Trading", "5m", "ETHUSDT"),
    ("BTC 1h", "Swing Trading", "1h", "BTCUSDT"),
    ("BTC 4h", "Position Trading", "4h", "BTCUSDT"),
)


class Settings(BaseSettings):
    api_url: str = "http://localhost:3000"
    request_timeout: float = 30.0

    # Polling cadences in seconds
    dashboard_poll_interval: float = 5.0
    collector_poll_interval: float = 10.0

    default_timeframe: str = "1m"
    default_symbol: str = "ETHUSDT"
    default_page_size: int = 50
    chart_candle_limit: int = 500
    activity_history_limit: int = 200

    model_config = SettingsConfigDict(
        env_prefix="MARKET_MONITOR_", env_file=".env", env_file_encoding="utf-8"
    )


settings = Settings()
