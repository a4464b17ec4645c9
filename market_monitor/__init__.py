"""Client core for the market-data collector dashboard: API access, paging, polling, collectors."""

from market_monitor.errors import HttpError, NetworkError, TransportError, ValidationError
from market_monitor.services.api_client import MonitorApiClient
from market_monitor.services.candles import synthesize_candles
from market_monitor.session import MonitorSession

__all__ = [
    "HttpError",
    "MonitorApiClient",
    "MonitorSession",
    "NetworkError",
    "TransportError",
    "ValidationError",
    "synthesize_candles",
]
