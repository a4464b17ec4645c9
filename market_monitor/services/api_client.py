"""Backend REST client: one method per endpoint, one request per call, no retries."""

import logging
from datetime import datetime
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from market_monitor.config import TIMEFRAMES, settings
from market_monitor.errors import HttpError, NetworkError, ValidationError
from market_monitor.schemas.collectors import (
    CollectorStartResponse,
    CollectorStatusResponse,
    CollectorStopResponse,
)
from market_monitor.schemas.market import (
    HealthResponse,
    LogsResponse,
    MarketSnapshot,
    StatsResponse,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _check_timeframe(timeframe: str) -> str:
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"Invalid timeframe {timeframe!r}. Allowed: {list(TIMEFRAMES)}")
    return timeframe


def _check_symbol(symbol: str) -> str:
    normalized = symbol.strip().upper()
    if not normalized:
        raise ValueError("symbol must not be empty")
    return normalized


def _format_date(value: datetime | str) -> str:
    return value.isoformat() if isinstance(value, datetime) else value


def _error_message(response: httpx.Response) -> str:
    """Prefer the backend's {"error": ...} text; fall back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    kind = "Server error" if response.status_code >= 500 else "Request rejected"
    return f"{kind}: {response.status_code} {response.reason_phrase}".strip()


class MonitorApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._transport = transport

    async def health(self) -> HealthResponse:
        response = await self._request("GET", "/health")
        return self._parse(response, HealthResponse)

    async def list_snapshots(
        self,
        timeframe: str | None = None,
        symbol: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
    ) -> LogsResponse:
        params: dict[str, Any] = {}
        if timeframe is not None:
            params["timeframe"] = _check_timeframe(timeframe)
        if symbol is not None:
            params["symbol"] = _check_symbol(symbol)
        if limit is not None:
            if limit < 1:
                raise ValueError("limit must be >= 1")
            params["limit"] = limit
        if offset is not None:
            if offset < 0:
                raise ValueError("offset must be >= 0")
            params["offset"] = offset
        if start_date is not None:
            params["startDate"] = _format_date(start_date)
        if end_date is not None:
            params["endDate"] = _format_date(end_date)
        response = await self._request("GET", "/api/logs", params=params)
        return self._parse(response, LogsResponse)

    async def latest_snapshot(self, symbol: str, timeframe: str) -> MarketSnapshot:
        params = {"symbol": _check_symbol(symbol), "timeframe": _check_timeframe(timeframe)}
        response = await self._request("GET", "/api/logs/latest", params=params)
        return self._parse(response, MarketSnapshot)

    async def stats(self, symbol: str | None = None, timeframe: str | None = None) -> StatsResponse:
        params: dict[str, Any] = {}
        if symbol is not None:
            params["symbol"] = _check_symbol(symbol)
        if timeframe is not None:
            params["timeframe"] = _check_timeframe(timeframe)
        response = await self._request("GET", "/api/logs/stats", params=params)
        return self._parse(response, StatsResponse)

    async def start_collector(self, timeframe: str, symbol: str | None = None) -> CollectorStartResponse:
        payload: dict[str, Any] = {"timeframe": _check_timeframe(timeframe)}
        if symbol is not None:
            payload["symbol"] = _check_symbol(symbol)
        response = await self._request("POST", "/api/collectors/start", payload=payload)
        return self._parse(response, CollectorStartResponse)

    async def collector_status(self) -> CollectorStatusResponse:
        response = await self._request("GET", "/api/collectors/status")
        if response.status_code == 404:
            # Older backends do not expose the status endpoint yet.
            logger.debug("Collector status endpoint not available, reporting no collectors")
            return CollectorStatusResponse(collectors=[], available=False)
        return self._parse(response, CollectorStatusResponse)

    async def stop_collector(self, pid: int) -> CollectorStopResponse:
        if pid < 1:
            raise ValueError("pid must be a positive integer")
        response = await self._request("POST", "/api/collectors/stop", payload={"pid": pid})
        return self._parse(response, CollectorStopResponse)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            ) as client:
                return await client.request(method, path, params=params, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("Backend request %s %s timed out: %s", method, path, e)
            raise NetworkError(f"{method} {path} timed out after {self.timeout}s", timed_out=True) from e
        except httpx.DecodingError as e:
            logger.warning("Backend sent an undecodable body for %s %s: %s", method, path, e)
            raise ValidationError(f"{method} {path} returned a malformed body: {e}") from e
        except httpx.RequestError as e:
            # Connection failures, protocol errors, redirect loops.
            logger.warning("Backend unreachable for %s %s: %s", method, path, e)
            raise NetworkError(f"{method} {path} failed: {e}") from e

    def _parse(self, response: httpx.Response, model: type[ModelT]) -> ModelT:
        if not response.is_success:
            message = _error_message(response)
            logger.warning(
                "Backend returned %s for %s %s: %s",
                response.status_code,
                response.request.method,
                response.request.url.path,
                message,
            )
            raise HttpError(response.status_code, message)
        try:
            data = response.json()
        except ValueError as e:
            raise ValidationError("Response body is not valid JSON", http_status=response.status_code) from e
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Unexpected {model.__name__} payload: {e.error_count()} invalid field(s)",
                http_status=response.status_code,
            ) from e
