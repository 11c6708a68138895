"""Yahoo Finance chart API client used as the external price provider."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import ProviderError, ProviderRateLimitError

logger = logging.getLogger(__name__)

CHART_PATH = "/v8/finance/chart/{symbol}"


@dataclass(frozen=True)
class ProviderBar:
    """One daily OHLCV row as delivered by the provider, dated in UTC."""

    trading_date: date
    open: Decimal | None
    high: Decimal | None
    low: Decimal | None
    close: Decimal | None
    volume: int | None


@dataclass(frozen=True)
class ProviderDividend:
    ex_date: date
    amount: Decimal


class PriceProvider(Protocol):
    """Contract the price ledger needs from a market data source."""

    async def fetch(self, symbol: str, start: date, end: date) -> list[ProviderBar]:
        ...

    async def fetch_dividends(self, symbol: str, start: date, end: date) -> list[ProviderDividend]:
        ...


def to_utc_date(timestamp: int | float) -> date:
    """Normalise a provider epoch timestamp to a timezone-free calendar date."""

    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date()


def _epoch(day: date) -> int:
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp())


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _volume(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class YahooChartClient:
    """Thin async client for the chart endpoint with error classification."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        client: httpx.AsyncClient | Any | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = self._settings.price_provider_base_url.rstrip("/")
        self._timeout = self._settings.price_provider_timeout_seconds
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _chart(self, symbol: str, params: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url + CHART_PATH.format(symbol=symbol)
        headers = {
            "User-Agent": self._settings.price_provider_user_agent,
            "Accept-Language": "en-US,en;q=0.9",
        }
        try:
            response = await self._client.get(url, params=params, headers=headers, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Failed to reach price provider: {exc}") from exc

        if response.status_code == 429:
            raise ProviderRateLimitError(f"Price provider rate limited request for {symbol}")
        if response.status_code >= 400:
            raise ProviderError(f"Price provider error {response.status_code} for {symbol}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Price provider returned invalid JSON payload") from exc

        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise ProviderError("Price provider response has no chart section")
        error = chart.get("error")
        if error:
            description = error.get("description") if isinstance(error, dict) else error
            if "Too Many Requests" in str(description):
                raise ProviderRateLimitError(f"Price provider rate limited request for {symbol}")
            raise ProviderError(f"Price provider rejected {symbol}: {description}")
        results = chart.get("result") or []
        if not results:
            return {}
        return results[0]

    async def fetch(self, symbol: str, start: date, end: date) -> list[ProviderBar]:
        """Return daily bars in ``[start, end]`` sorted oldest first."""

        # period2 is exclusive upstream and must differ from period1
        params = {
            "interval": "1d",
            "period1": _epoch(start),
            "period2": _epoch(end + timedelta(days=1)),
        }
        result = await self._chart(symbol, params)
        timestamps = result.get("timestamp") or []
        quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0]

        def column(name: str) -> list[Any]:
            values = quotes.get(name) or []
            return list(values) + [None] * (len(timestamps) - len(values))

        opens, highs, lows, closes, volumes = (
            column(name) for name in ("open", "high", "low", "close", "volume")
        )
        bars: dict[date, ProviderBar] = {}
        for index, raw_ts in enumerate(timestamps):
            if raw_ts is None:
                continue
            day = to_utc_date(raw_ts)
            if day < start or day > end:
                continue
            bars[day] = ProviderBar(
                trading_date=day,
                open=_decimal(opens[index]),
                high=_decimal(highs[index]),
                low=_decimal(lows[index]),
                close=_decimal(closes[index]),
                volume=_volume(volumes[index]),
            )
        logger.debug("Fetched %d bars for %s between %s and %s", len(bars), symbol, start, end)
        return [bars[day] for day in sorted(bars)]

    async def fetch_dividends(self, symbol: str, start: date, end: date) -> list[ProviderDividend]:
        """Return dividend events in ``[start, end]`` sorted by ex-date."""

        params = {
            "interval": "1d",
            "period1": _epoch(start),
            "period2": _epoch(end + timedelta(days=1)),
            "events": "div",
        }
        result = await self._chart(symbol, params)
        events = ((result.get("events") or {}).get("dividends") or {}).values()
        dividends: list[ProviderDividend] = []
        for event in events:
            if not isinstance(event, dict) or event.get("date") is None:
                continue
            amount = _decimal(event.get("amount"))
            if amount is None:
                continue
            ex_date = to_utc_date(event["date"])
            if start <= ex_date <= end:
                dividends.append(ProviderDividend(ex_date=ex_date, amount=amount))
        return sorted(dividends, key=lambda item: item.ex_date)


__all__ = [
    "PriceProvider",
    "ProviderBar",
    "ProviderDividend",
    "YahooChartClient",
    "to_utc_date",
]
