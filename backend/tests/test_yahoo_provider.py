"""Yahoo chart client tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from dividend_ledger.config import AppSettings
from dividend_ledger.core.errors import ProviderError, ProviderRateLimitError
from dividend_ledger.providers.yahoo import YahooChartClient


def _ts(day: date, hour: int = 3) -> int:
    return int(datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc).timestamp())


class StubResponse:
    def __init__(self, payload: object, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class StubClient:
    def __init__(self, response: StubResponse) -> None:
        self.response = response
        self.calls: list[dict[str, object]] = []

    async def get(self, url: str, params: dict[str, object], headers: dict[str, str], timeout: float) -> StubResponse:
        self.calls.append({"url": url, **params})
        return self.response

    async def aclose(self) -> None:
        return None


def _client(response: StubResponse) -> YahooChartClient:
    return YahooChartClient(AppSettings(), client=StubClient(response))


@pytest.mark.asyncio
async def test_parses_daily_bars_in_window():
    days = [date(2025, 1, 3), date(2025, 1, 6), date(2025, 1, 7)]
    payload = {
        "chart": {
            "result": [
                {
                    "timestamp": [_ts(day) for day in days],
                    "indicators": {
                        "quote": [
                            {
                                "open": [10.0, 10.5, None],
                                "high": [10.2, 10.8, None],
                                "low": [9.9, 10.4, None],
                                "close": [10.1, 10.7, None],
                                "volume": [1200, 3400, None],
                            }
                        ]
                    },
                }
            ],
            "error": None,
        }
    }
    client = _client(StubResponse(payload))

    bars = await client.fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 7))

    assert [item.trading_date for item in bars] == days[1:]
    assert bars[0].close == Decimal("10.7")
    assert bars[0].volume == 3400
    assert bars[1].close is None and bars[1].volume is None
    call = client._client.calls[0]
    assert call["url"].endswith("/v8/finance/chart/PTT.BK")
    assert call["interval"] == "1d"


@pytest.mark.asyncio
async def test_single_day_window_uses_distinct_bounds():
    client = _client(StubResponse({"chart": {"result": [], "error": None}}))
    assert await client.fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 6)) == []
    call = client._client.calls[0]
    assert call["period2"] - call["period1"] == int(timedelta(days=1).total_seconds())


@pytest.mark.asyncio
async def test_http_429_is_rate_limit():
    with pytest.raises(ProviderRateLimitError):
        await _client(StubResponse({}, status_code=429)).fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 7))


@pytest.mark.asyncio
async def test_chart_error_too_many_requests_is_rate_limit():
    payload = {"chart": {"result": None, "error": {"code": "Too Many Requests", "description": "Too Many Requests"}}}
    with pytest.raises(ProviderRateLimitError):
        await _client(StubResponse(payload)).fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 7))


@pytest.mark.asyncio
async def test_other_failures_are_provider_errors():
    for response in (
        StubResponse({}, status_code=500),
        StubResponse(ValueError("not json")),
        StubResponse({"chart": {"result": None, "error": {"description": "No data found"}}}),
    ):
        with pytest.raises(ProviderError) as excinfo:
            await _client(response).fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 7))
        assert not isinstance(excinfo.value, ProviderRateLimitError)


@pytest.mark.asyncio
async def test_transport_error_is_provider_error():
    class FailingClient(StubClient):
        async def get(self, url, params, headers, timeout):
            raise httpx.ConnectError("connection refused")

    client = YahooChartClient(AppSettings(), client=FailingClient(StubResponse({})))
    with pytest.raises(ProviderError):
        await client.fetch("PTT.BK", date(2025, 1, 6), date(2025, 1, 7))


@pytest.mark.asyncio
async def test_parses_dividend_events():
    payload = {
        "chart": {
            "result": [
                {
                    "events": {
                        "dividends": {
                            str(_ts(date(2024, 8, 20))): {"amount": 1.4, "date": _ts(date(2024, 8, 20))},
                            str(_ts(date(2024, 3, 5))): {"amount": 0.6, "date": _ts(date(2024, 3, 5))},
                        }
                    }
                }
            ],
            "error": None,
        }
    }
    client = _client(StubResponse(payload))

    dividends = await client.fetch_dividends("PTT.BK", date(2024, 1, 1), date(2024, 12, 31))

    assert [item.ex_date for item in dividends] == [date(2024, 3, 5), date(2024, 8, 20)]
    assert dividends[1].amount == Decimal("1.4")
    assert client._client.calls[0]["events"] == "div"
