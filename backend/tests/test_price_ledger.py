"""Price ledger synchronisation tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import StubProvider, bar
from dividend_ledger.config import AppSettings
from dividend_ledger.core.errors import NotFoundError
from dividend_ledger.models import MarketHoliday, PriceBar, Stock
from dividend_ledger.services.price_cache import TTLPriceCache
from dividend_ledger.services.price_ledger import PriceLedgerSynchronizer, PriceLookup, latest_closes, price_change

TODAY = date(2025, 2, 3)
WEEK = [date(2025, 1, d) for d in (6, 7, 8, 9, 10)]


def _synchronizer(database, provider, **overrides) -> PriceLedgerSynchronizer:
    return PriceLedgerSynchronizer(
        database.session_factory,
        provider,
        cache=TTLPriceCache(3600),
        settings=AppSettings(**overrides),
        today=lambda: TODAY,
    )


async def _count(database, model) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def test_price_change_against_previous_close():
    assert price_change(Decimal("11"), Decimal("10")) == (Decimal("1"), Decimal("10"))
    assert price_change(Decimal("11"), None) == (Decimal("0"), Decimal("0"))
    assert price_change(Decimal("11"), Decimal("0")) == (Decimal("11"), Decimal("0"))


@pytest.mark.asyncio
async def test_second_sync_does_not_call_provider(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL", corporate_tax_rate=Decimal("0.20")))
    closes = ["11", "12", "13.37", "12.123456789", "12.5"]
    provider = StubProvider([bar(day, close) for day, close in zip(WEEK, closes)])
    synchronizer = _synchronizer(database, provider)

    first = await synchronizer.ensure("ptt", WEEK[0], WEEK[-1])
    second = await synchronizer.ensure("PTT", WEEK[0], WEEK[-1])

    assert provider.calls == [("PTT.BK", WEEK[0], WEEK[-1])]
    assert [item.trading_date for item in first] == list(reversed(WEEK))
    assert [item.trading_date for item in second] == list(reversed(WEEK))
    assert second == first
    assert first[2].percent_change == Decimal("11.416667")
    assert first[1].close == Decimal("12.123457")
    assert await _count(database, PriceBar) == 5


@pytest.mark.asyncio
async def test_change_volume_value_and_string_safe_volumes(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    big_volume = 9_007_199_254_740_993
    provider = StubProvider([bar(WEEK[0], "10"), bar(WEEK[1], "11", volume=big_volume)])
    synchronizer = _synchronizer(database, provider)

    bars = await synchronizer.ensure("PTT", WEEK[0], WEEK[1])

    latest, earliest = bars
    assert earliest.change == 0 and earliest.percent_change == 0
    assert latest.change == Decimal("1")
    assert latest.percent_change == Decimal("10")
    assert earliest.volume_value == 10_000
    assert latest.volume_shares == big_volume
    assert isinstance(latest.volume_shares, int)


@pytest.mark.asyncio
async def test_gap_fill_seeds_change_from_stored_close(database, seed):
    await seed(
        Stock(symbol="PTT", name="PTT PCL", provider_symbol="PTT.BK"),
        PriceBar(
            symbol="PTT", trading_date=date(2025, 1, 3), open=Decimal("10"), high=Decimal("10"),
            low=Decimal("10"), close=Decimal("10"), volume_shares=100, volume_value=1000,
        ),
        PriceBar(
            symbol="PTT", trading_date=WEEK[-1], open=Decimal("12"), high=Decimal("12"),
            low=Decimal("12"), close=Decimal("12"), volume_shares=100, volume_value=1200,
        ),
    )
    provider = StubProvider(
        [bar(WEEK[0], "11"), bar(WEEK[1], "11", volume=0), bar(WEEK[2], "12"), bar(WEEK[3], "12")]
    )
    synchronizer = _synchronizer(database, provider)

    bars = await synchronizer.ensure("PTT", date(2025, 1, 3), WEEK[-1])

    assert provider.calls == [("PTT.BK", WEEK[0], WEEK[3])]
    by_day = {item.trading_date: item for item in bars}
    assert sorted(by_day) == [date(2025, 1, 3), WEEK[0], WEEK[2], WEEK[3], WEEK[-1]]
    assert by_day[WEEK[0]].change == Decimal("1")
    assert by_day[WEEK[0]].percent_change == Decimal("10")
    assert by_day[WEEK[2]].change == Decimal("1")


@pytest.mark.asyncio
async def test_empty_past_window_is_recorded_as_holidays_once(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    provider = StubProvider()
    synchronizer = _synchronizer(database, provider)

    assert await synchronizer.ensure("PTT", WEEK[0], WEEK[-1]) == []
    assert await synchronizer.ensure("PTT", WEEK[0], WEEK[-1]) == []

    assert len(provider.calls) == 1
    assert await _count(database, MarketHoliday) == 5
    async with database.session() as session:
        descriptions = set((await session.execute(select(MarketHoliday.description))).scalars())
    assert descriptions == {"Auto-detected (Zero Volume/Stale Data)"}


@pytest.mark.asyncio
async def test_window_touching_today_is_not_marked_as_holiday(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    provider = StubProvider()
    synchronizer = PriceLedgerSynchronizer(
        database.session_factory, provider, settings=AppSettings(), today=lambda: WEEK[-1]
    )

    await synchronizer.ensure("PTT", WEEK[0], WEEK[-1])

    assert provider.calls == [("PTT.BK", WEEK[0], WEEK[3])]
    assert await _count(database, MarketHoliday) == 4


@pytest.mark.asyncio
async def test_rate_limit_returns_partial_data(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    days = WEEK + [date(2025, 1, d) for d in (13, 14, 15, 16, 17)]
    provider = StubProvider([bar(day, "10") for day in days])
    provider.rate_limit_from_call = 2
    synchronizer = _synchronizer(database, provider, provider_window_days=5)

    bars = await synchronizer.ensure("PTT", days[0], days[-1])

    assert [item.trading_date for item in bars] == list(reversed(WEEK))
    assert len(provider.calls) == 2
    assert await _count(database, PriceBar) == 5
    assert await _count(database, MarketHoliday) == 0


@pytest.mark.asyncio
async def test_sync_invalidates_cached_closes(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    synchronizer = _synchronizer(database, StubProvider([bar(WEEK[0], "10")]))
    synchronizer.cache.put("PTT", WEEK[0], Decimal("99"))

    await synchronizer.ensure("PTT", WEEK[0], WEEK[0])

    assert synchronizer.cache.get("PTT", WEEK[0]) is None


@pytest.mark.asyncio
async def test_close_on_reads_through_cache(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    provider = StubProvider([bar(WEEK[0], "35.25")])
    lookup = PriceLookup(_synchronizer(database, provider))

    assert await lookup.close_on("PTT", WEEK[0]) == Decimal("35.25")
    assert await lookup.close_on("PTT", "2025-01-06") == Decimal("35.25")
    assert len(provider.calls) == 1

    with pytest.raises(NotFoundError):
        await lookup.close_on("PTT", WEEK[1])


@pytest.mark.asyncio
async def test_unknown_symbol_is_not_found(database):
    synchronizer = _synchronizer(database, StubProvider())
    with pytest.raises(NotFoundError):
        await synchronizer.ensure("NOPE", WEEK[0], WEEK[-1])


@pytest.mark.asyncio
async def test_latest_closes_reports_missing_symbols(database, seed):
    await seed(Stock(symbol="PTT", name="PTT PCL"))
    synchronizer = _synchronizer(database, StubProvider([bar(day, str(10 + index)) for index, day in enumerate(WEEK)]))
    await synchronizer.ensure("PTT", WEEK[0], WEEK[-1])

    async with database.session() as session:
        closes = await latest_closes(session, ["ptt", "SCB"])

    assert closes == {"PTT": Decimal("14"), "SCB": None}
