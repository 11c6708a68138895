"""Price ledger synchronisation against the external market data provider.

The ledger keeps daily bars immutable once written. A sync only asks the
provider for weekdays that are neither stored nor known holidays, persists
what comes back with insert-or-ignore semantics and infers holidays from
past windows that produced no trading rows at all. Store sessions are kept
short so no transaction is ever open while the provider is being called.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Sequence

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import NotFoundError, ProviderRateLimitError, ValidationError
from dividend_ledger.core.telemetry import LedgerMetrics
from dividend_ledger.db.base import quantize_amount
from dividend_ledger.db.session import dialect_insert
from dividend_ledger.models import MarketHoliday, PriceBar, Stock
from dividend_ledger.providers.yahoo import PriceProvider, ProviderBar
from dividend_ledger.services.calendar import (
    DateRange,
    find_missing_ranges,
    is_weekend,
    iter_days,
    normalize_date,
    split_range,
)
from dividend_ledger.services.price_cache import PriceCache, TTLPriceCache

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HUNDRED = Decimal("100")
HOLIDAY_DESCRIPTION = "Auto-detected (Zero Volume/Stale Data)"


@dataclass(frozen=True)
class PriceBarRecord:
    """Detached, immutable view of a stored or freshly fetched price bar."""

    symbol: str
    trading_date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    change: Decimal
    percent_change: Decimal
    volume_shares: int
    volume_value: int

    @classmethod
    def from_model(cls, row: PriceBar) -> "PriceBarRecord":
        return cls(
            symbol=row.symbol,
            trading_date=row.trading_date,
            open=Decimal(str(row.open)),
            high=Decimal(str(row.high)),
            low=Decimal(str(row.low)),
            close=Decimal(str(row.close)),
            change=Decimal(str(row.change or 0)),
            percent_change=Decimal(str(row.percent_change or 0)),
            volume_shares=int(row.volume_shares or 0),
            volume_value=int(row.volume_value or 0),
        )

    def as_row(self) -> dict[str, object]:
        return {
            "symbol": self.symbol,
            "trading_date": self.trading_date,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "change": self.change,
            "percent_change": self.percent_change,
            "volume_shares": self.volume_shares,
            "volume_value": self.volume_value,
        }


def price_change(close: Decimal, last_close: Decimal | None) -> tuple[Decimal, Decimal]:
    """Return ``(change, percent_change)`` of ``close`` against ``last_close``."""

    previous = close if last_close is None else last_close
    change = quantize_amount(close - previous)
    if previous == 0:
        return change, quantize_amount(Decimal("0"))
    return change, quantize_amount((close - previous) / previous * HUNDRED)


def _newest_first(bars: Iterable[PriceBarRecord]) -> list[PriceBarRecord]:
    return sorted(bars, key=lambda bar: bar.trading_date, reverse=True)


class PriceLedgerSynchronizer:
    """Reconcile locally stored daily bars with the provider for one symbol at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: PriceProvider,
        *,
        cache: PriceCache | None = None,
        settings: AppSettings | None = None,
        today: Callable[[], date] = date.today,
        metrics: LedgerMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._metrics = metrics or LedgerMetrics()
        self._settings = settings or get_settings()
        self.cache: PriceCache = cache if cache is not None else TTLPriceCache(self._settings.price_cache_ttl_seconds)
        self._today = today
        self._symbol_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, symbol: str) -> asyncio.Lock:
        lock = self._symbol_locks.get(symbol)
        if lock is None:
            lock = self._symbol_locks[symbol] = asyncio.Lock()
        return lock

    async def ensure(self, symbol: str, start: date | str, end: date | str) -> list[PriceBarRecord]:
        """Return bars for ``symbol`` in ``[start, end]`` newest first, filling gaps first.

        Concurrent calls for the same symbol are queued behind the running one.
        """

        symbol = symbol.strip().upper()
        start_day, end_day = normalize_date(start), normalize_date(end)
        if start_day > end_day:
            raise ValidationError("start date must not be after end date")

        async with self._lock_for(symbol):
            with tracer.start_as_current_span("price_ledger.ensure") as span:
                span.set_attribute("ledger.symbol", symbol)
                return await self._ensure(symbol, start_day, end_day)

    async def _ensure(self, symbol: str, start: date, end: date) -> list[PriceBarRecord]:
        provider_symbol, stored, holidays = await self._load(symbol, start, end)
        covered = {bar.trading_date for bar in stored}
        today = self._today()
        missing = find_missing_ranges(start, end, covered, holidays, today)

        if not missing:
            logger.info("Price data for %s is complete between %s and %s; provider not called", symbol, start, end)
            return _newest_first(stored)

        known_closes = {bar.trading_date: bar.close for bar in stored}
        prior = await self._latest_close_before(symbol, missing[0].start)
        if prior is not None:
            known_closes.setdefault(prior[0], prior[1])

        fetched: dict[date, PriceBarRecord] = {}
        changed = False
        rate_limited = False
        for span in missing:
            for chunk in split_range(span, self._settings.provider_window_days):
                try:
                    raw = await self._provider.fetch(provider_symbol, chunk.start, chunk.end)
                except ProviderRateLimitError:
                    logger.warning(
                        "Provider rate limited %s at %s..%s; returning partial data", symbol, chunk.start, chunk.end
                    )
                    rate_limited = True
                    self._metrics.rate_limited.add(1, {"symbol": symbol})
                    break

                rows = self._price_rows(symbol, raw, covered | fetched.keys(), known_closes)
                if rows:
                    await self._persist_bars(rows)
                    self._metrics.bars_persisted.add(len(rows), {"symbol": symbol})
                    for row in rows:
                        fetched[row.trading_date] = row
                        known_closes[row.trading_date] = row.close
                    changed = True
                elif chunk.end < today:
                    inferred = await self._record_holidays(chunk)
                    self._metrics.holidays_inferred.add(inferred, {"symbol": symbol})
                    changed = True
            if rate_limited:
                break

        if changed:
            self.cache.invalidate(symbol)
        logger.info("Synced %s: %d stored, %d fetched", symbol, len(stored), len(fetched))

        merged = {bar.trading_date: bar for bar in stored}
        merged.update(fetched)
        return _newest_first(merged.values())

    async def _load(self, symbol: str, start: date, end: date) -> tuple[str, list[PriceBarRecord], set[date]]:
        async with self._session_factory() as session:
            stock = await session.get(Stock, symbol)
            if stock is None:
                raise NotFoundError(f"Stock {symbol} not found")
            provider_symbol = stock.provider_symbol or f"{symbol}{self._settings.provider_symbol_suffix}"
            rows = (
                await session.execute(
                    select(PriceBar)
                    .where(
                        PriceBar.symbol == symbol,
                        PriceBar.trading_date >= start,
                        PriceBar.trading_date <= end,
                    )
                    .order_by(PriceBar.trading_date.desc())
                )
            ).scalars().all()
            holiday_rows = (
                await session.execute(
                    select(MarketHoliday.holiday_date).where(
                        MarketHoliday.holiday_date >= start,
                        MarketHoliday.holiday_date <= end,
                    )
                )
            ).scalars().all()
        return provider_symbol, [PriceBarRecord.from_model(row) for row in rows], set(holiday_rows)

    async def _latest_close_before(self, symbol: str, day: date) -> tuple[date, Decimal] | None:
        async with self._session_factory() as session:
            latest = (
                await session.execute(
                    select(func.max(PriceBar.trading_date)).where(
                        PriceBar.symbol == symbol, PriceBar.trading_date < day
                    )
                )
            ).scalar()
            if latest is None:
                return None
            close = (
                await session.execute(
                    select(PriceBar.close).where(PriceBar.symbol == symbol, PriceBar.trading_date == latest)
                )
            ).scalar_one()
        return latest, Decimal(str(close))

    def _price_rows(
        self,
        symbol: str,
        raw: Sequence[ProviderBar],
        covered: set[date],
        known_closes: dict[date, Decimal],
    ) -> list[PriceBarRecord]:
        rows: list[PriceBarRecord] = []
        ordered = sorted(raw, key=lambda bar: bar.trading_date)
        if not ordered:
            return rows
        earlier = [day for day in known_closes if day < ordered[0].trading_date]
        last_close = known_closes[max(earlier)] if earlier else None

        for bar in ordered:
            day = bar.trading_date
            if is_weekend(day) or not bar.volume or day in covered:
                continue
            if bar.close is None:
                logger.debug("Dropping %s bar for %s without a close", symbol, day)
                continue
            close = quantize_amount(bar.close)
            change, percent = price_change(close, last_close)
            last_close = close
            rows.append(
                PriceBarRecord(
                    symbol=symbol,
                    trading_date=day,
                    open=quantize_amount(bar.open) if bar.open is not None else close,
                    high=quantize_amount(bar.high) if bar.high is not None else close,
                    low=quantize_amount(bar.low) if bar.low is not None else close,
                    close=close,
                    change=change,
                    percent_change=percent,
                    volume_shares=bar.volume,
                    volume_value=int((close * bar.volume).to_integral_value()),
                )
            )
        return rows

    async def _persist_bars(self, rows: list[PriceBarRecord]) -> None:
        async with self._session_factory() as session:
            stmt = (
                dialect_insert(session, PriceBar)
                .values([row.as_row() for row in rows])
                .on_conflict_do_nothing(index_elements=["symbol", "trading_date"])
            )
            await session.execute(stmt)
            await session.commit()

    async def _record_holidays(self, chunk: DateRange) -> int:
        days = [day for day in iter_days(chunk.start, chunk.end) if not is_weekend(day)]
        if not days:
            return 0
        async with self._session_factory() as session:
            stmt = (
                dialect_insert(session, MarketHoliday)
                .values([{"holiday_date": day, "description": HOLIDAY_DESCRIPTION} for day in days])
                .on_conflict_do_nothing(index_elements=["holiday_date"])
            )
            await session.execute(stmt)
            await session.commit()
        for day in days:
            logger.info("Marked %s as market holiday", day.isoformat())
        return len(days)


class PriceLookup:
    """Close-price lookups backed by the ledger and its injected cache."""

    def __init__(self, synchronizer: PriceLedgerSynchronizer):
        self._synchronizer = synchronizer

    async def close_on(self, symbol: str, day: date | str) -> Decimal:
        symbol = symbol.strip().upper()
        target = normalize_date(day)
        cached = self._synchronizer.cache.get(symbol, target)
        if cached is not None:
            return cached
        bars = await self._synchronizer.ensure(symbol, target, target)
        for bar in bars:
            if bar.trading_date == target:
                self._synchronizer.cache.put(symbol, target, bar.close)
                return bar.close
        raise NotFoundError(f"Historical price not found for {symbol} on {target.isoformat()}.")


async def latest_closes(session: AsyncSession, symbols: Sequence[str]) -> dict[str, Decimal | None]:
    """Return the most recent stored close per symbol, ``None`` when nothing is stored."""

    normalized = [symbol.strip().upper() for symbol in symbols]
    latest_dates = (
        select(PriceBar.symbol, func.max(PriceBar.trading_date).label("latest"))
        .where(PriceBar.symbol.in_(normalized))
        .group_by(PriceBar.symbol)
        .subquery()
    )
    rows = (
        await session.execute(
            select(PriceBar.symbol, PriceBar.close).join(
                latest_dates,
                (PriceBar.symbol == latest_dates.c.symbol) & (PriceBar.trading_date == latest_dates.c.latest),
            )
        )
    ).all()
    closes: dict[str, Decimal | None] = {symbol: None for symbol in normalized}
    for symbol, close in rows:
        closes[symbol] = Decimal(str(close))
    for symbol, close in closes.items():
        if close is None:
            logger.warning("Price not found for stock: %s", symbol)
    return closes


__all__ = [
    "PriceBarRecord",
    "PriceLedgerSynchronizer",
    "PriceLookup",
    "latest_closes",
    "price_change",
]
