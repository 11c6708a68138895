"""Import historical dividend declarations from the provider's dividend events."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import NotFoundError
from dividend_ledger.models import CalculationStatus, DividendDeclaration, Stock
from dividend_ledger.providers.yahoo import PriceProvider

logger = logging.getLogger(__name__)

DEFAULT_DIVIDEND_SOURCE = "Net profit"
RECORD_DATE_OFFSET = timedelta(days=1)
PAYMENT_DATE_OFFSET = timedelta(days=15)


async def sync_dividend_history(
    session_factory: async_sessionmaker[AsyncSession],
    provider: PriceProvider,
    symbol: str,
    *,
    settings: AppSettings | None = None,
    today: Callable[[], date] = date.today,
) -> list[DividendDeclaration]:
    """Create ``PENDING`` declarations for provider dividends not yet on file.

    An event is considered known when a declaration for the symbol already has
    an ex-date within ``dividend_match_window_days`` of it. Record and payment
    dates are estimated from the ex-date. Returns only the rows created.
    """

    settings = settings or get_settings()
    symbol = symbol.strip().upper()
    end = today()
    start = end - timedelta(days=365 * settings.dividend_history_years)

    async with session_factory() as session:
        stock = await session.get(Stock, symbol)
        if stock is None:
            raise NotFoundError(f"Stock symbol {symbol} not found.")
        provider_symbol = stock.provider_symbol or f"{symbol}{settings.provider_symbol_suffix}"

    events = await provider.fetch_dividends(provider_symbol, start, end)
    window = timedelta(days=settings.dividend_match_window_days)
    created: list[DividendDeclaration] = []
    async with session_factory() as session, session.begin():
        for event in events:
            existing = (
                await session.execute(
                    select(DividendDeclaration.id)
                    .where(
                        DividendDeclaration.symbol == symbol,
                        DividendDeclaration.ex_dividend_date >= event.ex_date - window,
                        DividendDeclaration.ex_dividend_date <= event.ex_date + window,
                    )
                    .limit(1)
                )
            ).scalar_one_or_none()
            if existing is not None:
                continue
            declaration = DividendDeclaration(
                symbol=symbol,
                announcement_date=event.ex_date,
                ex_dividend_date=event.ex_date,
                record_date=event.ex_date + RECORD_DATE_OFFSET,
                payment_date=event.ex_date + PAYMENT_DATE_OFFSET,
                dividend_per_share=Decimal(str(event.amount)),
                source_of_dividend=DEFAULT_DIVIDEND_SOURCE,
                calculation_status=CalculationStatus.PENDING,
            )
            session.add(declaration)
            await session.flush()
            created.append(declaration)

    logger.info("Imported %d new dividends for %s (%d events)", len(created), symbol, len(events))
    return created


__all__ = ["sync_dividend_history"]
