"""Reference stock data, daily price bars and inferred market holidays."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dividend_ledger.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Stock(Base):
    __tablename__ = "stock"

    symbol: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    sector: Mapped[str | None] = mapped_column(String(64), nullable=True)
    corporate_tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)
    boi_support: Mapped[bool] = mapped_column(Boolean, default=False)
    provider_symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PriceBar(Base):
    __tablename__ = "price_bar"
    __table_args__ = (
        UniqueConstraint("symbol", "trading_date", name="uq_price_bar_symbol_date"),
        Index("ix_price_bar_symbol_date", "symbol", "trading_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20))
    trading_date: Mapped[date] = mapped_column(Date)
    open: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    high: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    low: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    close: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    change: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    percent_change: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    volume_shares: Mapped[int] = mapped_column(BigInteger, default=0)
    volume_value: Mapped[int] = mapped_column(BigInteger, default=0)


class MarketHoliday(Base):
    __tablename__ = "market_holiday"

    id: Mapped[int] = mapped_column(primary_key=True)
    holiday_date: Mapped[date] = mapped_column(Date, unique=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)


__all__ = ["Stock", "PriceBar", "MarketHoliday", "utcnow"]
