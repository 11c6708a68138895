"""Transaction log and cached position models."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, Enum, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dividend_ledger.db.base import Base
from dividend_ledger.models.market import utcnow


class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"


class Transaction(Base):
    __tablename__ = "transaction"
    __table_args__ = (
        Index("ix_transaction_user_symbol_date", "user_id", "symbol", "trade_date"),
        Index("ix_transaction_symbol", "symbol"),
        CheckConstraint("quantity > 0", name="ck_transaction_quantity_positive"),
        CheckConstraint("price_per_share > 0", name="ck_transaction_price_positive"),
        CheckConstraint("commission >= 0", name="ck_transaction_commission_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    symbol: Mapped[str] = mapped_column(String(20))
    trade_date: Mapped[date] = mapped_column(Date)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType, name="transaction_type"))
    quantity: Mapped[int] = mapped_column(Integer)
    price_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    commission: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Position(Base):
    __tablename__ = "position"
    __table_args__ = (UniqueConstraint("user_id", "symbol", name="uq_position_user_symbol"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    symbol: Mapped[str] = mapped_column(String(20))
    current_quantity: Mapped[int] = mapped_column(Integer, default=0)
    total_invested: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    average_cost: Mapped[Decimal] = mapped_column(Numeric(18, 6), default=0)
    last_transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)


__all__ = ["Transaction", "TransactionType", "Position"]
