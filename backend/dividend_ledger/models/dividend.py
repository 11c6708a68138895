"""Dividend declarations, predictions, entitlements and tax credits."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dividend_ledger.db.base import Base
from dividend_ledger.models.market import utcnow


class CalculationStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"


class EntitlementStatus(str, enum.Enum):
    PREDICTED = "PREDICTED"
    CONFIRMED = "CONFIRMED"


class DividendDeclaration(Base):
    __tablename__ = "dividend_declaration"
    __table_args__ = (
        Index("ix_dividend_declaration_symbol_ex", "symbol", "ex_dividend_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20))
    announcement_date: Mapped[date] = mapped_column(Date)
    ex_dividend_date: Mapped[date] = mapped_column(Date)
    record_date: Mapped[date] = mapped_column(Date)
    payment_date: Mapped[date] = mapped_column(Date)
    dividend_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    source_of_dividend: Mapped[str | None] = mapped_column(String(128), nullable=True)
    calculation_status: Mapped[CalculationStatus] = mapped_column(
        Enum(CalculationStatus, name="calculation_status"), default=CalculationStatus.PENDING
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DividendPrediction(Base):
    __tablename__ = "dividend_prediction"
    __table_args__ = (
        UniqueConstraint("symbol", "predicted_ex_date", name="uq_dividend_prediction_symbol_ex"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    symbol: Mapped[str] = mapped_column(String(20))
    predicted_ex_date: Mapped[date] = mapped_column(Date)
    predicted_record_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    predicted_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    predicted_dps: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    horizon_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    prediction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DividendEntitlement(Base):
    __tablename__ = "dividend_entitlement"
    __table_args__ = (
        UniqueConstraint("user_id", "dividend_id", name="uq_entitlement_user_dividend"),
        UniqueConstraint(
            "user_id", "predicted_symbol", "predicted_ex_date", name="uq_entitlement_user_prediction"
        ),
        CheckConstraint(
            "(dividend_id IS NOT NULL AND predicted_symbol IS NULL AND predicted_ex_date IS NULL)"
            " OR (dividend_id IS NULL AND predicted_symbol IS NOT NULL AND predicted_ex_date IS NOT NULL)",
            name="ck_entitlement_single_key",
        ),
        Index("ix_entitlement_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[EntitlementStatus] = mapped_column(Enum(EntitlementStatus, name="entitlement_status"))
    dividend_id: Mapped[int | None] = mapped_column(
        ForeignKey("dividend_declaration.id", ondelete="CASCADE"), nullable=True
    )
    predicted_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    predicted_ex_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    shares_held: Mapped[int] = mapped_column(Integer)
    gross_dividend: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    withholding_tax: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    net_dividend: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    payment_received_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    tax_credit: Mapped[Optional["TaxCredit"]] = relationship(
        back_populates="entitlement",
        passive_deletes=True,
        uselist=False,
    )


class TaxCredit(Base):
    __tablename__ = "tax_credit"

    id: Mapped[int] = mapped_column(primary_key=True)
    entitlement_id: Mapped[int] = mapped_column(
        ForeignKey("dividend_entitlement.id", ondelete="CASCADE"), unique=True
    )
    user_id: Mapped[str] = mapped_column(String(64))
    tax_year: Mapped[int] = mapped_column(Integer)
    corporate_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4))
    tax_credit_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    taxable_income: Mapped[Decimal] = mapped_column(Numeric(18, 6))

    entitlement: Mapped[DividendEntitlement] = relationship(back_populates="tax_credit")


__all__ = [
    "CalculationStatus",
    "EntitlementStatus",
    "DividendDeclaration",
    "DividendPrediction",
    "DividendEntitlement",
    "TaxCredit",
]
