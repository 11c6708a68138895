"""Dividend entitlement, tax credit and forecast payloads."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dividend_ledger.models import EntitlementStatus


class ResolveEntitlementsRequest(BaseModel):
    """Either ``dividend_id`` or both ``symbol`` and ``ex_date`` of a prediction."""

    dividend_id: Optional[int] = None
    symbol: Optional[str] = None
    ex_date: Optional[date] = None
    user_id: Optional[str] = Field(default=None, description="Refresh a single user only")

    @model_validator(mode="after")
    def _check_reference(self) -> "ResolveEntitlementsRequest":
        by_dividend = self.dividend_id is not None
        by_prediction = self.symbol is not None and self.ex_date is not None
        if by_dividend == by_prediction:
            raise ValueError("Provide either dividend_id or symbol and ex_date")
        return self


class EntitlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    status: EntitlementStatus
    dividend_id: Optional[int] = None
    predicted_symbol: Optional[str] = None
    predicted_ex_date: Optional[date] = None
    shares_held: int
    gross_dividend: Decimal
    withholding_tax: Decimal
    net_dividend: Decimal
    payment_received_date: Optional[date] = None
    tax_credit_amount: Optional[Decimal] = None
    taxable_income: Optional[Decimal] = None
    tax_year: Optional[int] = None


class TaxCreditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entitlement_id: int
    user_id: str
    tax_year: int
    corporate_tax_rate: Decimal
    tax_credit_amount: Decimal
    taxable_income: Decimal


class ReleaseResponse(BaseModel):
    dividend_id: int
    released: bool


class BenefitEstimateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    symbol: str
    dividend_id: Optional[int] = None
    ex_date: date
    record_date: Optional[date] = None
    payment_date: Optional[date] = None
    dividend_per_share: Decimal
    confidence: Optional[float] = None
    shares: int
    gross_dividend: Decimal
    withholding_tax: Decimal
    net_dividend: Decimal
    corporate_tax_rate: Optional[Decimal] = None
    boi_support: bool
    tax_credit: Decimal


class PredictionIn(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    predicted_ex_date: date
    predicted_record_date: Optional[date] = None
    predicted_payment_date: Optional[date] = None
    predicted_dps: Optional[Decimal] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    horizon_days: Optional[int] = None


__all__ = [
    "BenefitEstimateOut",
    "EntitlementOut",
    "PredictionIn",
    "ReleaseResponse",
    "ResolveEntitlementsRequest",
    "TaxCreditOut",
]
