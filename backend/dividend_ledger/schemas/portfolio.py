"""Transaction and holdings payloads."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from dividend_ledger.models import TransactionType


class TransactionIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    symbol: str = Field(..., min_length=1, max_length=20)
    type: TransactionType
    quantity: int = Field(..., gt=0)
    price_per_share: Decimal = Field(..., gt=0)
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    trade_date: date


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    symbol: str
    trade_date: date
    type: TransactionType
    quantity: int
    price_per_share: Decimal
    commission: Decimal
    total_amount: Decimal
    realized_pnl: Optional[Decimal] = None
    created_at: Optional[datetime] = None


class SharesHeldResponse(BaseModel):
    user_id: str
    symbol: str
    date: date
    shares: int


class CostBasisPointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    day: date
    quantity: int
    total_invested: Decimal
    average_cost: Decimal
    realized_pnl: Decimal
    market_value: Optional[Decimal] = None


class HoldingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    symbol: str
    quantity: int
    total_invested: Decimal
    average_cost: Decimal
    last_transaction_date: Optional[date] = None
    last_close: Optional[Decimal] = None
    market_value: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None


__all__ = ["CostBasisPointOut", "HoldingOut", "SharesHeldResponse", "TransactionIn", "TransactionOut"]
