"""Price ledger payloads."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from dividend_ledger.services.price_ledger import PriceBarRecord


class PriceBarOut(BaseModel):
    symbol: str
    trading_date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    change: Decimal
    percent_change: Decimal
    volume_shares: str = Field(..., description="Traded shares as a decimal string")
    volume_value: str = Field(..., description="Traded value as a decimal string")

    @classmethod
    def from_record(cls, record: PriceBarRecord) -> "PriceBarOut":
        return cls(
            symbol=record.symbol,
            trading_date=record.trading_date,
            open=record.open,
            high=record.high,
            low=record.low,
            close=record.close,
            change=record.change,
            percent_change=record.percent_change,
            volume_shares=str(record.volume_shares),
            volume_value=str(record.volume_value),
        )


class ClosePriceResponse(BaseModel):
    symbol: str
    date: date
    close: Decimal


class SyncJobResponse(BaseModel):
    status: str
    symbols: list[str] = Field(default_factory=list)
    synced: dict[str, int] = Field(default_factory=dict)
    failed: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    kind: str
    detail: str


class HealthResponse(BaseModel):
    status: str
    service: str
    timezone: Optional[str] = None


__all__ = ["ClosePriceResponse", "ErrorResponse", "HealthResponse", "PriceBarOut", "SyncJobResponse"]
