"""Database model exports."""

from .dividend import (
    CalculationStatus,
    DividendDeclaration,
    DividendEntitlement,
    DividendPrediction,
    EntitlementStatus,
    TaxCredit,
)
from .market import MarketHoliday, PriceBar, Stock
from .portfolio import Position, Transaction, TransactionType

__all__ = [
    "Stock",
    "PriceBar",
    "MarketHoliday",
    "Transaction",
    "TransactionType",
    "Position",
    "CalculationStatus",
    "EntitlementStatus",
    "DividendDeclaration",
    "DividendPrediction",
    "DividendEntitlement",
    "TaxCredit",
]
