"""Pydantic schemas for the ledger API."""

from .dividends import (
    BenefitEstimateOut,
    EntitlementOut,
    PredictionIn,
    ReleaseResponse,
    ResolveEntitlementsRequest,
    TaxCreditOut,
)
from .portfolio import (
    CostBasisPointOut,
    HoldingOut,
    SharesHeldResponse,
    TransactionIn,
    TransactionOut,
)
from .prices import ClosePriceResponse, ErrorResponse, HealthResponse, PriceBarOut, SyncJobResponse

__all__ = [
    "BenefitEstimateOut",
    "ClosePriceResponse",
    "CostBasisPointOut",
    "EntitlementOut",
    "ErrorResponse",
    "HealthResponse",
    "HoldingOut",
    "PredictionIn",
    "PriceBarOut",
    "ReleaseResponse",
    "ResolveEntitlementsRequest",
    "SharesHeldResponse",
    "SyncJobResponse",
    "TaxCreditOut",
    "TransactionIn",
    "TransactionOut",
]
