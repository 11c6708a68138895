"""Route registration helpers."""

from __future__ import annotations

from fastapi import APIRouter, status

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.schemas import ErrorResponse

from .dividends import get_dividends_router
from .portfolio import get_portfolio_router
from .prices import get_prices_router


ERROR_RESPONSES = {
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse, "description": "Unknown symbol, dividend or entitlement"},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse, "description": "Conflicts with stored state"},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse, "description": "Price provider rate limited"},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse, "description": "Price provider failure"},
}


def get_api_router(services: LedgerServices) -> APIRouter:
    api_router = APIRouter(responses=ERROR_RESPONSES)
    api_router.include_router(get_prices_router(services))
    api_router.include_router(get_portfolio_router(services))
    api_router.include_router(get_dividends_router(services))
    return api_router


__all__ = ["ERROR_RESPONSES", "get_api_router"]
