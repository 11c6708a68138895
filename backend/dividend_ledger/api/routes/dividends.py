"""Dividend entitlement, tax credit and forecast endpoints."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.schemas import (
    BenefitEstimateOut,
    EntitlementOut,
    PredictionIn,
    ReleaseResponse,
    ResolveEntitlementsRequest,
    TaxCreditOut,
)
from dividend_ledger.services.dividend_history import sync_dividend_history
from dividend_ledger.services.entitlements import DividendRef, PredictionRef, upsert_prediction


def get_dividends_router(services: LedgerServices) -> APIRouter:
    router = APIRouter(prefix="/dividends", tags=["dividends"])
    database = services.database

    @router.post("/entitlements/resolve", response_model=list[EntitlementOut])
    async def resolve_entitlements(payload: ResolveEntitlementsRequest) -> list[EntitlementOut]:
        if payload.dividend_id is not None:
            ref = DividendRef(payload.dividend_id)
        else:
            ref = PredictionRef(payload.symbol, payload.ex_date)
        records = await services.engine.resolve_entitlements(ref, user_id=payload.user_id)
        return [EntitlementOut.model_validate(record) for record in records]

    @router.get("/entitlements", response_model=list[EntitlementOut])
    async def list_entitlements(user_id: str) -> list[EntitlementOut]:
        records = await services.engine.list_entitlements(user_id)
        return [EntitlementOut.model_validate(record) for record in records]

    @router.post("/entitlements/{entitlement_id}/tax-credit", response_model=TaxCreditOut)
    async def calculate_tax_credit(entitlement_id: int) -> TaxCreditOut:
        row = await services.tax_credits.calculate(entitlement_id)
        return TaxCreditOut.model_validate(row)

    @router.post("/{dividend_id}/release", response_model=ReleaseResponse)
    async def release_stuck_declaration(dividend_id: int, force: bool = False) -> ReleaseResponse:
        released = await services.engine.release_stuck_declaration(dividend_id, force=force)
        return ReleaseResponse(dividend_id=dividend_id, released=released)

    @router.get("/estimate", response_model=Optional[BenefitEstimateOut])
    async def estimate_benefit(
        symbol: str,
        shares: int = Query(..., gt=0),
        on: date = Query(..., alias="date"),
    ) -> Optional[BenefitEstimateOut]:
        estimate = await services.engine.estimate_benefit(symbol, on, shares)
        if estimate is None:
            return None
        return BenefitEstimateOut.model_validate(estimate)

    @router.post("/predictions", status_code=status.HTTP_204_NO_CONTENT)
    async def store_prediction(
        payload: PredictionIn, session: AsyncSession = Depends(database.get_session)
    ) -> Response:
        await upsert_prediction(session, **payload.model_dump())
        await session.commit()
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.post("/{symbol}/history/sync")
    async def sync_history(symbol: str) -> dict[str, object]:
        created = await sync_dividend_history(
            database.session_factory, services.provider, symbol, settings=services.settings
        )
        return {"symbol": symbol.strip().upper(), "created": [row.id for row in created]}

    return router


__all__ = ["get_dividends_router"]
