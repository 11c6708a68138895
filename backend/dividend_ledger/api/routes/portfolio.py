"""Transaction log and holdings endpoints."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.core.errors import ValidationError
from dividend_ledger.models import PriceBar, Transaction, TransactionType
from dividend_ledger.schemas import CostBasisPointOut, HoldingOut, SharesHeldResponse, TransactionIn, TransactionOut
from dividend_ledger.services.positions import TransactionLogPositions, cost_basis_curve, list_holdings


def get_portfolio_router(services: LedgerServices) -> APIRouter:
    router = APIRouter(tags=["portfolio"])
    database = services.database

    @router.post("/transactions", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
    async def record_transaction(payload: TransactionIn) -> TransactionOut:
        record = await services.recorder.record(
            user_id=payload.user_id,
            symbol=payload.symbol,
            trade_type=payload.type,
            quantity=payload.quantity,
            price_per_share=payload.price_per_share,
            trade_date=payload.trade_date,
            commission=payload.commission,
        )
        return TransactionOut.model_validate(record)

    @router.get("/transactions", response_model=list[TransactionOut])
    async def list_transactions(
        user_id: str,
        symbol: Optional[str] = None,
        type: Optional[TransactionType] = None,
    ) -> list[TransactionOut]:
        records = await services.recorder.list_transactions(user_id, symbol, type)
        return [TransactionOut.model_validate(record) for record in records]

    @router.get("/positions/{user_id}", response_model=list[HoldingOut])
    async def holdings(user_id: str, session: AsyncSession = Depends(database.get_session)) -> list[HoldingOut]:
        return [HoldingOut.model_validate(item) for item in await list_holdings(session, user_id)]

    @router.get("/positions/{user_id}/{symbol}/shares", response_model=SharesHeldResponse)
    async def shares_held_on(
        user_id: str,
        symbol: str,
        on: date = Query(..., alias="date"),
        session: AsyncSession = Depends(database.get_session),
    ) -> SharesHeldResponse:
        normalized = symbol.strip().upper()
        shares = await TransactionLogPositions(session).shares_held_on(user_id, normalized, on)
        return SharesHeldResponse(user_id=user_id, symbol=normalized, date=on, shares=shares)

    @router.get("/positions/{user_id}/{symbol}/cost-basis", response_model=list[CostBasisPointOut])
    async def cost_basis(
        user_id: str,
        symbol: str,
        from_date: date = Query(..., alias="from"),
        to_date: date = Query(..., alias="to"),
        session: AsyncSession = Depends(database.get_session),
    ) -> list[CostBasisPointOut]:
        if from_date > to_date:
            raise ValidationError("from must not be after to")
        normalized = symbol.strip().upper()
        transactions = (
            await session.execute(
                select(Transaction)
                .where(Transaction.user_id == user_id, Transaction.symbol == normalized)
                .order_by(Transaction.trade_date, Transaction.id)
            )
        ).scalars().all()
        closes = {
            row.trading_date: Decimal(str(row.close))
            for row in (
                await session.execute(
                    select(PriceBar).where(PriceBar.symbol == normalized, PriceBar.trading_date <= to_date)
                )
            ).scalars()
        }
        points = cost_basis_curve(transactions, from_date, to_date, closes)
        return [CostBasisPointOut.model_validate(point) for point in points]

    return router


__all__ = ["get_portfolio_router"]
