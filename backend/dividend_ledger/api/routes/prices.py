"""Price ledger endpoints: gap-filling sync, close lookups and the batch job."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query, status
from pydantic import BaseModel, Field

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.schemas import ClosePriceResponse, PriceBarOut, SyncJobResponse

logger = logging.getLogger(__name__)


class SyncJobRequest(BaseModel):
    symbols: Optional[list[str]] = Field(default=None, description="Defaults to every known stock")


def get_prices_router(services: LedgerServices) -> APIRouter:
    router = APIRouter(prefix="/prices", tags=["prices"])

    @router.post("/{symbol}/sync", response_model=list[PriceBarOut])
    async def sync_prices(
        symbol: str,
        from_date: date = Query(..., alias="from"),
        to_date: date = Query(..., alias="to"),
    ) -> list[PriceBarOut]:
        bars = await services.synchronizer.ensure(symbol, from_date, to_date)
        return [PriceBarOut.from_record(bar) for bar in bars]

    @router.get("/{symbol}/close", response_model=ClosePriceResponse)
    async def close_on(symbol: str, on: date = Query(..., alias="date")) -> ClosePriceResponse:
        close = await services.prices.close_on(symbol, on)
        return ClosePriceResponse(symbol=symbol.strip().upper(), date=on, close=close)

    @router.post("/jobs/sync", response_model=SyncJobResponse, status_code=status.HTTP_202_ACCEPTED)
    async def trigger_sync_job(
        background_tasks: BackgroundTasks,
        payload: Optional[SyncJobRequest] = None,
        run_sync: bool = False,
    ) -> SyncJobResponse:
        symbols = payload.symbols if payload else None
        job = services.sync_job
        if job.is_running:
            return SyncJobResponse(status="already_running", symbols=symbols or [])
        if run_sync:
            report = await job.run(symbols)
            if report is None:
                return SyncJobResponse(status="already_running", symbols=symbols or [])
            return SyncJobResponse(
                status="stopped" if report.stopped else "completed",
                symbols=list(report.synced) + list(report.failed),
                synced=report.synced,
                failed=report.failed,
            )
        background_tasks.add_task(job.run, symbols)
        logger.info("Scheduled price sync for %s", ", ".join(symbols) if symbols else "all stocks")
        return SyncJobResponse(status="scheduled", symbols=symbols or [])

    @router.post("/jobs/stop", response_model=SyncJobResponse)
    async def stop_sync_job() -> SyncJobResponse:
        services.sync_job.stop()
        return SyncJobResponse(status="stopping" if services.sync_job.is_running else "idle")

    return router


__all__ = ["get_prices_router"]
