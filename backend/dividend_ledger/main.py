"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.api.routes import get_api_router
from dividend_ledger.config import get_settings
from dividend_ledger.core.errors import DomainError
from dividend_ledger.core.logging import setup_logging
from dividend_ledger.core.telemetry import setup_telemetry
from dividend_ledger.db.init import get_database, init_database
from dividend_ledger.db.session import Database
from dividend_ledger.providers.yahoo import PriceProvider
from dividend_ledger.schemas import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI, services: LedgerServices):
    logger.info("Starting %s with settings %s", services.settings.app_name, services.settings.dict_for_logging())
    await init_database(services.database)
    try:
        yield
    finally:
        await services.aclose()


def create_app(db: Database | None = None, provider: PriceProvider | None = None) -> FastAPI:
    settings = get_settings()
    database = db or get_database()
    services = LedgerServices.build(database, provider, settings)

    setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, services),
    )
    app.state.services = services
    setup_telemetry(app, settings, engine=database.engine)

    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"kind": exc.kind, "detail": exc.message})

    app.include_router(get_api_router(services))

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service=settings.telemetry_service_name, timezone=settings.timezone)

    return app


app = create_app()

__all__ = ["app", "create_app"]
