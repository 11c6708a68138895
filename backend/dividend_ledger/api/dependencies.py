"""Wiring of the ledger services shared by the API routers and scripts."""

from __future__ import annotations

from dataclasses import dataclass

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.telemetry import LedgerMetrics
from dividend_ledger.db.session import Database
from dividend_ledger.providers.yahoo import PriceProvider, YahooChartClient
from dividend_ledger.services.entitlements import DividendEntitlementEngine
from dividend_ledger.services.price_cache import TTLPriceCache
from dividend_ledger.services.price_ledger import PriceLedgerSynchronizer, PriceLookup
from dividend_ledger.services.sync_job import PriceSyncJob
from dividend_ledger.services.tax_credit import TaxCreditService
from dividend_ledger.services.transactions import TransactionRecorder


@dataclass
class LedgerServices:
    database: Database
    provider: PriceProvider
    settings: AppSettings
    synchronizer: PriceLedgerSynchronizer
    prices: PriceLookup
    engine: DividendEntitlementEngine
    tax_credits: TaxCreditService
    recorder: TransactionRecorder
    sync_job: PriceSyncJob

    @classmethod
    def build(
        cls,
        database: Database,
        provider: PriceProvider | None = None,
        settings: AppSettings | None = None,
    ) -> "LedgerServices":
        settings = settings or get_settings()
        provider = provider or YahooChartClient(settings)
        factory = database.session_factory
        ledger_metrics = LedgerMetrics()
        synchronizer = PriceLedgerSynchronizer(
            factory,
            provider,
            cache=TTLPriceCache(settings.price_cache_ttl_seconds),
            settings=settings,
            metrics=ledger_metrics,
        )
        prices = PriceLookup(synchronizer)
        engine = DividendEntitlementEngine(factory, settings=settings, metrics=ledger_metrics)
        return cls(
            database=database,
            provider=provider,
            settings=settings,
            synchronizer=synchronizer,
            prices=prices,
            engine=engine,
            tax_credits=TaxCreditService(factory),
            recorder=TransactionRecorder(factory, prices, engine, settings),
            sync_job=PriceSyncJob(synchronizer, factory, settings),
        )

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()


__all__ = ["LedgerServices"]
