"""Sequential price sync over many symbols."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import DomainError
from dividend_ledger.models import Stock
from dividend_ledger.services.price_ledger import PriceBarRecord, PriceLedgerSynchronizer

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    synced: dict[str, int] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)
    stopped: bool = False


class PriceSyncJob:
    """Sync recent bars one symbol at a time with a delay between provider calls.

    Triggers for a symbol that is already syncing, and batch runs started while
    another batch is active, are ignored.
    """

    def __init__(
        self,
        synchronizer: PriceLedgerSynchronizer,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        settings: AppSettings | None = None,
        *,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._synchronizer = synchronizer
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._today = today
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self._batch_running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._batch_running

    def stop(self) -> None:
        """Ask the running batch to end after the current symbol."""

        if self._batch_running:
            logger.info("Stop requested for running price sync")
            self._stop_requested = True

    async def sync_symbol(self, symbol: str) -> list[PriceBarRecord] | None:
        symbol = symbol.strip().upper()
        if symbol in self._in_flight:
            logger.info("Price sync for %s already running; trigger ignored", symbol)
            return None
        self._in_flight.add(symbol)
        try:
            end = self._today()
            start = end - timedelta(days=self._settings.sync_lookback_days)
            return await self._synchronizer.ensure(symbol, start, end)
        finally:
            self._in_flight.discard(symbol)

    async def _all_symbols(self) -> list[str]:
        if self._session_factory is None:
            return []
        async with self._session_factory() as session:
            result = await session.execute(select(Stock.symbol).order_by(Stock.symbol))
            return list(result.scalars().all())

    async def run(self, symbols: Sequence[str] | None = None) -> SyncReport | None:
        if self._batch_running:
            logger.warning("Price sync batch already running; trigger ignored")
            return None
        self._batch_running = True
        self._stop_requested = False
        report = SyncReport()
        try:
            targets = list(symbols) if symbols is not None else await self._all_symbols()
            logger.info("Starting price sync for %d symbols", len(targets))
            for index, symbol in enumerate(targets):
                if self._stop_requested:
                    report.stopped = True
                    logger.info("Price sync stopped before %s", symbol)
                    break
                delay = self._settings.sync_delay_seconds
                try:
                    bars = await self.sync_symbol(symbol)
                    if bars is not None:
                        report.synced[symbol.upper()] = len(bars)
                except DomainError as exc:
                    logger.error("Price sync for %s failed: %s", symbol, exc.message)
                    report.failed[symbol.upper()] = exc.kind
                    delay = self._settings.sync_error_delay_seconds
                if index < len(targets) - 1:
                    await self._sleep(delay)
            logger.info("Price sync finished: %d synced, %d failed", len(report.synced), len(report.failed))
            return report
        finally:
            self._batch_running = False
            self._stop_requested = False


__all__ = ["PriceSyncJob", "SyncReport"]
