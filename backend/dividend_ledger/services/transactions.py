"""Recording of buy/sell trades into the append-only transaction log."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import ConflictError, NotFoundError, ValidationError
from dividend_ledger.models import Stock, Transaction, TransactionType
from dividend_ledger.services.calendar import normalize_date
from dividend_ledger.services.entitlements import DividendEntitlementEngine
from dividend_ledger.services.positions import (
    Trade,
    TransactionLogPositions,
    apply_trade,
    load_position,
    rebuild_position,
    store_position,
)
from dividend_ledger.services.price_ledger import PriceLookup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionRecord:
    id: int
    user_id: str
    symbol: str
    trade_date: date
    type: TransactionType
    quantity: int
    price_per_share: Decimal
    commission: Decimal
    total_amount: Decimal
    realized_pnl: Decimal | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, row: Transaction, realized_pnl: Decimal | None = None) -> "TransactionRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            symbol=row.symbol,
            trade_date=row.trade_date,
            type=TransactionType(row.type),
            quantity=row.quantity,
            price_per_share=Decimal(str(row.price_per_share)),
            commission=Decimal(str(row.commission)),
            total_amount=Decimal(str(row.total_amount)),
            realized_pnl=realized_pnl,
            created_at=row.created_at,
        )


class TransactionRecorder:
    """Validate a trade against the price ledger and holdings, then append it."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        prices: PriceLookup,
        engine: DividendEntitlementEngine | None = None,
        settings: AppSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._prices = prices
        self._engine = engine
        self._settings = settings or get_settings()

    async def record(
        self,
        user_id: str,
        symbol: str,
        trade_type: TransactionType | str,
        quantity: int,
        price_per_share: Decimal,
        trade_date: date | datetime | str,
        commission: Decimal = Decimal("0"),
    ) -> TransactionRecord:
        try:
            trade_type = TransactionType(trade_type.upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown transaction type {trade_type!r}") from exc
        price_per_share = Decimal(str(price_per_share))
        commission = Decimal(str(commission))
        if quantity <= 0 or price_per_share <= 0:
            raise ValidationError("Quantity and Price must be positive numbers.")
        if commission < 0:
            raise ValidationError("Commission must not be negative.")
        symbol = symbol.strip().upper()
        trade_day = normalize_date(trade_date)

        async with self._session_factory() as session:
            if await session.get(Stock, symbol) is None:
                raise NotFoundError(f"Stock symbol {symbol} not found.")

        # provider calls stay outside the write transaction below
        try:
            market_close = await self._prices.close_on(symbol, trade_day)
        except NotFoundError as exc:
            raise NotFoundError(f"Market price not available for {symbol} on {trade_day.isoformat()}.") from exc
        tolerance = Decimal(str(self._settings.trade_price_tolerance))
        if abs(price_per_share - market_close) > tolerance:
            raise ValidationError(
                f"Price per share ({price_per_share}) is outside the acceptable range of market price "
                f"({market_close}). Tolerance: {tolerance}."
            )

        trade = Trade(trade_day, trade_type, quantity, price_per_share, commission)
        async with self._session_factory() as session, session.begin():
            if trade_type == TransactionType.SELL:
                held = await TransactionLogPositions(session).shares_held_on(user_id, symbol, trade_day)
                if held < quantity:
                    raise ConflictError(
                        f"Insufficient shares to sell: {held} {symbol} held on {trade_day.isoformat()}."
                    )

            if trade_type == TransactionType.BUY:
                total_amount = quantity * price_per_share + commission
            else:
                total_amount = quantity * price_per_share - commission
            latest_trade_day = (
                await session.execute(
                    select(func.max(Transaction.trade_date)).where(
                        Transaction.user_id == user_id, Transaction.symbol == symbol
                    )
                )
            ).scalar()
            row = Transaction(
                user_id=user_id,
                symbol=symbol,
                trade_date=trade_day,
                type=trade_type,
                quantity=quantity,
                price_per_share=price_per_share,
                commission=commission,
                total_amount=total_amount,
            )
            session.add(row)
            await session.flush()

            if latest_trade_day is not None and trade_day < latest_trade_day:
                # backdated trades change the replay order, even after a full close
                state = await rebuild_position(session, user_id, symbol)
                realized = None
            else:
                state, realized = apply_trade(await load_position(session, user_id, symbol), trade)
                await store_position(session, user_id, symbol, state)
            if trade_type == TransactionType.BUY:
                realized = None
            record = TransactionRecord.from_model(row, realized)

        logger.info(
            "Recorded %s %s x%d @ %s for %s (position now %d)",
            trade_type.value,
            symbol,
            quantity,
            price_per_share,
            user_id,
            state.quantity,
        )
        await self._refresh_entitlements(user_id, symbol, trade_day)
        return record

    async def _refresh_entitlements(self, user_id: str, symbol: str, trade_day: date) -> None:
        if self._engine is None:
            return
        try:
            await self._engine.refresh_for_trade(user_id, symbol, trade_day)
        except ConflictError as exc:
            logger.info("Entitlement refresh skipped for %s/%s: %s", user_id, symbol, exc.message)

    async def list_transactions(
        self,
        user_id: str,
        symbol: str | None = None,
        trade_type: TransactionType | str | None = None,
    ) -> list[TransactionRecord]:
        stmt = select(Transaction).where(Transaction.user_id == user_id)
        if symbol:
            stmt = stmt.where(Transaction.symbol == symbol.strip().upper())
        if trade_type:
            try:
                stmt = stmt.where(Transaction.type == TransactionType(trade_type.upper()))
            except ValueError as exc:
                raise ValidationError(f"Unknown transaction type {trade_type!r}") from exc
        stmt = stmt.order_by(Transaction.trade_date.desc(), Transaction.id.desc())
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [TransactionRecord.from_model(row) for row in rows]


__all__ = ["TransactionRecord", "TransactionRecorder"]
