"""Point-in-time holdings and cost basis reconstructed from the transaction log."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Mapping, Protocol, Sequence

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dividend_ledger.core.errors import DataIntegrityWarning
from dividend_ledger.db.base import quantize_amount
from dividend_ledger.models import Position, Transaction, TransactionType
from dividend_ledger.services.calendar import iter_days, normalize_date
from dividend_ledger.services.price_ledger import latest_closes

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class PositionQuery(Protocol):
    """Port used by the entitlement engine to read historical holdings."""

    async def shares_held_on(self, user_id: str, symbol: str, as_of: date) -> int:
        ...

    async def holders_of(self, symbol: str) -> list[str]:
        ...


class TransactionLogPositions:
    """``PositionQuery`` backed by the transaction table of the given session."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def shares_held_on(self, user_id: str, symbol: str, as_of: date) -> int:
        as_of = normalize_date(as_of)
        signed = case(
            (Transaction.type == TransactionType.BUY, Transaction.quantity),
            else_=-Transaction.quantity,
        )
        result = await self._session.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                Transaction.user_id == user_id,
                Transaction.symbol == symbol,
                Transaction.trade_date <= as_of,
            )
        )
        net = int(result.scalar_one())
        if net < 0:
            message = f"Net position for {user_id}/{symbol} on {as_of} is {net}; clamping to 0"
            logger.warning(message, extra={"category": DataIntegrityWarning.__name__})
            return 0
        return net

    async def holders_of(self, symbol: str) -> list[str]:
        result = await self._session.execute(
            select(Transaction.user_id).where(Transaction.symbol == symbol).distinct().order_by(Transaction.user_id)
        )
        return list(result.scalars().all())


@dataclass(frozen=True)
class PositionState:
    quantity: int = 0
    total_invested: Decimal = ZERO
    average_cost: Decimal = ZERO
    last_transaction_date: date | None = None


@dataclass(frozen=True)
class Trade:
    trade_date: date
    type: TransactionType
    quantity: int
    price_per_share: Decimal
    commission: Decimal = ZERO

    @classmethod
    def from_model(cls, row: Transaction) -> "Trade":
        return cls(
            trade_date=row.trade_date,
            type=TransactionType(row.type),
            quantity=int(row.quantity),
            price_per_share=Decimal(str(row.price_per_share)),
            commission=Decimal(str(row.commission or 0)),
        )


def apply_trade(state: PositionState, trade: Trade) -> tuple[PositionState, Decimal]:
    """Apply ``trade`` with weighted-average costing.

    Returns the new state and the realized profit of the trade (zero for buys).
    A position that reaches zero shares has its invested amount and average
    cost reset to zero.
    """

    realized = ZERO
    if trade.type == TransactionType.BUY:
        quantity = state.quantity + trade.quantity
        invested = state.total_invested + trade.quantity * trade.price_per_share + trade.commission
    else:
        cost_sold = trade.quantity * state.average_cost
        proceeds = trade.quantity * trade.price_per_share - trade.commission
        realized = proceeds - cost_sold
        quantity = state.quantity - trade.quantity
        invested = state.total_invested - cost_sold

    if quantity <= 0:
        return PositionState(0, ZERO, ZERO, trade.trade_date), realized
    return (
        replace(
            state,
            quantity=quantity,
            total_invested=invested,
            average_cost=quantize_amount(invested / quantity),
            last_transaction_date=trade.trade_date,
        ),
        realized,
    )


@dataclass(frozen=True)
class CostBasisPoint:
    day: date
    quantity: int
    total_invested: Decimal
    average_cost: Decimal
    realized_pnl: Decimal
    market_value: Decimal | None


def cost_basis_curve(
    transactions: Sequence[Trade | Transaction],
    start: date,
    end: date,
    closes: Mapping[date, Decimal] | None = None,
) -> list[CostBasisPoint]:
    """Replay the log forward and emit one point per calendar day in ``[start, end]``.

    Trades dated before ``start`` are folded into the opening state. When
    ``closes`` is given, market value uses the most recent close on or before
    the day.
    """

    trades = sorted(
        (item if isinstance(item, Trade) else Trade.from_model(item) for item in transactions),
        key=lambda trade: trade.trade_date,
    )
    state = PositionState()
    cursor = 0
    while cursor < len(trades) and trades[cursor].trade_date < start:
        state, _ = apply_trade(state, trades[cursor])
        cursor += 1

    last_close: Decimal | None = None
    if closes:
        earlier = [day for day in closes if day < start]
        if earlier:
            last_close = closes[max(earlier)]

    points: list[CostBasisPoint] = []
    for day in iter_days(start, end):
        realized = ZERO
        while cursor < len(trades) and trades[cursor].trade_date == day:
            state, gain = apply_trade(state, trades[cursor])
            realized += gain
            cursor += 1
        market_value = None
        if closes is not None:
            last_close = closes.get(day, last_close)
            if last_close is not None:
                market_value = state.quantity * last_close
        points.append(
            CostBasisPoint(
                day=day,
                quantity=state.quantity,
                total_invested=state.total_invested,
                average_cost=state.average_cost,
                realized_pnl=realized,
                market_value=market_value,
            )
        )
    return points


async def load_position(session: AsyncSession, user_id: str, symbol: str) -> PositionState:
    row = (
        await session.execute(select(Position).where(Position.user_id == user_id, Position.symbol == symbol))
    ).scalar_one_or_none()
    if row is None:
        return PositionState()
    return PositionState(
        quantity=row.current_quantity,
        total_invested=Decimal(str(row.total_invested)),
        average_cost=Decimal(str(row.average_cost)),
        last_transaction_date=row.last_transaction_date,
    )


async def store_position(session: AsyncSession, user_id: str, symbol: str, state: PositionState) -> None:
    """Write ``state`` to the cached position row, deleting it at zero shares."""

    if state.quantity <= 0:
        await session.execute(delete(Position).where(Position.user_id == user_id, Position.symbol == symbol))
        logger.info("Position %s/%s closed and removed", user_id, symbol)
        return

    row = (
        await session.execute(select(Position).where(Position.user_id == user_id, Position.symbol == symbol))
    ).scalar_one_or_none()
    if row is None:
        row = Position(user_id=user_id, symbol=symbol)
        session.add(row)
    row.current_quantity = state.quantity
    row.total_invested = state.total_invested
    row.average_cost = state.average_cost
    row.last_transaction_date = state.last_transaction_date
    await session.flush()


@dataclass(frozen=True)
class Holding:
    symbol: str
    quantity: int
    total_invested: Decimal
    average_cost: Decimal
    last_transaction_date: date | None
    last_close: Decimal | None
    market_value: Decimal | None
    unrealized_pnl: Decimal | None


async def list_holdings(session: AsyncSession, user_id: str) -> list[Holding]:
    """Return the user's open cached positions valued at the latest stored close."""

    rows = (
        await session.execute(
            select(Position)
            .where(Position.user_id == user_id, Position.current_quantity > 0)
            .order_by(Position.symbol)
        )
    ).scalars().all()
    if not rows:
        return []
    closes = await latest_closes(session, [row.symbol for row in rows])
    holdings: list[Holding] = []
    for row in rows:
        invested = Decimal(str(row.total_invested))
        close = closes.get(row.symbol)
        market_value = row.current_quantity * close if close is not None else None
        holdings.append(
            Holding(
                symbol=row.symbol,
                quantity=row.current_quantity,
                total_invested=invested,
                average_cost=Decimal(str(row.average_cost)),
                last_transaction_date=row.last_transaction_date,
                last_close=close,
                market_value=market_value,
                unrealized_pnl=market_value - invested if market_value is not None else None,
            )
        )
    return holdings


async def rebuild_position(session: AsyncSession, user_id: str, symbol: str) -> PositionState:
    """Recompute the cached position row from the user's full transaction log."""

    rows = (
        await session.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.symbol == symbol)
            .order_by(Transaction.trade_date, Transaction.id)
        )
    ).scalars().all()
    state = PositionState()
    for row in rows:
        state, _ = apply_trade(state, Trade.from_model(row))
    await store_position(session, user_id, symbol, state)
    return state


__all__ = [
    "CostBasisPoint",
    "Holding",
    "PositionQuery",
    "PositionState",
    "Trade",
    "TransactionLogPositions",
    "apply_trade",
    "cost_basis_curve",
    "list_holdings",
    "load_position",
    "rebuild_position",
    "store_position",
]
