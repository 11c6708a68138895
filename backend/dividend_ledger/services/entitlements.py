"""Dividend entitlement engine.

Turns a dividend declaration, or a forecast of one, into per-user entitlement
rows and their tax credits. Each run happens in one store transaction. A real
declaration is locked with ``SELECT ... FOR UPDATE`` and moves through
``PENDING -> PROCESSING -> COMPLETED``. Once a declaration is ``COMPLETED``,
every later request against it is rejected with a conflict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Union

from opentelemetry import trace
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from dividend_ledger.config import AppSettings, get_settings
from dividend_ledger.core.errors import ConflictError, DomainError, NotFoundError, ValidationError
from dividend_ledger.core.telemetry import LedgerMetrics
from dividend_ledger.db.base import quantize_amount
from dividend_ledger.db.session import dialect_insert
from dividend_ledger.models import (
    CalculationStatus,
    DividendDeclaration,
    DividendEntitlement,
    DividendPrediction,
    EntitlementStatus,
    Stock,
    TaxCredit,
)
from dividend_ledger.models.market import utcnow
from dividend_ledger.services.calendar import normalize_date
from dividend_ledger.services.positions import PositionQuery, TransactionLogPositions
from dividend_ledger.services.tax_credit import apply_tax_credit, credit

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class DividendRef:
    dividend_id: int


@dataclass(frozen=True)
class PredictionRef:
    symbol: str
    ex_date: date


EntitlementRef = Union[DividendRef, PredictionRef]


@dataclass
class _Source:
    symbol: str
    ex_date: date
    record_date: date
    payment_date: date | None
    dividend_per_share: Decimal | None
    declaration: DividendDeclaration | None = None

    @property
    def status(self) -> EntitlementStatus:
        return EntitlementStatus.CONFIRMED if self.declaration is not None else EntitlementStatus.PREDICTED


@dataclass(frozen=True)
class EntitlementRecord:
    """Detached view of an entitlement and its tax credit, if one was written."""

    id: int
    user_id: str
    status: EntitlementStatus
    dividend_id: int | None
    predicted_symbol: str | None
    predicted_ex_date: date | None
    shares_held: int
    gross_dividend: Decimal
    withholding_tax: Decimal
    net_dividend: Decimal
    payment_received_date: date | None
    tax_credit_amount: Decimal | None = None
    taxable_income: Decimal | None = None
    tax_year: int | None = None

    @classmethod
    def from_model(cls, row: DividendEntitlement, tax_credit: TaxCredit | None = None) -> "EntitlementRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            status=EntitlementStatus(row.status),
            dividend_id=row.dividend_id,
            predicted_symbol=row.predicted_symbol,
            predicted_ex_date=row.predicted_ex_date,
            shares_held=row.shares_held,
            gross_dividend=Decimal(str(row.gross_dividend)),
            withholding_tax=Decimal(str(row.withholding_tax)),
            net_dividend=Decimal(str(row.net_dividend)),
            payment_received_date=row.payment_received_date,
            tax_credit_amount=Decimal(str(tax_credit.tax_credit_amount)) if tax_credit else None,
            taxable_income=Decimal(str(tax_credit.taxable_income)) if tax_credit else None,
            tax_year=tax_credit.tax_year if tax_credit else None,
        )


@dataclass(frozen=True)
class BenefitEstimate:
    type: str
    symbol: str
    dividend_id: int | None
    ex_date: date
    record_date: date | None
    payment_date: date | None
    dividend_per_share: Decimal
    confidence: float | None
    shares: int
    gross_dividend: Decimal
    withholding_tax: Decimal
    net_dividend: Decimal
    corporate_tax_rate: Decimal | None
    boi_support: bool
    tax_credit: Decimal


class DividendEntitlementEngine:
    """Resolve entitlements for real and predicted dividends."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        positions: Callable[[AsyncSession], PositionQuery] = TransactionLogPositions,
        settings: AppSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
        metrics: LedgerMetrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._positions = positions
        self._settings = settings or get_settings()
        self._clock = clock
        self._metrics = metrics or LedgerMetrics()

    @property
    def withholding_rate(self) -> Decimal:
        return Decimal(str(self._settings.withholding_tax_rate))

    async def resolve_entitlements(self, ref: EntitlementRef, user_id: str | None = None) -> list[EntitlementRecord]:
        """Create, reclassify or delete entitlements for ``ref``.

        Without ``user_id`` every user who ever traded the symbol is resolved
        and a real declaration is marked ``COMPLETED``. With ``user_id`` only
        that user is refreshed and the declaration status is left untouched.
        Any error before completion rolls back the whole run.
        """

        batch = user_id is None
        with tracer.start_as_current_span("entitlements.resolve") as span:
            async with self._session_factory() as session:
                async with session.begin():
                    source = await self._load_source(session, ref, batch=batch)
                    span.set_attribute("ledger.symbol", source.symbol)
                    positions = self._positions(session)
                    users = await positions.holders_of(source.symbol) if batch else [user_id]

                    records: list[EntitlementRecord] = []
                    for holder in users:
                        record = await self._resolve_user(session, positions, source, holder)
                        if record is not None:
                            records.append(record)

                    if batch and source.declaration is not None:
                        source.declaration.calculation_status = CalculationStatus.COMPLETED
                        source.declaration.calculated_at = self._clock()
                        logger.info(
                            "Dividend %s completed with %d entitlements", source.declaration.id, len(records)
                        )
        return records

    async def _load_source(self, session: AsyncSession, ref: EntitlementRef, *, batch: bool) -> _Source:
        if isinstance(ref, DividendRef):
            declaration = (
                await session.execute(
                    select(DividendDeclaration).where(DividendDeclaration.id == ref.dividend_id).with_for_update()
                )
            ).scalar_one_or_none()
            if declaration is None:
                raise NotFoundError(f"Dividend ID {ref.dividend_id} not found.")
            if declaration.calculation_status == CalculationStatus.COMPLETED:
                raise ConflictError(f"Calculation for Dividend ID {ref.dividend_id} is already completed.")
            if declaration.calculation_status == CalculationStatus.PROCESSING:
                raise ConflictError(f"Calculation for Dividend ID {ref.dividend_id} is already in progress.")
            if batch:
                declaration.calculation_status = CalculationStatus.PROCESSING
                declaration.processing_started_at = self._clock()
                await session.flush()
            return _Source(
                symbol=declaration.symbol,
                ex_date=declaration.ex_dividend_date,
                record_date=declaration.record_date,
                payment_date=declaration.payment_date,
                dividend_per_share=Decimal(str(declaration.dividend_per_share)),
                declaration=declaration,
            )

        if isinstance(ref, PredictionRef):
            symbol = ref.symbol.strip().upper()
            ex_date = normalize_date(ref.ex_date)
            prediction = (
                await session.execute(
                    select(DividendPrediction).where(
                        DividendPrediction.symbol == symbol,
                        DividendPrediction.predicted_ex_date == ex_date,
                    )
                )
            ).scalar_one_or_none()
            if prediction is None:
                raise NotFoundError(f"No prediction for {symbol} with ex-date {ex_date.isoformat()}")
            dps = prediction.predicted_dps
            return _Source(
                symbol=symbol,
                ex_date=ex_date,
                # forecasts without a record date fall back to the next calendar day
                record_date=prediction.predicted_record_date or ex_date + timedelta(days=1),
                payment_date=prediction.predicted_payment_date,
                dividend_per_share=Decimal(str(dps)) if dps is not None else None,
            )

        raise ValidationError(f"Unsupported entitlement reference {ref!r}")

    async def _resolve_user(
        self,
        session: AsyncSession,
        positions: PositionQuery,
        source: _Source,
        user_id: str,
    ) -> EntitlementRecord | None:
        shares = await positions.shares_held_on(user_id, source.symbol, source.record_date)
        if shares <= 0:
            await self._delete_entitlement(session, user_id, source)
            return None

        dps = source.dividend_per_share
        if dps is None or dps <= 0:
            logger.info("Skipping %s for %s: no positive dividend per share", source.symbol, user_id)
            return None

        gross = quantize_amount(shares * dps)
        withholding = quantize_amount(gross * self.withholding_rate)
        row = await self._find_entitlement(session, user_id, source)
        if row is None:
            row = DividendEntitlement(user_id=user_id)
            session.add(row)
        row.status = source.status
        if source.declaration is not None:
            row.dividend_id = source.declaration.id
            row.predicted_symbol = None
            row.predicted_ex_date = None
        else:
            row.predicted_symbol = source.symbol
            row.predicted_ex_date = source.ex_date
        row.shares_held = shares
        row.gross_dividend = gross
        row.withholding_tax = withholding
        row.net_dividend = gross - withholding
        row.payment_received_date = source.payment_date
        row.updated_at = self._clock()
        await session.flush()
        self._metrics.entitlements_resolved.add(1, {"symbol": source.symbol, "status": source.status.value})

        tax_credit: TaxCredit | None = None
        try:
            tax_credit = await apply_tax_credit(session, row)
        except DomainError as exc:
            logger.error("Failed to calculate tax credit for entitlement %s: %s", row.id, exc.message)
            self._metrics.tax_credit_failures.add(1, {"symbol": source.symbol, "kind": exc.kind})
        return EntitlementRecord.from_model(row, tax_credit)

    async def _find_entitlement(
        self, session: AsyncSession, user_id: str, source: _Source
    ) -> DividendEntitlement | None:
        if source.declaration is not None:
            existing = (
                await session.execute(
                    select(DividendEntitlement).where(
                        DividendEntitlement.user_id == user_id,
                        DividendEntitlement.dividend_id == source.declaration.id,
                    )
                )
            ).scalar_one_or_none()
            if existing is not None:
                return existing
        # a confirmed dividend takes over the predicted row for the same ex-date
        return (
            await session.execute(
                select(DividendEntitlement).where(
                    DividendEntitlement.user_id == user_id,
                    DividendEntitlement.predicted_symbol == source.symbol,
                    DividendEntitlement.predicted_ex_date == source.ex_date,
                )
            )
        ).scalar_one_or_none()

    async def _delete_entitlement(self, session: AsyncSession, user_id: str, source: _Source) -> None:
        if source.declaration is not None:
            key = (DividendEntitlement.dividend_id == source.declaration.id,)
        else:
            key = (
                DividendEntitlement.predicted_symbol == source.symbol,
                DividendEntitlement.predicted_ex_date == source.ex_date,
            )
        ids = (
            await session.execute(
                select(DividendEntitlement.id).where(DividendEntitlement.user_id == user_id, *key)
            )
        ).scalars().all()
        if not ids:
            return
        await session.execute(delete(TaxCredit).where(TaxCredit.entitlement_id.in_(ids)))
        await session.execute(
            delete(DividendEntitlement)
            .where(DividendEntitlement.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        self._metrics.entitlements_removed.add(len(ids), {"symbol": source.symbol})
        logger.info("Removed entitlement for %s on %s ex %s", user_id, source.symbol, source.ex_date)

    async def release_stuck_declaration(self, dividend_id: int, *, force: bool = False) -> bool:
        """Return a ``PROCESSING`` declaration to ``PENDING``.

        Only declarations that have been processing for longer than
        ``stuck_processing_after_minutes`` are released unless ``force`` is set.
        """

        async with self._session_factory() as session, session.begin():
            declaration = (
                await session.execute(
                    select(DividendDeclaration).where(DividendDeclaration.id == dividend_id).with_for_update()
                )
            ).scalar_one_or_none()
            if declaration is None:
                raise NotFoundError(f"Dividend ID {dividend_id} not found.")
            if declaration.calculation_status != CalculationStatus.PROCESSING:
                raise ConflictError(
                    f"Dividend ID {dividend_id} is {declaration.calculation_status.value}, not PROCESSING."
                )
            started = declaration.processing_started_at
            threshold = timedelta(minutes=self._settings.stuck_processing_after_minutes)
            if not force and started is not None:
                if started.tzinfo is None:
                    started = started.replace(tzinfo=self._clock().tzinfo)
                if self._clock() - started < threshold:
                    logger.info("Dividend %s is still within its processing window", dividend_id)
                    return False
            declaration.calculation_status = CalculationStatus.PENDING
            declaration.processing_started_at = None
            logger.warning("Released stuck dividend %s back to PENDING (force=%s)", dividend_id, force)
        return True

    async def refresh_for_trade(self, user_id: str, symbol: str, trade_date: date) -> list[EntitlementRecord]:
        """Refresh the user's entitlement for the next dividend after ``trade_date``."""

        symbol = symbol.strip().upper()
        trade_date = normalize_date(trade_date)
        async with self._session_factory() as session:
            declaration_id = (
                await session.execute(
                    select(DividendDeclaration.id)
                    .where(
                        DividendDeclaration.symbol == symbol,
                        DividendDeclaration.ex_dividend_date > trade_date,
                        DividendDeclaration.calculation_status != CalculationStatus.COMPLETED,
                    )
                    .order_by(DividendDeclaration.ex_dividend_date)
                    .limit(1)
                )
            ).scalar_one_or_none()
            predicted_ex = None
            if declaration_id is None:
                predicted_ex = (
                    await session.execute(
                        select(DividendPrediction.predicted_ex_date)
                        .where(
                            DividendPrediction.symbol == symbol,
                            DividendPrediction.predicted_ex_date > trade_date,
                        )
                        .order_by(DividendPrediction.predicted_ex_date)
                        .limit(1)
                    )
                ).scalar_one_or_none()

        if declaration_id is not None:
            ref: EntitlementRef = DividendRef(declaration_id)
        elif predicted_ex is not None:
            ref = PredictionRef(symbol, predicted_ex)
        else:
            logger.debug("No upcoming dividend for %s after %s", symbol, trade_date)
            return []
        return await self.resolve_entitlements(ref, user_id=user_id)

    async def estimate_benefit(self, symbol: str, trade_date: date | str, shares: int) -> BenefitEstimate | None:
        """Project the next dividend a holder of ``shares`` bought on ``trade_date`` would receive."""

        if shares <= 0:
            raise ValidationError("shares must be positive")
        symbol = symbol.strip().upper()
        trade_date = normalize_date(trade_date)
        async with self._session_factory() as session:
            stock = await session.get(Stock, symbol)
            if stock is None:
                raise NotFoundError(f"Stock symbol {symbol} not found.")
            declaration = (
                await session.execute(
                    select(DividendDeclaration)
                    .where(DividendDeclaration.symbol == symbol, DividendDeclaration.ex_dividend_date > trade_date)
                    .order_by(DividendDeclaration.ex_dividend_date)
                    .limit(1)
                )
            ).scalar_one_or_none()
            prediction = None
            if declaration is None:
                prediction = (
                    await session.execute(
                        select(DividendPrediction)
                        .where(DividendPrediction.symbol == symbol, DividendPrediction.predicted_ex_date > trade_date)
                        .order_by(DividendPrediction.predicted_ex_date)
                        .limit(1)
                    )
                ).scalar_one_or_none()

        if declaration is not None:
            kind, dividend_id, confidence = "ACTUAL", declaration.id, None
            ex_date, record_date, payment_date = (
                declaration.ex_dividend_date,
                declaration.record_date,
                declaration.payment_date,
            )
            dps = Decimal(str(declaration.dividend_per_share))
        elif prediction is not None:
            kind, dividend_id, confidence = "PREDICTED", None, prediction.confidence
            ex_date, record_date, payment_date = (
                prediction.predicted_ex_date,
                prediction.predicted_record_date,
                prediction.predicted_payment_date,
            )
            dps = Decimal(str(prediction.predicted_dps or 0))
        else:
            return None

        gross = quantize_amount(shares * dps)
        withholding = quantize_amount(gross * self.withholding_rate)
        rate = stock.corporate_tax_rate
        tax_credit = ZERO
        if not stock.boi_support and rate is not None and Decimal(str(rate)) > 0:
            tax_credit = credit(gross, rate).tax_credit_amount
        return BenefitEstimate(
            type=kind,
            symbol=symbol,
            dividend_id=dividend_id,
            ex_date=ex_date,
            record_date=record_date,
            payment_date=payment_date,
            dividend_per_share=dps,
            confidence=confidence,
            shares=shares,
            gross_dividend=gross,
            withholding_tax=withholding,
            net_dividend=gross - withholding,
            corporate_tax_rate=Decimal(str(rate)) if rate is not None else None,
            boi_support=bool(stock.boi_support),
            tax_credit=tax_credit,
        )

    async def list_entitlements(self, user_id: str) -> list[EntitlementRecord]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(DividendEntitlement)
                    .options(selectinload(DividendEntitlement.tax_credit))
                    .where(DividendEntitlement.user_id == user_id)
                    .order_by(DividendEntitlement.payment_received_date.desc(), DividendEntitlement.id.desc())
                )
            ).scalars().all()
            return [EntitlementRecord.from_model(row, row.tax_credit) for row in rows]


async def upsert_prediction(
    session: AsyncSession,
    *,
    symbol: str,
    predicted_ex_date: date | str,
    predicted_dps: Decimal | None,
    predicted_record_date: date | str | None = None,
    predicted_payment_date: date | str | None = None,
    confidence: float | None = None,
    horizon_days: int | None = None,
) -> None:
    """Insert or refresh the forecast row keyed by ``(symbol, predicted_ex_date)``."""

    values = {
        "symbol": symbol.strip().upper(),
        "predicted_ex_date": normalize_date(predicted_ex_date),
        "predicted_record_date": normalize_date(predicted_record_date) if predicted_record_date else None,
        "predicted_payment_date": normalize_date(predicted_payment_date) if predicted_payment_date else None,
        "predicted_dps": predicted_dps,
        "confidence": confidence,
        "horizon_days": horizon_days,
        "prediction_date": utcnow(),
    }
    stmt = dialect_insert(session, DividendPrediction).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["symbol", "predicted_ex_date"],
        set_={key: stmt.excluded[key] for key in values if key not in {"symbol", "predicted_ex_date"}},
    )
    await session.execute(stmt)


__all__ = [
    "BenefitEstimate",
    "DividendEntitlementEngine",
    "DividendRef",
    "EntitlementRecord",
    "EntitlementRef",
    "PredictionRef",
    "upsert_prediction",
]
