"""Dividend entitlement engine tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from dividend_ledger.core.errors import ConflictError, NotFoundError
from dividend_ledger.models import (
    CalculationStatus,
    DividendDeclaration,
    DividendEntitlement,
    DividendPrediction,
    EntitlementStatus,
    Stock,
    TaxCredit,
    Transaction,
    TransactionType,
)
from dividend_ledger.services.entitlements import (
    DividendEntitlementEngine,
    DividendRef,
    PredictionRef,
    upsert_prediction,
)

NOW = datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)


def _stock(**overrides) -> Stock:
    values = dict(symbol="PTT", name="PTT PCL", corporate_tax_rate=Decimal("0.20"))
    values.update(overrides)
    return Stock(**values)


def _declaration(**overrides) -> DividendDeclaration:
    values = dict(
        id=1,
        symbol="PTT",
        announcement_date=date(2025, 2, 20),
        ex_dividend_date=date(2025, 3, 10),
        record_date=date(2025, 3, 11),
        payment_date=date(2025, 3, 25),
        dividend_per_share=Decimal("2"),
    )
    values.update(overrides)
    return DividendDeclaration(**values)


def _prediction(ex_date: date, record_date: date, dps: str = "1") -> DividendPrediction:
    return DividendPrediction(
        symbol="PTT",
        predicted_ex_date=ex_date,
        predicted_record_date=record_date,
        predicted_payment_date=record_date + timedelta(days=14),
        predicted_dps=Decimal(dps),
        confidence=0.8,
    )


def _txn(day: date, kind: TransactionType, quantity: int, user: str = "u1") -> Transaction:
    return Transaction(
        user_id=user,
        symbol="PTT",
        trade_date=day,
        type=kind,
        quantity=quantity,
        price_per_share=Decimal("35"),
        commission=Decimal("0"),
        total_amount=quantity * Decimal("35"),
    )


def _engine(database, **kwargs) -> DividendEntitlementEngine:
    return DividendEntitlementEngine(database.session_factory, clock=lambda: NOW, **kwargs)


async def _count(database, model) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def _declaration_status(database, dividend_id: int = 1) -> CalculationStatus:
    async with database.session() as session:
        return (await session.get(DividendDeclaration, dividend_id)).calculation_status


@pytest.mark.asyncio
async def test_batch_resolution_creates_entitlement_and_completes(database, seed):
    await seed(
        _stock(),
        _declaration(),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
        _txn(date(2025, 3, 1), TransactionType.BUY, 500, user="u2"),
        _txn(date(2025, 3, 5), TransactionType.SELL, 500, user="u2"),
    )
    engine = _engine(database)

    records = await engine.resolve_entitlements(DividendRef(1))

    assert len(records) == 1
    record = records[0]
    assert record.user_id == "u1"
    assert record.status == EntitlementStatus.CONFIRMED
    assert record.shares_held == 1000
    assert record.gross_dividend == Decimal("2000")
    assert record.withholding_tax == Decimal("200")
    assert record.net_dividend == Decimal("1800")
    assert record.payment_received_date == date(2025, 3, 25)
    assert record.tax_credit_amount == Decimal("500")
    assert record.taxable_income == Decimal("2500")
    assert record.tax_year == 2025

    async with database.session() as session:
        declaration = await session.get(DividendDeclaration, 1)
        assert declaration.calculation_status == CalculationStatus.COMPLETED
        assert declaration.calculated_at is not None


@pytest.mark.asyncio
async def test_sale_after_record_date_keeps_full_entitlement(database, seed):
    await seed(
        _stock(),
        _declaration(),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
        _txn(date(2025, 3, 12), TransactionType.SELL, 400),
    )

    records = await _engine(database).resolve_entitlements(DividendRef(1))

    assert len(records) == 1
    assert records[0].shares_held == 1000
    assert records[0].gross_dividend == Decimal("2000")
    assert records[0].withholding_tax == Decimal("200")
    assert records[0].net_dividend == Decimal("1800")


@pytest.mark.asyncio
async def test_resolved_amounts_match_stored_amounts(database, seed):
    await seed(
        _stock(corporate_tax_rate=Decimal("0.30")),
        _declaration(),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
    )
    engine = _engine(database)

    resolved = await engine.resolve_entitlements(DividendRef(1))
    listed = await engine.list_entitlements("u1")

    assert listed == resolved
    assert resolved[0].tax_credit_amount == Decimal("857.142857")
    assert resolved[0].taxable_income == Decimal("2857.142857")


@pytest.mark.asyncio
async def test_completed_declaration_is_rejected_without_writes(database, seed):
    await seed(_stock(), _declaration(), _txn(date(2025, 3, 1), TransactionType.BUY, 1000))
    engine = _engine(database)
    await engine.resolve_entitlements(DividendRef(1))

    with pytest.raises(ConflictError):
        await engine.resolve_entitlements(DividendRef(1))
    with pytest.raises(ConflictError):
        await engine.resolve_entitlements(DividendRef(1), user_id="u1")

    assert await _count(database, DividendEntitlement) == 1
    assert await _count(database, TaxCredit) == 1


@pytest.mark.asyncio
async def test_unknown_references_are_not_found(database, seed):
    await seed(_stock())
    engine = _engine(database)
    with pytest.raises(NotFoundError):
        await engine.resolve_entitlements(DividendRef(99))
    with pytest.raises(NotFoundError):
        await engine.resolve_entitlements(PredictionRef("PTT", date(2025, 6, 10)))


@pytest.mark.asyncio
async def test_failure_rolls_back_and_leaves_declaration_pending(database, seed):
    await seed(_stock(), _declaration(), _txn(date(2025, 3, 1), TransactionType.BUY, 1000))

    class BrokenPositions:
        def __init__(self, session):
            self.session = session

        async def holders_of(self, symbol):
            return ["u1"]

        async def shares_held_on(self, user_id, symbol, as_of):
            raise RuntimeError("transaction store unavailable")

    engine = _engine(database, positions=BrokenPositions)
    with pytest.raises(RuntimeError):
        await engine.resolve_entitlements(DividendRef(1))

    assert await _declaration_status(database) == CalculationStatus.PENDING
    assert await _count(database, DividendEntitlement) == 0


@pytest.mark.asyncio
async def test_single_user_refresh_does_not_complete_declaration(database, seed):
    await seed(
        _stock(),
        _declaration(),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
        _txn(date(2025, 3, 1), TransactionType.BUY, 300, user="u2"),
    )
    engine = _engine(database)

    records = await engine.resolve_entitlements(DividendRef(1), user_id="u2")

    assert [record.user_id for record in records] == ["u2"]
    assert await _declaration_status(database) == CalculationStatus.PENDING
    assert await _count(database, DividendEntitlement) == 1


@pytest.mark.asyncio
async def test_prediction_entitlement_removed_when_position_closed(database, seed):
    ex_date = date(2025, 6, 10)
    await seed(
        _stock(),
        _prediction(ex_date, date(2025, 6, 11)),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
    )
    engine = _engine(database)

    records = await engine.resolve_entitlements(PredictionRef("ptt", ex_date))
    assert records[0].status == EntitlementStatus.PREDICTED
    assert records[0].predicted_symbol == "PTT"
    assert records[0].gross_dividend == Decimal("1000")
    assert await _count(database, TaxCredit) == 1

    await seed(_txn(date(2025, 6, 1), TransactionType.SELL, 1000))
    assert await engine.resolve_entitlements(PredictionRef("PTT", ex_date)) == []

    assert await _count(database, DividendEntitlement) == 0
    assert await _count(database, TaxCredit) == 0


@pytest.mark.asyncio
async def test_declaration_confirms_existing_prediction(database, seed):
    await seed(
        _stock(),
        _declaration(),
        _prediction(date(2025, 3, 10), date(2025, 3, 11), dps="1.5"),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
    )
    engine = _engine(database)
    predicted = await engine.resolve_entitlements(PredictionRef("PTT", date(2025, 3, 10)))

    confirmed = await engine.resolve_entitlements(DividendRef(1))

    assert confirmed[0].id == predicted[0].id
    assert confirmed[0].status == EntitlementStatus.CONFIRMED
    assert confirmed[0].dividend_id == 1
    assert confirmed[0].predicted_symbol is None
    assert confirmed[0].gross_dividend == Decimal("2000")
    assert await _count(database, DividendEntitlement) == 1
    assert await _count(database, TaxCredit) == 1


@pytest.mark.asyncio
async def test_tax_credit_failure_keeps_entitlement(database, seed):
    await seed(_stock(corporate_tax_rate=None), _declaration(), _txn(date(2025, 3, 1), TransactionType.BUY, 1000))

    records = await _engine(database).resolve_entitlements(DividendRef(1))

    assert records[0].net_dividend == Decimal("1800")
    assert records[0].tax_credit_amount is None
    assert await _count(database, TaxCredit) == 0
    assert await _declaration_status(database) == CalculationStatus.COMPLETED


@pytest.mark.asyncio
async def test_release_stuck_declaration(database, seed):
    await seed(
        _stock(),
        _declaration(
            calculation_status=CalculationStatus.PROCESSING,
            processing_started_at=NOW - timedelta(hours=2),
        ),
        _declaration(
            id=2,
            calculation_status=CalculationStatus.PROCESSING,
            processing_started_at=NOW - timedelta(minutes=5),
        ),
        _declaration(id=3),
    )
    engine = _engine(database)

    with pytest.raises(ConflictError):
        await engine.resolve_entitlements(DividendRef(1))
    assert await engine.release_stuck_declaration(1) is True
    assert await _declaration_status(database, 1) == CalculationStatus.PENDING

    assert await engine.release_stuck_declaration(2) is False
    assert await engine.release_stuck_declaration(2, force=True) is True

    with pytest.raises(ConflictError):
        await engine.release_stuck_declaration(3)


@pytest.mark.asyncio
async def test_refresh_for_trade_prefers_declaration_over_prediction(database, seed):
    await seed(
        _stock(),
        _declaration(ex_dividend_date=date(2025, 3, 20), record_date=date(2025, 3, 21)),
        _prediction(date(2025, 3, 15), date(2025, 3, 16)),
        _txn(date(2025, 3, 3), TransactionType.BUY, 100),
    )

    records = await _engine(database).refresh_for_trade("u1", "PTT", date(2025, 3, 3))

    assert [record.dividend_id for record in records] == [1]
    assert await _declaration_status(database) == CalculationStatus.PENDING


@pytest.mark.asyncio
async def test_estimate_benefit(database, seed):
    await seed(
        _stock(),
        _stock(symbol="BOI", name="Promoted PCL", boi_support=True),
        _declaration(),
        DividendPrediction(
            symbol="BOI",
            predicted_ex_date=date(2025, 5, 1),
            predicted_dps=Decimal("0.5"),
            confidence=0.6,
        ),
    )
    engine = _engine(database)

    actual = await engine.estimate_benefit("PTT", date(2025, 3, 3), 1000)
    assert actual.type == "ACTUAL"
    assert actual.gross_dividend == Decimal("2000")
    assert actual.net_dividend == Decimal("1800")
    assert actual.tax_credit == Decimal("500")

    promoted = await engine.estimate_benefit("BOI", date(2025, 3, 3), 1000)
    assert promoted.type == "PREDICTED"
    assert promoted.gross_dividend == Decimal("500")
    assert promoted.tax_credit == 0

    assert await engine.estimate_benefit("PTT", date(2025, 3, 10), 1000) is None


@pytest.mark.asyncio
async def test_upsert_prediction_refreshes_existing_row(database):
    async with database.session() as session:
        await upsert_prediction(session, symbol="ptt", predicted_ex_date="2025-06-10", predicted_dps=Decimal("1"))
        await upsert_prediction(
            session, symbol="PTT", predicted_ex_date=date(2025, 6, 10), predicted_dps=Decimal("1.25"), confidence=0.9
        )
        await session.commit()

    async with database.session() as session:
        rows = (await session.execute(select(DividendPrediction))).scalars().all()
    assert len(rows) == 1
    assert Decimal(str(rows[0].predicted_dps)) == Decimal("1.25")
    assert rows[0].confidence == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_list_entitlements_newest_payment_first(database, seed):
    ex_date = date(2025, 6, 10)
    await seed(
        _stock(),
        _declaration(),
        _prediction(ex_date, date(2025, 6, 11)),
        _txn(date(2025, 3, 1), TransactionType.BUY, 1000),
    )
    engine = _engine(database)
    await engine.resolve_entitlements(DividendRef(1))
    await engine.resolve_entitlements(PredictionRef("PTT", ex_date))

    records = await engine.list_entitlements("u1")

    assert [record.dividend_id for record in records] == [None, 1]
    assert [record.status for record in records] == [EntitlementStatus.PREDICTED, EntitlementStatus.CONFIRMED]
    assert records[1].tax_credit_amount == Decimal("500")
    assert await engine.list_entitlements("u2") == []
