"""Dividend imputation tax credit calculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dividend_ledger.core.errors import NotFoundError, ValidationError
from dividend_ledger.db.base import quantize_amount
from dividend_ledger.models import DividendDeclaration, DividendEntitlement, DividendPrediction, Stock, TaxCredit

logger = logging.getLogger(__name__)

ONE = Decimal("1")


@dataclass(frozen=True)
class TaxCreditAmounts:
    tax_credit_amount: Decimal
    taxable_income: Decimal


def credit(gross: Decimal, corporate_tax_rate: Decimal | None) -> TaxCreditAmounts:
    """Return the credit ``gross * T / (1 - T)`` and the grossed-up taxable income."""

    if corporate_tax_rate is None:
        raise ValidationError("Corporate tax rate is not available")
    rate = Decimal(str(corporate_tax_rate))
    if not 0 < rate < 1:
        raise ValidationError(f"Corporate tax rate {rate} must be between 0 and 1")
    gross = Decimal(str(gross))
    amount = quantize_amount(gross * rate / (ONE - rate))
    return TaxCreditAmounts(tax_credit_amount=amount, taxable_income=gross + amount)


async def _entitlement_context(
    session: AsyncSession, entitlement: DividendEntitlement
) -> tuple[Stock | None, date | None]:
    """Return the issuer and the payment date backing ``entitlement``."""

    if entitlement.dividend_id is not None:
        declaration = await session.get(DividendDeclaration, entitlement.dividend_id)
        if declaration is None:
            return None, None
        return await session.get(Stock, declaration.symbol), declaration.payment_date

    prediction = (
        await session.execute(
            select(DividendPrediction).where(
                DividendPrediction.symbol == entitlement.predicted_symbol,
                DividendPrediction.predicted_ex_date == entitlement.predicted_ex_date,
            )
        )
    ).scalar_one_or_none()
    payment_date = prediction.predicted_payment_date if prediction is not None else None
    return await session.get(Stock, entitlement.predicted_symbol), payment_date


async def apply_tax_credit(session: AsyncSession, entitlement: DividendEntitlement) -> TaxCredit:
    """Upsert the tax credit row of ``entitlement`` inside the caller's transaction.

    Raises ``ValidationError`` when the issuer's rate is unknown or invalid, in
    which case nothing is written.
    """

    stock, payment_date = await _entitlement_context(session, entitlement)
    rate = stock.corporate_tax_rate if stock is not None else None
    amounts = credit(Decimal(str(entitlement.gross_dividend)), rate)
    tax_year = payment_date.year if payment_date is not None else date.today().year

    row = (
        await session.execute(select(TaxCredit).where(TaxCredit.entitlement_id == entitlement.id))
    ).scalar_one_or_none()
    if row is None:
        row = TaxCredit(entitlement_id=entitlement.id)
        session.add(row)
    row.user_id = entitlement.user_id
    row.tax_year = tax_year
    row.corporate_tax_rate = Decimal(str(rate))
    row.tax_credit_amount = amounts.tax_credit_amount
    row.taxable_income = amounts.taxable_income
    await session.flush()
    logger.debug(
        "Tax credit for entitlement %s: %s (taxable %s)",
        entitlement.id,
        amounts.tax_credit_amount,
        amounts.taxable_income,
    )
    return row


class TaxCreditService:
    """Standalone ``calculate_tax_credit`` operation in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def calculate(self, entitlement_id: int) -> TaxCredit:
        async with self._session_factory() as session, session.begin():
            entitlement = (
                await session.execute(
                    select(DividendEntitlement)
                    .where(DividendEntitlement.id == entitlement_id)
                )
            ).scalar_one_or_none()
            if entitlement is None:
                raise NotFoundError(f"Entitlement {entitlement_id} not found")
            return await apply_tax_credit(session, entitlement)


__all__ = ["TaxCreditAmounts", "TaxCreditService", "apply_tax_credit", "credit"]
