"""SQLAlchemy base metadata and declarative registry."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase

# scale of every Numeric(18, 6) amount column
AMOUNT_SCALE = Decimal("0.000001")


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def quantize_amount(value: Decimal) -> Decimal:
    """Round ``value`` to the stored column scale so returned and re-read values agree."""

    return Decimal(value).quantize(AMOUNT_SCALE, rounding=ROUND_HALF_UP)
