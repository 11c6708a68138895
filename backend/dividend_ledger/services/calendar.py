"""Calendar helpers for gap detection over daily price series."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator

from dividend_ledger.core.errors import ValidationError

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def normalize_date(value: date | datetime | str) -> date:
    """Return a timezone-free calendar date for any ingested date-like value.

    Aware datetimes are converted to UTC before the date is taken so that the
    same instant always lands on the same day.
    """

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return normalize_date(datetime.fromisoformat(value.strip()))
        except ValueError as exc:
            raise ValidationError(f"Invalid date {value!r}. Please use YYYY-MM-DD.") from exc
    raise ValidationError(f"Unsupported date value {value!r}")


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += ONE_DAY


def find_missing_ranges(
    start: date,
    end: date,
    covered: set[date],
    holidays: set[date],
    today: date,
) -> list[DateRange]:
    """Coalesce the uncovered trading weekdays of ``[start, end]`` into ranges.

    Today's bar is presumed incomplete and never counts as missing; days after
    today cannot have bars yet and are ignored.
    """

    ranges: list[DateRange] = []
    run_start: date | None = None
    run_end: date | None = None
    for day in iter_days(start, min(end, today)):
        missing = not (is_weekend(day) or day in holidays or day in covered or day == today)
        if missing:
            if run_start is None:
                run_start = day
            run_end = day
        elif run_start is not None and not is_weekend(day):
            ranges.append(DateRange(run_start, run_end))
            run_start = run_end = None
    if run_start is not None:
        ranges.append(DateRange(run_start, run_end))
    return ranges


def split_range(span: DateRange, max_days: int) -> list[DateRange]:
    """Split ``span`` into consecutive chunks of at most ``max_days`` calendar days."""

    if max_days < 1:
        raise ValueError("max_days must be positive")
    chunks: list[DateRange] = []
    cursor = span.start
    while cursor <= span.end:
        chunk_end = min(cursor + timedelta(days=max_days - 1), span.end)
        chunks.append(DateRange(cursor, chunk_end))
        cursor = chunk_end + ONE_DAY
    return chunks


__all__ = [
    "DateRange",
    "normalize_date",
    "is_weekend",
    "iter_days",
    "find_missing_ranges",
    "split_range",
]
