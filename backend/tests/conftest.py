import asyncio
import inspect
import pathlib
import sys
from datetime import date
from decimal import Decimal

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dividend_ledger.core.errors import ProviderRateLimitError  # noqa: E402
from dividend_ledger.db.session import Database  # noqa: E402
from dividend_ledger.providers.yahoo import ProviderBar, ProviderDividend  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            argnames = pyfuncitem._fixtureinfo.argnames
            loop.run_until_complete(test_function(**{name: pyfuncitem.funcargs[name] for name in argnames}))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


def bar(day: date, close: str, volume: int | None = 1000) -> ProviderBar:
    value = Decimal(close)
    return ProviderBar(trading_date=day, open=value, high=value, low=value, close=value, volume=volume)


class StubProvider:
    """In-memory price provider that records every window it is asked for."""

    def __init__(self, bars: list[ProviderBar] | None = None) -> None:
        self.bars = {item.trading_date: item for item in bars or []}
        self.dividends: list[ProviderDividend] = []
        self.calls: list[tuple[str, date, date]] = []
        self.rate_limit_from_call: int | None = None

    async def fetch(self, symbol: str, start: date, end: date) -> list[ProviderBar]:
        self.calls.append((symbol, start, end))
        if self.rate_limit_from_call is not None and len(self.calls) >= self.rate_limit_from_call:
            raise ProviderRateLimitError("Too Many Requests")
        return [self.bars[day] for day in sorted(self.bars) if start <= day <= end]

    async def fetch_dividends(self, symbol: str, start: date, end: date) -> list[ProviderDividend]:
        return [item for item in self.dividends if start <= item.ex_date <= end]


@pytest.fixture
def database(tmp_path: pathlib.Path) -> Database:
    db = Database(url=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")

    async def _prepare() -> None:
        await db.create_all()
        await db.dispose()

    asyncio.run(_prepare())
    return db


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def seed(database: Database):
    async def _seed(*rows) -> None:
        async with database.session() as session:
            session.add_all(rows)
            await session.commit()

    return _seed
