"""CLI wrapper for price ledger synchronisation."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from dividend_ledger.api.dependencies import LedgerServices
from dividend_ledger.core.logging import setup_logging
from dividend_ledger.db.init import get_database, init_database


async def _run(symbols: list[str], start: date | None, end: date | None) -> None:
    database = get_database()
    await init_database(database)
    services = LedgerServices.build(database)
    try:
        if start is None or end is None:
            report = await services.sync_job.run(symbols or None)
            if report is not None:
                for symbol, count in report.synced.items():
                    print(f"{symbol}: {count} bars")
                for symbol, kind in report.failed.items():
                    print(f"{symbol}: failed ({kind})")
            return
        for symbol in symbols:
            bars = await services.synchronizer.ensure(symbol, start, end)
            print(f"{symbol.upper()}: {len(bars)} bars between {start} and {end}")
    finally:
        await services.aclose()
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Fill gaps in the local price ledger")
    parser.add_argument("symbols", nargs="*", help="Symbols to sync; defaults to every known stock")
    parser.add_argument("--from", dest="start", type=date.fromisoformat)
    parser.add_argument("--to", dest="end", type=date.fromisoformat)
    args = parser.parse_args()
    if (args.start is None) != (args.end is None):
        parser.error("--from and --to must be given together")
    if args.start is not None and not args.symbols:
        parser.error("an explicit date range needs at least one symbol")
    setup_logging()
    asyncio.run(_run(args.symbols, args.start, args.end))


if __name__ == "__main__":
    main()
