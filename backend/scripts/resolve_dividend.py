"""CLI wrapper for dividend entitlement resolution and operator release."""

from __future__ import annotations

import argparse
import asyncio

from dividend_ledger.core.logging import setup_logging
from dividend_ledger.db.init import get_database, init_database
from dividend_ledger.services.entitlements import DividendEntitlementEngine, DividendRef


async def _run(dividend_id: int, user_id: str | None, release: bool, force: bool) -> None:
    database = get_database()
    await init_database(database)
    engine = DividendEntitlementEngine(database.session_factory)
    try:
        if release:
            released = await engine.release_stuck_declaration(dividend_id, force=force)
            print(f"Dividend {dividend_id} released: {released}")
            return
        records = await engine.resolve_entitlements(DividendRef(dividend_id), user_id=user_id)
        for record in records:
            print(
                f"{record.user_id}: {record.shares_held} shares, gross {record.gross_dividend}, "
                f"net {record.net_dividend}, tax credit {record.tax_credit_amount}"
            )
        print(f"Resolved {len(records)} entitlements for dividend {dividend_id}")
    finally:
        await database.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Resolve dividend entitlements for a declaration")
    parser.add_argument("dividend_id", type=int)
    parser.add_argument("--user", dest="user_id", help="Refresh a single user without completing the dividend")
    parser.add_argument("--release", action="store_true", help="Return a stuck PROCESSING dividend to PENDING")
    parser.add_argument("--force", action="store_true", help="Release regardless of the processing age")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.dividend_id, args.user_id, args.release, args.force))


if __name__ == "__main__":
    main()
