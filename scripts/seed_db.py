"""Seed a local marketplace with demo balances, approvals and two listings.

Prints a bearer token per demo account so the API can be driven by hand.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tokenmarket.core.auth import create_access_token
from tokenmarket.database import async_session, dispose_engine, init_db
from tokenmarket.schemas.listing import ListingCreateRequest
from tokenmarket.services import (
    asset_ledger_service,
    currency_ledger_service,
    escrow_service,
    listing_service,
)

ASSET = "0xPACKS"
CURRENCY = "0xCOIN"
SELLER = "seller_01"
BIDDERS = ["bidder_01", "bidder_02"]


async def seed(auction_seconds: int) -> None:
    await init_db()
    custody = escrow_service.custody_id()

    async with async_session() as db:
        print("=== Seeding token marketplace ===\n")

        await asset_ledger_service.mint(db, ASSET, "0", SELLER, 100)
        await asset_ledger_service.mint(db, ASSET, "1", SELLER, 10)
        await asset_ledger_service.set_approval_for_all(db, ASSET, SELLER, custody, True)
        print(f"  {SELLER}: 100 x {ASSET}#0, 10 x {ASSET}#1, marketplace approved")

        for bidder in BIDDERS:
            await currency_ledger_service.mint(db, CURRENCY, bidder, 1000)
            await currency_ledger_service.approve(db, CURRENCY, bidder, custody, 1000)
            print(f"  {bidder}: 1000 {CURRENCY}, marketplace allowance 1000")

        auction = await listing_service.create_listing(
            db,
            SELLER,
            ListingCreateRequest(
                asset_contract=ASSET,
                token_id="0",
                seconds_until_start_time=0,
                seconds_until_end_time=auction_seconds,
                quantity_to_list=100,
                currency_to_accept=CURRENCY,
                reserve_price_per_token=1,
                buyout_price_per_token=2,
                listing_type="auction",
            ),
        )
        direct = await listing_service.create_listing(
            db,
            SELLER,
            ListingCreateRequest(
                asset_contract=ASSET,
                token_id="1",
                seconds_until_end_time=7 * 24 * 3600,
                quantity_to_list=10,
                currency_to_accept=CURRENCY,
                buyout_price_per_token=5,
                listing_type="direct",
            ),
        )
        print(f"\n  Auction listing {auction.id}: window [{auction.start_time}, {auction.end_time})")
        print(f"  Direct listing {direct.id}: 10 units at 5 {CURRENCY}")

    await dispose_engine()

    print("\n  Bearer tokens:")
    for account in [SELLER, *BIDDERS]:
        print(f"    {account}: {create_access_token(account)}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the local marketplace with demo data.")
    parser.add_argument(
        "--auction-seconds",
        type=int,
        default=3600,
        help="Length of the demo auction window in seconds.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    asyncio.run(seed(args.auction_seconds))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
