"""Fixed-price purchases from direct listings."""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.amounts import to_decimal
from tokenmarket.core.clock import unix_now
from tokenmarket.core.exceptions import (
    InsufficientListedQuantityError,
    InvalidListingTypeError,
    InvalidQuantityError,
    ListingNotFoundError,
    WindowViolationError,
)
from tokenmarket.database import atomic
from tokenmarket.models.listing import ListingType
from tokenmarket.models.market_event import MarketEventType
from tokenmarket.services import escrow_service, event_service, listing_service
from tokenmarket.services.time_window import is_within_window

logger = logging.getLogger(__name__)


async def buy(
    db: AsyncSession,
    buyer: str,
    seller: str,
    listing_id: int,
    quantity: int,
    now: int | None = None,
) -> dict:
    """Buy ``quantity`` units at the listing's price per token.

    The buyer's payment passes through custody to the seller and the units
    leave escrow for the buyer, all in one transaction.
    """
    now = unix_now() if now is None else now

    async with atomic(db):
        listing = await listing_service.get_listing(db, listing_id, lock=True)
        if listing.token_owner != seller:
            raise ListingNotFoundError(
                listing_id, f"Listing {listing_id} is not offered by {seller}"
            )
        if listing.listing_type != ListingType.DIRECT:
            raise InvalidListingTypeError("Market: listing is not a direct listing.")
        if not is_within_window(listing, now):
            raise WindowViolationError("Market: the listing is not active.")
        if quantity <= 0:
            raise InvalidQuantityError("Market: must buy at least one token.")
        if quantity > listing.quantity:
            raise InsufficientListedQuantityError(quantity, listing.quantity)

        total_price: Decimal = to_decimal(listing.buyout_price_per_token) * quantity
        listing.quantity -= quantity
        await db.flush()

        await escrow_service.pull_currency(
            db, listing.currency, buyer, total_price,
            listing_id=listing.id, tx_type="purchase",
        )
        await escrow_service.push_currency(
            db, listing.currency, seller, total_price,
            listing_id=listing.id, tx_type="payout",
        )
        await escrow_service.push_asset(
            db, listing.asset_contract, listing.token_id, buyer, quantity,
            listing_id=listing.id, tx_type="escrow_out",
        )
        event = await event_service.record_event(
            db,
            MarketEventType.DIRECT_SALE,
            listing_id=listing.id,
            actor_id=buyer,
            payload={
                "buyer": buyer,
                "seller": seller,
                "quantity": quantity,
                "total_price": str(total_price),
                "remaining_quantity": listing.quantity,
            },
        )

    logger.info(
        "Direct sale on listing %s: %s bought %s from %s for %s %s",
        listing.id, buyer, quantity, seller, total_price, listing.currency,
    )
    await event_service.notify([event])

    return {
        "listing": listing,
        "buyer": buyer,
        "seller": seller,
        "quantity": quantity,
        "total_price": total_price,
    }
