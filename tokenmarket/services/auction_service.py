"""Auction settlement: bid placement and the two-sided close.

An auction listing has no stored status. Its phase is derived from the
window and from two zero-sentinels that are cleared independently:

* ``Listing.quantity`` -- non-zero until the creator's side is settled
  (payout pushed, or the unsold lot returned) or the auction is cancelled.
* ``Offer.quantity_wanted`` -- non-zero until the winning bidder has
  received the lot.

Either the creator or the winning bidder may call ``close_auction`` once the
window has ended. Each call evaluates the legs that belong to the caller: the
creator collects the payout (or the unsold lot), the winning bidder collects
the lot. The two sides settle exactly once each in whichever order the calls
arrive. A buyout settles both legs inside ``offer``. Each sentinel is
zeroed and flushed before the push it guards, and the whole call runs in a
single transaction.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.config import settings
from tokenmarket.core.amounts import to_decimal
from tokenmarket.core.clock import unix_now
from tokenmarket.core.exceptions import (
    AuctionNotEndedError,
    BidTooLowError,
    CallerNotPermittedError,
    InvalidListingTypeError,
    InvalidQuantityError,
    NothingToCancelError,
    WindowViolationError,
)
from tokenmarket.database import atomic, is_sqlite_session
from tokenmarket.models.listing import Listing, ListingType
from tokenmarket.models.market_event import MarketEvent, MarketEventType
from tokenmarket.models.offer import Offer
from tokenmarket.services import escrow_service, event_service, listing_service
from tokenmarket.services.access_guard import is_creator, is_winning_bidder
from tokenmarket.services.time_window import is_after_end, is_before_start, is_within_window

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers (private)
# ---------------------------------------------------------------------------

async def _get_offer(db: AsyncSession, listing_id: int, *, lock: bool = False) -> Offer | None:
    query = select(Offer).where(Offer.listing_id == listing_id)
    if lock and not is_sqlite_session(db):
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


def _require_auction(listing: Listing) -> None:
    if listing.listing_type != ListingType.AUCTION:
        raise InvalidListingTypeError("Market: listing is not an auction.")


def _improves_on(new_amount: Decimal, current_amount: Decimal) -> bool:
    if settings.bid_improvement_policy == "inclusive":
        return new_amount >= current_amount
    return new_amount > current_amount


async def _settle(
    db: AsyncSession,
    listing: Listing,
    offer: Offer | None,
    closer: str,
    now: int,
    *,
    creator_side: bool = True,
    bidder_side: bool = True,
) -> tuple[bool, bool, MarketEvent | None]:
    """Run the requested settlement legs that are still pending.

    Returns (creator_leg, bidder_leg, event).
    """
    creator_leg = False
    bidder_leg = False
    winning_bidder = offer.offeror if offer is not None else None
    winning_bid = to_decimal(offer.offer_amount) if offer is not None else Decimal("0")

    # Creator leg: pay out the winning bid, or hand back an unsold lot.
    if creator_side and listing.quantity != 0:
        lot = listing.quantity
        payout = winning_bid
        listing.quantity = 0
        listing.end_time = now
        if offer is not None:
            offer.offer_amount = Decimal("0")
        await db.flush()

        if offer is not None:
            await escrow_service.push_currency(
                db, listing.currency, listing.token_owner, payout,
                listing_id=listing.id, tx_type="payout",
            )
        else:
            await escrow_service.push_asset(
                db, listing.asset_contract, listing.token_id, listing.token_owner, lot,
                listing_id=listing.id, tx_type="refund",
            )
        creator_leg = True
        logger.info(
            "Auction %s creator leg settled: %s %s to %s (closer=%s)",
            listing.id,
            payout if offer is not None else lot,
            listing.currency if offer is not None else "units returned",
            listing.token_owner,
            closer,
        )

    # Bidder leg: deliver the lot to the winning bidder.
    if bidder_side and offer is not None and offer.quantity_wanted != 0:
        delivered = offer.quantity_wanted
        offer.quantity_wanted = 0
        await db.flush()

        await escrow_service.push_asset(
            db, listing.asset_contract, listing.token_id, offer.offeror, delivered,
            listing_id=listing.id, tx_type="escrow_out",
        )
        bidder_leg = True
        logger.info(
            "Auction %s bidder leg settled: %s x %s#%s to %s (closer=%s)",
            listing.id, delivered, listing.asset_contract, listing.token_id,
            offer.offeror, closer,
        )

    if not (creator_leg or bidder_leg):
        return False, False, None

    event = await event_service.record_event(
        db,
        MarketEventType.AUCTION_CLOSED,
        listing_id=listing.id,
        actor_id=closer,
        payload={
            "closer": closer,
            "creator": listing.token_owner,
            "winning_bidder": winning_bidder,
            "winning_bid": str(winning_bid),
            "creator_leg_settled": creator_leg,
            "bidder_leg_settled": bidder_leg,
            "listing": listing.snapshot(),
        },
    )
    return creator_leg, bidder_leg, event


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def get_winning_bid(db: AsyncSession, listing_id: int) -> Offer | None:
    """The stored winning bid for an auction listing, if any bid was ever placed."""
    listing = await listing_service.get_listing(db, listing_id)
    _require_auction(listing)
    return await _get_offer(db, listing_id)


async def offer(
    db: AsyncSession,
    bidder: str,
    listing_id: int,
    quantity_wanted: int,
    offer_amount: float | str | Decimal,
    now: int | None = None,
) -> dict:
    """Place a bid on an auction listing.

    A bid always covers the whole escrowed lot. The displaced winning bid,
    if any, is refunded before the new amount is escrowed, in the same
    transaction. A bid at or above the buyout price ends the auction and
    settles both legs immediately.
    """
    now = unix_now() if now is None else now
    amount = to_decimal(offer_amount)
    events: list[MarketEvent] = []

    async with atomic(db):
        listing = await listing_service.get_listing(db, listing_id, lock=True)
        _require_auction(listing)
        if not is_within_window(listing, now):
            raise WindowViolationError("Market: can only make offers during the auction window.")
        if listing.quantity == 0 or quantity_wanted <= 0 or quantity_wanted > listing.quantity:
            raise InvalidQuantityError(
                f"Market: invalid quantity wanted {quantity_wanted}; {listing.quantity} listed."
            )

        lot = listing.quantity
        reserve = to_decimal(listing.reserve_price_per_token)
        if amount < reserve * lot:
            raise BidTooLowError("Market: offer is below the reserve price.")

        current = await _get_offer(db, listing_id, lock=True)
        has_live_bid = current is not None and current.quantity_wanted > 0
        if has_live_bid and not _improves_on(amount, to_decimal(current.offer_amount)):
            raise BidTooLowError("Market: offer must improve on the winning bid.")

        displaced_offeror = current.offeror if has_live_bid else None
        displaced_amount = to_decimal(current.offer_amount) if has_live_bid else Decimal("0")

        if current is None:
            current = Offer(listing_id=listing.id)
            db.add(current)
        current.offeror = bidder
        current.quantity_wanted = lot
        current.offer_amount = amount
        await db.flush()

        # Displaced bid goes back before the new amount is pulled.
        if displaced_offeror is not None:
            await escrow_service.push_currency(
                db, listing.currency, displaced_offeror, displaced_amount,
                listing_id=listing.id, tx_type="refund",
            )
        await escrow_service.pull_currency(
            db, listing.currency, bidder, amount,
            listing_id=listing.id, tx_type="escrow_in",
        )

        events.append(await event_service.record_event(
            db,
            MarketEventType.NEW_OFFER,
            listing_id=listing.id,
            actor_id=bidder,
            payload={
                "offeror": bidder,
                "quantity_wanted": lot,
                "offer_amount": str(amount),
                "displaced_offeror": displaced_offeror,
                "displaced_amount": str(displaced_amount),
            },
        ))

        buyout = to_decimal(listing.buyout_price_per_token)
        bought_out = buyout > 0 and amount >= buyout * lot
        if bought_out:
            listing.end_time = now
            _, _, close_event = await _settle(db, listing, current, bidder, now)
            if close_event is not None:
                events.append(close_event)

    logger.info(
        "Offer on listing %s: %s bid %s %s%s",
        listing.id, bidder, amount, listing.currency,
        f" (refunded {displaced_amount} to {displaced_offeror})" if displaced_offeror else "",
    )
    if bought_out:
        logger.info("Listing %s bought out by %s at %s", listing.id, bidder, amount)
    await event_service.notify(events)

    return {
        "offer": current,
        "refunded_offeror": displaced_offeror,
        "refunded_amount": displaced_amount,
        "bought_out": bought_out,
    }


async def close_auction(
    db: AsyncSession,
    caller: str,
    listing_id: int,
    now: int | None = None,
) -> dict:
    """Cancel an auction before it starts, or settle whichever legs remain after it ends.

    Raises:
        ListingNotFoundError: unknown listing.
        InvalidListingTypeError: the listing is a direct listing.
        CallerNotPermittedError: caller may not cancel, or is neither creator nor winning bidder.
        NothingToCancelError: before start, but already cancelled or bid on.
        AuctionNotEndedError: the window is still open.
    """
    now = unix_now() if now is None else now
    event: MarketEvent | None = None
    creator_leg = bidder_leg = False

    async with atomic(db):
        listing = await listing_service.get_listing(db, listing_id, lock=True)
        _require_auction(listing)
        current = await _get_offer(db, listing_id, lock=True)

        if is_before_start(listing, now):
            if not is_creator(listing, caller):
                raise CallerNotPermittedError("Market: caller is not the listing creator.")
            if listing.quantity == 0 or (current is not None and current.quantity_wanted > 0):
                raise NothingToCancelError()

            lot = listing.quantity
            listing.quantity = 0
            listing.end_time = now
            await db.flush()

            await escrow_service.push_asset(
                db, listing.asset_contract, listing.token_id, listing.token_owner, lot,
                listing_id=listing.id, tx_type="refund",
            )
            event = await event_service.record_event(
                db,
                MarketEventType.AUCTION_CANCELLED,
                listing_id=listing.id,
                actor_id=caller,
                payload={"returned_quantity": lot, "listing": listing.snapshot()},
            )
            outcome = "cancelled"
        else:
            if not (is_creator(listing, caller) or is_winning_bidder(listing, current, caller)):
                raise CallerNotPermittedError("Market: must be bidder or auction creator.")
            if not is_after_end(listing, now):
                raise AuctionNotEndedError()

            creator_leg, bidder_leg, event = await _settle(
                db, listing, current, caller, now,
                creator_side=is_creator(listing, caller),
                bidder_side=is_winning_bidder(listing, current, caller),
            )
            outcome = "settled" if event is not None else "noop"

    if outcome == "cancelled":
        logger.info("Auction %s cancelled by %s before start", listing.id, caller)
    elif outcome == "noop":
        logger.info("Auction %s close by %s: nothing left to settle", listing.id, caller)
    if event is not None:
        await event_service.notify([event])

    return {
        "listing": listing,
        "outcome": outcome,
        "creator_leg_settled": creator_leg,
        "bidder_leg_settled": bidder_leg,
    }
