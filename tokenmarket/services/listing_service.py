import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.amounts import to_decimal
from tokenmarket.core.clock import unix_now
from tokenmarket.core.exceptions import (
    InvalidListingTypeError,
    InvalidQuantityError,
    ListingNotFoundError,
)
from tokenmarket.database import atomic, is_sqlite_session
from tokenmarket.models.listing import Listing, ListingType, TokenType
from tokenmarket.models.market_event import MarketEventType
from tokenmarket.schemas.listing import ListingCreateRequest
from tokenmarket.services import escrow_service, event_service

logger = logging.getLogger(__name__)


async def create_listing(
    db: AsyncSession,
    creator: str,
    params: ListingCreateRequest,
    now: int | None = None,
) -> Listing:
    """Create a listing and escrow the full quantity immediately.

    The window is ``[now + seconds_until_start_time, start + seconds_until_end_time)``
    for both listing types.
    """
    now = unix_now() if now is None else now

    if params.quantity_to_list <= 0:
        raise InvalidQuantityError("Market: must list at least one token.")
    if params.token_type == TokenType.ERC721 and params.quantity_to_list != 1:
        raise InvalidQuantityError("Market: non-fungible listings must list exactly one token.")
    if params.listing_type not in ListingType.ALL:
        raise InvalidListingTypeError(f"Market: unknown listing type '{params.listing_type}'.")

    start_time = now + params.seconds_until_start_time
    end_time = start_time + params.seconds_until_end_time

    async with atomic(db):
        listing = Listing(
            token_owner=creator,
            asset_contract=params.asset_contract,
            token_id=params.token_id,
            token_type=params.token_type,
            start_time=start_time,
            end_time=end_time,
            quantity=params.quantity_to_list,
            currency=params.currency_to_accept,
            reserve_price_per_token=to_decimal(params.reserve_price_per_token),
            buyout_price_per_token=to_decimal(params.buyout_price_per_token),
            listing_type=params.listing_type,
        )
        db.add(listing)
        await db.flush()

        await escrow_service.pull_asset(
            db,
            listing.asset_contract,
            listing.token_id,
            creator,
            listing.quantity,
            listing_id=listing.id,
        )
        event = await event_service.record_event(
            db,
            MarketEventType.LISTING_CREATED,
            listing_id=listing.id,
            actor_id=creator,
            payload={"listing": listing.snapshot()},
        )

    logger.info(
        "Listing %s created: %s %s x %s#%s by %s, window [%s, %s)",
        listing.id, listing.listing_type, listing.quantity,
        listing.asset_contract, listing.token_id, creator, start_time, end_time,
    )
    await event_service.notify([event])
    return listing


async def get_listing(db: AsyncSession, listing_id: int, *, lock: bool = False) -> Listing:
    """Get a listing by ID or raise 404.

    ``lock=True`` loads the row ``FOR UPDATE`` (PostgreSQL only).
    """
    query = select(Listing).where(Listing.id == listing_id)
    if lock and not is_sqlite_session(db):
        query = query.with_for_update()
    result = await db.execute(query)
    listing = result.scalar_one_or_none()
    if not listing:
        raise ListingNotFoundError(listing_id)
    return listing


async def list_listings(
    db: AsyncSession,
    creator: str | None = None,
    listing_type: str | None = None,
    active_only: bool = False,
    now: int | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Listing], int]:
    """List listings with optional filters, newest first."""
    filters = []
    if creator:
        filters.append(Listing.token_owner == creator)
    if listing_type:
        filters.append(Listing.listing_type == listing_type)
    if active_only:
        now = unix_now() if now is None else now
        filters.append(Listing.quantity > 0)
        filters.append(Listing.end_time > now)

    query = select(Listing).where(*filters)
    count_query = select(func.count(Listing.id)).where(*filters)

    total = (await db.execute(count_query)).scalar() or 0
    query = query.order_by(Listing.id.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total
