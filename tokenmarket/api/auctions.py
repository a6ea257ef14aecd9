import json

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.auth import get_current_account_id
from tokenmarket.core.clock import Clock, get_clock
from tokenmarket.database import get_db
from tokenmarket.schemas.listing import ListingResponse
from tokenmarket.schemas.offer import (
    CloseAuctionResponse,
    MarketEventResponse,
    OfferCreateRequest,
    OfferResponse,
    OfferResult,
)
from tokenmarket.services import auction_service, event_service

router = APIRouter(prefix="/listings", tags=["auctions"])


@router.post("/{listing_id}/offers", response_model=OfferResult, status_code=201)
async def place_offer(
    listing_id: int,
    req: OfferCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
    clock: Clock = Depends(get_clock),
):
    result = await auction_service.offer(
        db, current_account, listing_id, req.quantity_wanted, req.offer_amount, now=clock()
    )
    return OfferResult(
        offer=OfferResponse.model_validate(result["offer"]),
        refunded_offeror=result["refunded_offeror"],
        refunded_amount=float(result["refunded_amount"]),
        bought_out=result["bought_out"],
    )


@router.get("/{listing_id}/winning-bid", response_model=OfferResponse | None)
async def get_winning_bid(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
):
    winning = await auction_service.get_winning_bid(db, listing_id)
    return OfferResponse.model_validate(winning) if winning is not None else None


@router.post("/{listing_id}/close", response_model=CloseAuctionResponse)
async def close_auction(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
    clock: Clock = Depends(get_clock),
):
    result = await auction_service.close_auction(db, current_account, listing_id, now=clock())
    return CloseAuctionResponse(
        listing_id=listing_id,
        outcome=result["outcome"],
        creator_leg_settled=result["creator_leg_settled"],
        bidder_leg_settled=result["bidder_leg_settled"],
        listing=ListingResponse.model_validate(result["listing"]),
    )


@router.get("/{listing_id}/events", response_model=list[MarketEventResponse])
async def list_listing_events(
    listing_id: int,
    event_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    events = await event_service.list_events(db, listing_id, event_type=event_type, limit=limit)
    return [
        MarketEventResponse(
            id=e.id,
            event_type=e.event_type,
            listing_id=e.listing_id,
            actor_id=e.actor_id,
            payload=json.loads(e.payload or "{}"),
            created_at=e.created_at,
        )
        for e in events
    ]
