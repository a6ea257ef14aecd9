from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.auth import get_current_account_id
from tokenmarket.core.clock import Clock, get_clock
from tokenmarket.database import get_db
from tokenmarket.schemas.listing import (
    ListingCreateRequest,
    ListingListResponse,
    ListingResponse,
)
from tokenmarket.services import listing_service

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", response_model=ListingResponse, status_code=201)
async def create_listing(
    req: ListingCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
    clock: Clock = Depends(get_clock),
):
    listing = await listing_service.create_listing(db, current_account, req, now=clock())
    return ListingResponse.model_validate(listing)


@router.get("", response_model=ListingListResponse)
async def list_listings(
    creator: str | None = Query(None),
    listing_type: str | None = Query(None, pattern="^(direct|auction)$"),
    active_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    listings, total = await listing_service.list_listings(
        db,
        creator=creator,
        listing_type=listing_type,
        active_only=active_only,
        now=clock(),
        page=page,
        page_size=page_size,
    )
    return ListingListResponse(
        total=total,
        page=page,
        page_size=page_size,
        results=[ListingResponse.model_validate(listing) for listing in listings],
    )


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
):
    listing = await listing_service.get_listing(db, listing_id)
    return ListingResponse.model_validate(listing)
