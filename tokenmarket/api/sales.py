from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.core.auth import get_current_account_id
from tokenmarket.core.clock import Clock, get_clock
from tokenmarket.database import get_db
from tokenmarket.schemas.listing import ListingResponse
from tokenmarket.schemas.offer import BuyRequest, BuyResponse
from tokenmarket.services import direct_sale_service

router = APIRouter(prefix="/listings", tags=["sales"])


@router.post("/{listing_id}/buy", response_model=BuyResponse)
async def buy(
    listing_id: int,
    req: BuyRequest,
    db: AsyncSession = Depends(get_db),
    current_account: str = Depends(get_current_account_id),
    clock: Clock = Depends(get_clock),
):
    result = await direct_sale_service.buy(
        db, current_account, req.seller, listing_id, req.quantity, now=clock()
    )
    return BuyResponse(
        listing_id=listing_id,
        buyer=result["buyer"],
        seller=result["seller"],
        quantity=result["quantity"],
        total_price=float(result["total_price"]),
        listing=ListingResponse.model_validate(result["listing"]),
    )
