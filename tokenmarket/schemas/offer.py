from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from tokenmarket.core.amounts import check_precision
from tokenmarket.schemas.listing import ListingResponse


class OfferCreateRequest(BaseModel):
    quantity_wanted: int = Field(..., ge=0)
    offer_amount: float = Field(..., ge=0)

    @field_validator("offer_amount")
    @classmethod
    def _check_amount(cls, v: float) -> float:
        return check_precision(v)


class OfferResponse(BaseModel):
    listing_id: int
    offeror: str
    quantity_wanted: int
    offer_amount: float
    updated_at: datetime

    model_config = {"from_attributes": True}


class OfferResult(BaseModel):
    offer: OfferResponse
    refunded_offeror: str | None = None
    refunded_amount: float = 0
    bought_out: bool = False


class CloseAuctionResponse(BaseModel):
    listing_id: int
    outcome: str  # cancelled | settled | noop
    creator_leg_settled: bool = False
    bidder_leg_settled: bool = False
    listing: ListingResponse


class BuyRequest(BaseModel):
    seller: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., ge=0)


class BuyResponse(BaseModel):
    listing_id: int
    buyer: str
    seller: str
    quantity: int
    total_price: float
    listing: ListingResponse


class MarketEventResponse(BaseModel):
    id: int
    event_type: str
    listing_id: int
    actor_id: str
    payload: dict
    created_at: datetime
