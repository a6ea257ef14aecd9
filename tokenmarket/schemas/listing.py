from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from tokenmarket.core.amounts import check_precision


class ListingCreateRequest(BaseModel):
    asset_contract: str = Field(..., min_length=1, max_length=66)
    token_id: str = Field(..., min_length=1, max_length=78)
    token_type: str = Field(default="erc1155", pattern="^(erc1155|erc721)$")
    seconds_until_start_time: int = Field(default=0, ge=0)
    seconds_until_end_time: int = Field(..., ge=0)
    quantity_to_list: int = Field(..., ge=0)
    currency_to_accept: str = Field(..., min_length=1, max_length=66)
    reserve_price_per_token: float = Field(default=0, ge=0)
    buyout_price_per_token: float = Field(default=0, ge=0)
    listing_type: str = Field(..., pattern="^(direct|auction)$")

    @field_validator("reserve_price_per_token", "buyout_price_per_token")
    @classmethod
    def _check_prices(cls, v: float) -> float:
        return check_precision(v)

    @model_validator(mode="after")
    def _check_window_and_prices(self) -> "ListingCreateRequest":
        if self.seconds_until_end_time <= 0:
            raise ValueError("seconds_until_end_time must be positive")
        if (
            self.listing_type == "auction"
            and self.buyout_price_per_token > 0
            and self.buyout_price_per_token < self.reserve_price_per_token
        ):
            raise ValueError("buyout_price_per_token cannot be below reserve_price_per_token")
        return self


class ListingResponse(BaseModel):
    id: int
    token_owner: str
    asset_contract: str
    token_id: str
    token_type: str
    start_time: int
    end_time: int
    quantity: int
    currency: str
    reserve_price_per_token: float
    buyout_price_per_token: float
    listing_type: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ListingListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    results: list[ListingResponse]
