from pydantic import BaseModel, Field, field_validator

from tokenmarket.core.amounts import check_precision


class AssetApprovalRequest(BaseModel):
    asset_contract: str = Field(..., min_length=1, max_length=66)
    operator: str | None = None  # defaults to the marketplace custody id
    approved: bool = True


class AssetApprovalResponse(BaseModel):
    asset_contract: str
    owner: str
    operator: str
    approved: bool


class AssetBalanceResponse(BaseModel):
    asset_contract: str
    token_id: str
    holder: str
    balance: int


class CurrencyApproveRequest(BaseModel):
    currency: str = Field(..., min_length=1, max_length=66)
    spender: str | None = None  # defaults to the marketplace custody id
    amount: float = Field(..., ge=0)

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: float) -> float:
        return check_precision(v)


class CurrencyAllowanceResponse(BaseModel):
    currency: str
    owner: str
    spender: str
    amount: float


class CurrencyBalanceResponse(BaseModel):
    currency: str
    holder: str
    balance: float
