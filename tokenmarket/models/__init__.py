from tokenmarket.models.listing import Listing, ListingType, TokenType
from tokenmarket.models.offer import Offer
from tokenmarket.models.ledger import (
    AssetBalance,
    AssetOperatorApproval,
    CurrencyAllowance,
    CurrencyBalance,
    LedgerEntry,
)
from tokenmarket.models.market_event import MarketEvent, MarketEventType

__all__ = [
    "Listing",
    "ListingType",
    "TokenType",
    "Offer",
    "AssetBalance",
    "AssetOperatorApproval",
    "CurrencyAllowance",
    "CurrencyBalance",
    "LedgerEntry",
    "MarketEvent",
    "MarketEventType",
]
