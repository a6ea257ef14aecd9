from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String

from tokenmarket.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class ListingType:
    DIRECT = "direct"
    AUCTION = "auction"

    ALL = (DIRECT, AUCTION)


class TokenType:
    ERC1155 = "erc1155"  # fungible-multi: any quantity
    ERC721 = "erc721"  # non-fungible: exactly one unit

    ALL = (ERC1155, ERC721)


class Listing(Base):
    """One seller's escrowed lot of a single asset, sold directly or by auction."""

    __tablename__ = "listings"

    # Monotonically assigned listing id
    id = Column(Integer, primary_key=True, autoincrement=True)
    token_owner = Column(String(64), nullable=False)
    asset_contract = Column(String(66), nullable=False)
    token_id = Column(String(78), nullable=False)
    token_type = Column(String(10), nullable=False, default=TokenType.ERC1155)

    # Window, unix seconds: [start_time, end_time)
    start_time = Column(Integer, nullable=False)
    end_time = Column(Integer, nullable=False)

    # Remaining escrowed quantity; zeroed on close/cancel, never increased
    quantity = Column(Integer, nullable=False)
    currency = Column(String(66), nullable=False)
    reserve_price_per_token = Column(Numeric(18, 6), nullable=False, default=0)
    buyout_price_per_token = Column(Numeric(18, 6), nullable=False, default=0)
    listing_type = Column(String(10), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_listing_quantity_nonneg"),
        Index("idx_listings_owner", "token_owner"),
        Index("idx_listings_type", "listing_type"),
        Index("idx_listings_asset", "asset_contract", "token_id"),
    )

    def snapshot(self) -> dict:
        """Plain-dict copy of the listing, embedded in event payloads."""
        return {
            "listing_id": self.id,
            "token_owner": self.token_owner,
            "asset_contract": self.asset_contract,
            "token_id": self.token_id,
            "token_type": self.token_type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "quantity": self.quantity,
            "currency": self.currency,
            "reserve_price_per_token": str(self.reserve_price_per_token),
            "buyout_price_per_token": str(self.buyout_price_per_token),
            "listing_type": self.listing_type,
        }
