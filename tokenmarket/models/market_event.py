"""Append-only record of committed market transitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from tokenmarket.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class MarketEventType:
    LISTING_CREATED = "listing_created"
    NEW_OFFER = "new_offer"
    AUCTION_CANCELLED = "auction_cancelled"
    AUCTION_CLOSED = "auction_closed"
    DIRECT_SALE = "direct_sale"


class MarketEvent(Base):
    __tablename__ = "market_events"

    id = Column(Integer, primary_key=True, autoincrement=True)  # also the event sequence number
    event_type = Column(String(30), nullable=False)
    listing_id = Column(Integer, nullable=False)
    actor_id = Column(String(64), nullable=False)
    payload = Column(Text, nullable=False, default="{}")  # JSON
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_market_event_type", "event_type"),
        Index("idx_market_event_listing", "listing_id"),
        Index("idx_market_event_created", "created_at"),
    )
