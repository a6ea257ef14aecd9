from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String

from tokenmarket.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Offer(Base):
    """The single winning bid of an auction listing.

    Overwritten in place by each better bid and never deleted. Settlement
    clears ``offer_amount`` (creator paid) and ``quantity_wanted`` (bidder
    delivered) independently.
    """

    __tablename__ = "offers"

    listing_id = Column(Integer, ForeignKey("listings.id"), primary_key=True)
    offeror = Column(String(64), nullable=False)
    quantity_wanted = Column(Integer, nullable=False, default=0)
    offer_amount = Column(Numeric(18, 6), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("quantity_wanted >= 0", name="ck_offer_quantity_nonneg"),
        CheckConstraint("offer_amount >= 0", name="ck_offer_amount_nonneg"),
    )
