"""Bid placement: preconditions, displaced-bid refunds, improvement policy and buyout."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tokenmarket.config import settings
from tokenmarket.core.exceptions import (
    BidTooLowError,
    InvalidListingTypeError,
    InvalidQuantityError,
    ListingNotFoundError,
    TransferError,
    WindowViolationError,
)
from tokenmarket.models.market_event import MarketEvent
from tokenmarket.services import (
    asset_ledger_service,
    auction_service,
    currency_ledger_service,
    escrow_service,
)
from tokenmarket.tests.conftest import ASSET, CURRENCY, T0, TOKEN_ID

START = T0 + 100
END = T0 + 300


@pytest.fixture
async def auction(make_seller, make_auction):
    """100 units, reserve 1/unit, buyout 2/unit, window [T0+100, T0+300)."""
    await make_seller("seller", quantity=100)
    return await make_auction("seller", quantity=100, reserve=1, buyout=2, start_in=100, duration=200)


async def _balance(db, holder) -> Decimal:
    return await currency_ledger_service.balance_of(db, CURRENCY, holder)


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------

async def test_offer_unknown_listing(db: AsyncSession):
    with pytest.raises(ListingNotFoundError):
        await auction_service.offer(db, "bidder", 42, 1, 100, now=START)


async def test_offer_on_direct_listing(db: AsyncSession, make_seller, make_direct_listing, make_buyer):
    await make_seller("seller", quantity=10)
    listing = await make_direct_listing("seller")
    await make_buyer("bidder")

    with pytest.raises(InvalidListingTypeError, match="not an auction"):
        await auction_service.offer(db, "bidder", listing.id, 1, 100, now=T0 + 10)


async def test_offer_outside_window(db: AsyncSession, auction, make_buyer):
    auction_id = auction.id
    await make_buyer("bidder")

    with pytest.raises(WindowViolationError):
        await auction_service.offer(db, "bidder", auction_id, 1, 100, now=START - 1)
    with pytest.raises(WindowViolationError):
        await auction_service.offer(db, "bidder", auction_id, 1, 100, now=END)


async def test_offer_quantity_bounds(db: AsyncSession, auction, make_buyer):
    auction_id = auction.id
    await make_buyer("bidder")

    with pytest.raises(InvalidQuantityError):
        await auction_service.offer(db, "bidder", auction_id, 0, 100, now=START)
    with pytest.raises(InvalidQuantityError):
        await auction_service.offer(db, "bidder", auction_id, 101, 100, now=START)


async def test_offer_below_reserve(db: AsyncSession, auction, make_buyer):
    await make_buyer("bidder")

    with pytest.raises(BidTooLowError, match="reserve"):
        await auction_service.offer(db, "bidder", auction.id, 1, 99, now=START)


async def test_offer_without_allowance_changes_nothing(db: AsyncSession, auction, make_buyer):
    auction_id = auction.id
    await make_buyer("bidder", balance=1000, allowance=0)

    with pytest.raises(TransferError, match="requires currency allowance"):
        await auction_service.offer(db, "bidder", auction_id, 1, 100, now=START)

    assert await auction_service.get_winning_bid(db, auction_id) is None
    assert await _balance(db, "bidder") == Decimal("1000")


# ---------------------------------------------------------------------------
# Accepted bids
# ---------------------------------------------------------------------------

async def test_offer_escrows_currency_and_covers_whole_lot(db: AsyncSession, auction, make_buyer, custody):
    await make_buyer("bidder")

    result = await auction_service.offer(db, "bidder", auction.id, 1, 100, now=START)

    offer = result["offer"]
    assert offer.offeror == "bidder"
    assert offer.quantity_wanted == 100
    assert Decimal(str(offer.offer_amount)) == Decimal("100")
    assert result["refunded_offeror"] is None
    assert result["bought_out"] is False
    assert await _balance(db, "bidder") == Decimal("900")
    assert await _balance(db, custody) == Decimal("100")


async def test_replacement_bid_refunds_displaced_bidder(db: AsyncSession, auction, make_buyer, custody):
    await make_buyer("alice")
    await make_buyer("bob")

    await auction_service.offer(db, "alice", auction.id, 100, 100, now=START)
    result = await auction_service.offer(db, "bob", auction.id, 100, 150, now=START + 10)

    assert result["refunded_offeror"] == "alice"
    assert result["refunded_amount"] == Decimal("100")
    assert await _balance(db, "alice") == Decimal("1000")
    assert await _balance(db, "bob") == Decimal("850")
    # Custody holds only the live bid
    assert await _balance(db, custody) == Decimal("150")

    winning = await auction_service.get_winning_bid(db, auction.id)
    assert winning.offeror == "bob"
    assert Decimal(str(winning.offer_amount)) == Decimal("150")


async def test_bidder_can_raise_own_bid(db: AsyncSession, auction, make_buyer, custody):
    await make_buyer("alice")

    await auction_service.offer(db, "alice", auction.id, 100, 100, now=START)
    await auction_service.offer(db, "alice", auction.id, 100, 120, now=START + 1)

    assert await _balance(db, "alice") == Decimal("880")
    assert await _balance(db, custody) == Decimal("120")


async def test_raise_funded_by_own_escrowed_bid(db: AsyncSession, auction, make_buyer, custody):
    await make_buyer("alice", balance=150, allowance=1000)
    await auction_service.offer(db, "alice", auction.id, 100, 100, now=START)
    assert await _balance(db, "alice") == Decimal("50")

    result = await auction_service.offer(db, "alice", auction.id, 100, 120, now=START + 1)

    assert result["refunded_offeror"] == "alice"
    assert result["refunded_amount"] == Decimal("100")
    assert await _balance(db, "alice") == Decimal("30")
    assert await _balance(db, custody) == Decimal("120")


async def test_unaffordable_raise_keeps_previous_bid(db: AsyncSession, auction, make_buyer, custody):
    auction_id = auction.id
    await make_buyer("alice", balance=150, allowance=1000)
    await auction_service.offer(db, "alice", auction_id, 100, 100, now=START)

    with pytest.raises(TransferError, match="insufficient currency balance"):
        await auction_service.offer(db, "alice", auction_id, 100, 160, now=START + 1)

    assert await _balance(db, "alice") == Decimal("50")
    assert await _balance(db, custody) == Decimal("100")
    winning = await auction_service.get_winning_bid(db, auction_id)
    assert Decimal(str(winning.offer_amount)) == Decimal("100")


async def test_equal_bid_rejected_under_strict_policy(db: AsyncSession, auction, make_buyer):
    await make_buyer("alice")
    await make_buyer("bob")
    await auction_service.offer(db, "alice", auction.id, 100, 100, now=START)

    with pytest.raises(BidTooLowError, match="improve"):
        await auction_service.offer(db, "bob", auction.id, 100, 100, now=START + 1)
    assert await _balance(db, "bob") == Decimal("1000")


async def test_equal_bid_accepted_under_inclusive_policy(db: AsyncSession, auction, make_buyer, monkeypatch):
    monkeypatch.setattr(settings, "bid_improvement_policy", "inclusive")
    await make_buyer("alice")
    await make_buyer("bob")
    await auction_service.offer(db, "alice", auction.id, 100, 100, now=START)

    result = await auction_service.offer(db, "bob", auction.id, 100, 100, now=START + 1)

    assert result["refunded_offeror"] == "alice"
    assert await _balance(db, "alice") == Decimal("1000")


async def test_lower_bid_rejected_under_inclusive_policy(db: AsyncSession, auction, make_buyer, monkeypatch):
    monkeypatch.setattr(settings, "bid_improvement_policy", "inclusive")
    await make_buyer("alice")
    await make_buyer("bob")
    await auction_service.offer(db, "alice", auction.id, 100, 120, now=START)

    with pytest.raises(BidTooLowError):
        await auction_service.offer(db, "bob", auction.id, 100, 110, now=START + 1)


async def test_failed_refund_rolls_back_the_new_bid(db: AsyncSession, auction, make_buyer, custody, monkeypatch):
    auction_id = auction.id
    await make_buyer("alice")
    await make_buyer("bob")
    await auction_service.offer(db, "alice", auction_id, 100, 100, now=START)

    async def _broken_push(*args, **kwargs):
        raise TransferError("Market: escrow holds insufficient currency.")

    monkeypatch.setattr(escrow_service, "push_currency", _broken_push)

    with pytest.raises(TransferError):
        await auction_service.offer(db, "bob", auction_id, 100, 150, now=START + 1)

    assert await _balance(db, "bob") == Decimal("1000")
    assert await _balance(db, custody) == Decimal("100")
    winning = await auction_service.get_winning_bid(db, auction_id)
    assert winning.offeror == "alice"
    assert Decimal(str(winning.offer_amount)) == Decimal("100")


# ---------------------------------------------------------------------------
# Buyout
# ---------------------------------------------------------------------------

async def test_buyout_settles_both_legs_immediately(db: AsyncSession, auction, make_buyer, custody):
    await make_buyer("bidder")

    result = await auction_service.offer(db, "bidder", auction.id, 100, 200, now=START + 5)

    assert result["bought_out"] is True
    offer = result["offer"]
    assert offer.quantity_wanted == 0
    assert Decimal(str(offer.offer_amount)) == Decimal("0")

    assert await _balance(db, "seller") == Decimal("200")
    assert await _balance(db, custody) == Decimal("0")
    assert await asset_ledger_service.balance_of(db, ASSET, TOKEN_ID, "bidder") == 100
    assert await asset_ledger_service.balance_of(db, ASSET, TOKEN_ID, custody) == 0

    events = (await db.execute(
        select(MarketEvent.event_type).where(MarketEvent.listing_id == auction.id).order_by(MarketEvent.id)
    )).scalars().all()
    assert events == ["listing_created", "new_offer", "auction_closed"]


async def test_buyout_ends_the_auction(db: AsyncSession, auction, make_buyer):
    auction_id = auction.id
    await make_buyer("bidder")
    await make_buyer("late")
    await auction_service.offer(db, "bidder", auction_id, 100, 250, now=START + 5)

    with pytest.raises(WindowViolationError):
        await auction_service.offer(db, "late", auction_id, 100, 300, now=START + 6)

    # A later close by the buyer has nothing left to do
    result = await auction_service.close_auction(db, "bidder", auction_id, now=START + 10)
    assert result["outcome"] == "noop"


async def test_no_buyout_when_disabled(db: AsyncSession, make_seller, make_auction, make_buyer):
    await make_seller("seller", quantity=10)
    listing = await make_auction("seller", quantity=10, reserve=1, buyout=0)
    await make_buyer("bidder")

    result = await auction_service.offer(db, "bidder", listing.id, 10, 900, now=T0)
    assert result["bought_out"] is False
    count = (await db.execute(
        select(func.count(MarketEvent.id)).where(MarketEvent.event_type == "auction_closed")
    )).scalar()
    assert count == 0
