"""Caller role checks against the identities stored on a listing and its winning bid."""

from tokenmarket.models.listing import Listing
from tokenmarket.models.offer import Offer


def is_creator(listing: Listing, caller: str) -> bool:
    return listing.token_owner == caller


def is_winning_bidder(listing: Listing, offer: Offer | None, caller: str) -> bool:
    if offer is None or offer.listing_id != listing.id:
        return False
    return offer.offeror == caller
