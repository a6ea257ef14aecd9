"""Listing window predicates.

A listing's window is the half-open interval ``[start_time, end_time)`` in
unix seconds. Nothing here reads a clock: ``now`` always comes from the caller.
"""

from tokenmarket.models.listing import Listing


def is_before_start(listing: Listing, now: int) -> bool:
    return now < listing.start_time


def is_after_end(listing: Listing, now: int) -> bool:
    return now >= listing.end_time


def is_within_window(listing: Listing, now: int) -> bool:
    return not is_before_start(listing, now) and not is_after_end(listing, now)
