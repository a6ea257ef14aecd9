from fastapi import HTTPException, status


class MarketplaceError(HTTPException):
    """Base for every precondition failure raised by the market services.

    ``code`` is the stable machine-readable reason; ``detail`` carries the
    human-readable message callers match on.
    """

    code: str = "market_error"
    status_code_default: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code_default, detail=detail)


class ListingNotFoundError(MarketplaceError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, listing_id: int, detail: str | None = None):
        self.listing_id = listing_id
        super().__init__(detail or f"Listing {listing_id} not found")


class CallerNotPermittedError(MarketplaceError):
    code = "unauthorized"
    status_code_default = status.HTTP_403_FORBIDDEN


class InvalidQuantityError(MarketplaceError):
    code = "invalid_quantity"


class InsufficientListedQuantityError(InvalidQuantityError):
    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Market: requested {requested} but only {available} listed."
        )


class InvalidListingTypeError(MarketplaceError):
    code = "invalid_listing_type"


class WindowViolationError(MarketplaceError):
    code = "window_violation"


class AuctionNotEndedError(WindowViolationError):
    def __init__(self):
        super().__init__("Market: can only close auction after it has ended.")


class NothingToCancelError(MarketplaceError):
    code = "nothing_to_cancel"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, detail: str = "Market: nothing to cancel."):
        super().__init__(detail)


class BidTooLowError(MarketplaceError):
    code = "bid_too_low"


class TransferError(MarketplaceError):
    code = "transfer_error"


class UnauthorizedError(HTTPException):
    code = "unauthenticated"

    def __init__(self, detail: str = "Invalid or missing authentication"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
