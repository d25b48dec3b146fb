# marketplace/errors.py
"""Error taxonomy for listing, bid and lifecycle operations.

Every error carries a stable ``error`` code and the HTTP status the API layer
answers with. Core functions raise these and leave the session rolled back.
"""


class MarketplaceError(Exception):
    error = "marketplace_error"
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.error)
        self.detail = detail or self.error


class ValidationError(MarketplaceError):
    error = "validation_error"
    status_code = 400


class NotFoundError(MarketplaceError):
    error = "not_found"
    status_code = 404


class AuthorizationError(MarketplaceError):
    error = "unauthorized"
    status_code = 403


class InvalidStateError(MarketplaceError):
    error = "invalid_state"
    status_code = 409


class InvalidKindError(MarketplaceError):
    error = "invalid_kind"
    status_code = 409


class ListingClosedError(MarketplaceError):
    error = "listing_closed"
    status_code = 409


class AuctionEndedError(MarketplaceError):
    error = "auction_ended"
    status_code = 409


class BidTooLowError(MarketplaceError):
    error = "bid_too_low"
    status_code = 409


class SelfBidError(MarketplaceError):
    error = "self_bid"
    status_code = 409


class ConcurrencyConflictError(MarketplaceError):
    """Lost the race to update a listing; retry against fresh state."""
    error = "conflict"
    status_code = 409
