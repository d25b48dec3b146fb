# marketplace/auction.py
"""Auction engine: validate a bid against the listing and record it.

A bid is checked against a fresh read of the listing and accepted with a
single transaction that appends the ledger row and moves the listing's
cached winner fields forward under a version check. Two bidders racing on
the same listing cannot both win: the loser's write matches no row, the
transaction rolls back, and the bid is re-validated against the new leader.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Tuple

from sqlalchemy.orm import Session

from . import config, crud, ledger
from .errors import (
    AuctionEndedError, BidTooLowError, ConcurrencyConflictError, InvalidKindError,
    ListingClosedError, MarketplaceError, SelfBidError, ValidationError,
)
from .events import OutbidEvent
from .models import TERMINAL_STATUSES, Bid, Listing, ListingKind
from .utils import as_utc, get_logger, retry, to_money, utcnow

logger = get_logger("marketplace.auction")


@dataclass(frozen=True)
class BidResult:
    bid: Bid
    bid_count: int
    current_bid: Decimal
    events: Tuple[OutbidEvent, ...] = ()


def minimum_exceeded(listing: Listing) -> Decimal:
    """The amount a new bid has to beat."""
    if listing.current_bid is None:
        return listing.starting_bid
    return max(listing.current_bid, listing.starting_bid)


def validate_bid(listing: Listing, bidder_id: str, amount: Decimal, now: datetime) -> None:
    if listing.kind != ListingKind.AUCTION.value:
        raise InvalidKindError(f"listing {listing.id} is not an auction")
    if listing.status in TERMINAL_STATUSES:
        raise ListingClosedError(f"listing {listing.id} is {listing.status}")
    end = as_utc(listing.auction_end)
    if end is not None and end <= now:
        raise AuctionEndedError(f"auction {listing.id} ended at {end.isoformat()}")
    floor = minimum_exceeded(listing)
    if amount <= floor:
        raise BidTooLowError(f"bid must be higher than {floor}")
    if bidder_id == listing.seller_id:
        raise SelfBidError("sellers cannot bid on their own auction")


@retry(ConcurrencyConflictError, tries=config.CONFLICT_RETRY_TRIES, delay=config.CONFLICT_RETRY_DELAY)
def place_bid(db: Session, listing_id: int, bidder_id: str, amount) -> BidResult:
    with crud.write_transaction(db):
        listing = crud.get_listing(db, listing_id, fresh=True)
        if not bidder_id:
            raise ValidationError("bidder_id is required")
        amount = to_money(amount)
        now = utcnow()
        try:
            validate_bid(listing, bidder_id, amount, now)
        except MarketplaceError as e:
            logger.info("Rejected bid on listing %s by %s for %s: %s", listing_id, bidder_id, amount, e.error)
            raise

        previous_bidder = listing.highest_bidder_id
        spirit_name = listing.spirit_name
        bid_count = listing.bid_count + 1
        crud.compare_and_set(db, listing, {
            "current_bid": amount,
            "highest_bidder_id": bidder_id,
            "bid_count": bid_count,
        })
        bid = ledger.append_bid(db, listing_id, bidder_id, amount, now)

    logger.info("Accepted bid %s on listing %s by %s for %s", bid.id, listing_id, bidder_id, amount)
    events = ()
    if previous_bidder and previous_bidder != bidder_id:
        events = (OutbidEvent(
            user_id=previous_bidder,
            listing_id=listing_id,
            message=f"Someone placed a higher bid on {spirit_name}",
        ),)
    return BidResult(bid=bid, bid_count=bid_count, current_bid=amount, events=events)
