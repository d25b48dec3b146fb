# marketplace/lifecycle.py
"""Listing lifecycle: active -> closed, active -> sold, and settlement.

``closed`` and ``sold`` are terminal. The sale transition writes the
settlement columns and the status in one guarded update, so a concurrent
close or second sale is rejected once it re-reads the listing.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, crud, services
from .errors import (
    AuthorizationError, ConcurrencyConflictError, InvalidStateError, MarketplaceError, ValidationError,
)
from .events import Notifier, SoldEvent, dispatch_events
from .models import TERMINAL_STATUSES, Listing, ListingKind, ListingStatus
from .utils import as_utc, get_logger, retry, round_cents, to_money, utcnow

logger = get_logger("marketplace.lifecycle")


@dataclass(frozen=True)
class Settlement:
    listing_id: int
    final_price: Decimal
    platform_fee_rate: Decimal
    platform_fee: Decimal
    seller_payout: Decimal
    buyer_id: str
    timestamp: datetime


@dataclass(frozen=True)
class SaleResult:
    settlement: Settlement
    seller_id: str
    events: Tuple[SoldEvent, ...] = ()


def split_fee(final_price: Decimal) -> Tuple[Decimal, Decimal]:
    """Return ``(platform_fee, seller_payout)``.

    The fee is rounded half-up to the cent and the payout is whatever is
    left, so the two always add back up to ``final_price``.
    """
    final_price = to_money(final_price, "final_price")
    fee = round_cents(final_price * config.PLATFORM_FEE_RATE)
    return fee, final_price - fee


def compute_settlement(listing_id: int, final_price, buyer_id: str,
                       timestamp: Optional[datetime] = None) -> Settlement:
    final_price = to_money(final_price, "final_price")
    fee, payout = split_fee(final_price)
    return Settlement(
        listing_id=listing_id,
        final_price=final_price,
        platform_fee_rate=config.PLATFORM_FEE_RATE,
        platform_fee=fee,
        seller_payout=payout,
        buyer_id=buyer_id,
        timestamp=timestamp or utcnow(),
    )


def _require_seller(listing: Listing, requester_id: str, action: str) -> None:
    if listing.seller_id != requester_id:
        raise AuthorizationError(f"only the seller may {action} this listing")


def _require_active(listing: Listing) -> None:
    if listing.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"listing {listing.id} is already {listing.status}")


def final_price_for(listing: Listing) -> Decimal:
    if listing.kind == ListingKind.SALE.value:
        return listing.price
    if listing.kind == ListingKind.AUCTION.value:
        if listing.current_bid is None:
            raise InvalidStateError(f"auction {listing.id} has no bids to sell to")
        return listing.current_bid
    # trades change hands without money
    return Decimal("0.00")


@retry(ConcurrencyConflictError, tries=config.CONFLICT_RETRY_TRIES, delay=config.CONFLICT_RETRY_DELAY)
def close_listing(db: Session, listing_id: int, requester_id: str) -> Listing:
    with crud.write_transaction(db):
        listing = crud.get_listing(db, listing_id, fresh=True)
        _require_seller(listing, requester_id, "close")
        _require_active(listing)
        crud.compare_and_set(db, listing, {"status": ListingStatus.CLOSED.value})
    logger.info("Closed listing %s", listing_id)
    db.refresh(listing)
    return listing


@retry(ConcurrencyConflictError, tries=config.CONFLICT_RETRY_TRIES, delay=config.CONFLICT_RETRY_DELAY)
def _sell(db: Session, listing_id: int, requester_id: str, buyer_id: Optional[str]) -> SaleResult:
    with crud.write_transaction(db):
        listing = crud.get_listing(db, listing_id, fresh=True)
        _require_seller(listing, requester_id, "sell")
        _require_active(listing)
        final_price = final_price_for(listing)
        buyer = buyer_id or listing.highest_bidder_id
        if not buyer:
            raise ValidationError("buyer_id is required when the listing has no high bidder")
        if buyer == listing.seller_id:
            raise ValidationError("the seller cannot be the buyer")
        settlement = compute_settlement(listing.id, final_price, buyer)
        seller_id = listing.seller_id
        crud.compare_and_set(db, listing, {
            "status": ListingStatus.SOLD.value,
            "final_price": settlement.final_price,
            "platform_fee": settlement.platform_fee,
            "seller_payout": settlement.seller_payout,
            "buyer_id": buyer,
            "sold_at": settlement.timestamp,
        })
    logger.info(
        "Sold listing %s to %s for %s (fee %s, payout %s)",
        listing_id, buyer, settlement.final_price, settlement.platform_fee, settlement.seller_payout,
    )
    event = SoldEvent(
        seller_id=seller_id,
        buyer_id=buyer,
        listing_id=listing_id,
        final_price=settlement.final_price,
    )
    return SaleResult(settlement=settlement, seller_id=seller_id, events=(event,))


def mark_sold(db: Session, listing_id: int, requester_id: str, buyer_id: Optional[str] = None) -> SaleResult:
    result = _sell(db, listing_id, requester_id, buyer_id)
    # best-effort: the sale stands even if the counter can't be bumped
    services.record_seller_trade(db, result.seller_id)
    return result


def expired_auction_ids(db: Session, now: Optional[datetime] = None) -> List[int]:
    now = now or utcnow()
    rows = (
        db.query(Listing.id)
        .filter(
            Listing.kind == ListingKind.AUCTION.value,
            Listing.status == ListingStatus.ACTIVE.value,
            Listing.auction_end.isnot(None),
            Listing.auction_end <= now,
        )
        .order_by(Listing.auction_end.asc(), Listing.id.asc())
        .all()
    )
    return [row.id for row in rows]


def reserve_met(listing: Listing) -> bool:
    if listing.current_bid is None:
        return False
    return listing.reserve_price is None or listing.current_bid >= listing.reserve_price


def close_expired_auctions(db: Session, notifier: Optional[Notifier] = None,
                           now: Optional[datetime] = None) -> Dict[str, List[int]]:
    """Settle every active auction whose end time has passed.

    Auctions with a bid that meets the reserve are sold to the high bidder;
    the rest are closed. Each listing is handled on its own: one failure is
    logged and the sweep moves on.
    """
    now = now or utcnow()
    report = {"sold": [], "closed": [], "failed": []}
    for listing_id in expired_auction_ids(db, now):
        try:
            listing = crud.get_listing(db, listing_id, fresh=True)
            end = as_utc(listing.auction_end)
            if listing.status != ListingStatus.ACTIVE.value or end is None or end > now:
                continue
            if reserve_met(listing):
                result = mark_sold(db, listing_id, listing.seller_id)
                if notifier is not None:
                    dispatch_events(notifier, result.events)
                report["sold"].append(listing_id)
            else:
                close_listing(db, listing_id, listing.seller_id)
                report["closed"].append(listing_id)
        except MarketplaceError as e:
            db.rollback()
            logger.warning("Could not settle expired auction %s: %s", listing_id, e)
            report["failed"].append(listing_id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Database error settling expired auction %s", listing_id)
            report["failed"].append(listing_id)
    if any(report.values()):
        logger.info(
            "Auction sweep: %d sold, %d closed, %d failed",
            len(report["sold"]), len(report["closed"]), len(report["failed"]),
        )
    return report
