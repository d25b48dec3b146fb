# marketplace/ledger.py
"""Bid ledger: the append-only log of accepted bids.

Rows are only ever inserted, from inside the auction engine's accept
transaction; nothing here updates or deletes a bid.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Bid


def append_bid(db: Session, listing_id: int, bidder_id: str, amount: Decimal, placed_at: datetime) -> Bid:
    bid = Bid(listing_id=listing_id, bidder_id=bidder_id, amount=amount, placed_at=placed_at, accepted=True)
    db.add(bid)
    db.flush()
    return bid


def bids_for_listing(db: Session, listing_id: int, accepted_only: bool = True) -> List[Bid]:
    q = db.query(Bid).filter(Bid.listing_id == listing_id)
    if accepted_only:
        q = q.filter(Bid.accepted.is_(True))
    return q.order_by(Bid.placed_at.asc(), Bid.id.asc()).all()


def accepted_bid_count(db: Session, listing_id: int) -> int:
    return (
        db.query(func.count(Bid.id))
        .filter(Bid.listing_id == listing_id, Bid.accepted.is_(True))
        .scalar()
    )


def highest_bid(db: Session, listing_id: int) -> Optional[Bid]:
    return (
        db.query(Bid)
        .filter(Bid.listing_id == listing_id, Bid.accepted.is_(True))
        .order_by(Bid.amount.desc(), Bid.id.desc())
        .first()
    )
