# marketplace/models.py
"""SQLAlchemy ORM models for persisted entities.

`Listing` rows carry a `version` counter used for optimistic concurrency;
`Bid` rows are append-only and keep their `listing_id` even after the listing
is deleted.
"""
import enum
from sqlalchemy import (
    Column, Integer, Text, Numeric, Boolean, TIMESTAMP, func, Index, JSON, UniqueConstraint,
)
from .db import Base


class ListingKind(str, enum.Enum):
    SALE = "sale"
    AUCTION = "auction"
    TRADE = "trade"


class ListingStatus(str, enum.Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    SOLD = "sold"


TERMINAL_STATUSES = (ListingStatus.CLOSED.value, ListingStatus.SOLD.value)


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Text, nullable=False, index=True)
    kind = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False, default=ListingStatus.ACTIVE.value, index=True)
    version = Column(Integer, nullable=False, default=1)

    spirit_id = Column(Text)
    spirit_name = Column(Text, nullable=False)
    spirit_brand = Column(Text)
    spirit_category = Column(Text)
    spirit_image = Column(Text)
    condition = Column(Text, nullable=False, default="sealed")
    fill_level = Column(Integer, nullable=False, default=100)
    description = Column(Text)
    shipping_options = Column(JSON, nullable=False, default=list)
    location = Column(Text)

    # sale
    price = Column(Numeric(12, 2))
    # auction
    starting_bid = Column(Numeric(12, 2))
    reserve_price = Column(Numeric(12, 2))
    current_bid = Column(Numeric(12, 2))
    highest_bidder_id = Column(Text)
    bid_count = Column(Integer, nullable=False, default=0)
    auction_end = Column(TIMESTAMP(timezone=True))
    # trade
    trade_for = Column(Text)

    # settlement, written once on the transition into "sold"
    final_price = Column(Numeric(12, 2))
    platform_fee = Column(Numeric(12, 2))
    seller_payout = Column(Numeric(12, 2))
    buyer_id = Column(Text)
    sold_at = Column(TIMESTAMP(timezone=True))

    views = Column(Integer, nullable=False, default=0)
    saves = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"Listing(id={self.id}, kind={self.kind}, status={self.status}, version={self.version})"


class Bid(Base):
    __tablename__ = "bids"
    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, nullable=False)
    bidder_id = Column(Text, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    placed_at = Column(TIMESTAMP(timezone=True), nullable=False)
    accepted = Column(Boolean, nullable=False, default=True)


class SavedListing(Base):
    __tablename__ = "saved_listings"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False)
    listing_id = Column(Integer, nullable=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "listing_id", name="uq_saved_listing"),)


class SellerStats(Base):
    __tablename__ = "seller_stats"
    seller_id = Column(Text, primary_key=True)
    total_trades = Column(Integer, nullable=False, default=0)


class ActivityLog(Base):
    __tablename__ = "activity_log"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Text, nullable=False, index=True)
    event_type = Column(Text, nullable=False)
    event_data = Column(JSON)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())


Index("idx_bids_listing_placed", Bid.listing_id, Bid.placed_at)
Index("idx_listings_auction_end", Listing.auction_end)
