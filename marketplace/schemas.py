# marketplace/schemas.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

from .models import ListingKind, ListingStatus

Money = Decimal


class ListingBase(BaseModel):
    spirit_id: Optional[str] = None
    spirit_name: str = Field(..., min_length=1, max_length=255)
    spirit_brand: Optional[str] = None
    spirit_category: Optional[str] = None
    spirit_image: Optional[str] = None
    condition: str = "sealed"
    fill_level: int = Field(100, ge=0, le=100)
    description: Optional[str] = None
    shipping_options: List[str] = Field(default_factory=list)
    location: Optional[str] = None


class ListingCreate(ListingBase):
    seller_id: str = Field(..., min_length=1)
    kind: ListingKind
    price: Optional[Money] = Field(None, gt=0, max_digits=12, decimal_places=2)
    starting_bid: Optional[Money] = Field(None, gt=0, max_digits=12, decimal_places=2)
    reserve_price: Optional[Money] = Field(None, gt=0, max_digits=12, decimal_places=2)
    auction_duration_days: Optional[int] = Field(None, ge=1, le=30)
    trade_for: Optional[str] = None


class ListingUpdate(BaseModel):
    requester_id: str = Field(..., min_length=1)
    price: Optional[Money] = Field(None, gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = None
    shipping_options: Optional[List[str]] = None


class ListingOut(ListingBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    seller_id: str
    kind: ListingKind
    status: ListingStatus
    price: Optional[Money] = None
    starting_bid: Optional[Money] = None
    reserve_price: Optional[Money] = None
    current_bid: Optional[Money] = None
    highest_bidder_id: Optional[str] = None
    bid_count: int
    auction_end: Optional[datetime] = None
    trade_for: Optional[str] = None
    final_price: Optional[Money] = None
    platform_fee: Optional[Money] = None
    seller_payout: Optional[Money] = None
    buyer_id: Optional[str] = None
    sold_at: Optional[datetime] = None
    views: int
    saves: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ListingPage(BaseModel):
    total: int
    skip: int
    limit: int
    items: List[ListingOut]


class BidIn(BaseModel):
    bidder_id: str = Field(..., min_length=1)
    amount: Money = Field(..., gt=0, max_digits=12, decimal_places=2)


class BidOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: int
    bidder_id: str
    amount: Money
    placed_at: datetime
    accepted: bool


class AcceptedBid(BaseModel):
    bid: BidOut
    bid_count: int
    current_bid: Money


class RequesterIn(BaseModel):
    requester_id: str = Field(..., min_length=1)


class MarkSoldIn(RequesterIn):
    buyer_id: Optional[str] = None


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    listing_id: int
    final_price: Money
    platform_fee_rate: Decimal
    platform_fee: Money
    seller_payout: Money
    buyer_id: str
    timestamp: datetime


class SaveIn(BaseModel):
    user_id: str = Field(..., min_length=1)


class SaveOut(BaseModel):
    saved: bool


class BidSummary(BaseModel):
    listing_id: int
    bid_count: int
    highest: Optional[BidOut] = None


class SellerStatsOut(BaseModel):
    seller_id: str
    total_trades: int
