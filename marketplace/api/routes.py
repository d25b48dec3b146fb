# marketplace/api/routes.py
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import auction, crud, ledger, lifecycle, schemas, services
from ..db import get_db
from ..events import Notifier, default_notifier, dispatch_events

router = APIRouter()


def get_notifier() -> Notifier:
    return default_notifier


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/listings", response_model=schemas.ListingPage)
def listings(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1),
    kind: Optional[schemas.ListingKind] = Query(None),
    category: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None),
    max_price: Optional[float] = Query(None),
    seller_id: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    status: Optional[schemas.ListingStatus] = Query(None),
    sort: str = Query("newest"),
    db: Session = Depends(get_db)
):
    filters = {
        "kind": kind.value if kind else None,
        "category": category,
        "condition": condition,
        "min_price": min_price,
        "max_price": max_price,
        "seller_id": seller_id,
        "search": search,
        "status": status.value if status else None,
    }
    return crud.list_listings(db, skip=skip, limit=limit, filters=filters, sort=sort)


@router.post("/listings", response_model=schemas.ListingOut, status_code=201)
def create_listing(payload: schemas.ListingCreate, db: Session = Depends(get_db)):
    return crud.create_listing(db, payload.model_dump())


@router.get("/listings/{listing_id}", response_model=schemas.ListingOut)
def get_listing(listing_id: int, db: Session = Depends(get_db)):
    return crud.get_listing(db, listing_id)


@router.patch("/listings/{listing_id}", response_model=schemas.ListingOut)
def update_listing(listing_id: int, payload: schemas.ListingUpdate, db: Session = Depends(get_db)):
    updates = payload.model_dump(exclude_unset=True)
    requester_id = updates.pop("requester_id")
    return crud.update_listing(db, listing_id, requester_id, updates)


@router.delete("/listings/{listing_id}")
def delete_listing(listing_id: int, requester_id: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    crud.delete_listing(db, listing_id, requester_id)
    return {"status": "deleted"}


@router.post("/listings/{listing_id}/view")
def view_listing(listing_id: int, db: Session = Depends(get_db)):
    crud.increment_view(db, listing_id)
    return {"status": "ok"}


@router.post("/listings/{listing_id}/save", response_model=schemas.SaveOut)
def save_listing(listing_id: int, payload: schemas.SaveIn, db: Session = Depends(get_db)):
    return {"saved": crud.toggle_save(db, payload.user_id, listing_id)}


@router.post("/listings/{listing_id}/bids", response_model=schemas.AcceptedBid, status_code=201)
def place_bid(
    listing_id: int,
    payload: schemas.BidIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    result = auction.place_bid(db, listing_id, payload.bidder_id, payload.amount)
    if result.events:
        background_tasks.add_task(dispatch_events, notifier, result.events)
    return {"bid": result.bid, "bid_count": result.bid_count, "current_bid": result.current_bid}


@router.get("/listings/{listing_id}/bids", response_model=List[schemas.BidOut])
def bid_history(listing_id: int, db: Session = Depends(get_db)):
    return ledger.bids_for_listing(db, listing_id)


@router.get("/listings/{listing_id}/bids/summary", response_model=schemas.BidSummary)
def bid_summary(listing_id: int, db: Session = Depends(get_db)):
    return {
        "listing_id": listing_id,
        "bid_count": ledger.accepted_bid_count(db, listing_id),
        "highest": ledger.highest_bid(db, listing_id),
    }


@router.post("/listings/{listing_id}/close", response_model=schemas.ListingOut)
def close_listing(listing_id: int, payload: schemas.RequesterIn, db: Session = Depends(get_db)):
    return lifecycle.close_listing(db, listing_id, payload.requester_id)


@router.post("/listings/{listing_id}/sold", response_model=schemas.SettlementOut)
def mark_sold(
    listing_id: int,
    payload: schemas.MarkSoldIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    result = lifecycle.mark_sold(db, listing_id, payload.requester_id, payload.buyer_id)
    background_tasks.add_task(dispatch_events, notifier, result.events)
    return result.settlement


@router.get("/sellers/{seller_id}/stats", response_model=schemas.SellerStatsOut)
def seller_stats(seller_id: str, db: Session = Depends(get_db)):
    return {"seller_id": seller_id, "total_trades": services.seller_trade_count(db, seller_id)}
