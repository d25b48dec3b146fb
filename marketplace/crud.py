# marketplace/crud.py
"""Listing store: create, read, query, update and delete `Listing` rows.

All writes to the correctness-critical columns go through
`compare_and_set`, a conditional UPDATE keyed on the row's `version`.
Callers that lose the race get `ConcurrencyConflictError` and are expected
to retry against a fresh read.
"""
from contextlib import contextmanager
from datetime import timedelta
from typing import Dict, Any, Optional

from sqlalchemy import update, and_, or_, func, case
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from . import config
from .errors import (
    AuthorizationError, ConcurrencyConflictError, InvalidStateError, NotFoundError, ValidationError,
)
from .models import Listing, ListingKind, ListingStatus, SavedListing, ActivityLog
from .utils import logger, retry, to_money, utcnow

KIND_FIELDS = {
    ListingKind.SALE.value: ("price",),
    ListingKind.AUCTION.value: ("starting_bid", "reserve_price", "auction_end"),
    ListingKind.TRADE.value: ("trade_for",),
}

DESCRIPTIVE_FIELDS = (
    "spirit_id", "spirit_name", "spirit_brand", "spirit_category", "spirit_image",
    "condition", "fill_level", "description", "shipping_options", "location",
)

UPDATABLE_FIELDS = ("price", "description", "shipping_options")

SORTS = ("newest", "price_low", "price_high", "ending_soon", "most_viewed")

_LOCK_ERROR_MARKERS = ("database is locked", "could not serialize", "deadlock detected")


def _is_lock_error(exc: OperationalError) -> bool:
    message = str(exc.orig).lower()
    return any(marker in message for marker in _LOCK_ERROR_MARKERS)


@contextmanager
def write_transaction(db: Session):
    """Commit on success, roll back on any failure.

    Driver-level lock and serialization failures are reported as
    `ConcurrencyConflictError` so they share the conflict retry path.
    """
    try:
        yield
        db.commit()
    except OperationalError as e:
        db.rollback()
        if _is_lock_error(e):
            raise ConcurrencyConflictError("listing is busy, try again") from e
        raise
    except Exception:
        db.rollback()
        raise


def compare_and_set(db: Session, listing: Listing, values: Dict[str, Any]) -> None:
    expected = listing.version
    stmt = (
        update(Listing)
        .where(Listing.id == listing.id, Listing.version == expected)
        .values(version=expected + 1, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrencyConflictError(f"listing {listing.id} changed concurrently")


def parse_kind(kind) -> str:
    value = kind.value if isinstance(kind, ListingKind) else str(kind or "").lower()
    if value not in KIND_FIELDS:
        raise ValidationError(f"kind must be one of {', '.join(KIND_FIELDS)}")
    return value


def _positive_money(value, field):
    amount = to_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be positive")
    return amount


def create_listing(db: Session, data: Dict[str, Any]) -> Listing:
    seller_id = data.get("seller_id")
    if not seller_id:
        raise ValidationError("seller_id is required")
    if not data.get("spirit_name"):
        raise ValidationError("spirit_name is required")
    kind = parse_kind(data.get("kind"))

    values = {f: data.get(f) for f in DESCRIPTIVE_FIELDS if data.get(f) is not None}
    try:
        fill_level = int(values.get("fill_level", 100))
    except (TypeError, ValueError):
        raise ValidationError("fill_level must be a whole number") from None
    if not 0 <= fill_level <= 100:
        raise ValidationError("fill_level must be between 0 and 100")
    values["fill_level"] = fill_level

    if kind == ListingKind.SALE.value:
        if data.get("price") is None:
            raise ValidationError("price is required for sale listings")
        values["price"] = _positive_money(data["price"], "price")
    elif kind == ListingKind.AUCTION.value:
        if data.get("starting_bid") is None:
            raise ValidationError("starting_bid is required for auctions")
        starting_bid = _positive_money(data["starting_bid"], "starting_bid")
        values["starting_bid"] = starting_bid
        if data.get("reserve_price") is not None:
            reserve = _positive_money(data["reserve_price"], "reserve_price")
            if reserve < starting_bid:
                raise ValidationError("reserve_price must not be below starting_bid")
            values["reserve_price"] = reserve
        days = data.get("auction_duration_days")
        if days is None:
            days = config.DEFAULT_AUCTION_DURATION_DAYS
        if days <= 0:
            raise ValidationError("auction_duration_days must be positive")
        values["auction_end"] = utcnow() + timedelta(days=days)
    else:
        trade_for = (data.get("trade_for") or "").strip()
        if not trade_for:
            raise ValidationError("trade_for is required for trade listings")
        values["trade_for"] = trade_for

    listing = Listing(
        seller_id=seller_id,
        kind=kind,
        status=ListingStatus.ACTIVE.value,
        version=1,
        views=0,
        saves=0,
        bid_count=0,
        **values,
    )
    with write_transaction(db):
        db.add(listing)
        db.flush()
        db.add(ActivityLog(
            user_id=seller_id,
            event_type="listing_created",
            event_data={"listing_id": listing.id, "kind": kind, "spirit_name": listing.spirit_name},
        ))
    db.refresh(listing)
    logger.info("Created %s listing %s for seller %s", kind, listing.id, seller_id)
    return listing


def get_listing(db: Session, listing_id: int, fresh: bool = False) -> Listing:
    """Return the listing or raise `NotFoundError`.

    ``fresh`` bypasses the session's identity map so guarded writes validate
    against the row as it is now, not as this session last saw it.
    """
    if fresh:
        obj = db.get(Listing, listing_id, populate_existing=True)
    else:
        obj = db.get(Listing, listing_id)
    if obj is None:
        raise NotFoundError(f"listing {listing_id} not found")
    return obj


def effective_price():
    return func.coalesce(Listing.price, Listing.current_bid, Listing.starting_bid)


def list_listings(db: Session, skip: int = 0, limit: int = config.DEFAULT_PAGE_SIZE,
                  filters: Optional[Dict] = None, sort: str = "newest"):
    if sort not in SORTS:
        raise ValidationError(f"sort must be one of {', '.join(SORTS)}")
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    skip = max(0, skip)
    filters = filters or {}

    q = db.query(Listing)
    conds = [Listing.status == (filters.get("status") or ListingStatus.ACTIVE.value)]
    if filters.get("kind"):
        conds.append(Listing.kind == parse_kind(filters["kind"]))
    if filters.get("category"):
        conds.append(Listing.spirit_category == filters["category"])
    if filters.get("condition") and filters["condition"] != "all":
        conds.append(Listing.condition == filters["condition"])
    if filters.get("min_price") is not None:
        conds.append(effective_price() >= filters["min_price"])
    if filters.get("max_price") is not None:
        conds.append(effective_price() <= filters["max_price"])
    if filters.get("seller_id"):
        conds.append(Listing.seller_id == filters["seller_id"])
    if filters.get("search"):
        pattern = f"%{filters['search']}%"
        conds.append(or_(Listing.spirit_name.ilike(pattern), Listing.spirit_brand.ilike(pattern)))
    q = q.filter(and_(*conds))

    if sort == "price_low":
        q = q.order_by(effective_price().asc().nulls_last(), Listing.id.desc())
    elif sort == "price_high":
        q = q.order_by(effective_price().desc().nulls_last(), Listing.id.desc())
    elif sort == "ending_soon":
        q = q.order_by(Listing.auction_end.asc().nulls_last(), Listing.id.desc())
    elif sort == "most_viewed":
        q = q.order_by(Listing.views.desc(), Listing.id.desc())
    else:
        q = q.order_by(Listing.created_at.desc(), Listing.id.desc())

    total = q.count()
    items = q.offset(skip).limit(limit).all()
    return {"total": total, "items": items, "skip": skip, "limit": limit}


def increment_view(db: Session, listing_id: int) -> None:
    with write_transaction(db):
        result = db.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(views=Listing.views + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"listing {listing_id} not found")


def toggle_save(db: Session, user_id: str, listing_id: int) -> bool:
    """Flip whether ``user_id`` has saved the listing; returns the new state."""
    if not user_id:
        raise ValidationError("user_id is required")
    get_listing(db, listing_id)
    existing = (
        db.query(SavedListing)
        .filter(SavedListing.user_id == user_id, SavedListing.listing_id == listing_id)
        .first()
    )
    try:
        with write_transaction(db):
            if existing:
                db.delete(existing)
                saves = case((Listing.saves > 0, Listing.saves - 1), else_=0)
            else:
                db.add(SavedListing(user_id=user_id, listing_id=listing_id))
                db.flush()
                saves = Listing.saves + 1
            db.execute(
                update(Listing)
                .where(Listing.id == listing_id)
                .values(saves=saves)
                .execution_options(synchronize_session=False)
            )
    except IntegrityError:
        # a concurrent toggle already saved it
        logger.info("Listing %s already saved by %s", listing_id, user_id)
        return True
    return existing is None


def delete_listing(db: Session, listing_id: int, requester_id: str) -> None:
    listing = get_listing(db, listing_id, fresh=True)
    if listing.seller_id != requester_id:
        raise AuthorizationError("only the seller may delete this listing")
    with write_transaction(db):
        db.query(SavedListing).filter(SavedListing.listing_id == listing_id).delete(
            synchronize_session=False
        )
        db.delete(listing)
    # bid history stays; bids keep their listing_id
    logger.info("Deleted listing %s (requested by %s)", listing_id, requester_id)


@retry(ConcurrencyConflictError, tries=config.CONFLICT_RETRY_TRIES, delay=config.CONFLICT_RETRY_DELAY)
def update_listing(db: Session, listing_id: int, requester_id: str, updates: Dict[str, Any]) -> Listing:
    unknown = sorted(set(updates) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(f"fields not updatable: {', '.join(unknown)}")
    with write_transaction(db):
        listing = get_listing(db, listing_id, fresh=True)
        if listing.seller_id != requester_id:
            raise AuthorizationError("only the seller may update this listing")
        if listing.status != ListingStatus.ACTIVE.value:
            raise InvalidStateError(f"listing {listing_id} is {listing.status}")
        values = {}
        if "price" in updates:
            if listing.kind != ListingKind.SALE.value:
                raise ValidationError("price can only be changed on sale listings")
            values["price"] = _positive_money(updates["price"], "price")
        if "description" in updates:
            values["description"] = updates["description"]
        if "shipping_options" in updates:
            values["shipping_options"] = list(updates["shipping_options"] or [])
        if values:
            compare_and_set(db, listing, values)
    db.refresh(listing)
    return listing
