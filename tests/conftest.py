# tests/conftest.py
import os
import tempfile
from datetime import timedelta

import pytest

# point the app at a throwaway SQLite file before anything imports marketplace.db
_DB_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["MARKETPLACE_DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'marketplace.db')}"
os.environ["AUCTION_SWEEP_ENABLED"] = "0"
os.environ["CONFLICT_RETRY_TRIES"] = "25"
os.environ["CONFLICT_RETRY_DELAY"] = "0.005"

from sqlalchemy import update  # noqa: E402

from marketplace import crud  # noqa: E402
from marketplace.db import Base, engine, SessionLocal  # noqa: E402
from marketplace.models import Listing  # noqa: E402
from marketplace.utils import utcnow  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_listing(db):
    def _make(kind="sale", seller_id="seller-1", **fields):
        data = {"seller_id": seller_id, "kind": kind, "spirit_name": "Blanton's Original"}
        if kind == "sale":
            data["price"] = "50.00"
        elif kind == "auction":
            data["starting_bid"] = "10.00"
        else:
            data["trade_for"] = "Any Weller 12"
        data.update(fields)
        return crud.create_listing(db, data)
    return _make


@pytest.fixture
def expire_auction(db):
    def _expire(listing_id):
        db.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(auction_end=utcnow() - timedelta(minutes=1))
        )
        db.commit()
    return _expire


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


@pytest.fixture
def notifier():
    return RecordingNotifier()
