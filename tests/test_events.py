# tests/test_events.py
import dataclasses
from decimal import Decimal

import pytest

from marketplace import auction, crud, scheduler
from marketplace.events import LoggingNotifier, OutbidEvent, SoldEvent, dispatch_events


def test_events_are_immutable():
    event = OutbidEvent(user_id="A", listing_id=1, message="outbid")
    with pytest.raises(dataclasses.FrozenInstanceError):
        event.user_id = "B"


def test_dispatch_survives_failing_notifier(notifier):
    class Flaky:
        def notify(self, event):
            if event.listing_id == 1:
                raise RuntimeError("smtp down")
            notifier.notify(event)

    events = [
        OutbidEvent(user_id="A", listing_id=1, message="outbid"),
        SoldEvent(seller_id="S", buyer_id="B", listing_id=2, final_price=Decimal("10.00")),
    ]
    assert dispatch_events(Flaky(), events) == 1
    assert [e.listing_id for e in notifier.events] == [2]


def test_logging_notifier_accepts_both_kinds(caplog):
    notifier = LoggingNotifier()
    with caplog.at_level("INFO", logger="marketplace.events"):
        dispatch_events(notifier, [
            OutbidEvent(user_id="A", listing_id=1, message="outbid"),
            SoldEvent(seller_id="S", buyer_id="B", listing_id=1, final_price=Decimal("5.00")),
        ])
    assert "Event outbid" in caplog.text
    assert "Event sold" in caplog.text


def test_scheduled_sweep_uses_its_own_session(db, make_listing, expire_auction):
    listing = make_listing("auction", starting_bid="10")
    auction.place_bid(db, listing.id, "A", "15")
    expire_auction(listing.id)

    report = scheduler.sweep_expired_auctions()

    assert report["sold"] == [listing.id]
    assert crud.get_listing(db, listing.id, fresh=True).status == "sold"
