# tests/test_api.py
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from marketplace import config, crud, utils
from marketplace.api.routes import get_notifier
from marketplace.errors import ConcurrencyConflictError
from marketplace.main import app


@pytest.fixture
def client(db, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, **fields):
    body = {"seller_id": "seller-1", "spirit_name": "Stagg Jr", "kind": "auction", "starting_bid": "10"}
    body.update(fields)
    resp = client.post("/listings", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_and_fetch_listing(client):
    created = _create(client, kind="sale", price="50", starting_bid=None, spirit_brand="Buffalo Trace")
    assert created["status"] == "active"
    assert created["kind"] == "sale"
    assert Decimal(created["price"]) == Decimal("50")

    fetched = client.get(f"/listings/{created['id']}").json()
    assert fetched["id"] == created["id"]
    assert fetched["spirit_brand"] == "Buffalo Trace"


def test_create_sale_without_price_is_validation_error(client):
    resp = client.post("/listings", json={"seller_id": "s", "spirit_name": "x", "kind": "sale"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_unknown_listing_is_404(client):
    resp = client.get("/listings/9999")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_bid_flow_dispatches_outbid_event(client, notifier):
    listing = _create(client)
    url = f"/listings/{listing['id']}/bids"

    first = client.post(url, json={"bidder_id": "A", "amount": "20"})
    assert first.status_code == 201
    assert first.json()["bid_count"] == 1

    low = client.post(url, json={"bidder_id": "B", "amount": "15"})
    assert low.status_code == 409
    assert low.json()["error"] == "bid_too_low"

    second = client.post(url, json={"bidder_id": "B", "amount": "25"})
    assert second.status_code == 201
    body = second.json()
    assert body["bid_count"] == 2
    assert Decimal(body["current_bid"]) == Decimal("25")
    assert body["bid"]["bidder_id"] == "B"

    assert [(e.kind, e.user_id) for e in notifier.events] == [("outbid", "A")]

    history = client.get(url).json()
    assert [h["bidder_id"] for h in history] == ["A", "B"]


def test_self_bid_rejected(client):
    listing = _create(client)
    resp = client.post(f"/listings/{listing['id']}/bids", json={"bidder_id": "seller-1", "amount": "99"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "self_bid"


def test_mark_sold_returns_settlement(client, notifier):
    listing = _create(client, kind="sale", price="100", starting_bid=None)
    resp = client.post(f"/listings/{listing['id']}/sold", json={"requester_id": "seller-1", "buyer_id": "B"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert Decimal(body["final_price"]) == Decimal("100")
    assert Decimal(body["platform_fee"]) == Decimal("5.00")
    assert Decimal(body["seller_payout"]) == Decimal("95.00")
    assert [e.kind for e in notifier.events] == ["sold"]

    again = client.post(f"/listings/{listing['id']}/sold", json={"requester_id": "seller-1", "buyer_id": "C"})
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_state"


def test_close_requires_seller(client):
    listing = _create(client)
    resp = client.post(f"/listings/{listing['id']}/close", json={"requester_id": "intruder"})
    assert resp.status_code == 403
    ok = client.post(f"/listings/{listing['id']}/close", json={"requester_id": "seller-1"})
    assert ok.status_code == 200
    assert ok.json()["status"] == "closed"
    bid = client.post(f"/listings/{listing['id']}/bids", json={"bidder_id": "A", "amount": "50"})
    assert bid.json()["error"] == "listing_closed"


def test_update_view_save_and_delete(client):
    listing = _create(client, kind="sale", price="40", starting_bid=None)
    url = f"/listings/{listing['id']}"

    resp = client.patch(url, json={"requester_id": "seller-1", "price": "35", "description": "Barrel proof"})
    assert resp.status_code == 200
    assert Decimal(resp.json()["price"]) == Decimal("35")

    assert client.patch(url, json={"requester_id": "other", "price": "1"}).status_code == 403

    client.post(f"{url}/view")
    assert client.post(f"{url}/save", json={"user_id": "fan"}).json() == {"saved": True}
    fetched = client.get(url).json()
    assert (fetched["views"], fetched["saves"]) == (1, 1)

    assert client.delete(url, params={"requester_id": "other"}).status_code == 403
    assert client.delete(url, params={"requester_id": "seller-1"}).json() == {"status": "deleted"}
    assert client.get(url).status_code == 404


def test_list_listings_query(client):
    _create(client, kind="sale", price="20", starting_bid=None)
    _create(client, kind="sale", price="200", starting_bid=None)
    _create(client)
    resp = client.get("/listings", params={"kind": "sale", "sort": "price_low", "limit": 500})
    body = resp.json()
    assert body["total"] == 2
    assert body["limit"] == 100
    assert [Decimal(i["price"]) for i in body["items"]] == [Decimal("20"), Decimal("200")]

    assert client.get("/listings", params={"sort": "bogus"}).status_code == 400


def test_exhausted_conflict_retries_answer_try_again(client, monkeypatch):
    listing = _create(client)
    attempts = []
    sleeps = []

    def always_conflicts(db, row, values):
        attempts.append(row.id)
        raise ConcurrencyConflictError(f"listing {row.id} changed concurrently")

    monkeypatch.setattr(crud, "compare_and_set", always_conflicts)
    monkeypatch.setattr(utils.time, "sleep", sleeps.append)

    resp = client.post(f"/listings/{listing['id']}/bids", json={"bidder_id": "A", "amount": "20"})

    assert resp.status_code == 409
    body = resp.json()
    assert body["error"] == "conflict"
    assert "try again" in body["detail"]
    assert "changed concurrently" not in body["detail"]
    assert len(attempts) == config.CONFLICT_RETRY_TRIES
    assert len(sleeps) == config.CONFLICT_RETRY_TRIES - 1

    monkeypatch.undo()
    fetched = client.get(f"/listings/{listing['id']}").json()
    assert (fetched["bid_count"], fetched["current_bid"]) == (0, None)
    assert client.get(f"/listings/{listing['id']}/bids").json() == []


def test_bid_summary(client):
    listing = _create(client)
    url = f"/listings/{listing['id']}/bids"
    empty = client.get(f"{url}/summary").json()
    assert empty == {"listing_id": listing["id"], "bid_count": 0, "highest": None}

    client.post(url, json={"bidder_id": "A", "amount": "20"})
    client.post(url, json={"bidder_id": "B", "amount": "31.50"})
    summary = client.get(f"{url}/summary").json()
    assert summary["bid_count"] == 2
    assert summary["highest"]["bidder_id"] == "B"
    assert Decimal(summary["highest"]["amount"]) == Decimal("31.50")


def test_seller_stats_count_completed_sales(client):
    assert client.get("/sellers/seller-1/stats").json() == {"seller_id": "seller-1", "total_trades": 0}
    for price in ("40", "60"):
        listing = _create(client, kind="sale", price=price, starting_bid=None)
        client.post(f"/listings/{listing['id']}/sold", json={"requester_id": "seller-1", "buyer_id": "B"})
    assert client.get("/sellers/seller-1/stats").json() == {"seller_id": "seller-1", "total_trades": 2}
