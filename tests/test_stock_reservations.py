from datetime import datetime, timedelta
from uuid import UUID
import pytest
from sqlalchemy import select, update
from conftest import url_prefix
from shopfront.common.utils import as_utc, now
from shopfront.schema.full_schema import InventoryHistory, StockReservation

RES = f"{url_prefix}/stock-reservations"
INV = f"{url_prefix}/inventories"


async def _reserve(ac_client, headers, product_pid, quantity, order_ref="ORD-1"):
    resp = await ac_client.post(RES, json={"product_id": product_pid, "quantity": quantity, "order_ref": order_ref},
                                headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["reservation"]


async def _levels(ac_client, headers, product_pid):
    inv = (await ac_client.get(f"{INV}/product/{product_pid}", headers=headers)).json()["data"]["inventory"]
    return inv["quantity"], inv["reserved"], inv["available"]


async def _backdate(session_factory, reservation_pid, minutes=5):
    async with session_factory() as session:
        await session.execute(
            update(StockReservation)
            .where(StockReservation.public_id == UUID(reservation_pid))
            .values(expires_at=now() - timedelta(minutes=minutes))
        )
        await session.commit()


@pytest.mark.asyncio
async def test_complete_consumes_stock(ac_client, shopper, make_product):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    reservation = await _reserve(ac_client, headers, product["public_id"], 3)

    resp = await ac_client.post(f"{RES}/{reservation['id']}/complete", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["reservation"]["status"] == "completed"
    assert resp.json()["data"]["reservation"]["completed_at"] is not None
    assert await _levels(ac_client, headers, product["public_id"]) == (7, 0, 7)

    resp = await ac_client.post(f"{RES}/{reservation['id']}/cancel", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["details"]["message"] == "Reservation is not active"


@pytest.mark.asyncio
async def test_cancel_and_expire_release_hold(ac_client, shopper, make_product):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    first = await _reserve(ac_client, headers, product["public_id"], 2, "ORD-A")
    second = await _reserve(ac_client, headers, product["public_id"], 5, "ORD-B")
    assert await _levels(ac_client, headers, product["public_id"]) == (10, 7, 3)

    resp = await ac_client.post(f"{RES}/{first['id']}/cancel", json={"reason": "Customer cancelled"}, headers=headers)
    assert resp.json()["data"]["reservation"]["reason"] == "Customer cancelled"
    resp = await ac_client.post(f"{RES}/{second['id']}/expire", headers=headers)
    assert resp.json()["data"]["reservation"]["status"] == "expired"

    assert await _levels(ac_client, headers, product["public_id"]) == (10, 0, 10)

    history = (await ac_client.get(f"{INV}/product/{product['public_id']}/history", headers=headers,
                                   params={"action": "release"})).json()["data"]["items"]
    assert sorted(h["source"] for h in history) == ["order", "system"]


@pytest.mark.asyncio
async def test_create_auto_initializes_inventory(ac_client, shopper, make_product):
    product = await make_product()
    headers = shopper["headers"]

    resp = await ac_client.post(RES, json={"product_id": product["public_id"], "quantity": 1, "order_ref": "ORD-X"},
                                headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Insufficient stock. Available: 0, Requested: 1"

    # the auto-created row goes away with the failed request
    resp = await ac_client.get(f"{INV}/product/{product['public_id']}", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_product_and_bad_ids(ac_client, shopper):
    headers = shopper["headers"]
    resp = await ac_client.post(RES, json={"product_id": "00000000-0000-0000-0000-000000000000", "quantity": 1,
                                           "order_ref": "ORD-X"}, headers=headers)
    assert resp.status_code == 404

    assert (await ac_client.get(f"{RES}/not-a-uuid", headers=headers)).status_code == 400
    assert (await ac_client.get(f"{RES}/00000000-0000-0000-0000-000000000000", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_bulk_cancel_reports_per_item(ac_client, shopper, make_product):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    one = await _reserve(ac_client, headers, product["public_id"], 1, "ORD-1")
    two = await _reserve(ac_client, headers, product["public_id"], 1, "ORD-2")
    await ac_client.post(f"{RES}/{two['id']}/complete", headers=headers)

    missing = "00000000-0000-0000-0000-000000000000"
    resp = await ac_client.post(f"{RES}/bulk-cancel", json={"reservation_ids": [one["id"], two["id"], missing]},
                                headers=headers)
    body = resp.json()["data"]
    assert body["count"] == 1
    assert [r["success"] for r in body["results"]] == [True, False, False]
    assert body["results"][1]["error"] == "Reservation is not active"
    assert body["results"][2]["error"] == "Reservation not found"
    assert await _levels(ac_client, headers, product["public_id"]) == (9, 0, 9)


@pytest.mark.asyncio
async def test_cleanup_expires_overdue_reservations(ac_client, shopper, make_product, session_factory):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    overdue = await _reserve(ac_client, headers, product["public_id"], 4, "ORD-OLD")
    fresh = await _reserve(ac_client, headers, product["public_id"], 1, "ORD-NEW")
    await _backdate(session_factory, overdue["id"])

    expired = (await ac_client.get(f"{RES}/expired", headers=headers)).json()["data"]
    assert expired["count"] == 1
    assert expired["items"][0]["id"] == overdue["id"]

    soon = (await ac_client.get(f"{RES}/expiring-soon", headers=headers, params={"hours": 1})).json()["data"]
    assert [r["id"] for r in soon["items"]] == [fresh["id"]]

    resp = await ac_client.delete(f"{RES}/cleanup/expired", headers=headers)
    body = resp.json()["data"]
    assert body["count"] == 1
    assert body["results"][0]["order_ref"] == "ORD-OLD"
    assert await _levels(ac_client, headers, product["public_id"]) == (10, 1, 9)

    again = (await ac_client.delete(f"{RES}/cleanup/expired", headers=headers)).json()["data"]
    assert again["count"] == 0


@pytest.mark.asyncio
async def test_listing_and_analytics(ac_client, shopper, make_product):
    product = await make_product(quantity=20)
    headers = shopper["headers"]
    a = await _reserve(ac_client, headers, product["public_id"], 2, "ORD-1")
    await _reserve(ac_client, headers, product["public_id"], 4, "ORD-2")
    await ac_client.post(f"{RES}/{a['id']}/cancel", headers=headers)

    listing = (await ac_client.get(RES, headers=headers, params={"status": "active"})).json()["data"]
    assert listing["pagination"]["total"] == 1
    assert listing["items"][0]["order_ref"] == "ORD-2"

    analytics = (await ac_client.get(f"{RES}/analytics", headers=headers)).json()["data"]["analytics"]
    assert analytics["total"] == 2
    assert analytics["active"] == 1
    assert analytics["cancelled"] == 1
    assert analytics["total_quantity"] == 6
    assert analytics["average_quantity"] == 3


@pytest.mark.asyncio
async def test_update_reservation_bookkeeping(ac_client, shopper, make_product):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    reservation = await _reserve(ac_client, headers, product["public_id"], 2)
    new_expiry = now() + timedelta(hours=2)

    resp = await ac_client.put(f"{RES}/{reservation['id']}",
                               json={"reason": "Held for pickup", "metadata": {"channel": "store"},
                                     "expires_at": new_expiry.isoformat()},
                               headers=headers)
    assert resp.status_code == 200
    out = resp.json()["data"]["reservation"]
    assert out["reason"] == "Held for pickup"
    assert out["metadata"]["channel"] == "store"
    assert out["status"] == "active"
    assert abs((as_utc(datetime.fromisoformat(out["expires_at"])) - new_expiry).total_seconds()) < 1
    assert await _levels(ac_client, headers, product["public_id"]) == (10, 2, 8)

    resp = await ac_client.put(f"{RES}/{reservation['id']}", json={"status": "completed"}, headers=headers)
    assert resp.status_code == 422

    resp = await ac_client.put(f"{RES}/{reservation['id']}", json={"quantity": 1}, headers=headers)
    assert resp.status_code == 422

    resp = await ac_client.put(f"{RES}/{reservation['id']}",
                               json={"expires_at": (now() - timedelta(minutes=1)).isoformat()}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "expires_at must be in the future"


@pytest.mark.asyncio
async def test_update_expiry_requires_active_reservation(ac_client, shopper, make_product):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    reservation = await _reserve(ac_client, headers, product["public_id"], 2)
    assert (await ac_client.post(f"{RES}/{reservation['id']}/complete", headers=headers)).status_code == 200

    resp = await ac_client.put(f"{RES}/{reservation['id']}",
                               json={"expires_at": (now() + timedelta(hours=1)).isoformat()}, headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["details"]["message"] == "Reservation is not active"

    resp = await ac_client.put(f"{RES}/{reservation['id']}", json={"reason": "Shipped"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["reservation"]["reason"] == "Shipped"


@pytest.mark.asyncio
async def test_delete_reservation(ac_client, shopper, make_product, session_factory):
    product = await make_product(quantity=10)
    headers = shopper["headers"]
    reservation = await _reserve(ac_client, headers, product["public_id"], 4)

    resp = await ac_client.delete(f"{RES}/{reservation['id']}", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"]["details"]["message"] == "Cannot delete an active reservation, cancel it first"

    assert (await ac_client.post(f"{RES}/{reservation['id']}/cancel", headers=headers)).status_code == 200

    resp = await ac_client.delete(f"{RES}/{reservation['id']}", headers=headers)
    assert resp.status_code == 200
    assert (await ac_client.get(f"{RES}/{reservation['id']}", headers=headers)).status_code == 404
    assert await _levels(ac_client, headers, product["public_id"]) == (10, 0, 10)

    async with session_factory() as session:
        rows = (await session.execute(
            select(InventoryHistory).where(InventoryHistory.product_id == product["id"],
                                           InventoryHistory.action.in_(["reserve", "release"]))
        )).scalars().all()
    assert sorted(r.action for r in rows) == ["release", "reserve"]
    assert all(r.reservation_id is None for r in rows)
