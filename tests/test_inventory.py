import pytest
from conftest import url_prefix

INV = f"{url_prefix}/inventories"


async def _initialize(ac_client, headers, product_pid, quantity, threshold=None):
    payload = {"product_id": product_pid, "initial_quantity": quantity}
    if threshold is not None:
        payload["low_stock_threshold"] = threshold
    resp = await ac_client.post(f"{INV}/initialize", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["inventory"]


@pytest.mark.asyncio
async def test_initialize_and_duplicate(ac_client, shopper, make_product):
    product = await make_product()
    inv = await _initialize(ac_client, shopper["headers"], product["public_id"], 50, threshold=5)
    assert inv["quantity"] == 50
    assert inv["reserved"] == 0
    assert inv["available"] == 50
    assert inv["is_low_stock"] is False

    resp = await ac_client.post(f"{INV}/initialize", json={"product_id": product["public_id"], "initial_quantity": 3},
                                headers=shopper["headers"])
    assert resp.status_code == 409

    resp = await ac_client.get(f"{INV}/product/{product['public_id']}/history", headers=shopper["headers"])
    items = resp.json()["data"]["items"]
    assert [h["action"] for h in items] == ["initialize"]
    assert items[0]["quantity_after"] == 50


@pytest.mark.asyncio
async def test_initialize_unknown_product(ac_client, shopper):
    resp = await ac_client.post(f"{INV}/initialize", json={"product_id": "00000000-0000-0000-0000-000000000000"},
                                headers=shopper["headers"])
    assert resp.status_code == 404

    resp = await ac_client.post(f"{INV}/initialize", json={"product_id": "nope"}, headers=shopper["headers"])
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_update_quantity_rules(ac_client, shopper, make_product):
    product = await make_product()
    inv = await _initialize(ac_client, shopper["headers"], product["public_id"], 20, threshold=5)
    url = f"{INV}/{inv['id']}/update-quantity"

    resp = await ac_client.post(url, json={"quantity_change": -16, "reason": "Damaged in storage"}, headers=shopper["headers"])
    assert resp.status_code == 200
    updated = resp.json()["data"]["inventory"]
    assert updated["quantity"] == 4
    assert updated["is_low_stock"] is True

    resp = await ac_client.post(url, json={"quantity_change": -5, "reason": "oops"}, headers=shopper["headers"])
    assert resp.status_code == 400

    resp = await ac_client.post(url, json={"quantity_change": 0, "reason": "noop"}, headers=shopper["headers"])
    assert resp.status_code == 422

    resp = await ac_client.post(url, json={"quantity_change": 3, "reason": "   "}, headers=shopper["headers"])
    assert resp.status_code == 422

    resp = await ac_client.get(f"{INV}/product/{product['public_id']}/history", headers=shopper["headers"],
                               params={"action": "decrease"})
    [entry] = resp.json()["data"]["items"]
    assert entry["quantity_before"] == 20
    assert entry["quantity_after"] == 4
    assert entry["quantity_changed"] == -16
    assert entry["reason"] == "Damaged in storage"


@pytest.mark.asyncio
async def test_reserve_and_release_restore_available(ac_client, shopper, make_product):
    product = await make_product(quantity=10, threshold=2)
    headers = shopper["headers"]

    resp = await ac_client.post(f"{INV}/reserve", json={"product_id": product["public_id"], "quantity": 4, "order_ref": "ORD-1"},
                                headers=headers)
    assert resp.status_code == 201
    reservation = resp.json()["data"]["reservation"]
    assert reservation["status"] == "active"
    assert reservation["customer_id"] == shopper["public_id"]

    inv = (await ac_client.get(f"{INV}/product/{product['public_id']}", headers=headers)).json()["data"]["inventory"]
    assert (inv["quantity"], inv["reserved"], inv["available"]) == (10, 4, 6)

    resp = await ac_client.post(f"{INV}/reserve", json={"product_id": product["public_id"], "quantity": 7, "order_ref": "ORD-2"},
                                headers=headers)
    assert resp.status_code == 400

    resp = await ac_client.put(f"{INV}/reservations/{reservation['id']}/release", json={"reason": "Customer changed mind"},
                               headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["reservation"]["status"] == "cancelled"

    inv = (await ac_client.get(f"{INV}/product/{product['public_id']}", headers=headers)).json()["data"]["inventory"]
    assert (inv["quantity"], inv["reserved"], inv["available"]) == (10, 0, 10)

    resp = await ac_client.put(f"{INV}/reservations/{reservation['id']}/release", headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_low_stock_listing_and_analytics(ac_client, shopper, make_product):
    await make_product("Low", price=100, quantity=2, threshold=5)
    await make_product("Empty", price=100, quantity=0, threshold=5)
    await make_product("Plenty", price=200, quantity=50, threshold=5)

    resp = await ac_client.get(f"{INV}/low-stock", headers=shopper["headers"])
    assert resp.json()["data"]["pagination"]["total"] == 2

    analytics = (await ac_client.get(f"{INV}/analytics", headers=shopper["headers"])).json()["data"]["analytics"]
    assert analytics["total_products"] == 3
    assert analytics["low_stock_count"] == 2
    assert analytics["out_of_stock_count"] == 1
    assert analytics["total_quantity"] == 52
    assert analytics["total_value"] == 2 * 100 + 50 * 200
    assert analytics["top_low_stock_products"][0]["quantity"] == 0


@pytest.mark.asyncio
async def test_bulk_thresholds_reports_each_item(ac_client, shopper, make_product):
    product = await make_product()
    inv = await _initialize(ac_client, shopper["headers"], product["public_id"], 8, threshold=3)

    payload = {"updates": [
        {"inventory_id": inv["id"], "low_stock_threshold": 10},
        {"inventory_id": "00000000-0000-0000-0000-000000000000", "low_stock_threshold": 1},
    ]}
    resp = await ac_client.put(f"{INV}/thresholds/bulk-update", json=payload, headers=shopper["headers"])
    body = resp.json()["data"]
    assert body["successful"] == 1
    assert body["failed"] == 1
    assert body["results"][1]["error"] == "Inventory not found"

    refreshed = (await ac_client.get(f"{INV}/{inv['id']}", headers=shopper["headers"])).json()["data"]["inventory"]
    assert refreshed["low_stock_threshold"] == 10
    assert refreshed["is_low_stock"] is True


@pytest.mark.asyncio
async def test_delete_blocked_by_active_reservation(ac_client, shopper, admin, make_product):
    product = await make_product(quantity=5)
    inv = (await ac_client.get(f"{INV}/product/{product['public_id']}", headers=shopper["headers"])).json()["data"]["inventory"]

    resp = await ac_client.post(f"{INV}/reserve", json={"product_id": product["public_id"], "quantity": 1, "order_ref": "ORD-9"},
                                headers=shopper["headers"])
    reservation_id = resp.json()["data"]["reservation"]["id"]

    assert (await ac_client.delete(f"{INV}/{inv['id']}", headers=shopper["headers"])).status_code == 403
    assert (await ac_client.delete(f"{INV}/{inv['id']}", headers=admin["headers"])).status_code == 409

    await ac_client.put(f"{INV}/reservations/{reservation_id}/release", headers=shopper["headers"])
    assert (await ac_client.delete(f"{INV}/{inv['id']}", headers=admin["headers"])).status_code == 200
    assert (await ac_client.get(f"{INV}/{inv['id']}", headers=admin["headers"])).status_code == 404
