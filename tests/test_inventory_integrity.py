import pytest
from fastapi import HTTPException
from sqlalchemy import select, text, update
from conftest import url_prefix
from shopfront.inventory.repository import inventory_by_product_id, write_stock_levels
from shopfront.schema.full_schema import Inventory, InventoryHistory, StockReservation

INV = f"{url_prefix}/inventories"
RES = f"{url_prefix}/stock-reservations"


@pytest.fixture
def sqlite_foreign_keys():
    return True


async def _stock(session_factory, product_id):
    async with session_factory() as session:
        inv = await inventory_by_product_id(session, product_id)
    return inv.quantity, inv.reserved


@pytest.mark.asyncio
async def test_foreign_keys_are_enforced(session_factory):
    async with session_factory() as session:
        assert (await session.execute(text("PRAGMA foreign_keys"))).scalar_one() == 1


@pytest.mark.asyncio
async def test_delete_inventory_keeps_audit_trail(ac_client, admin, make_product, session_factory):
    product = await make_product()
    headers = admin["headers"]

    resp = await ac_client.post(f"{INV}/initialize", json={"product_id": product["public_id"], "initial_quantity": 5},
                                headers=headers)
    assert resp.status_code == 201
    inv = resp.json()["data"]["inventory"]

    resp = await ac_client.post(f"{INV}/{inv['id']}/update-quantity", json={"quantity_change": 3, "reason": "Restock"},
                                headers=headers)
    assert resp.status_code == 200

    resp = await ac_client.delete(f"{INV}/{inv['id']}", headers=headers)
    assert resp.status_code == 200
    assert (await ac_client.get(f"{INV}/{inv['id']}", headers=headers)).status_code == 404

    async with session_factory() as session:
        rows = (await session.execute(
            select(InventoryHistory).where(InventoryHistory.product_id == product["id"])
        )).scalars().all()
    assert sorted(r.action for r in rows) == ["increase", "initialize"]
    assert all(r.inventory_id is None for r in rows)

    resp = await ac_client.get(f"{INV}/product/{product['public_id']}/history", headers=headers)
    assert [h["action"] for h in resp.json()["data"]["items"]] == ["increase", "initialize"]


@pytest.mark.asyncio
async def test_write_from_stale_snapshot_is_rejected(make_product, session_factory):
    product = await make_product(quantity=10)

    async with session_factory() as session:
        snapshot = await inventory_by_product_id(session, product["id"])

    # a competing writer holds 3 units after the snapshot was taken
    async with session_factory() as session:
        await session.execute(update(Inventory).where(Inventory.id == snapshot.id).values(reserved=3))
        await session.commit()

    async with session_factory() as session:
        with pytest.raises(HTTPException) as exc:
            await write_stock_levels(session, snapshot, quantity=10, reserved=snapshot.reserved + 8, min_available=8)
        await session.rollback()

    assert exc.value.status_code == 409
    assert await _stock(session_factory, product["id"]) == (10, 3)


@pytest.mark.asyncio
async def test_guarded_write_refuses_to_oversell(make_product, session_factory):
    product = await make_product(quantity=5)

    async with session_factory() as session:
        inv = await inventory_by_product_id(session, product["id"])
        with pytest.raises(HTTPException) as exc:
            await write_stock_levels(session, inv, quantity=5, reserved=5, min_available=6)
        await session.rollback()

    assert exc.value.status_code == 409
    assert await _stock(session_factory, product["id"]) == (5, 0)


@pytest.mark.asyncio
async def test_competing_reservations_never_exceed_stock(ac_client, shopper, make_product, session_factory):
    product = await make_product(quantity=5)
    headers = shopper["headers"]

    resp = await ac_client.post(f"{INV}/reserve", json={"product_id": product["public_id"], "quantity": 3, "order_ref": "ORD-1"},
                                headers=headers)
    assert resp.status_code == 201

    resp = await ac_client.post(f"{INV}/reserve", json={"product_id": product["public_id"], "quantity": 3, "order_ref": "ORD-2"},
                                headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Insufficient available inventory for reservation"

    resp = await ac_client.post(RES, json={"product_id": product["public_id"], "quantity": 3, "order_ref": "ORD-3"},
                                headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Insufficient stock. Available: 2, Requested: 3"

    quantity, reserved = await _stock(session_factory, product["id"])
    assert (quantity, reserved) == (5, 3)
    assert reserved <= quantity

    async with session_factory() as session:
        reservations = (await session.execute(
            select(StockReservation).where(StockReservation.product_id == product["id"])
        )).scalars().all()
        reserve_rows = (await session.execute(
            select(InventoryHistory).where(InventoryHistory.product_id == product["id"], InventoryHistory.action == "reserve")
        )).scalars().all()
    assert [r.order_ref for r in reservations] == ["ORD-1"]
    assert len(reserve_rows) == 1
