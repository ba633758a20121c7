from datetime import timedelta
from uuid import UUID
import pytest
from sqlalchemy import select, update
from conftest import url_prefix
from shopfront.common.utils import now
from shopfront.schema.full_schema import CheckoutSession

CHK = f"{url_prefix}/checkout/session"

STEP_DATA = {
    "cart": {"has_items": True, "total_amount": 42.5},
    "shipping": {"address": "1 Main St", "shipping_method": "standard"},
    "billing": {"address": "1 Main St", "payment_method": "card"},
    "payment": {"card_number": "4111 1111 1111 1111", "expiry_date": "12/29", "cvv": "123"},
    "review": {"terms_accepted": True, "privacy_accepted": True},
}


async def _start(ac_client, headers, **body):
    resp = await ac_client.post(CHK, json=body or None, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


async def _validate(ac_client, headers, checkout_id, step, data=None):
    resp = await ac_client.post(f"{CHK}/{checkout_id}/validate-step", headers=headers,
                                json={"step": step, "data": STEP_DATA[step] if data is None else data})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def _advance(ac_client, headers, checkout_id, step):
    await _validate(ac_client, headers, checkout_id, step)
    resp = await ac_client.post(f"{CHK}/{checkout_id}/next", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_new_session_starts_at_cart(ac_client, shopper):
    data = await _start(ac_client, shopper["headers"], metadata={"cart_ref": "cart-1"})
    cs, progress = data["checkout_session"], data["progress"]

    assert cs["status"] == "active"
    assert cs["user_id"] == shopper["public_id"]
    assert cs["session_id"] is None
    assert cs["metadata"] == {"cart_ref": "cart-1"}
    assert cs["steps"]["cart"]["active"] is True
    assert progress["current_step"] == "cart"
    assert progress["available_steps"] == ["cart"]
    assert progress["can_proceed"] is False
    assert progress["progress_percentage"] == 0


@pytest.mark.asyncio
async def test_next_requires_valid_step(ac_client, shopper):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers))["checkout_session"]["id"]

    resp = await ac_client.post(f"{CHK}/{cid}/next", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Cannot proceed to next step - validation failed"

    failed = await _validate(ac_client, headers, cid, "cart", {"has_items": True, "total_amount": 0})
    assert failed["validation"]["is_valid"] is False
    assert failed["progress"]["errors"] == {"total_amount": ["Cart total must be greater than zero"]}

    body = await _advance(ac_client, headers, cid, "cart")
    assert body["progress"]["current_step"] == "shipping"
    assert body["progress"]["completed_steps"] == ["cart"]
    assert body["progress"]["progress_percentage"] == 17
    assert body["status"] == "active"

    resp = await ac_client.post(f"{CHK}/{cid}/validate-step", json={"step": "gift-wrap", "data": {}}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Invalid step: gift-wrap"


@pytest.mark.asyncio
async def test_navigation_back_and_jump(ac_client, shopper):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers))["checkout_session"]["id"]
    await _advance(ac_client, headers, cid, "cart")

    resp = await ac_client.post(f"{CHK}/{cid}/previous", headers=headers)
    assert resp.json()["data"]["progress"]["current_step"] == "cart"
    assert (await ac_client.post(f"{CHK}/{cid}/previous", headers=headers)).status_code == 400

    resp = await ac_client.post(f"{CHK}/{cid}/jump", json={"step": "payment"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Target step is not available"

    resp = await ac_client.post(f"{CHK}/{cid}/jump", json={"step": "gift-wrap"}, headers=headers)
    assert resp.json()["error"]["details"]["message"] == "Target step not found"

    resp = await ac_client.post(f"{CHK}/{cid}/jump", json={"step": "shipping"}, headers=headers)
    assert resp.json()["data"]["progress"]["current_step"] == "shipping"

    cs = (await ac_client.get(f"{CHK}/{cid}", headers=headers)).json()["data"]["checkout_session"]
    history = cs["steps"]["shipping"]["navigation_history"]
    assert [h["action"] for h in history] == ["next", "jump"]
    assert cs["steps"]["cart"]["active"] is False


@pytest.mark.asyncio
async def test_full_flow_completes_session(ac_client, shopper):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers))["checkout_session"]["id"]

    for step in ("cart", "shipping", "billing", "payment"):
        body = await _advance(ac_client, headers, cid, step)
        assert body["status"] == "active"

    body = await _advance(ac_client, headers, cid, "review")
    assert body["status"] == "completed"
    assert body["progress"]["current_step"] == "confirmation"
    assert body["progress"]["next_step"] is None

    resp = await ac_client.post(f"{CHK}/{cid}/next", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Checkout session is completed"

    analytics = (await ac_client.get(f"{CHK}/{cid}/analytics", headers=headers)).json()["data"]
    assert analytics["status"] == "completed"
    assert analytics["analytics"]["cart"]["attempts"] == 1
    assert analytics["analytics"]["cart"]["completion_rate"] == 100
    assert analytics["analytics"]["confirmation"]["attempts"] == 0


@pytest.mark.asyncio
async def test_guest_checkout_is_scoped_to_session(ac_client, shopper):
    guest = {"X-Session-Id": "guest-abc"}
    data = await _start(ac_client, guest)
    cid = data["checkout_session"]["id"]
    assert data["checkout_session"]["session_id"] == "guest-abc"
    assert data["checkout_session"]["user_id"] is None

    assert (await ac_client.get(f"{CHK}/{cid}", headers=guest)).status_code == 200
    assert (await ac_client.get(f"{CHK}/{cid}", headers={"X-Session-Id": "guest-xyz"})).status_code == 403
    assert (await ac_client.get(f"{CHK}/{cid}", headers=shopper["headers"])).status_code == 403
    assert (await ac_client.post(CHK)).status_code == 401


@pytest.mark.asyncio
async def test_expired_session_is_abandoned(ac_client, shopper, session_factory):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers))["checkout_session"]["id"]

    async with session_factory() as session:
        await session.execute(update(CheckoutSession).where(CheckoutSession.public_id == UUID(cid))
                              .values(expires_at=now() - timedelta(minutes=1)))
        await session.commit()

    resp = await ac_client.post(f"{CHK}/{cid}/validate-step", json={"step": "cart", "data": STEP_DATA["cart"]}, headers=headers)
    assert resp.status_code == 410

    cs = (await ac_client.get(f"{CHK}/{cid}", headers=headers)).json()["data"]["checkout_session"]
    assert cs["status"] == "abandoned"
    assert cs["abandoned_at"] is not None

    resp = await ac_client.post(f"{CHK}/{cid}/next", headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_abandon_records_reason(ac_client, shopper):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers, metadata={"cart_ref": "c-9"}))["checkout_session"]["id"]

    resp = await ac_client.post(f"{CHK}/{cid}/abandon", params={"reason": "too expensive"}, headers=headers)
    cs = resp.json()["data"]["checkout_session"]
    assert cs["status"] == "abandoned"
    assert cs["metadata"] == {"cart_ref": "c-9", "abandon_reason": "too expensive"}

    assert (await ac_client.post(f"{CHK}/{cid}/abandon", headers=headers)).status_code == 400
    assert (await ac_client.get(f"{CHK}/not-a-uuid", headers=headers)).status_code == 400


@pytest.mark.asyncio
async def test_card_details_are_masked_at_rest(ac_client, shopper, session_factory):
    headers = shopper["headers"]
    cid = (await _start(ac_client, headers))["checkout_session"]["id"]
    for step in ("cart", "shipping", "billing"):
        await _advance(ac_client, headers, cid, step)

    result = await _validate(ac_client, headers, cid, "payment")
    assert result["validation"]["is_valid"] is True

    resp = await ac_client.get(f"{CHK}/{cid}", headers=headers)
    assert "4111 1111 1111 1111" not in resp.text
    assert resp.json()["data"]["checkout_session"]["steps"]["payment"]["step_data"] == {
        "card_number": "************1111",
        "expiry_date": "12/29",
        "cvv": "***",
    }

    async with session_factory() as session:
        cs = (await session.execute(select(CheckoutSession).where(CheckoutSession.public_id == UUID(cid)))).scalar_one()
    assert cs.steps["payment"]["step_data"]["cvv"] == "***"
