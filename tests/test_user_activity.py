from datetime import timedelta
import pytest
from sqlalchemy import update
from conftest import url_prefix
from shopfront.common.utils import now
from shopfront.schema.full_schema import UserActivity
from shopfront.user_activity.constants import ANONYMIZED_USER_AGENT
from shopfront.user_activity.utils import anonymize_ip, location_from_ip, parse_user_agent

ACT = f"{url_prefix}/user-activities"

IPHONE_UA = ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
             "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1")
ANDROID_TABLET_UA = "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36 Edg/120.0"


@pytest.mark.parametrize("raw,expected", [
    ("192.168.1.77", "192.168.1.0"),
    ("2001:db8:85a3:8d3:1319:8a2e:370:7348", "2001:db8:85a3:8d3::"),
    ("fe80::abcd:1234", "fe80::"),
    ("2001:db8::1", "2001:db8::"),
    ("2001:db8:85a3::8a2e:370:7334", "2001:db8:85a3::"),
    ("::1", "::"),
    ("localhost", "localhost"),
    (None, None),
])
def test_anonymize_ip(raw, expected):
    assert anonymize_ip(raw) == expected


def test_location_marker():
    assert location_from_ip("127.0.0.1") == "local"
    assert location_from_ip("8.8.8.8") == "unknown"
    assert location_from_ip(None) is None


def test_parse_user_agent():
    phone = parse_user_agent(IPHONE_UA)
    assert phone == {"type": "mobile", "mobile": True, "browser": "Safari", "os": "iOS"}

    tablet = parse_user_agent(ANDROID_TABLET_UA)
    assert tablet["type"] == "tablet"
    assert tablet["browser"] == "Chrome"
    assert tablet["os"] == "Android"

    desktop = parse_user_agent(DESKTOP_UA)
    assert desktop["type"] == "desktop"
    assert desktop["browser"] == "Edge"
    assert desktop["os"] == "Windows"

    assert parse_user_agent("") is None


async def _record(ac_client, headers, activity_type="page_view", **extra):
    payload = {"activity_type": activity_type, **extra}
    resp = await ac_client.post(ACT, json=payload, headers={**headers, "User-Agent": IPHONE_UA,
                                                            "X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["activity"]


@pytest.mark.asyncio
async def test_record_activity_stores_anonymised_context(ac_client, shopper):
    activity = await _record(ac_client, shopper["headers"], activity_data={"page": "/home"}, metadata={"ref": "mail"})

    assert activity["ip_address"] == "203.0.113.0"
    assert activity["device_info"]["type"] == "mobile"
    assert activity["session_id"]
    assert activity["user_id"] == shopper["public_id"]
    assert activity["metadata"]["ref"] == "mail"
    assert activity["metadata"]["created_by"] == shopper["public_id"]


@pytest.mark.asyncio
async def test_non_admins_only_see_their_own(ac_client, shopper, admin, make_user):
    other = await make_user("other")
    mine = await _record(ac_client, shopper["headers"])
    await _record(ac_client, other["headers"], "login")

    listing = (await ac_client.get(ACT, headers=shopper["headers"], params={"user_id": other["public_id"]})).json()["data"]
    assert [a["id"] for a in listing["items"]] == [mine["id"]]

    everyone = (await ac_client.get(ACT, headers=admin["headers"])).json()["data"]
    assert everyone["pagination"]["total"] == 2

    theirs = (await ac_client.get(ACT, headers=admin["headers"], params={"user_id": other["public_id"]})).json()["data"]
    assert theirs["items"][0]["activity_type"] == "login"

    assert (await ac_client.get(f"{ACT}/{mine['id']}", headers=other["headers"])).status_code == 403
    assert (await ac_client.get(f"{ACT}/{mine['id']}", headers=admin["headers"])).status_code == 200


@pytest.mark.asyncio
async def test_analytics_update_and_delete(ac_client, shopper):
    headers = shopper["headers"]
    first = await _record(ac_client, headers)
    await _record(ac_client, headers, "add_to_cart", success=False, error_message="out of stock")

    analytics = (await ac_client.get(f"{ACT}/analytics", headers=headers)).json()["data"]["analytics"]
    assert analytics["total_activities"] == 2
    assert analytics["success_rate"] == 50
    assert analytics["activity_types"] == {"page_view": 1, "add_to_cart": 1}
    assert analytics["unique_users"] == 1

    resp = await ac_client.put(f"{ACT}/{first['id']}", json={"session_duration": 42, "metadata": {"x": 1}}, headers=headers)
    updated = resp.json()["data"]["activity"]
    assert updated["session_duration"] == 42
    assert updated["metadata"]["x"] == 1
    assert "created_by" in updated["metadata"]

    assert (await ac_client.delete(f"{ACT}/{first['id']}", headers=headers)).status_code == 200
    assert (await ac_client.get(f"{ACT}/{first['id']}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_behavior_tracking_allows_anonymous(ac_client, shopper):
    resp = await ac_client.post(f"{url_prefix}/user-behaviors/track",
                                json={"behavior_type": "scroll", "session_id": "anon-1", "time_spent": 12})
    assert resp.status_code == 201
    assert resp.json()["data"]["behavior"]["user_id"] is None

    await ac_client.post(f"{url_prefix}/user-behaviors/track", headers=shopper["headers"],
                         json={"behavior_type": "click", "session_id": "s-1"})
    listing = (await ac_client.get(f"{url_prefix}/user-behaviors", headers=shopper["headers"])).json()["data"]
    assert [b["behavior_type"] for b in listing["items"]] == ["click"]


@pytest.mark.asyncio
async def test_admin_retention_jobs(ac_client, shopper, admin, session_factory):
    old = await _record(ac_client, shopper["headers"])
    await _record(ac_client, shopper["headers"], "login")

    async with session_factory() as session:
        await session.execute(update(UserActivity).where(UserActivity.activity_type == "page_view")
                              .values(timestamp=now() - timedelta(days=40)))
        await session.commit()

    url = f"{url_prefix}/admin/user-activities"
    assert (await ac_client.post(f"{url}/anonymize", headers=shopper["headers"])).status_code == 403

    resp = await ac_client.post(f"{url}/anonymize", params={"days": 30}, headers=admin["headers"])
    assert resp.json()["data"]["count"] == 1
    scrubbed = (await ac_client.get(f"{ACT}/{old['id']}", headers=admin["headers"])).json()["data"]["activity"]
    assert scrubbed["ip_address"] is None
    assert scrubbed["user_agent"] == ANONYMIZED_USER_AGENT

    resp = await ac_client.delete(f"{url}/cleanup", params={"days": 30}, headers=admin["headers"])
    assert resp.json()["data"]["count"] == 1
    remaining = (await ac_client.get(ACT, headers=admin["headers"])).json()["data"]
    assert remaining["pagination"]["total"] == 1
