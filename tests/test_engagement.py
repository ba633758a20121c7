from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
import pytest
from conftest import url_prefix
from shopfront.engagement.calculators import (METRIC_TYPES, bounce_rate, conversion_rate, engagement_score, retention,
                                              session_duration, summarize_metrics, time_on_site, weekly_active)

ENG = f"{url_prefix}/engagement-metrics"

START = datetime(2024, 6, 1, tzinfo=timezone.utc)
END = START + timedelta(days=30)


def ev(behavior_type="page_view", session_id="s1", minutes=0, time_spent=0, day=0):
    return SimpleNamespace(behavior_type=behavior_type, session_id=session_id, time_spent=time_spent,
                           timestamp=START + timedelta(days=day, minutes=minutes))


def test_engagement_score_weights_components():
    events = [
        ev(time_spent=200), ev(time_spent=200), ev(day=1, time_spent=200),
        ev("purchase", day=1), ev("search"),
    ]
    result = engagement_score(events, START, END)

    meta = result["metadata"]
    assert meta["page_views_score"] == 30
    assert meta["time_spent_score"] == 10
    assert meta["interactions_score"] == 40
    assert meta["frequency_score"] == 28
    # 30*.2 + 10*.3 + 40*.3 + 28*.2
    assert result["value"] == 27


def test_engagement_score_caps_each_component():
    events = [ev(day=d % 10, time_spent=1000) for d in range(20)] + [ev("purchase") for _ in range(10)]
    assert engagement_score(events, START, END)["value"] == 100


def test_session_and_bounce_metrics():
    events = [
        ev(session_id="a", minutes=0), ev("click", session_id="a", minutes=2),
        ev(session_id="b"),
        ev("click", session_id="c"),
    ]
    duration = session_duration(events, START, END)
    assert duration["value"] == 120
    assert duration["metadata"]["total_sessions"] == 3
    assert duration["metadata"]["sessions_with_duration"] == 1

    bounce = bounce_rate(events, START, END)
    assert bounce["metadata"]["bounces"] == 1
    assert round(bounce["value"], 2) == 33.33


def test_conversion_and_time_on_site():
    events = [ev(session_id="a", time_spent=30), ev("purchase", session_id="a", time_spent=30), ev(session_id="b", time_spent=60)]
    assert conversion_rate(events, START, END)["value"] == 50
    assert time_on_site(events, START, END)["value"] == 60
    assert conversion_rate([], START, END)["value"] == 0


def test_retention():
    events = [ev(day=0), ev(day=0, minutes=5), ev(day=3), ev(day=7)]
    result = retention(events, START, END)
    assert result["value"] == pytest.approx(10)
    assert result["metadata"]["active_days"] == 3

    empty = retention([], START, END, has_any_activity=False)
    assert empty["value"] == 0
    assert empty["metadata"]["reason"] == "No activity found"


def test_weeks_start_on_sunday():
    # 2024-06-01 is a Saturday, 2024-06-02 a Sunday
    assert weekly_active([ev(day=0), ev(day=1)], START, END)["value"] == 2
    assert weekly_active([ev(day=1), ev(day=2), ev(day=7)], START, END)["value"] == 1


def test_summarize_metrics_groups_by_period_and_type():
    def m(metric_type, value, day):
        return SimpleNamespace(metric_type=metric_type, metric_value=value, calculation_date=START + timedelta(days=day))

    rows = summarize_metrics([m("page_views", 4, 0), m("page_views", 6, 0), m("bounce_rate", 50, 0), m("page_views", 1, 1)])
    assert rows[0] == {"period": "2024-06-01", "metric_type": "bounce_rate", "count": 1, "average": 50, "min": 50, "max": 50}
    assert rows[1] == {"period": "2024-06-01", "metric_type": "page_views", "count": 2, "average": 5, "min": 4, "max": 6}

    monthly = summarize_metrics([m("page_views", 4, 0), m("page_views", 1, 1)], group_by="month")
    assert monthly == [{"period": "2024-06", "metric_type": "page_views", "count": 2, "average": 2.5, "min": 1, "max": 4}]


async def _track(ac_client, headers, behavior_type, session_id="web-1", time_spent=0):
    resp = await ac_client.post(f"{url_prefix}/user-behaviors/track", headers=headers,
                                json={"behavior_type": behavior_type, "session_id": session_id, "time_spent": time_spent})
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_calculate_metric_for_self(ac_client, shopper):
    headers = shopper["headers"]
    await _track(ac_client, headers, "page_view", time_spent=120)
    await _track(ac_client, headers, "page_view", time_spent=60)
    await _track(ac_client, headers, "purchase")

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "page_views", "user_id": shopper["public_id"]},
                                headers=headers)
    assert resp.status_code == 201
    metric = resp.json()["data"]["metric"]
    assert metric["metric_value"] == 2
    assert metric["source"] == "calculated"
    assert metric["user_id"] == shopper["public_id"]

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "conversion_rate", "user_id": shopper["public_id"]},
                                headers=headers)
    assert resp.json()["data"]["metric"]["metric_value"] == 100

    listing = (await ac_client.get(ENG, headers=headers, params={"metric_type": "page_views"})).json()["data"]
    assert listing["pagination"]["total"] == 1

    analytics = (await ac_client.get(f"{ENG}/analytics", headers=headers)).json()["data"]
    assert analytics["group_by"] == "day"
    assert {row["metric_type"] for row in analytics["analytics"]} == {"page_views", "conversion_rate"}


@pytest.mark.asyncio
async def test_calculate_rules(ac_client, shopper, admin, make_user):
    other = await make_user("other")

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "page_views", "user_id": other["public_id"]},
                                headers=shopper["headers"])
    assert resp.status_code == 403

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "page_views", "user_id": other["public_id"]},
                                headers=admin["headers"])
    assert resp.status_code == 201

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "happiness", "user_id": shopper["public_id"]},
                                headers=shopper["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Unknown metric type: happiness"

    resp = await ac_client.post(f"{ENG}/calculate", headers=shopper["headers"], json={
        "metric_type": "page_views", "user_id": shopper["public_id"],
        "period_start": "2024-06-10T00:00:00Z", "period_end": "2024-06-01T00:00:00Z",
    })
    assert resp.status_code == 400

    resp = await ac_client.post(f"{ENG}/calculate", json={"metric_type": "page_views",
                                                          "user_id": "00000000-0000-0000-0000-000000000000"},
                                headers=admin["headers"])
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_calculate_all_and_manage_metric(ac_client, shopper, make_user):
    headers = shopper["headers"]
    resp = await ac_client.post(f"{ENG}/calculate-all", json={"user_id": shopper["public_id"]}, headers=headers)
    assert resp.status_code == 201
    body = resp.json()["data"]
    assert body["count"] == len(METRIC_TYPES)
    assert body["errors"] == 0

    retention_metric = next(m for m in body["metrics"] if m["metric_type"] == "retention")
    assert retention_metric["metadata"]["reason"] == "No activity found"

    metric_id = body["metrics"][0]["id"]
    resp = await ac_client.put(f"{ENG}/{metric_id}", json={"status": "archived", "metadata": {"note": "reviewed"}},
                               headers=headers)
    updated = resp.json()["data"]["metric"]
    assert updated["status"] == "archived"
    assert updated["metadata"]["note"] == "reviewed"

    archived = (await ac_client.get(ENG, headers=headers, params={"status": "archived"})).json()["data"]
    assert archived["pagination"]["total"] == 1

    other = await make_user("other")
    assert (await ac_client.get(f"{ENG}/{metric_id}", headers=other["headers"])).status_code == 403
    assert (await ac_client.delete(f"{ENG}/{metric_id}", headers=headers)).status_code == 200
    assert (await ac_client.get(f"{ENG}/{metric_id}", headers=headers)).status_code == 404
