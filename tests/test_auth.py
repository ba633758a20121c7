import pytest
from conftest import STRONG_PASSWORD, url_prefix


@pytest.mark.asyncio
async def test_signup_login_and_me(ac_client):
    payload = {"username": "leafy", "email": "Leafy@Example.com", "password": STRONG_PASSWORD, "first_name": "Lea"}
    resp = await ac_client.post(f"{url_prefix}/auth/signup", json=payload)
    assert resp.status_code == 201
    user_id = resp.json()["data"]["user_id"]

    resp = await ac_client.post(f"{url_prefix}/auth/login", json={"identifier": "leafy@example.com", "password": STRONG_PASSWORD})
    assert resp.status_code == 200
    body = resp.json()["data"]
    assert body["token_type"] == "bearer"
    assert body["expires_in"] > 0

    resp = await ac_client.get(f"{url_prefix}/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert resp.status_code == 200
    me = resp.json()["data"]["user"]
    assert me["id"] == user_id
    assert me["email"] == "leafy@example.com"
    assert "authenticated" in me["roles"]


@pytest.mark.asyncio
async def test_signup_rejects_weak_password_and_duplicates(ac_client):
    weak = {"username": "weakling", "email": "weak@example.com", "password": "password"}
    resp = await ac_client.post(f"{url_prefix}/auth/signup", json=weak)
    assert resp.status_code == 400

    ok = {"username": "twin", "email": "twin@example.com", "password": STRONG_PASSWORD}
    assert (await ac_client.post(f"{url_prefix}/auth/signup", json=ok)).status_code == 201

    resp = await ac_client.post(f"{url_prefix}/auth/signup", json={**ok, "email": "other@example.com"})
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Username already taken"

    resp = await ac_client.post(f"{url_prefix}/auth/signup", json={**ok, "username": "twin2"})
    assert resp.status_code == 400
    assert resp.json()["error"]["details"]["message"] == "Email already registered"


@pytest.mark.asyncio
async def test_login_with_bad_password(ac_client, shopper):
    resp = await ac_client.post(f"{url_prefix}/auth/login", json={"identifier": "shopper", "password": "Wr0ng!pass"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "HTTP_401"


@pytest.mark.asyncio
async def test_protected_route_needs_token(ac_client):
    resp = await ac_client.get(f"{url_prefix}/auth/me")
    assert resp.status_code == 401

    resp = await ac_client.get(f"{url_prefix}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "INVALID_AUTH"


@pytest.mark.asyncio
async def test_health_is_public(ac_client):
    resp = await ac_client.get(f"{url_prefix}/health")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"
    assert resp.headers.get("X-Request-ID")
