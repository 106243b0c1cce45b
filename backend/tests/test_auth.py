import pytest
from sqlalchemy import select

from auth_utils import create_jwt, hash_password, verify_jwt, verify_password
from conftest import bearer, signup
from models import Balance
from settings import get_settings

settings = get_settings()


@pytest.mark.asyncio
async def test_signup_returns_token_and_seeds_balances(client, session):
    data = await signup(client, username="bob")

    assert data["token"]
    assert data["user"]["username"] == "bob"
    assert data["user"]["wallet_address"] is None
    assert verify_jwt(data["token"]) == data["user"]["id"]

    res = await session.execute(select(Balance).where(Balance.user_id == data["user"]["id"]))
    balances = {b.currency: float(b.amount) for b in res.scalars().all()}
    assert balances == {"BTC": pytest.approx(0.01), "ETH": pytest.approx(0.1)}


@pytest.mark.asyncio
async def test_signup_rejects_duplicates(client):
    await signup(client, username="carol")

    same_name = await client.post(
        "/auth/signup",
        json={
            "username": "Carol",
            "email": "other@example.com",
            "password": "secret1",
            "confirm_password": "secret1",
        },
    )
    assert same_name.status_code == 400
    assert same_name.json()["detail"] == "username already taken"

    same_email = await client.post(
        "/auth/signup",
        json={
            "username": "carol2",
            "email": "carol@example.com",
            "password": "secret1",
            "confirm_password": "secret1",
        },
    )
    assert same_email.status_code == 400
    assert same_email.json()["detail"] == "email already registered"


@pytest.mark.asyncio
async def test_signup_validates_payload(client):
    res = await client.post(
        "/auth/signup",
        json={
            "username": "dave",
            "email": "dave@example.com",
            "password": "secret1",
            "confirm_password": "secret2",
        },
    )
    assert res.status_code == 422

    res = await client.post(
        "/auth/signup",
        json={"username": "ab", "email": "ab@example.com", "password": "secret1", "confirm_password": "secret1"},
    )
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_login_and_me(client):
    await signup(client, username="erin", password="correct-horse")

    bad = await client.post("/auth/login", json={"username": "erin", "password": "wrong-horse"})
    assert bad.status_code == 401

    good = await client.post("/auth/login", json={"username": "erin", "password": "correct-horse"})
    assert good.status_code == 200
    token = good.json()["token"]

    me = await client.get("/auth/me", headers=bearer(token))
    assert me.status_code == 200
    assert me.json()["username"] == "erin"


@pytest.mark.asyncio
async def test_me_requires_valid_token(client):
    missing = await client.get("/auth/me")
    assert missing.status_code == 401

    garbage = await client.get("/auth/me", headers=bearer("not-a-jwt"))
    assert garbage.status_code == 401

    unknown = await client.get("/auth/me", headers=bearer(create_jwt(9999)))
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_login_rate_limit(client):
    for _ in range(settings.auth_rate_limit_max_requests):
        res = await client.post("/auth/login", json={"username": "nobody", "password": "whatever"})
        assert res.status_code == 401

    blocked = await client.post("/auth/login", json={"username": "nobody", "password": "whatever"})
    assert blocked.status_code == 429


def test_password_hashing():
    hashed = hash_password("s3cret!")
    assert hashed != "s3cret!"
    assert verify_password("s3cret!", hashed)
    assert not verify_password("nope", hashed)
    assert not verify_password("s3cret!", "not-a-hash")
