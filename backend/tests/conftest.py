import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.ledger import ledger_locks
from core.sportsbook import seed_sports_matches
from db import Base, get_session
from main import app
import models  # noqa: F401
from models import User
from routes.auth import rate_limiter


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{(tmp_path / 'test_db.sqlite').as_posix()}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s
        await s.rollback()


@pytest_asyncio.fixture(autouse=True)
async def override_dependencies(session_factory):
    async def _get_session_override():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _get_session_override
    yield
    app.dependency_overrides.pop(get_session, None)


@pytest_asyncio.fixture(autouse=True)
async def reset_shared_state():
    rate_limiter.reset()
    ledger_locks.reset()
    yield
    rate_limiter.reset()
    ledger_locks.reset()


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


async def signup(client, username="alice", password="hunter22"):
    res = await client.post(
        "/auth/signup",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "confirm_password": password,
        },
    )
    assert res.status_code == 201, res.text
    return res.json()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def user(client):
    return await signup(client)


@pytest_asyncio.fixture
async def auth_headers(user):
    return bearer(user["token"])


@pytest_asyncio.fixture
async def admin_headers(client, session):
    data = await signup(client, username="admin")
    res = await session.execute(select(User).where(User.id == data["user"]["id"]))
    admin = res.scalar_one()
    admin.is_admin = True
    await session.commit()
    return bearer(data["token"])


@pytest_asyncio.fixture
async def matches(session):
    await seed_sports_matches(session)
