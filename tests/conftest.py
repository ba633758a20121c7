import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RESERVATION_SWEEP_ENABLED", "false")
os.environ.setdefault("ENV", "dev")

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from uuid6 import uuid7
from shopfront.auth.repository import insert_user
from shopfront.auth.utils import create_access_token
from shopfront.db.dependencies import get_session
from shopfront.main import app
from shopfront.schema.full_schema import Inventory, Product

url_prefix = "/api/v1"

STRONG_PASSWORD = "Sup3r$ecret!"


def _enforce_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def sqlite_foreign_keys():
    """SQLite leaves FK enforcement off; modules that rely on ON DELETE rules override this."""
    return False


@pytest.fixture
async def session_factory(sqlite_foreign_keys):
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})
    if sqlite_foreign_keys:
        event.listen(engine.sync_engine, "connect", _enforce_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def ac_client(session_factory):
    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """Insert a user straight into the database and mint a bearer token for it."""
    async def _make(username: str = "shopper", roles=("authenticated",)):
        async with session_factory() as session:
            user = await insert_user(session, username=username, email=f"{username}@example.com",
                                     password=STRONG_PASSWORD, role_names=list(roles))
            await session.commit()

        token = create_access_token(user.public_id, roles)
        return {
            "id": user.id,
            "public_id": str(user.public_id),
            "email": user.email,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return _make


@pytest.fixture
async def shopper(make_user):
    return await make_user("shopper")


@pytest.fixture
async def admin(make_user):
    return await make_user("boss", roles=("authenticated", "admin"))


@pytest.fixture
def make_product(session_factory):
    async def _make(name: str = "Trail Mix", price: int = 450, quantity=None, threshold: int = 10):
        async with session_factory() as session:
            product = Product(name=f"{name} {uuid7().hex[:6]}", price=price)
            session.add(product)
            await session.flush()
            if quantity is not None:
                session.add(Inventory(product_id=product.id, quantity=quantity, reserved=0,
                                      low_stock_threshold=threshold, is_low_stock=quantity <= threshold))
            await session.commit()
        return {"id": product.id, "public_id": str(product.public_id), "name": product.name}

    return _make
