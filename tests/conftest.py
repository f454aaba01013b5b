"""Pytest fixtures for storefront tests."""

import os

# настройки читаются при импорте storefront.core.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "storefront-test-secret-key-0123456789"
os.environ["ALGORITHM"] = "HS256"
os.environ["LOG_LEVEL"] = "WARNING"

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from storefront.db import Base, get_db
from storefront.main import app
from storefront.models.cart_item import CartItem
from storefront.models.product import Product


SECRET_KEY = "storefront-test-secret-key-0123456789"

SHIPPING_ADDRESS = {
    "fullName": "Jane Doe",
    "addressLine1": "1 Market St",
    "city": "Springfield",
    "state": "IL",
    "postalCode": "62701",
    "country": "US",
}


def make_token(user_id, expires_in=timedelta(minutes=15), secret=SECRET_KEY) -> str:
    payload = {
        "id": str(user_id),
        "sub": "jane",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so that separate sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        class_=AsyncSession,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def address():
    return dict(SHIPPING_ADDRESS)


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(session_factory):
    async def _make(title="Linen Shirt", price="29.99", stock=10, is_active=True):
        async with session_factory() as session:
            product = Product(
                slug=f"{title.lower().replace(' ', '-')}-{uuid.uuid4().hex[:8]}",
                title=title,
                price=Decimal(price),
                stock=stock,
                is_active=is_active,
            )
            session.add(product)
            await session.commit()
            return product

    return _make


@pytest.fixture
def add_line(session_factory):
    """Put a line straight into the cart, bypassing the stock checks."""

    async def _add(user_id, product, quantity, unit_price=None, size=None, color=None):
        async with session_factory() as session:
            line = CartItem(
                user_id=user_id,
                product_id=product.id,
                quantity=quantity,
                unit_price=Decimal(unit_price) if unit_price else product.price,
                selected_size=size,
                selected_color=color,
            )
            session.add(line)
            await session.commit()
            return line

    return _add
