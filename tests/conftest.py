"""
Pytest configuration and fixtures for the garage backend tests.

Service and route tests run against an in-memory SQLite database; pure unit
tests use the mock_db session.
"""
import os
from decimal import Decimal
from typing import AsyncGenerator
from unittest.mock import MagicMock, AsyncMock

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["APPROVAL_LINK_BASE_URL"] = "https://oficina.test"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from garage_backend.core.database import Base, get_db  # noqa: E402
from garage_backend.core.security import create_access_token  # noqa: E402
from garage_backend.models import Client, Garage, Part, Vehicle  # noqa: E402
from garage_backend.repositories import TenantScope  # noqa: E402


@pytest.fixture
def mock_db() -> AsyncMock:
    """Create mock async database session."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.execute = AsyncMock()
    return db


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory schema per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def garage(db) -> Garage:
    garage = Garage(name="Oficina Central", document="12345678000190", is_active=True)
    db.add(garage)
    await db.commit()
    return garage


@pytest_asyncio.fixture
async def other_garage(db) -> Garage:
    garage = Garage(name="Oficina Norte", is_active=True)
    db.add(garage)
    await db.commit()
    return garage


@pytest.fixture
def scope(db, garage) -> TenantScope:
    return TenantScope(db, garage.id)


@pytest_asyncio.fixture
async def vehicle(db, garage) -> Vehicle:
    client = Client(garage_id=garage.id, name="Maria Souza", phone="11999990000")
    db.add(client)
    await db.flush()
    vehicle = Vehicle(
        garage_id=garage.id,
        client_id=client.id,
        plate="ABC1D23",
        brand="Fiat",
        model="Uno",
        year=2015,
    )
    db.add(vehicle)
    await db.commit()
    return vehicle


@pytest_asyncio.fixture
async def part(db, garage) -> Part:
    """Brake pad set, the usual P1 of the scenarios."""
    part = Part(
        garage_id=garage.id,
        code="P1",
        name="Brake pads",
        unit="un",
        cost_price=Decimal("5.00"),
        selling_price=Decimal("10.00"),
        profit_margin=Decimal("100.00"),
    )
    db.add(part)
    await db.commit()
    return part


@pytest_asyncio.fixture
async def second_part(db, garage) -> Part:
    part = Part(
        garage_id=garage.id,
        code="P2",
        name="Oil filter",
        cost_price=Decimal("20.00"),
        selling_price=Decimal("30.00"),
    )
    db.add(part)
    await db.commit()
    return part


@pytest.fixture
def auth_headers(garage) -> dict:
    token = create_access_token({"sub": "42", "garage_id": garage.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the app, sharing the test session."""
    from garage_backend.main import app

    async def override_get_db():
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
