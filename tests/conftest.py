"""
Payroll Core - Test Configuration

Pytest fixtures and configuration.
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.database import init_db
from app.schemas.payroll import Actor, Employee
from app.services.entity_store import InMemoryEntityStore, SQLAlchemyEntityStore
from app.services.payroll_defaults import default_statutory_rates
from app.services.tax_calculators import StatutoryProfile


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and .env."""
    return Settings(_env_file=None)


@pytest.fixture
def organisation_id():
    return uuid4()


@pytest.fixture
def period():
    return date(2025, 1, 1), date(2025, 1, 31)


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def sql_store(db_session: AsyncSession) -> SQLAlchemyEntityStore:
    return SQLAlchemyEntityStore(db_session)


@pytest.fixture
def default_profile(organisation_id) -> StatutoryProfile:
    return StatutoryProfile.from_rates(default_statutory_rates(organisation_id), organisation_id)


@pytest.fixture
def make_employee(organisation_id):
    """Factory for unsaved employees with a plain role (no role allowances)."""

    def _make(**overrides) -> Employee:
        data = {
            "id": uuid4(),
            "organisation_id": organisation_id,
            "full_name": "Test Employee",
            "email": "employee@example.com",
            "role": "staff",
            "base_salary": Decimal("1000000"),
        }
        data.update(overrides)
        return Employee(**data)

    return _make


@pytest.fixture
def admin(organisation_id) -> Actor:
    return Actor(id=uuid4(), name="Org Admin", role="org_admin")


@pytest.fixture
def payroll_admin() -> Actor:
    return Actor(id=uuid4(), name="Payroll Admin", role="payroll_admin")


@pytest.fixture
def accountant() -> Actor:
    return Actor(id=uuid4(), name="Accountant", role="accountant")


@pytest_asyncio.fixture(params=["memory", "sqlalchemy"])
async def any_store(request):
    """Each store adapter in turn."""
    if request.param == "memory":
        yield InMemoryEntityStore()
        return

    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield SQLAlchemyEntityStore(session)
    await engine.dispose()
