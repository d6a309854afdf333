"""
Payroll Core - Database Configuration

Declarative base and schema setup using SQLAlchemy 2.0 async.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData

from app.config import settings


# Naming convention for constraints (helps with migrations)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    metadata = MetaData(naming_convention=convention)


def create_engine(database_url: str = None) -> AsyncEngine:
    """Create an async engine. Pool sizing only applies to server databases."""
    url = database_url or settings.database_url
    kwargs = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=5, max_overflow=10)
    return create_async_engine(url, **kwargs)


async def init_db(bind: AsyncEngine = None):
    """
    Initialize database - create all tables.

    Without ``bind`` an engine is created from settings and disposed afterwards.
    """
    # Import models so every table is registered on the metadata
    import app.models  # noqa: F401

    engine = bind or create_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        if bind is None:
            await engine.dispose()
