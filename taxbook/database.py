"""
TaxBook UAE - Database Configuration

This module handles the audit-trail database connection using SQLAlchemy 2.0 async.
The tax engines themselves never touch the database.
"""

from typing import Optional, Tuple

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from taxbook.config import TaxSettings, resolve_settings


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


def create_engine_and_sessionmaker(
    settings: Optional[TaxSettings] = None,
    url: Optional[str] = None,
    **engine_kwargs,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Create an async engine and session factory for the audit store.
    ``url`` overrides ``settings.database_url_async``; extra keyword
    arguments are passed to create_async_engine.
    """
    settings = resolve_settings(settings)
    engine = create_async_engine(
        url or settings.database_url_async,
        echo=settings.debug,  # Log SQL queries in debug mode
        pool_pre_ping=True,
        **engine_kwargs,
    )
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_maker


async def init_db(engine: AsyncEngine):
    """
    Initialize database - create all tables.
    Use this for development/testing only.
    """
    # Register models on the metadata
    from taxbook.models import audit  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine):
    """Close database connections."""
    await engine.dispose()
