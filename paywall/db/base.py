"""
Database base configuration and async session management
"""

from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from paywall.core.config import settings

# Base class for models (must be defined first)
Base = declarative_base()

# Engine and session factory - only created when a database is used
_engine = None
_AsyncSessionLocal = None


def get_database_url(database_url: Optional[str] = None) -> str:
    """Get database URL, converting to async format if needed"""
    database_url = database_url or settings.DATABASE_URL or "postgresql+asyncpg://localhost/paywall"
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def get_engine() -> AsyncEngine:
    """Get or create the async database engine (lazy initialization)"""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            get_database_url(),
            pool_pre_ping=True,
            echo=settings.DEBUG,
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Get or create the async session factory (lazy initialization)"""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = make_session_factory(get_engine())
    return _AsyncSessionLocal


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables that do not exist yet"""
    # Register models on Base.metadata
    from paywall.db.models import job  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
