"""
Database connection management for ScriptForge.

Provides an async SQLAlchemy engine and session factory. PostgreSQL in
production via DATABASE_URL; SQLite (aiosqlite) for development and tests.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with driver-appropriate connection options."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo, connect_args={"check_same_thread": False})
    # Server databases drop idle connections; check them before use
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)
async_session = build_session_factory(engine)


async def get_session() -> AsyncSession:
    """Dependency that yields an async database session."""
    async with async_session() as session:
        yield session


async def create_tables(target: AsyncEngine) -> None:
    """Create every ScriptForge table on the given engine."""
    from models.script import Base
    import models.script_version  # noqa: F401
    import models.workflow_run  # noqa: F401

    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create all tables. Used at application startup."""
    await create_tables(engine)


async def close_db() -> None:
    """Dispose of the engine connection pool."""
    await engine.dispose()
