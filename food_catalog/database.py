"""Async SQLAlchemy engine, session factory, and Base declaration."""

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData, inspect, text

from food_catalog.config import settings


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""
    pass


engine = create_async_engine(
    settings.database_url,
    echo=(settings.app_env == "development"),
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def check_db_connectivity() -> bool:
    """Return True if a simple SELECT 1 succeeds."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def init_extensions(session: AsyncSession) -> None:
    """Ensure the trigram extension used for fuzzy name search exists."""
    await session.execute(text("CREATE EXTENSION IF NOT EXISTS pg_trgm"))
    await session.commit()


async def create_schema(metadata: MetaData, *, drop_existing: bool = False) -> list[str]:
    """
    Enable extensions and create every table in `metadata` that is missing.
    With `drop_existing`, the tables are dropped first. Returns the names of
    the tables created by this call.
    """
    async with AsyncSessionLocal() as session:
        await init_extensions(session)
    async with engine.begin() as conn:
        if drop_existing:
            await conn.run_sync(metadata.drop_all)
        existing = set(
            await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
        )
        await conn.run_sync(metadata.create_all)
    return [name for name in metadata.tables if name not in existing]
