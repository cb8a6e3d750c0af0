"""Async SQLAlchemy engine and session factory for the album catalog.

Usage:
    engine = create_engine(settings.DATABASE_URL)
    await ensure_schema(engine)
    catalog = AlbumCatalog(async_sessionmaker(engine, expire_on_commit=False))
"""
import logging
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from media_vault.models import Base

logger = logging.getLogger(__name__)

# Columns added after the first release. Older catalogs get them on startup.
_LATE_COLUMNS = {
    "files": [("auth_tag", "VARCHAR(64)")],
}


def create_engine(database_url: str) -> AsyncEngine:
    """Build the engine, creating the parent directory of a SQLite file."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        return create_async_engine(url, echo=False)

    return create_async_engine(
        url,
        echo=False,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _missing_columns(sync_conn) -> list[tuple[str, str, str]]:
    inspector = inspect(sync_conn)
    missing = []
    for table, columns in _LATE_COLUMNS.items():
        existing = {c["name"] for c in inspector.get_columns(table)}
        for name, ddl in columns:
            if name not in existing:
                missing.append((table, name, ddl))
    return missing


async def ensure_schema(engine: AsyncEngine) -> None:
    """Create tables and add any columns missing from an older catalog."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        for table, column, ddl in await conn.run_sync(_missing_columns):
            await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
            logger.info("Added %s.%s column", table, column)
