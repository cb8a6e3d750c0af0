"""Album/file metadata over SQLAlchemy.

Writes go through `transaction()`: an album and all of its file records are
committed together, so readers never see an album without its files.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from media_vault.models.album import Album
from media_vault.models.file_record import FileRecord


class CatalogWriter:
    """Write half of the catalog, bound to one open transaction."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._positions: dict[uuid.UUID, int] = {}

    async def create_album(self, permalink: str) -> uuid.UUID:
        album = Album(permalink=permalink)
        self._session.add(album)
        await self._session.flush()
        self._positions[album.id] = 0
        return album.id

    async def append_file_record(self, album_id: uuid.UUID, **fields) -> FileRecord:
        """Add a file to the album; position follows call order."""
        position = self._positions.get(album_id, 0)
        record = FileRecord(album_id=album_id, position=position, **fields)
        self._session.add(record)
        await self._session.flush()
        self._positions[album_id] = position + 1
        return record


class AlbumCatalog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[CatalogWriter]:
        """Commit everything written inside the block, or nothing on error."""
        async with self._session_factory() as session:
            async with session.begin():
                yield CatalogWriter(session)

    async def get_album_by_token(self, permalink: str) -> uuid.UUID | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Album.id).where(Album.permalink == permalink)
            )
            return result.scalar_one_or_none()

    async def list_files(self, album_id: uuid.UUID) -> list[FileRecord]:
        """Files of an album in upload order."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileRecord)
                .where(FileRecord.album_id == album_id)
                .order_by(FileRecord.position)
            )
            return list(result.scalars().all())

    async def get_file(self, stored_name: str) -> FileRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileRecord).where(FileRecord.stored_name == stored_name)
            )
            return result.scalar_one_or_none()
