"""Upload, album lookup and object streaming.

The three operations the HTTP layer calls. Each takes its collaborators
(key, object store, transcoder, catalog) from the MediaVault instance, so
tests can build one with their own key and a stub transcoder.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Sequence

import aiofiles
from sqlalchemy.exc import SQLAlchemyError

from media_vault.errors import (
    InvalidToken,
    NoFiles,
    NotFound,
    ObjectMissing,
    StorageFailed,
    UnsupportedMedia,
)
from media_vault.models.file_record import FileRecord
from media_vault.services.album_catalog import AlbumCatalog
from media_vault.services.crypto import (
    DEFAULT_CHUNK_SIZE,
    AeadMode,
    DecryptingReader,
    EncryptedObject,
    EncryptingWriter,
    KeyMaterial,
    cipher_mode_for,
)
from media_vault.services.object_store import ObjectStore
from media_vault.services.transcode import (
    TRANSCODED_EXTENSION,
    TRANSCODED_MIME_TYPE,
    Transcoder,
    needs_transcode,
)

logger = logging.getLogger(__name__)

_PERMALINK_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_permalink(value: str) -> bool:
    return bool(value) and bool(_PERMALINK_RE.match(value))


def is_accepted_media(mime_type: str | None) -> bool:
    mime = (mime_type or "").lower()
    return mime.startswith("image/") or mime.startswith("video/")


@dataclass
class IncomingFile:
    """An upload already spooled to a temp file. The vault owns `temp_path`."""
    original_name: str
    mime_type: str
    temp_path: Path


@dataclass
class StoredAlbum:
    permalink: str
    files: list[FileRecord]


@dataclass
class OpenedObject:
    record: FileRecord
    stream: AsyncIterator[bytes]


async def iter_file(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(chunk_size)
            if not chunk:
                return
            yield chunk


class MediaVault:
    def __init__(
        self,
        key: KeyMaterial,
        store: ObjectStore,
        catalog: AlbumCatalog,
        transcoder: Transcoder,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        verify_before_stream: bool = True,
    ):
        self._key = key
        self.store = store
        self.catalog = catalog
        self.transcoder = transcoder
        self.chunk_size = chunk_size
        self.verify_before_stream = verify_before_stream
        self._writer = EncryptingWriter(key, store)

    # ── Upload ───────────────────────────────────────────────────

    async def store_upload(
        self,
        files: Sequence[IncomingFile],
        permalink: str | None = None,
    ) -> StoredAlbum:
        """Encrypt every file, then publish the album and its records at once.

        Files are processed in order. The first failure aborts the batch:
        objects already written for it are removed and nothing is cataloged.
        Every temp file in `files` is gone when this returns or raises.
        """
        written: list[EncryptedObject] = []
        try:
            if not files:
                raise NoFiles()
            for incoming in files:
                if not is_accepted_media(incoming.mime_type):
                    raise UnsupportedMedia(
                        f"Unsupported media type '{incoming.mime_type}' for {incoming.original_name}"
                    )

            permalink = permalink or str(uuid.uuid4())
            prepared = []
            for incoming in files:
                obj, mime_type = await self._persist_file(incoming)
                written.append(obj)
                prepared.append((incoming, obj, mime_type))

            try:
                records = await self._publish(permalink, prepared)
            except SQLAlchemyError as e:
                raise StorageFailed(f"Failed to record album {permalink}: {e}") from e
        except BaseException:
            for obj in written:
                await self.store.remove_object(self.store.resolve(obj.storage_path))
            raise
        finally:
            for incoming in files:
                await self.store.remove_temp(incoming.temp_path)

        logger.info("Stored album %s with %d file(s)", permalink, len(records))
        return StoredAlbum(permalink=permalink, files=records)

    async def _publish(self, permalink: str, prepared: list) -> list[FileRecord]:
        async with self.catalog.transaction() as tx:
            album_id = await tx.create_album(permalink)
            records = []
            for incoming, obj, mime_type in prepared:
                record = await tx.append_file_record(
                    album_id,
                    stored_name=obj.stored_name,
                    original_name=incoming.original_name,
                    storage_path=obj.storage_path,
                    content_type=mime_type,
                    size_bytes=obj.size_bytes,
                    iv=obj.iv,
                    auth_tag=obj.auth_tag,
                )
                records.append(record)
        return records

    async def _persist_file(self, incoming: IncomingFile) -> tuple[EncryptedObject, str]:
        working_path = incoming.temp_path
        mime_type = incoming.mime_type
        extension = Path(incoming.original_name or "").suffix

        try:
            if needs_transcode(incoming.mime_type, incoming.original_name):
                converted = await self.transcoder.transcode(working_path)
                await self.store.remove_temp(working_path)
                working_path = converted
                mime_type = TRANSCODED_MIME_TYPE
                extension = TRANSCODED_EXTENSION

            obj = await self._writer.write(iter_file(working_path, self.chunk_size), extension)
            return obj, mime_type
        finally:
            if working_path != incoming.temp_path:
                await self.store.remove_temp(working_path)

    # ── Read ─────────────────────────────────────────────────────

    async def get_album(self, permalink: str) -> list[FileRecord]:
        if not is_valid_permalink(permalink):
            raise InvalidToken()

        album_id = await self.catalog.get_album_by_token(permalink)
        if album_id is None:
            raise NotFound("Album not found")
        return await self.catalog.list_files(album_id)

    async def open_object(self, stored_name: str) -> OpenedObject:
        """Look up, locate and (for GCM objects) authenticate a stored object.

        With `verify_before_stream` the whole object is checked before the
        stream is handed out, so a tampered object fails here and not halfway
        through a response.
        """
        record = await self.catalog.get_file(stored_name)
        if record is None:
            raise NotFound("File not found")

        path = self.store.resolve(record.storage_path)
        if not path.is_file():
            logger.warning("Object %s is cataloged but missing on disk", record.stored_name)
            raise ObjectMissing("File not found")

        mode = cipher_mode_for(record.iv, record.auth_tag)
        reader = DecryptingReader(self._key, path, mode, self.chunk_size)
        if self.verify_before_stream and isinstance(mode, AeadMode):
            await reader.verify()

        return OpenedObject(record=record, stream=reader.stream())
