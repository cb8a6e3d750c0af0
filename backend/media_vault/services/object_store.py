"""Filesystem layout for ciphertext objects and upload temp files."""
import logging
import re
import uuid
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from media_vault.errors import PathContainmentError, StorageFailed, UploadTooLarge

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,16}$")


def normalize_extension(extension: str | None) -> str:
    """Return '.ext' lower-cased, or '' if the extension is absent or unsafe."""
    if not extension:
        return ""
    ext = extension.strip().lower()
    if not ext.startswith("."):
        ext = f".{ext}"
    return ext if _EXTENSION_RE.match(ext) else ""


class ObjectStore:
    """Owns the storage root and the temp directory for in-flight uploads."""

    def __init__(self, root: str | Path, tmp_dir: str | Path, max_upload_bytes: int):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.tmp_dir = Path(tmp_dir).expanduser().resolve()
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        self.max_upload_bytes = max_upload_bytes

    def new_stored_name(self, extension: str | None = "") -> str:
        """Random object identifier, keeping a sanitized extension."""
        return f"{uuid.uuid4().hex}{normalize_extension(extension)}"

    def resolve(self, storage_path: str) -> Path:
        """Map a stored relative path to an absolute path inside the root.

        The path is canonicalized (symlinks and '..' resolved) and must land
        strictly below the root. Used for both writes and reads.
        """
        if not storage_path or "\x00" in storage_path:
            raise PathContainmentError("Empty or malformed storage path")

        candidate = (self.root / storage_path).resolve()
        if candidate == self.root or not candidate.is_relative_to(self.root):
            logger.warning("Rejected storage path outside root: %r", storage_path)
            raise PathContainmentError("Storage path escapes the storage root")
        return candidate

    async def spool(self, chunks: AsyncIterator[bytes], suffix: str = "") -> Path:
        """Write an incoming upload to a new temp file, enforcing the size limit.

        The temp file is removed if the stream fails or runs over the limit.
        """
        path = self.tmp_dir / f"upload-{uuid.uuid4().hex}{normalize_extension(suffix)}"
        total = 0
        completed = False
        try:
            async with aiofiles.open(path, "xb") as out:
                async for chunk in chunks:
                    total += len(chunk)
                    if total > self.max_upload_bytes:
                        raise UploadTooLarge(
                            f"File exceeds the {self.max_upload_bytes} byte upload limit"
                        )
                    await out.write(chunk)
            completed = True
        except OSError as e:
            raise StorageFailed(f"Failed to spool upload: {e}") from e
        finally:
            if not completed:
                await self.remove_temp(path)
        return path

    async def remove_temp(self, path: str | Path | None) -> None:
        """Best-effort delete. A file that is already gone is not an error."""
        if not path:
            return
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove temporary file %s: %s", path, e)

    async def remove_object(self, path: Path) -> None:
        """Remove a ciphertext object that never made it into the catalog."""
        await self.remove_temp(path)
