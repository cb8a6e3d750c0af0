"""Streaming encryption for stored objects.

New objects are written with AES-256-GCM: a fresh 12-byte IV per object,
the 16-byte tag kept in the catalog next to the IV. Objects written before
the GCM migration are AES-256-CBC with PKCS#7 padding and no tag; they stay
readable through LegacyMode but nothing new is ever written that way.

Nothing here buffers a whole object. Plaintext and ciphertext move through
the cipher contexts one chunk at a time.
"""
import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Union

import aiofiles
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from media_vault.errors import (
    ConfigurationError,
    EncryptionFailed,
    IntegrityError,
    ObjectMissing,
    StorageFailed,
)
from media_vault.services.object_store import ObjectStore

logger = logging.getLogger(__name__)

KEY_LEN = 32
AEAD_IV_LEN = 12
AEAD_TAG_LEN = 16
LEGACY_IV_LEN = 16
DEFAULT_CHUNK_SIZE = 64 * 1024

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_BASE64_KEY_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


@dataclass(frozen=True)
class KeyMaterial:
    """The process-wide AES-256 key. Immutable; repr never shows the bytes."""

    key: bytes = field(repr=False)

    def __post_init__(self):
        if len(self.key) != KEY_LEN:
            raise ConfigurationError(f"Encryption key must be {KEY_LEN} bytes")

    @classmethod
    def from_config(cls, raw: str | None) -> "KeyMaterial":
        """Parse ENCRYPTION_KEY as 64 hex chars or base64 of exactly 32 bytes."""
        if not raw or not raw.strip():
            raise ConfigurationError("ENCRYPTION_KEY is required")
        raw = raw.strip()

        if _HEX_KEY_RE.match(raw):
            return cls(bytes.fromhex(raw))

        # Standard or URL-safe alphabet, padding optional.
        if _BASE64_KEY_RE.match(raw):
            body = raw.rstrip("=")
            padded = body + "=" * (-len(body) % 4)
            try:
                decoded = base64.urlsafe_b64decode(padded.replace("+", "-").replace("/", "_"))
            except (binascii.Error, ValueError):
                decoded = b""
            if len(decoded) == KEY_LEN:
                return cls(decoded)

        raise ConfigurationError("ENCRYPTION_KEY must be a 32-byte key in hex or base64 form")


# ── Cipher modes ─────────────────────────────────────────────────

@dataclass(frozen=True)
class AeadMode:
    """AES-256-GCM with the tag recorded at write time."""
    iv: bytes
    tag: bytes


@dataclass(frozen=True)
class LegacyMode:
    """AES-256-CBC, PKCS#7 padded. Read-only, no integrity check."""
    iv: bytes


CipherMode = Union[AeadMode, LegacyMode]


def cipher_mode_for(iv_hex: str, tag_hex: str | None) -> CipherMode:
    """Pick the cipher mode for a stored object from its catalog metadata.

    Tag presence is the format discriminator: with a tag the object is GCM,
    without one it is legacy CBC.
    """
    try:
        iv = bytes.fromhex(iv_hex or "")
        tag = bytes.fromhex(tag_hex) if tag_hex else None
    except ValueError as e:
        raise IntegrityError("Stored IV or tag is not valid hex") from e

    if tag is not None:
        if len(iv) != AEAD_IV_LEN or len(tag) != AEAD_TAG_LEN:
            raise IntegrityError("Stored IV or tag has the wrong length for AES-GCM")
        return AeadMode(iv=iv, tag=tag)

    if len(iv) != LEGACY_IV_LEN:
        raise IntegrityError("Stored IV has the wrong length for AES-CBC")
    return LegacyMode(iv=iv)


# ── Writer ───────────────────────────────────────────────────────

@dataclass
class EncryptedObject:
    stored_name: str
    storage_path: str
    size_bytes: int
    iv: str
    auth_tag: str


class EncryptingWriter:
    """Encrypts a plaintext stream into a new object in the store."""

    def __init__(self, key: KeyMaterial, store: ObjectStore):
        self._key = key
        self._store = store

    async def write(self, chunks: AsyncIterator[bytes], extension: str = "") -> EncryptedObject:
        """Stream `chunks` through AES-GCM into a freshly named object.

        If anything fails before the tag is produced the partial object is
        removed, so a failed write never leaves a file for the catalog to link.
        """
        iv = os.urandom(AEAD_IV_LEN)
        encryptor = Cipher(algorithms.AES(self._key.key), modes.GCM(iv)).encryptor()

        stored_name = self._store.new_stored_name(extension)
        storage_path = stored_name
        destination = self._store.resolve(storage_path)

        written = 0
        created = False
        completed = False
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(destination, "xb") as out:
                created = True
                async for chunk in chunks:
                    if not chunk:
                        continue
                    ct = encryptor.update(chunk)
                    await out.write(ct)
                    written += len(ct)
                tail = encryptor.finalize()
                if tail:
                    await out.write(tail)
                    written += len(tail)
            tag = encryptor.tag
            completed = True
        except OSError as e:
            raise StorageFailed(f"Failed to write object {stored_name}: {e}") from e
        except (TypeError, ValueError) as e:
            raise EncryptionFailed(f"Failed to encrypt object {stored_name}: {e}") from e
        finally:
            if created and not completed:
                await self._store.remove_object(destination)

        return EncryptedObject(
            stored_name=stored_name,
            storage_path=storage_path,
            size_bytes=written,
            iv=iv.hex(),
            auth_tag=tag.hex(),
        )


# ── Reader ───────────────────────────────────────────────────────

class DecryptingReader:
    """Streams plaintext out of one stored object.

    `stream()` yields plaintext as it is decrypted. For AeadMode the tag is
    only checked when the last chunk has been read, so a consumer that acts
    on early chunks may already have seen unauthenticated bytes by the time
    IntegrityError is raised. Call `verify()` first when that matters.
    """

    def __init__(self, key: KeyMaterial, path: Path, mode: CipherMode,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self._key = key
        self.path = path
        self.mode = mode
        self.chunk_size = chunk_size

    def _decryptor(self):
        if isinstance(self.mode, AeadMode):
            return Cipher(algorithms.AES(self._key.key), modes.GCM(self.mode.iv, self.mode.tag)).decryptor()
        return Cipher(algorithms.AES(self._key.key), modes.CBC(self.mode.iv)).decryptor()

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield plaintext chunks. Closing the generator closes the file."""
        decryptor = self._decryptor()
        unpadder = padding.PKCS7(128).unpadder() if isinstance(self.mode, LegacyMode) else None

        try:
            f = await aiofiles.open(self.path, "rb")
        except FileNotFoundError as e:
            raise ObjectMissing(f"Object file missing: {self.path.name}") from e

        try:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                out = decryptor.update(chunk)
                if unpadder is not None:
                    out = unpadder.update(out)
                if out:
                    yield out

            try:
                out = decryptor.finalize()
                if unpadder is not None:
                    out = unpadder.update(out) + unpadder.finalize()
            except InvalidTag as e:
                raise IntegrityError("Authentication tag mismatch") from e
            except ValueError as e:
                # Bad CBC length or padding.
                raise IntegrityError(f"Legacy object could not be decrypted: {e}") from e
            if out:
                yield out
        finally:
            await f.close()

    async def verify(self) -> None:
        """Decrypt the whole object, discarding output, to check its tag.

        No-op for legacy objects, which carry nothing to verify against.
        """
        if not isinstance(self.mode, AeadMode):
            return
        async for _ in self.stream():
            pass
