import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from media_vault.config import Settings
from media_vault.database import create_engine, create_session_factory, ensure_schema
from media_vault.errors import TranscodeFailed
from media_vault.main import create_app
from media_vault.services.album_catalog import AlbumCatalog
from media_vault.services.crypto import KeyMaterial
from media_vault.services.media_vault import IncomingFile, MediaVault
from media_vault.services.object_store import ObjectStore
from media_vault.services.transcode import Transcoder


class StubTranscoder(Transcoder):
    """Writes b'MP4:' + input bytes to a new temp file instead of running ffmpeg."""

    def __init__(self, output_dir: Path, fail: bool = False):
        self.output_dir = Path(output_dir)
        self.fail = fail
        self.calls: list[Path] = []
        self.outputs: list[Path] = []
        self.started = None
        self.release = None

    async def transcode(self, input_path: Path) -> Path:
        self.calls.append(input_path)
        if self.started is not None:
            self.started.set()
            await self.release.wait()
        if self.fail:
            raise TranscodeFailed("Video conversion failed: stub failure")
        out = self.output_dir / f"stub-{len(self.calls)}.mp4"
        out.write_bytes(b"MP4:" + input_path.read_bytes())
        self.outputs.append(out)
        return out


async def collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


def make_incoming(store: ObjectStore, name: str, mime: str, data: bytes) -> IncomingFile:
    path = store.tmp_dir / f"upload-{os.urandom(8).hex()}"
    path.write_bytes(data)
    return IncomingFile(original_name=name, mime_type=mime, temp_path=path)


def files_under(directory: Path) -> list[Path]:
    return [p for p in Path(directory).rglob("*") if p.is_file()]


@pytest.fixture
def key():
    return KeyMaterial(os.urandom(32))


@pytest.fixture
def store(tmp_path):
    return ObjectStore(tmp_path / "objects", tmp_path / "tmp", max_upload_bytes=1024 * 1024)


@pytest.fixture
async def catalog(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await ensure_schema(engine)
    yield AlbumCatalog(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def transcoder(store):
    return StubTranscoder(store.tmp_dir)


@pytest.fixture
def vault(key, store, catalog, transcoder):
    # Small chunks so multi-chunk paths are exercised with small inputs.
    return MediaVault(key, store, catalog, transcoder, chunk_size=7)


@pytest.fixture
def app_settings(tmp_path):
    return Settings(
        _env_file=None,
        ENCRYPTION_KEY=os.urandom(32).hex(),
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        FILE_STORAGE_PATH=str(tmp_path / "api-objects"),
        UPLOAD_TMP_DIR=str(tmp_path / "api-tmp"),
        MAX_FILE_SIZE_BYTES=4096,
        STREAM_CHUNK_SIZE=16,
    )


@pytest.fixture
def client(app_settings):
    app = create_app(app_settings, transcoder=StubTranscoder(Path(app_settings.UPLOAD_TMP_DIR)))
    with TestClient(app) as c:
        yield c
