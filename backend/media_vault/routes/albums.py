"""Album and object API routes."""
import re
from typing import AsyncIterator, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File as FastAPIFile, Request, UploadFile
from fastapi.responses import StreamingResponse

from media_vault.errors import UnsupportedMedia
from media_vault.schemas.album import AlbumFileResponse, AlbumResponse, UploadResponse
from media_vault.schemas.common import ErrorResponse
from media_vault.services.media_vault import IncomingFile, MediaVault, is_accepted_media

router = APIRouter(
    prefix="/api",
    tags=["albums"],
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)

_UNSAFE_FILENAME_CHARS = re.compile(r'["\\\r\n]')


def get_vault(request: Request) -> MediaVault:
    """FastAPI dependency returning the vault built at startup."""
    return request.app.state.vault


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", filename or "")


def content_disposition(filename: str) -> str:
    """Inline disposition with an ASCII fallback and the UTF-8 original."""
    safe = sanitize_filename(filename)
    ascii_name = safe.encode("ascii", "replace").decode("ascii").replace("?", "_")
    return f"inline; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(safe)}"


async def _read_upload(upload: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            return
        yield chunk


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def upload_files(
    files: Optional[List[UploadFile]] = FastAPIFile(None),
    vault: MediaVault = Depends(get_vault),
):
    """Store an upload batch as a new album and return its permalink."""
    # Reject the batch on declared types before any body is spooled.
    for upload in files or []:
        if not is_accepted_media(upload.content_type):
            raise UnsupportedMedia(
                f"Unsupported media type '{upload.content_type or ''}' for {upload.filename or 'unnamed'}"
            )

    incoming: list[IncomingFile] = []
    try:
        for upload in files or []:
            name = upload.filename or "unnamed"
            temp_path = await vault.store.spool(
                _read_upload(upload, vault.chunk_size),
                suffix=name.rpartition(".")[2] if "." in name else "",
            )
            incoming.append(IncomingFile(
                original_name=name,
                mime_type=upload.content_type or "",
                temp_path=temp_path,
            ))
    except BaseException:
        for item in incoming:
            await vault.store.remove_temp(item.temp_path)
        raise

    stored = await vault.store_upload(incoming)
    return {
        "permalink": stored.permalink,
        "files": [AlbumFileResponse.model_validate(r) for r in stored.files],
    }


@router.get("/album/{permalink}", response_model=AlbumResponse, responses={400: {"model": ErrorResponse}})
async def get_album(permalink: str, vault: MediaVault = Depends(get_vault)):
    """List the files of an album in upload order."""
    records = await vault.get_album(permalink)
    return {"files": [AlbumFileResponse.model_validate(r) for r in records]}


@router.get("/object/{stored_name}")
async def stream_object(stored_name: str, vault: MediaVault = Depends(get_vault)):
    """Stream a decrypted object."""
    opened = await vault.open_object(stored_name)
    record = opened.record
    return StreamingResponse(
        opened.stream,
        media_type=record.content_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(record.original_name)},
    )
