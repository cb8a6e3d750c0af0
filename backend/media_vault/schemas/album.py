"""Album request/response schemas."""
from pydantic import BaseModel, Field


class AlbumFileResponse(BaseModel):
    stored_name: str
    original_name: str
    content_type: str | None = None
    size: int = Field(validation_alias="size_bytes")

    model_config = {"from_attributes": True, "populate_by_name": True}


class AlbumResponse(BaseModel):
    files: list[AlbumFileResponse]


class UploadResponse(BaseModel):
    permalink: str
    files: list[AlbumFileResponse]
