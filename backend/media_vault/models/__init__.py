"""Import all models so SQLAlchemy metadata knows about them."""
from media_vault.models.base import Base
from media_vault.models.album import Album
from media_vault.models.file_record import FileRecord

__all__ = ["Base", "Album", "FileRecord"]
