"""FileRecord model - metadata for one encrypted object (bytes live in the object store)."""
import uuid
from sqlalchemy import String, BigInteger, Integer, ForeignKey, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from media_vault.models.base import Base, CreatedAtMixin


class FileRecord(Base, CreatedAtMixin):
    __tablename__ = "files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    album_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("albums.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stored_name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    iv: Mapped[str] = mapped_column(String(32), nullable=False)
    # NULL means the object predates AES-GCM and is read as legacy CBC.
    auth_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)

    album = relationship("Album", back_populates="files")

    __table_args__ = (
        Index("idx_files_album_position", "album_id", "position"),
    )
