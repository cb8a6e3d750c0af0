"""Album model - one shareable upload batch, addressed by its permalink."""
import uuid
from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from media_vault.models.base import Base, CreatedAtMixin


class Album(Base, CreatedAtMixin):
    __tablename__ = "albums"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    permalink: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)

    files = relationship(
        "FileRecord", back_populates="album",
        order_by="FileRecord.position",
    )
