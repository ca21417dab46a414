"""
SQLAlchemy models for Photo Library Manager.

Database Schema:
----------------
photos table:
    - id: Primary key, auto-increment
    - owner_id: Identity of the owning user (immutable)
    - title: Display title (defaults to the uploaded filename)
    - description: Free-form description
    - file_name: Generated storage filename of the physical asset
    - path: Public path of the original (/uploads/<file_name>)
    - thumb_path: Public path of the thumbnail (equals path on fallback)
    - hash: SHA256 content digest, used for deduplication
    - size: Size in bytes
    - mime_type: Media type of the upload
    - exif: Structured metadata block (JSON, optional)
    - tags: Ordered list of {name, source, score} objects (JSON)
    - tag_index: Lowercased "|name|name|" string for tag search
    - created_at: Timestamp when record was created
    - updated_at: Timestamp when record was last updated

Several rows may share one file_name (deduplicated uploads). The physical
asset is reclaimed only when the last referencing row is deleted.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class Photo(Base):
    """
    SQLAlchemy model for the photos table.

    A logical photo owned by one user. Physical-asset columns are written
    once at insert time and never updated; edits produce new rows.
    """
    __tablename__ = "photos"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Ownership
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # User-editable fields
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Physical asset reference
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    thumb_path: Mapped[str] = mapped_column(Text, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)  # SHA256
    size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="")

    # Structured metadata (EXIF)
    exif: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Tags
    tags: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    tag_index: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Indexes for frequently queried columns
    __table_args__ = (
        Index("idx_photos_owner_id", "owner_id"),
        Index("idx_photos_hash", "hash"),
        Index("idx_photos_file_name", "file_name"),
        Index("idx_photos_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Photo(id={self.id}, owner='{self.owner_id}', "
            f"file_name='{self.file_name}')>"
        )

    def to_dict(self) -> dict:
        """Convert model to dictionary for serialization."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "description": self.description,
            "fileName": self.file_name,
            "path": self.path,
            "thumbPath": self.thumb_path,
            "hash": self.hash,
            "size": self.size,
            "mimeType": self.mime_type,
            "exif": self.exif,
            "tags": list(self.tags or []),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def build_tag_index(tags: list[dict[str, Any]] | None) -> str:
    """Build the "|a|b|" lookup string for a tag list."""
    names = [str(t.get("name", "")).strip().lower() for t in tags or []]
    names = [n for n in names if n]
    if not names:
        return ""
    return "|" + "|".join(names) + "|"
