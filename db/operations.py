"""
Database CRUD operations for Photo Library Manager.

Provides PhotoRepository class with methods for:
- Creating new photo records
- Reading/querying photos (by id, digest, owner)
- Updating the user-editable fields of a photo
- Counting references to a stored file
- Deleting photo records

Every operation accepts an optional deadline (a time.monotonic() value).
An expired deadline raises DeadlineExceeded before the database is touched.
"""

import logging
import time
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import sessionmaker

from db.database import session_scope
from db.models import Photo, build_tag_index, utcnow

logger = logging.getLogger(__name__)

# Columns that may change after a record is created
MUTABLE_FIELDS = frozenset({"title", "description", "tags"})


class DeadlineExceeded(TimeoutError):
    """Raised when an operation is attempted after its deadline."""
    pass


def check_deadline(deadline: float | None) -> None:
    """Raise DeadlineExceeded if the monotonic deadline has passed."""
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceeded("deadline exceeded")


class PhotoRepository:
    """
    Repository for Photo database operations.

    Each call runs in its own session_scope() so the repository is safe to
    share between the request path and background enrichment workers.
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        """
        Initialize repository.

        Args:
            session_factory: Factory for sessions. If None, the global
                            factory from db.database is used.
        """
        self._session_factory = session_factory

    def _scope(self):
        return session_scope(self._session_factory)

    # ────────────────────────────────────────────────────────────────────────────
    # Create Operations
    # ────────────────────────────────────────────────────────────────────────────

    def create(self, photo: Photo, deadline: float | None = None) -> Photo:
        """
        Insert a new photo record.

        Args:
            photo: Unsaved Photo instance.
            deadline: Optional monotonic deadline.

        Returns:
            The same instance with id and timestamps populated.
        """
        check_deadline(deadline)

        now = utcnow()
        photo.created_at = now
        photo.updated_at = now
        photo.tags = list(photo.tags or [])
        photo.tag_index = build_tag_index(photo.tags)

        with self._scope() as session:
            session.add(photo)
            session.flush()
            session.refresh(photo)

        logger.debug(f"Created photo record: {photo}")
        return photo

    # ────────────────────────────────────────────────────────────────────────────
    # Read Operations
    # ────────────────────────────────────────────────────────────────────────────

    def find_by_id(self, photo_id: int, deadline: float | None = None) -> Photo | None:
        """Get a photo by primary key, or None."""
        check_deadline(deadline)
        with self._scope() as session:
            return session.get(Photo, photo_id)

    def find_by_hash(self, digest: str, deadline: float | None = None) -> Photo | None:
        """
        Get the oldest photo whose content digest matches.

        Args:
            digest: SHA256 hex digest.
            deadline: Optional monotonic deadline.

        Returns:
            Photo instance or None if no asset with this digest exists.
        """
        check_deadline(deadline)
        stmt = (
            select(Photo)
            .where(Photo.hash == digest)
            .order_by(Photo.id)
            .limit(1)
        )
        with self._scope() as session:
            return session.execute(stmt).scalar_one_or_none()

    def find_by_owner(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 20,
        query: str | None = None,
        tag: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        deadline: float | None = None,
    ) -> tuple[list[Photo], int]:
        """
        List an owner's photos, newest first.

        Args:
            owner_id: Owner identity.
            page: 1-based page number.
            limit: Page size.
            query: Case-insensitive substring over title, description and tags.
            tag: Case-insensitive exact tag name.
            start_date: Inclusive lower bound on created_at.
            end_date: Inclusive upper bound on created_at.
            deadline: Optional monotonic deadline.

        Returns:
            (photos on this page, total matching count)
        """
        check_deadline(deadline)

        conditions = [Photo.owner_id == owner_id]
        if tag and tag.strip():
            conditions.append(
                Photo.tag_index.contains(f"|{tag.strip().lower()}|", autoescape=True)
            )
        if query and query.strip():
            needle = query.strip().lower()
            conditions.append(or_(
                func.lower(Photo.title).contains(needle, autoescape=True),
                func.lower(Photo.description).contains(needle, autoescape=True),
                Photo.tag_index.contains(needle, autoescape=True),
            ))
        if start_date:
            conditions.append(Photo.created_at >= start_date)
        if end_date:
            conditions.append(Photo.created_at <= end_date)

        page = max(page, 1)
        limit = max(limit, 1)
        stmt = (
            select(Photo)
            .where(*conditions)
            .order_by(Photo.created_at.desc(), Photo.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Photo).where(*conditions)

        with self._scope() as session:
            photos = list(session.execute(stmt).scalars().all())
            total = session.execute(count_stmt).scalar() or 0
        return photos, total

    def count_by_file_name(self, file_name: str, deadline: float | None = None) -> int:
        """Count records that reference a stored file."""
        check_deadline(deadline)
        stmt = select(func.count()).select_from(Photo).where(Photo.file_name == file_name)
        with self._scope() as session:
            return session.execute(stmt).scalar() or 0

    # ────────────────────────────────────────────────────────────────────────────
    # Update Operations
    # ────────────────────────────────────────────────────────────────────────────

    def update_fields(
        self,
        photo_id: int,
        fields: dict[str, Any],
        deadline: float | None = None,
    ) -> Photo | None:
        """
        Replace the given fields of a photo record.

        Each field is overwritten as a whole; concurrent writers of the same
        field are last-write-wins.

        Args:
            photo_id: Primary key of the photo.
            fields: Mapping of column name to new value. Only MUTABLE_FIELDS.
            deadline: Optional monotonic deadline.

        Returns:
            Updated Photo instance or None if not found.

        Raises:
            ValueError: If a field outside MUTABLE_FIELDS is given.
        """
        invalid = set(fields) - MUTABLE_FIELDS
        if invalid:
            raise ValueError(
                f"Invalid update fields: {sorted(invalid)}. "
                f"Valid fields: {sorted(MUTABLE_FIELDS)}"
            )
        check_deadline(deadline)

        with self._scope() as session:
            photo = session.get(Photo, photo_id)
            if photo is None:
                return None
            for key, value in fields.items():
                setattr(photo, key, value)
            if "tags" in fields:
                photo.tag_index = build_tag_index(fields["tags"])
            photo.updated_at = utcnow()
            session.flush()
            session.refresh(photo)
            return photo

    # ────────────────────────────────────────────────────────────────────────────
    # Delete Operations
    # ────────────────────────────────────────────────────────────────────────────

    def delete(self, photo_id: int, deadline: float | None = None) -> bool:
        """
        Delete a photo record.

        Returns:
            True if deleted, False if not found.
        """
        check_deadline(deadline)
        with self._scope() as session:
            photo = session.get(Photo, photo_id)
            if photo:
                session.delete(photo)
                return True
            return False
