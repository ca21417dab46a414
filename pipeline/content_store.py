"""
Content-addressed storage for uploaded photos.

Provides:
- Single-pass hashing of upload streams while they are written to disk
- Collision-resistant filename generation
- Digest lookup for deduplication
- Best-effort file removal
- Safe mapping of public /uploads/ paths back to disk paths
"""

import hashlib
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, NamedTuple

from db.models import Photo
from db.operations import PhotoRepository

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads/"
CHUNK_SIZE = 8192


class StagedFile(NamedTuple):
    """An upload written to a temporary file, hashed but not yet named."""
    digest: str
    size: int
    temp_path: Path


class ContentStore:
    """
    Flat directory of physical assets addressed by SHA256 digest.

    Filenames are unique per write, so concurrent uploads never need a lock.
    Several Photo records may point at the same stored file.
    """

    def __init__(self, root: str | Path, repository: PhotoRepository | None = None):
        """
        Initialize the content store.

        Args:
            root: Directory holding originals, thumbnails and edits.
            repository: Repository used for digest lookups.
        """
        self.root = Path(root)
        self.repository = repository or PhotoRepository()
        self.root.mkdir(parents=True, exist_ok=True)

    # ────────────────────────────────────────────────────────────────────────────
    # Writing
    # ────────────────────────────────────────────────────────────────────────────

    def stage(self, stream: BinaryIO) -> StagedFile:
        """
        Copy a stream into a temporary file while hashing it.

        The stream is read exactly once, so non-seekable sources work.

        Raises:
            OSError: If reading the stream or writing the file fails.
        """
        sha256_hash = hashlib.sha256()
        size = 0
        fd, temp_name = tempfile.mkstemp(prefix=".upload_", dir=self.root)
        temp_path = Path(temp_name)

        try:
            with os.fdopen(fd, "wb") as out:
                for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                    sha256_hash.update(chunk)
                    out.write(chunk)
                    size += len(chunk)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        digest = sha256_hash.hexdigest()
        logger.debug(f"Staged upload {temp_path.name} ({size} bytes, {digest[:12]})")
        return StagedFile(digest=digest, size=size, temp_path=temp_path)

    def commit(self, staged: StagedFile, extension: str) -> str:
        """
        Move a staged file to its permanent generated name.

        Returns:
            The generated storage filename.
        """
        file_name = self.generate_filename(staged.digest, extension)
        os.replace(staged.temp_path, self.disk_path(file_name))
        logger.debug(f"Stored {file_name}")
        return file_name

    def discard(self, staged: StagedFile) -> None:
        """Remove a staged file that turned out to be a duplicate."""
        try:
            staged.temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove staged upload {staged.temp_path}: {e}")

    def put(self, stream: BinaryIO, extension: str) -> tuple[str, str]:
        """
        Store a stream under a new generated name.

        Returns:
            (digest, storage filename)
        """
        staged = self.stage(stream)
        try:
            return staged.digest, self.commit(staged, extension)
        except BaseException:
            self.discard(staged)
            raise

    @staticmethod
    def generate_filename(digest: str, extension: str) -> str:
        """Build "<time_ns>_<digest[:8]><ext>"."""
        return f"{time.time_ns()}_{digest[:8]}{extension}"

    # ────────────────────────────────────────────────────────────────────────────
    # Lookup
    # ────────────────────────────────────────────────────────────────────────────

    def exists(self, digest: str, deadline: float | None = None) -> Photo | None:
        """Find an existing record whose asset has this digest."""
        return self.repository.find_by_hash(digest, deadline=deadline)

    def hash_file(self, filepath: str | Path) -> str:
        """Calculate SHA256 hash of a file on disk."""
        sha256_hash = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                sha256_hash.update(chunk)
        return sha256_hash.hexdigest()

    # ────────────────────────────────────────────────────────────────────────────
    # Paths
    # ────────────────────────────────────────────────────────────────────────────

    def disk_path(self, file_name: str) -> Path:
        return self.root / Path(file_name).name

    @staticmethod
    def public_path(file_name: str) -> str:
        return PUBLIC_PREFIX + file_name

    def resolve_disk_path(self, public_path: str | None) -> Path | None:
        """
        Map a public path to a file inside the store root.

        Only the base filename is kept, so "/uploads/../../etc/passwd"
        resolves to "<root>/passwd".

        Returns:
            Disk path, or None if the path has no usable filename.
        """
        base = os.path.basename((public_path or "").strip().replace("\\", "/"))
        if base in ("", ".", ".."):
            return None
        return self.root / base

    # ────────────────────────────────────────────────────────────────────────────
    # Removal
    # ────────────────────────────────────────────────────────────────────────────

    def delete(self, file_name: str) -> bool:
        """
        Remove a stored file. Never raises.

        Returns:
            True if the file was removed, False otherwise.
        """
        path = self.resolve_disk_path(file_name)
        if path is None:
            return False
        try:
            path.unlink()
            logger.debug(f"Deleted stored file: {path}")
            return True
        except OSError as e:
            logger.warning(f"Failed to delete file {path}: {e}")
            return False
