"""
Photo ingestion and deletion orchestrator.

Coordinates all pipeline stages for an upload:
1. Stream staging and digest computation
2. Deduplication against existing assets
3. Metadata extraction
4. Thumbnail derivation
5. Heuristic tagging
6. Record storage
7. Background AI enrichment

Also owns the owner-checked read, update, edit and delete operations.
Deletion removes the record first and reclaims disk files only when no
other record still references them.
"""

import logging
import mimetypes
import time
from dataclasses import dataclass
from concurrent.futures import Future
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

from db.models import Photo
from db.operations import PhotoRepository
from pipeline.ai_tagger import (
    AITaggerError,
    AITaggingDisabled,
    AITaggingNotConfigured,
    ImageTagger,
    create_image_tagger,
)
from pipeline.config import PipelineConfig
from pipeline.content_store import ContentStore, StagedFile
from pipeline.derived_assets import (
    CropRect,
    DerivedAssetError,
    DerivedAssetGenerator,
    mime_type_for_extension,
    normalize_extension,
)
from pipeline.enrichment import EnrichmentCoordinator
from pipeline.metadata_extractor import ExifInfo, MetadataExtractor
from pipeline.tagging import (
    Tag,
    TagSource,
    build_heuristic_tags,
    merge_tags,
    tags_to_dicts,
)

logger = logging.getLogger(__name__)

EDIT_TITLE_PREFIX = "Edited from: "


# ────────────────────────────────────────────────────────────────────────────────
# Exceptions
# ────────────────────────────────────────────────────────────────────────────────

class PhotoError(Exception):
    """Base exception for photo operations."""
    pass


class PhotoNotFound(PhotoError, LookupError):
    """No photo with the requested id exists."""
    pass


class PhotoForbidden(PhotoError, PermissionError):
    """The photo exists but belongs to another owner."""
    pass


# ────────────────────────────────────────────────────────────────────────────────
# Values
# ────────────────────────────────────────────────────────────────────────────────

@dataclass
class PhotoUpdate:
    """The user-editable fields of a photo; None means unchanged."""
    title: str | None = None
    description: str | None = None
    tags: list[Tag] | None = None

    def is_empty(self) -> bool:
        return self.title is None and self.description is None and self.tags is None

    def to_fields(self) -> dict[str, Any]:
        """Repository field mapping for the fields being changed."""
        fields: dict[str, Any] = {}
        if self.title is not None:
            fields["title"] = self.title
        if self.description is not None:
            fields["description"] = self.description
        if self.tags is not None:
            fields["tags"] = tags_to_dicts(merge_tags([], self.tags))
        return fields

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PhotoUpdate":
        """
        Build an update from a request body. Unknown keys are ignored.

        Tags may be given as strings or {name, source, score} objects;
        both default to the user source.

        Raises:
            ValueError: If a known field has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("update body must be an object")

        update = cls()
        for key in ("title", "description"):
            if key in data and data[key] is not None:
                if not isinstance(data[key], str):
                    raise ValueError(f"{key} must be a string")
                setattr(update, key, data[key])

        if data.get("tags") is not None:
            raw_tags = data["tags"]
            if not isinstance(raw_tags, list):
                raise ValueError("tags must be a list")
            tags = []
            for item in raw_tags:
                if isinstance(item, str):
                    tags.append(Tag(name=item, source=TagSource.USER))
                elif isinstance(item, dict) and isinstance(item.get("name"), str):
                    tags.append(Tag.from_dict({"source": TagSource.USER.value, **item}))
                else:
                    raise ValueError("each tag must be a string or an object with a name")
            update.tags = tags

        return update


@dataclass
class UploadResult:
    """Outcome of a single upload."""
    photo: Photo
    deduplicated: bool = False
    enrichment: Future | None = None  # Resolves when AI tagging finishes


# ────────────────────────────────────────────────────────────────────────────────
# Orchestrator
# ────────────────────────────────────────────────────────────────────────────────

class PhotoProcessor:
    """
    Entry point for every photo operation.

    Upload runs synchronously on the caller; only AI enrichment is handed
    to the background worker pool.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        repository: PhotoRepository | None = None,
        tagger: ImageTagger | None = None,
        metadata_extractor: MetadataExtractor | None = None,
        asset_generator: DerivedAssetGenerator | None = None,
    ):
        """
        Initialize the processor.

        Args:
            config: Pipeline configuration. Loaded from the environment if None.
            repository: Photo repository. Uses the global session if None.
            tagger: Tagging provider. Built from config if None.
            metadata_extractor: EXIF extractor.
            asset_generator: Thumbnail and edit generator.
        """
        self.config = config or PipelineConfig.from_env()
        self.repository = repository or PhotoRepository()
        self.store = ContentStore(self.config.upload_dir, self.repository)
        self.metadata_extractor = metadata_extractor or MetadataExtractor()
        self.assets = asset_generator or DerivedAssetGenerator(
            width=self.config.thumbnail_width
        )

        # Kept so callers can tell "disabled" from "not configured"
        self.tagger_error: AITaggerError | None = None
        if tagger is None:
            try:
                tagger = create_image_tagger(self.config)
            except AITaggingDisabled as e:
                self.tagger_error = e
                logger.debug("AI tagging is disabled")
            except AITaggingNotConfigured as e:
                self.tagger_error = e
                logger.warning(f"AI tagger is not available: {e}")

        self.enrichment = EnrichmentCoordinator(
            repository=self.repository,
            store=self.store,
            tagger=tagger,
            timeout=self.config.enrichment_timeout,
            max_workers=self.config.ai_tag_workers,
        )

    # ────────────────────────────────────────────────────────────────────────────
    # Upload
    # ────────────────────────────────────────────────────────────────────────────

    def upload(
        self,
        owner_id: str,
        stream: BinaryIO,
        filename: str,
        mime_type: str | None = None,
    ) -> UploadResult:
        """
        Ingest an uploaded image.

        Args:
            owner_id: Identity of the uploading user.
            stream: Readable binary stream with the image bytes.
            filename: Original client filename (becomes the title).
            mime_type: Declared media type; guessed from filename if None.

        Returns:
            UploadResult with the stored record and the enrichment future.

        Raises:
            OSError: If the stream cannot be read or stored. Nothing is persisted.
        """
        start_time = time.time()
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

        staged = self.store.stage(stream)
        try:
            existing = self.store.exists(staged.digest)
        except Exception:
            self.store.discard(staged)
            raise

        if existing is not None:
            self.store.discard(staged)
            photo = self._create_from_existing(owner_id, filename, existing)
            deduplicated = True
        else:
            photo = self._create_from_staged(owner_id, filename, mime_type, staged)
            deduplicated = False

        future = self.enrichment.schedule(photo.id)

        logger.info(
            f"Stored: {filename} (ID: {photo.id}, "
            f"{'reused ' + photo.file_name if deduplicated else photo.file_name}, "
            f"{len(photo.tags)} tags, {time.time() - start_time:.2f}s)"
        )
        return UploadResult(photo=photo, deduplicated=deduplicated, enrichment=future)

    def _create_from_existing(self, owner_id: str, filename: str, existing: Photo) -> Photo:
        """Reuse another record's asset; user metadata starts fresh."""
        logger.debug(f"Digest match: {filename} reuses {existing.file_name}")
        tags = build_heuristic_tags(
            ExifInfo.from_dict(existing.exif),
            Path(existing.file_name).suffix,
            existing.mime_type,
        )
        photo = Photo(
            owner_id=owner_id,
            title=filename,
            description="",
            file_name=existing.file_name,
            path=existing.path,
            thumb_path=existing.thumb_path,
            hash=existing.hash,
            size=existing.size,
            mime_type=existing.mime_type,
            exif=existing.exif,
            tags=tags_to_dicts(tags),
        )
        return self.repository.create(photo)

    def _create_from_staged(
        self,
        owner_id: str,
        filename: str,
        mime_type: str,
        staged: StagedFile,
    ) -> Photo:
        """Store a new asset, derive its metadata and thumbnail, persist."""
        extension = Path(filename).suffix
        try:
            file_name = self.store.commit(staged, extension)
        except OSError:
            self.store.discard(staged)
            raise
        disk_path = self.store.disk_path(file_name)

        logger.debug(f"Extracting metadata: {file_name}")
        exif = self.metadata_extractor.extract(disk_path)

        logger.debug(f"Generating thumbnail: {file_name}")
        thumb_name = self._derive_thumbnail(file_name)

        tags = build_heuristic_tags(exif, extension, mime_type)
        photo = Photo(
            owner_id=owner_id,
            title=filename,
            description="",
            file_name=file_name,
            path=self.store.public_path(file_name),
            thumb_path=self.store.public_path(thumb_name),
            hash=staged.digest,
            size=staged.size,
            mime_type=mime_type,
            exif=exif.to_dict() if exif is not None else None,
            tags=tags_to_dicts(tags),
        )
        return self._persist_new_asset(photo, file_name, thumb_name)

    def _derive_thumbnail(self, file_name: str) -> str:
        """Generate a thumbnail, falling back to the original's name."""
        thumb_name = f"thumb_{Path(file_name).stem}.jpg"
        try:
            self.assets.generate_thumbnail(
                self.store.disk_path(file_name),
                self.store.disk_path(thumb_name),
            )
        except DerivedAssetError as e:
            logger.warning(f"Thumbnail generation failed, using original: {e}")
            return file_name
        return thumb_name

    def _persist_new_asset(self, photo: Photo, file_name: str, thumb_name: str) -> Photo:
        try:
            return self.repository.create(photo)
        except Exception:
            self.store.delete(file_name)
            if thumb_name != file_name:
                self.store.delete(thumb_name)
            raise

    # ────────────────────────────────────────────────────────────────────────────
    # Read / Update
    # ────────────────────────────────────────────────────────────────────────────

    def get_photo(self, photo_id: int, owner_id: str) -> Photo:
        """
        Get a photo, verifying ownership.

        Raises:
            PhotoNotFound: If the photo does not exist.
            PhotoForbidden: If it belongs to another owner.
        """
        photo = self.repository.find_by_id(photo_id)
        if photo is None:
            raise PhotoNotFound(f"photo {photo_id} not found")
        if photo.owner_id != owner_id:
            raise PhotoForbidden(f"photo {photo_id} belongs to another user")
        return photo

    def list_photos(
        self,
        owner_id: str,
        page: int = 1,
        limit: int = 20,
        query: str | None = None,
        tag: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> tuple[list[Photo], int]:
        """List an owner's photos, newest first, with the total count."""
        return self.repository.find_by_owner(
            owner_id,
            page=page,
            limit=limit,
            query=query,
            tag=tag,
            start_date=start_date,
            end_date=end_date,
        )

    def update_photo(self, photo_id: int, owner_id: str, update: PhotoUpdate) -> Photo:
        """
        Update title, description and/or tags of an owned photo.

        An empty update returns the record unchanged.
        """
        photo = self.get_photo(photo_id, owner_id)
        if update.is_empty():
            return photo

        updated = self.repository.update_fields(photo_id, update.to_fields())
        if updated is None:
            raise PhotoNotFound(f"photo {photo_id} not found")

        logger.info(f"Updated photo {photo_id}: {', '.join(sorted(update.to_fields()))}")
        return updated

    # ────────────────────────────────────────────────────────────────────────────
    # Edit
    # ────────────────────────────────────────────────────────────────────────────

    def edit_photo(
        self,
        photo_id: int,
        owner_id: str,
        crop: CropRect | None = None,
        brightness: float = 0,
        contrast: float = 0,
        saturation: float = 0,
    ) -> Photo:
        """
        Create an edited copy of a photo as a new record.

        The source record and its files are left untouched.

        Raises:
            PhotoNotFound, PhotoForbidden: On lookup/ownership failure.
            ImageEditError: If the source image cannot be decoded or saved.
        """
        source = self.get_photo(photo_id, owner_id)
        source_path = self.store.resolve_disk_path(source.path)
        if source_path is None:
            raise PhotoError(f"failed to resolve file path for photo {photo_id}")

        extension = normalize_extension(source_path.suffix)
        file_name = f"edit_{time.time_ns()}_{source_path.stem}{extension}"
        disk_path = self.store.disk_path(file_name)

        self.assets.edit(
            source_path,
            disk_path,
            crop=crop,
            brightness=brightness,
            contrast=contrast,
            saturation=saturation,
        )
        thumb_name = self._derive_thumbnail(file_name)

        try:
            digest = self.store.hash_file(disk_path)
            size = disk_path.stat().st_size
        except OSError:
            self.store.delete(file_name)
            if thumb_name != file_name:
                self.store.delete(thumb_name)
            raise

        photo = Photo(
            owner_id=source.owner_id,
            title=EDIT_TITLE_PREFIX + source.title,
            description=source.description,
            file_name=file_name,
            path=self.store.public_path(file_name),
            thumb_path=self.store.public_path(thumb_name),
            hash=digest,
            size=size,
            mime_type=mime_type_for_extension(extension, source.mime_type),
            exif=dict(source.exif) if source.exif else None,
            tags=list(source.tags or []),
        )
        photo = self._persist_new_asset(photo, file_name, thumb_name)

        logger.info(f"Edited photo {photo_id} -> new photo {photo.id} ({file_name})")
        return photo

    # ────────────────────────────────────────────────────────────────────────────
    # AI tags
    # ────────────────────────────────────────────────────────────────────────────

    def generate_ai_tags(self, photo_id: int, owner_id: str) -> Photo:
        """
        Run AI tagging for an owned photo and wait for the result.

        Raises:
            AITaggingDisabled: If tagging is switched off.
            AITaggingNotConfigured: If tagging is on but not usable.
            AITaggerError: If the provider fails.
            DeadlineExceeded: If tagging exceeds the configured timeout.
        """
        if not self.enrichment.available:
            raise self.tagger_error or AITaggingDisabled()

        self.get_photo(photo_id, owner_id)
        deadline = time.monotonic() + self.config.enrichment_timeout
        return self.enrichment.enrich(photo_id, deadline=deadline)

    # ────────────────────────────────────────────────────────────────────────────
    # Delete
    # ────────────────────────────────────────────────────────────────────────────

    def delete_photo(self, photo_id: int, owner_id: str) -> None:
        """
        Delete an owned photo and reclaim its files when unreferenced.

        The record is removed before any file so a failed file removal never
        leaves a record pointing at a missing file. File removal is
        best-effort and never raises.
        """
        photo = self.get_photo(photo_id, owner_id)

        if not self.repository.delete(photo_id):
            raise PhotoNotFound(f"photo {photo_id} not found")
        logger.info(f"Deleted photo record {photo_id}")

        if not photo.file_name:
            return

        try:
            remaining = self.repository.count_by_file_name(photo.file_name)
        except Exception as e:
            logger.warning(f"Failed to count file references for {photo.file_name}: {e}")
            return
        if remaining > 0:
            logger.debug(f"Keeping {photo.file_name}: {remaining} other reference(s)")
            return

        self.store.delete(photo.file_name)
        if photo.thumb_path and photo.thumb_path != photo.path:
            self.store.delete(Path(photo.thumb_path).name)

    # ────────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────────────────────

    def close(self, wait: bool = True) -> None:
        """Stop the enrichment workers."""
        self.enrichment.shutdown(wait=wait)
