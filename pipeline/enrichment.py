"""
Background AI enrichment of photo tags.

After a photo is persisted, an enrichment job is submitted to a bounded
worker pool. Each job carries its own deadline: the provider call gets the
remaining time, and a job that finishes late is dropped without touching the
record. On success the provider's tags are merged into the record's current
tag list and written back with a full-field replacement.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from db.models import Photo
from db.operations import DeadlineExceeded, PhotoRepository, check_deadline
from pipeline.ai_tagger import AITaggerError, ImageTagger
from pipeline.config import DEFAULT_AI_TIMEOUT_SECONDS
from pipeline.content_store import ContentStore
from pipeline.tagging import merge_tags, tags_from_dicts, tags_to_dicts

logger = logging.getLogger(__name__)


class EnrichmentError(AITaggerError):
    """Enrichment could not be applied to the record."""
    pass


class EnrichmentCoordinator:
    """
    Runs AI tagging jobs for stored photos.

    The tagger is shared between workers and must be reentrant.
    """

    def __init__(
        self,
        repository: PhotoRepository,
        store: ContentStore,
        tagger: ImageTagger | None,
        timeout: float = DEFAULT_AI_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ):
        """
        Initialize the coordinator.

        Args:
            repository: Photo repository.
            store: Content store used to locate image files.
            tagger: Tagging provider, or None when tagging is unavailable.
            timeout: Seconds each background job may run.
            max_workers: Size of the worker pool.
        """
        self.repository = repository
        self.store = store
        self.tagger = tagger
        self.timeout = timeout if timeout > 0 else float(DEFAULT_AI_TIMEOUT_SECONDS)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="enrichment",
        )

    @property
    def available(self) -> bool:
        return self.tagger is not None

    def schedule(self, photo_id: int) -> Future | None:
        """
        Submit a background enrichment job.

        Returns:
            Future resolving to the updated Photo, or None if the job failed.
            None instead of a future when no tagger is available.
        """
        if self.tagger is None:
            return None

        deadline = time.monotonic() + self.timeout
        logger.debug(f"Scheduling AI tagging for photo {photo_id} ({self.timeout:.0f}s)")
        return self._executor.submit(self._run_job, photo_id, deadline)

    def _run_job(self, photo_id: int, deadline: float) -> Photo | None:
        try:
            photo = self.enrich(photo_id, deadline)
        except Exception as e:
            logger.warning(f"AI tagging failed for photo {photo_id}: {e}")
            return None
        logger.info(f"AI tagging finished for photo {photo_id} ({len(photo.tags)} tags)")
        return photo

    def enrich(self, photo_id: int, deadline: float | None = None) -> Photo:
        """
        Tag one photo now and merge the result into its tag list.

        Args:
            photo_id: Photo to enrich.
            deadline: Monotonic deadline; None means no limit.

        Returns:
            The updated photo.

        Raises:
            DeadlineExceeded: If the deadline passes before the merge.
            AITaggerError: If the provider fails or the record is gone.
        """
        if self.tagger is None:
            raise EnrichmentError("no tagging provider available")

        photo = self.repository.find_by_id(photo_id, deadline=deadline)
        if photo is None:
            raise EnrichmentError(f"photo {photo_id} no longer exists")

        image_path = self.resolve_image_path(photo)
        if image_path is None:
            raise EnrichmentError(f"failed to resolve file path for photo {photo_id}")

        ai_tags = self.tagger.generate_tags(image_path, timeout=self._remaining(deadline))
        check_deadline(deadline)

        # Merge into the latest tags; the owner may have edited them meanwhile.
        current = self.repository.find_by_id(photo_id, deadline=deadline)
        if current is None:
            raise EnrichmentError(f"photo {photo_id} no longer exists")

        merged = merge_tags(tags_from_dicts(current.tags), ai_tags)
        updated = self.repository.update_fields(
            photo_id, {"tags": tags_to_dicts(merged)}, deadline=deadline
        )
        if updated is None:
            raise EnrichmentError(f"photo {photo_id} no longer exists")
        return updated

    def resolve_image_path(self, photo: Photo) -> Path | None:
        """Prefer the thumbnail to keep payloads small, else the original."""
        thumb = self.store.resolve_disk_path(photo.thumb_path)
        if thumb is not None and thumb.is_file():
            return thumb
        return self.store.resolve_disk_path(photo.path)

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded("deadline exceeded before provider call")
        return remaining

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs; optionally wait for running ones."""
        self._executor.shutdown(wait=wait)
