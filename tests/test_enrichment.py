import io
import time

import pytest

from db.operations import DeadlineExceeded
from pipeline.content_store import ContentStore
from pipeline.enrichment import EnrichmentCoordinator, EnrichmentError
from pipeline.processor import PhotoUpdate
from pipeline.tagging import Tag, TagSource
from tests.conftest import FailingTagger, FakeTagger, make_image_bytes


def upload(processor, owner="alice", filename="beach.jpg"):
    return processor.upload(owner, io.BytesIO(make_image_bytes("JPEG")), filename)


def tag_names(photo):
    return [t["name"] for t in photo.tags]


@pytest.fixture
def coordinator(upload_dir, repository):
    created = []

    def _make(tagger, timeout=5.0):
        store = ContentStore(upload_dir, repository)
        coord = EnrichmentCoordinator(repository, store, tagger, timeout=timeout, max_workers=2)
        created.append(coord)
        return coord

    yield _make

    for coord in created:
        coord.shutdown()


def test_background_job_merges_provider_tags(make_processor, repository):
    processor = make_processor(tagger=FakeTagger(names=["beach", "JPEG", "Dog"]))
    result = upload(processor)

    enriched = result.enrichment.result(timeout=10)

    assert enriched is not None
    assert tag_names(enriched) == ["jpg", "jpeg", "beach", "Dog"]
    stored = repository.find_by_id(result.photo.id)
    assert stored.tags[2] == {"name": "beach", "source": "AI", "score": 0.9}
    assert stored.tag_index == "|jpg|jpeg|beach|dog|"


def test_job_uses_thumbnail_and_remaining_time(make_processor):
    tagger = FakeTagger()
    processor = make_processor(tagger=tagger, ai_tag_timeout_seconds=30)
    result = upload(processor)
    result.enrichment.result(timeout=10)

    (image_path, timeout), = tagger.calls
    assert image_path.name == result.photo.thumb_path.rsplit("/", 1)[1]
    assert 0 < timeout <= 30


def test_late_result_is_dropped(make_processor, repository):
    tagger = FakeTagger(delay=0.6)
    processor = make_processor(tagger=tagger, ai_tag_timeout_seconds=0.2)
    result = upload(processor)

    assert result.enrichment.result(timeout=10) is None
    assert tag_names(repository.find_by_id(result.photo.id)) == ["jpg", "jpeg"]


def test_provider_failure_leaves_record_untouched(make_processor, repository):
    processor = make_processor(tagger=FailingTagger())
    result = upload(processor)

    assert result.enrichment.result(timeout=10) is None
    stored = repository.find_by_id(result.photo.id)
    assert tag_names(stored) == ["jpg", "jpeg"]
    assert stored.updated_at == result.photo.updated_at


def test_merge_applies_to_tags_edited_during_job(make_processor):
    processor = make_processor(tagger=FakeTagger(names=["mine", "Dog"], delay=0.5))
    result = upload(processor)

    processor.update_photo(
        result.photo.id, "alice", PhotoUpdate(tags=[Tag("Mine", TagSource.USER)])
    )
    enriched = result.enrichment.result(timeout=10)

    assert tag_names(enriched) == ["Mine", "Dog"]
    assert enriched.tags[0]["source"] == "USER"


def test_job_for_deleted_photo_fails_quietly(make_processor):
    processor = make_processor(tagger=FakeTagger(delay=0.3))
    result = upload(processor)

    processor.delete_photo(result.photo.id, "alice")
    assert result.enrichment.result(timeout=10) is None


def test_synchronous_enrichment_times_out(make_processor):
    processor = make_processor(tagger=FakeTagger(delay=0.5), ai_tag_timeout_seconds=0.1)
    result = upload(processor)
    result.enrichment.result(timeout=10)

    with pytest.raises(DeadlineExceeded):
        processor.generate_ai_tags(result.photo.id, "alice")


def test_schedule_without_tagger(coordinator):
    coord = coordinator(None)
    assert coord.available is False
    assert coord.schedule(1) is None
    with pytest.raises(EnrichmentError):
        coord.enrich(1)


def test_enrich_missing_photo(coordinator):
    with pytest.raises(EnrichmentError):
        coordinator(FakeTagger()).enrich(12345)


def test_enrich_with_expired_deadline(coordinator, processor):
    photo = upload(processor).photo
    with pytest.raises(DeadlineExceeded):
        coordinator(FakeTagger()).enrich(photo.id, deadline=time.monotonic() - 1)


def test_resolve_image_path_falls_back_to_original(coordinator, processor, upload_dir):
    photo = upload(processor).photo
    coord = coordinator(FakeTagger())

    thumb = coord.resolve_image_path(photo)
    assert thumb == upload_dir / photo.thumb_path.rsplit("/", 1)[1]

    thumb.unlink()
    assert coord.resolve_image_path(photo) == upload_dir / photo.file_name


def test_non_positive_timeout_uses_default(coordinator):
    assert coordinator(FakeTagger(), timeout=0).timeout == 20.0
