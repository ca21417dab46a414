import time
from datetime import timedelta

import pytest

from db.models import Photo, build_tag_index, utcnow
from db.operations import DeadlineExceeded, check_deadline


def new_photo(owner="alice", title="photo.jpg", digest="a" * 64, file_name=None, tags=None):
    file_name = file_name or f"{time.time_ns()}_{digest[:8]}.jpg"
    return Photo(
        owner_id=owner,
        title=title,
        description="",
        file_name=file_name,
        path=f"/uploads/{file_name}",
        thumb_path=f"/uploads/thumb_{file_name}",
        hash=digest,
        size=10,
        mime_type="image/jpeg",
        tags=tags or [],
    )


def test_create_sets_id_timestamps_and_tag_index(repository):
    photo = repository.create(new_photo(tags=[{"name": "Beach", "source": "USER"}]))

    assert photo.id is not None
    assert photo.created_at is not None
    assert photo.created_at == photo.updated_at
    assert photo.tag_index == "|beach|"


def test_find_by_hash_returns_oldest(repository):
    first = repository.create(new_photo(owner="alice", digest="b" * 64))
    repository.create(new_photo(owner="bob", digest="b" * 64, file_name=first.file_name))

    found = repository.find_by_hash("b" * 64)
    assert found.id == first.id
    assert repository.find_by_hash("c" * 64) is None


def test_find_by_owner_pages_newest_first(repository):
    ids = [repository.create(new_photo(title=f"p{i}.jpg")).id for i in range(5)]
    repository.create(new_photo(owner="bob"))

    page1, total = repository.find_by_owner("alice", page=1, limit=2)
    page3, _ = repository.find_by_owner("alice", page=3, limit=2)

    assert total == 5
    assert [p.id for p in page1] == [ids[4], ids[3]]
    assert [p.id for p in page3] == [ids[0]]


def test_find_by_owner_filters(repository):
    repository.create(new_photo(title="Sunset at the Pier", tags=[{"name": "sea", "source": "AI"}]))
    repository.create(new_photo(title="dog.jpg", tags=[{"name": "Dog", "source": "USER"}]))
    repository.create(new_photo(title="100%_real.jpg"))

    _, total = repository.find_by_owner("alice", query="sunset")
    assert total == 1
    _, total = repository.find_by_owner("alice", query="SEA")
    assert total == 1
    _, total = repository.find_by_owner("alice", tag="dog")
    assert total == 1
    _, total = repository.find_by_owner("alice", tag="do")
    assert total == 0
    _, total = repository.find_by_owner("alice", query="100%")
    assert total == 1


def test_find_by_owner_date_range(repository):
    repository.create(new_photo())
    now = utcnow()

    _, total = repository.find_by_owner("alice", start_date=now - timedelta(minutes=1))
    assert total == 1
    _, total = repository.find_by_owner("alice", end_date=now - timedelta(days=1))
    assert total == 0


def test_count_by_file_name(repository):
    photo = repository.create(new_photo())
    repository.create(new_photo(owner="bob", file_name=photo.file_name))

    assert repository.count_by_file_name(photo.file_name) == 2
    assert repository.count_by_file_name("missing.jpg") == 0


def test_update_fields_allow_list(repository):
    photo = repository.create(new_photo())

    with pytest.raises(ValueError):
        repository.update_fields(photo.id, {"hash": "evil"})
    with pytest.raises(ValueError):
        repository.update_fields(photo.id, {"title": "ok", "owner_id": "mallory"})

    assert repository.find_by_id(photo.id).owner_id == "alice"


def test_update_fields_replaces_values(repository):
    photo = repository.create(new_photo(tags=[{"name": "old", "source": "AI"}]))

    updated = repository.update_fields(photo.id, {
        "title": "New title",
        "tags": [{"name": "New", "source": "USER"}],
    })

    assert updated.title == "New title"
    assert updated.tags == [{"name": "New", "source": "USER"}]
    assert updated.tag_index == "|new|"
    assert updated.updated_at >= photo.updated_at
    assert repository.update_fields(9999, {"title": "x"}) is None


def test_delete(repository):
    photo = repository.create(new_photo())
    assert repository.delete(photo.id) is True
    assert repository.delete(photo.id) is False
    assert repository.find_by_id(photo.id) is None


def test_expired_deadline_is_rejected(repository):
    photo = repository.create(new_photo())
    expired = time.monotonic() - 1

    with pytest.raises(DeadlineExceeded):
        repository.find_by_id(photo.id, deadline=expired)
    with pytest.raises(DeadlineExceeded):
        repository.update_fields(photo.id, {"title": "late"}, deadline=expired)

    assert repository.find_by_id(photo.id).title == "photo.jpg"


def test_check_deadline():
    check_deadline(None)
    check_deadline(time.monotonic() + 60)
    with pytest.raises(TimeoutError):
        check_deadline(time.monotonic() - 0.001)


def test_build_tag_index():
    assert build_tag_index([]) == ""
    assert build_tag_index(None) == ""
    assert build_tag_index([{"name": " Sky "}, {"name": ""}, {"name": "SEA"}]) == "|sky|sea|"
