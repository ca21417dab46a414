from pipeline.metadata_extractor import ExifInfo, GPSInfo
from pipeline.tagging import (
    Tag,
    TagSource,
    build_heuristic_tags,
    clean_tag_name,
    merge_tags,
    tags_from_dicts,
    tags_to_dicts,
)


def names(tags):
    return [t.name for t in tags]


def test_merge_is_case_insensitive_first_wins():
    existing = [Tag("Beach", TagSource.USER), Tag("sunset", TagSource.USER)]
    incoming = [Tag("beach"), Tag("Dog", score=0.8)]

    merged = merge_tags(existing, incoming)

    assert names(merged) == ["Beach", "sunset", "Dog"]
    assert merged[0].source is TagSource.USER
    assert merged[2].score == 0.8


def test_merge_drops_blank_and_quoted_names():
    merged = merge_tags([], [Tag('  "cat" '), Tag(""), Tag("\x00"), Tag("CAT"), Tag(" dog\x00")])
    assert names(merged) == ["cat", "dog"]


def test_merge_with_empty_inputs():
    assert merge_tags([], []) == []
    assert names(merge_tags([Tag("a")], [])) == ["a"]


def test_clean_tag_name():
    assert clean_tag_name(' "night view" ') == "night view"
    assert clean_tag_name("\x00\x00") == ""


def test_heuristic_tags_for_plain_jpeg():
    assert names(build_heuristic_tags(None, ".jpg", "image/jpeg")) == ["jpg", "jpeg"]


def test_heuristic_tags_collapse_duplicates():
    assert names(build_heuristic_tags(None, ".PNG", "image/png")) == ["png"]


def test_heuristic_tags_from_exif():
    exif = ExifInfo(
        make="Canon",
        model="EOS R5",
        lens="RF50mm",
        iso=400,
        gps=GPSInfo(1.0, 2.0),
    )
    tags = build_heuristic_tags(exif, ".jpg", "image/jpeg")

    assert names(tags) == ["jpg", "jpeg", "Canon", "EOS R5", "RF50mm", "ISO400", "GPS"]
    assert all(t.source is TagSource.AI for t in tags)


def test_heuristic_tags_skip_missing_fields():
    tags = build_heuristic_tags(ExifInfo(model="X100V"), "", "application/octet-stream")
    assert names(tags) == ["octet-stream", "X100V"]


def test_dict_conversion():
    tags = [Tag("beach", TagSource.USER), Tag("dog", TagSource.AI, 0.5)]
    dicts = tags_to_dicts(tags)

    assert dicts == [
        {"name": "beach", "source": "USER"},
        {"name": "dog", "source": "AI", "score": 0.5},
    ]
    assert tags_from_dicts(dicts) == tags
    assert tags_from_dicts(None) == []


def test_unknown_source_defaults_to_ai():
    assert Tag.from_dict({"name": "x", "source": "robot"}).source is TagSource.AI
    assert Tag.from_dict({"name": "x", "source": "user"}).source is TagSource.USER
