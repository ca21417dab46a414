"""
Tag synthesis and merging.

Heuristic tags are seeded locally from file attributes and EXIF metadata.
Tag lists are merged case-insensitively: the first spelling seen wins and
new names are appended after the existing ones.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from pipeline.metadata_extractor import ExifInfo


class TagSource(Enum):
    """Origin of a tag."""
    USER = "USER"  # Authored by the owner
    AI = "AI"      # Heuristic or provider generated


@dataclass
class Tag:
    """A named tag with its origin and optional confidence score."""
    name: str
    source: TagSource = TagSource.AI
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "source": self.source.value}
        if self.score is not None:
            data["score"] = self.score
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tag":
        try:
            source = TagSource(str(data.get("source", "AI")).upper())
        except ValueError:
            source = TagSource.AI
        score = data.get("score")
        return cls(
            name=str(data.get("name", "")),
            source=source,
            score=float(score) if score is not None else None,
        )


def clean_tag_name(name: str) -> str:
    """Trim whitespace, quotes and NUL bytes from a tag name."""
    return name.strip().strip('"\x00').strip()


def tags_to_dicts(tags: Iterable[Tag]) -> list[dict[str, Any]]:
    return [tag.to_dict() for tag in tags]


def tags_from_dicts(items: Iterable[dict[str, Any]] | None) -> list[Tag]:
    return [Tag.from_dict(item) for item in items or []]


def merge_tags(existing: Iterable[Tag], incoming: Iterable[Tag]) -> list[Tag]:
    """
    Merge two tag lists.

    Names are cleaned and empty ones dropped. Duplicates are detected
    case-insensitively; the first occurrence wins and keeps its casing.

    Example:
        merge_tags([Beach, sunset], [beach, Dog]) -> [Beach, sunset, Dog]
    """
    merged: list[Tag] = []
    seen: set[str] = set()

    for tag in [*existing, *incoming]:
        name = clean_tag_name(tag.name)
        if not name:
            continue
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        merged.append(Tag(name=name, source=tag.source, score=tag.score))

    return merged


def build_heuristic_tags(
    exif: ExifInfo | None,
    file_extension: str,
    mime_type: str,
) -> list[Tag]:
    """
    Seed tags from file attributes and metadata.

    Uses the lowercase extension, the media-type subtype, camera make,
    model and lens, "ISO<n>" and "GPS" when present.
    """
    names: list[str] = []

    ext = file_extension.strip().lower().lstrip(".")
    if ext:
        names.append(ext)

    if mime_type and "/" in mime_type:
        subtype = mime_type.split("/", 1)[1].strip()
        if subtype:
            names.append(subtype)

    if exif is not None:
        names.extend(n for n in (exif.make, exif.model, exif.lens) if n)
        if exif.iso > 0:
            names.append(f"ISO{exif.iso}")
        if exif.gps is not None:
            names.append("GPS")

    return merge_tags([], [Tag(name=n, source=TagSource.AI) for n in names])
