import io
import threading
import time

import piexif
import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db.models import Base
from db.operations import PhotoRepository
from pipeline.ai_tagger import ImageTagger, ProviderError
from pipeline.config import PipelineConfig
from pipeline.processor import PhotoProcessor
from pipeline.tagging import Tag, TagSource


@pytest.fixture
def db_engine(tmp_path):
    """File-backed SQLite engine so worker threads get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'photos.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return PhotoRepository(session_factory)


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def config(upload_dir):
    return PipelineConfig(upload_dir=upload_dir, ai_tagging_enabled=False)


@pytest.fixture
def make_processor(config, repository):
    """Factory for processors sharing the test database; closed on teardown."""
    created = []

    def _make(tagger=None, **overrides):
        cfg = config
        for key, value in overrides.items():
            setattr(cfg, key, value)
        processor = PhotoProcessor(config=cfg, repository=repository, tagger=tagger)
        created.append(processor)
        return processor

    yield _make

    for processor in created:
        processor.close()


@pytest.fixture
def processor(make_processor):
    return make_processor()


def make_image_bytes(
    fmt: str = "JPEG",
    size: tuple[int, int] = (64, 48),
    color: tuple[int, int, int] = (200, 120, 40),
    exif: bytes | None = None,
) -> bytes:
    """Render a solid-colour image in memory."""
    img = Image.new("RGB", size, color)
    # A second colour block keeps crops and enhancements observable
    img.paste((20, 60, 180), (0, 0, size[0] // 2, size[1] // 2))
    buf = io.BytesIO()
    if exif is not None:
        img.save(buf, format=fmt, exif=exif)
    else:
        img.save(buf, format=fmt)
    return buf.getvalue()


def make_exif_bytes(with_gps: bool = True) -> bytes:
    exif_dict = {
        "0th": {
            piexif.ImageIFD.Make: b"Canon",
            piexif.ImageIFD.Model: b"EOS R5",
        },
        "Exif": {
            piexif.ExifIFD.ISOSpeedRatings: 200,
            piexif.ExifIFD.FNumber: (28, 10),
            piexif.ExifIFD.ExposureTime: (1, 250),
            piexif.ExifIFD.FocalLength: (50, 1),
            piexif.ExifIFD.LensModel: b"RF50mm F1.8 STM",
            piexif.ExifIFD.DateTimeOriginal: b"2024:05:01 10:30:00",
        },
        "GPS": {},
    }
    if with_gps:
        exif_dict["GPS"] = {
            piexif.GPSIFD.GPSLatitudeRef: b"N",
            piexif.GPSIFD.GPSLatitude: ((48, 1), (51, 1), (30, 1)),
            piexif.GPSIFD.GPSLongitudeRef: b"W",
            piexif.GPSIFD.GPSLongitude: ((2, 1), (21, 1), (0, 1)),
        }
    return piexif.dump(exif_dict)


class FakeTagger(ImageTagger):
    """Returns fixed tags, optionally after a delay."""

    def __init__(self, names=("beach", "Dog"), delay: float = 0.0):
        self.names = list(names)
        self.delay = delay
        self.calls = []
        self.lock = threading.Lock()

    def generate_tags(self, image_path, timeout=None):
        with self.lock:
            self.calls.append((image_path, timeout))
        if self.delay:
            time.sleep(self.delay)
        return [Tag(name=n, source=TagSource.AI, score=0.9) for n in self.names]


class FailingTagger(ImageTagger):
    def generate_tags(self, image_path, timeout=None):
        raise ProviderError("ark error: status=500 body=boom")
