import pytest
from PIL import Image

from pipeline.derived_assets import (
    CropRect,
    DerivedAssetError,
    DerivedAssetGenerator,
    ImageEditError,
    clamp_crop,
    mime_type_for_extension,
    normalize_extension,
)
from tests.conftest import make_image_bytes


@pytest.fixture
def generator():
    return DerivedAssetGenerator(width=400)


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "source.png"
    path.write_bytes(make_image_bytes("PNG", size=(100, 50)))
    return path


@pytest.mark.parametrize("ext, expected", [
    (".jpeg", ".jpg"),
    (".JPG", ".jpg"),
    (".png", ".png"),
    ("gif", ".gif"),
    (".tif", ".tif"),
    (".tiff", ".tiff"),
    (".bmp", ".bmp"),
    (".webp", ".jpg"),
    (".heic", ".jpg"),
    ("", ".jpg"),
])
def test_normalize_extension(ext, expected):
    assert normalize_extension(ext) == expected


def test_mime_type_for_extension():
    assert mime_type_for_extension(".jpeg") == "image/jpeg"
    assert mime_type_for_extension(".tiff") == "image/tiff"
    assert mime_type_for_extension(".png", "application/octet-stream") == "image/png"


def test_clamp_crop():
    assert clamp_crop(CropRect(10, 10, 50, 20), 100, 50) == (10, 10, 60, 30)
    assert clamp_crop(CropRect(-10, -10, 1000, 1000), 100, 50) == (0, 0, 100, 50)
    assert clamp_crop(CropRect(0, 0, 0, 10), 100, 50) is None
    assert clamp_crop(CropRect(200, 200, 10, 10), 100, 50) is None


def test_thumbnail_preserves_aspect_ratio(generator, source, tmp_path):
    dest = generator.generate_thumbnail(source, tmp_path / "thumb_source.jpg")

    with Image.open(dest) as img:
        assert img.format == "JPEG"
        assert img.size == (400, 200)


def test_thumbnail_converts_alpha(generator, tmp_path):
    src = tmp_path / "alpha.png"
    Image.new("RGBA", (40, 40), (10, 20, 30, 128)).save(src)

    dest = generator.generate_thumbnail(src, tmp_path / "thumb_alpha.jpg", width=20)
    with Image.open(dest) as img:
        assert img.mode == "RGB"
        assert img.size == (20, 20)


def test_thumbnail_of_non_image_raises(generator, tmp_path):
    src = tmp_path / "broken.jpg"
    src.write_bytes(b"definitely not a jpeg")
    with pytest.raises(DerivedAssetError):
        generator.generate_thumbnail(src, tmp_path / "thumb_broken.jpg")


def test_edit_crop_is_clamped(generator, source, tmp_path):
    dest = generator.edit(source, tmp_path / "edit.png", crop=CropRect(50, 25, 500, 500))

    with Image.open(dest) as img:
        assert img.size == (50, 25)


def test_edit_leaves_source_untouched(generator, source, tmp_path):
    before = source.read_bytes()
    generator.edit(source, tmp_path / "edit.png", brightness=40, contrast=-20, saturation=10)
    assert source.read_bytes() == before


def test_edit_brightness_changes_pixels(generator, source, tmp_path):
    dest = generator.edit(source, tmp_path / "bright.png", brightness=50)

    with Image.open(source) as original, Image.open(dest) as edited:
        assert edited.size == original.size
        assert edited.getpixel((99, 49)) != original.getpixel((99, 49))


def test_edit_without_adjustments_copies_image(generator, source, tmp_path):
    dest = generator.edit(source, tmp_path / "copy.png")
    with Image.open(source) as original, Image.open(dest) as copy:
        assert list(copy.getdata()) == list(original.getdata())


def test_edit_jpeg_output_from_alpha_source(generator, tmp_path):
    src = tmp_path / "alpha.png"
    Image.new("RGBA", (30, 30), (255, 0, 0, 100)).save(src)

    dest = generator.edit(src, tmp_path / "edit.jpg", saturation=-50)
    with Image.open(dest) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"


def test_edit_rejects_undecodable_source(generator, tmp_path):
    src = tmp_path / "garbage.png"
    src.write_bytes(b"\x00\x01\x02")
    with pytest.raises(ImageEditError):
        generator.edit(src, tmp_path / "out.png")
    assert not (tmp_path / "out.png").exists()
