"""
Derived asset generation for the pipeline.

Produces new image files from stored originals:
- Thumbnails (aspect-preserving Lanczos resize, saved as JPEG)
- Edits (crop plus brightness/contrast/saturation adjustment)

Originals are never modified; every operation writes a new file.
"""

import logging
from pathlib import Path
from typing import NamedTuple

from PIL import Image, ImageEnhance, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Default thumbnail settings
DEFAULT_WIDTH = 400
DEFAULT_QUALITY = 85

# Extensions an edit may be written as; anything else becomes .jpg
EDIT_EXTENSIONS = {".jpg", ".png", ".gif", ".bmp", ".tif", ".tiff"}

EXTENSION_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

_SAVE_FORMATS = {
    ".jpg": "JPEG",
    ".png": "PNG",
    ".gif": "GIF",
    ".bmp": "BMP",
    ".tif": "TIFF",
    ".tiff": "TIFF",
}


class DerivedAssetError(Exception):
    """Raised when a thumbnail cannot be generated."""
    pass


class ImageEditError(Exception):
    """Raised when an edit cannot be applied (unreadable or unsupported image)."""
    pass


class CropRect(NamedTuple):
    """Crop rectangle in source pixel coordinates."""
    x: int
    y: int
    width: int
    height: int


def normalize_extension(extension: str) -> str:
    """Coerce an extension to one an edit can be saved as."""
    ext = extension.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    if ext == ".jpeg":
        return ".jpg"
    if ext in EDIT_EXTENSIONS:
        return ext
    return ".jpg"


def mime_type_for_extension(extension: str, default: str = "image/jpeg") -> str:
    return EXTENSION_MIME_TYPES.get(normalize_extension(extension), default)


def clamp_crop(crop: CropRect, width: int, height: int) -> tuple[int, int, int, int] | None:
    """
    Clamp a crop rectangle to image bounds.

    Returns:
        (left, upper, right, lower) box, or None when the crop is absent,
        non-positive, or falls entirely outside the image.
    """
    if crop.width <= 0 or crop.height <= 0:
        return None

    x0 = max(crop.x, 0)
    y0 = max(crop.y, 0)
    x1 = min(crop.x + crop.width, width)
    y1 = min(crop.y + crop.height, height)

    if x1 <= x0 or y1 <= y0:
        return None
    return x0, y0, x1, y1


def _enhance_factor(delta: float) -> float:
    """Map a percentage delta (-100..100) to an ImageEnhance factor."""
    return max(0.0, 1.0 + delta / 100.0)


def _prepare_for_format(img: Image.Image, save_format: str) -> Image.Image:
    if save_format in ("JPEG", "BMP") and img.mode not in ("RGB", "L"):
        return img.convert("RGB")
    return img


class DerivedAssetGenerator:
    """Generates thumbnails and edited copies of stored images."""

    def __init__(self, width: int = DEFAULT_WIDTH, quality: int = DEFAULT_QUALITY):
        """
        Initialize the generator.

        Args:
            width: Thumbnail width in pixels (height is proportional).
            quality: JPEG quality (1-100).
        """
        self.width = width
        self.quality = quality

    def generate_thumbnail(
        self,
        source_path: str | Path,
        dest_path: str | Path,
        width: int | None = None,
    ) -> Path:
        """
        Write a resized JPEG copy of an image.

        Args:
            source_path: Path to the source image.
            dest_path: Where to write the thumbnail.
            width: Target width; defaults to the generator's width.

        Returns:
            The destination path.

        Raises:
            DerivedAssetError: If the source cannot be read or the thumbnail
                               cannot be written.
        """
        source_path = Path(source_path)
        dest_path = Path(dest_path)
        new_width = width or self.width

        try:
            with Image.open(source_path) as img:
                img = _prepare_for_format(img, "JPEG")

                # Calculate new dimensions (maintain aspect ratio)
                aspect_ratio = img.height / img.width
                new_height = max(1, round(new_width * aspect_ratio))

                # Resize using high-quality resampling
                img_resized = img.resize((new_width, new_height), Image.Resampling.LANCZOS)
                img_resized.save(dest_path, format="JPEG", quality=self.quality, optimize=True)
        except Exception as e:
            raise DerivedAssetError(
                f"Failed to generate thumbnail for {source_path.name}: {e}"
            ) from e

        logger.debug(f"Generated thumbnail: {dest_path}")
        return dest_path

    def edit(
        self,
        source_path: str | Path,
        dest_path: str | Path,
        crop: CropRect | None = None,
        brightness: float = 0,
        contrast: float = 0,
        saturation: float = 0,
    ) -> Path:
        """
        Write an edited copy of an image.

        Args:
            source_path: Path to the source image.
            dest_path: Output path; its extension selects the format.
            crop: Optional crop rectangle, clamped to the image bounds.
            brightness: Percentage delta, applied only when non-zero.
            contrast: Percentage delta, applied only when non-zero.
            saturation: Percentage delta, applied only when non-zero.

        Returns:
            The destination path.

        Raises:
            ImageEditError: If the source cannot be decoded or saved.
        """
        source_path = Path(source_path)
        dest_path = Path(dest_path)
        save_format = _SAVE_FORMATS.get(dest_path.suffix.lower(), "JPEG")

        try:
            with Image.open(source_path) as src:
                src.load()
                img = src.copy()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageEditError(
                "unsupported image format (supported: jpg/png/gif/bmp/tiff/webp): "
                f"{source_path.name}: {e}"
            ) from e

        if crop is not None:
            box = clamp_crop(crop, img.width, img.height)
            if box is not None:
                img = img.crop(box)

        if brightness or contrast or saturation:
            if img.mode not in ("RGB", "RGBA", "L"):
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            if brightness:
                img = ImageEnhance.Brightness(img).enhance(_enhance_factor(brightness))
            if contrast:
                img = ImageEnhance.Contrast(img).enhance(_enhance_factor(contrast))
            if saturation:
                img = ImageEnhance.Color(img).enhance(_enhance_factor(saturation))

        try:
            _prepare_for_format(img, save_format).save(dest_path, format=save_format)
        except (OSError, ValueError) as e:
            dest_path.unlink(missing_ok=True)
            raise ImageEditError(f"failed to save image {dest_path.name}: {e}") from e

        logger.debug(f"Wrote edited image: {dest_path}")
        return dest_path
