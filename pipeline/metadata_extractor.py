"""
Metadata extraction module for images.

Reads the embedded EXIF block of an image and turns it into an ExifInfo:
- Camera make, model and lens
- ISO, aperture, shutter speed and focal length
- GPS coordinates
- Capture timestamp

Extraction is best-effort: missing or corrupt EXIF yields None and a
malformed field never prevents the others from being read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from PIL import Image
import piexif

logger = logging.getLogger(__name__)


@dataclass
class GPSInfo:
    """Decimal-degree coordinate pair."""
    latitude: float
    longitude: float


@dataclass
class ExifInfo:
    """Container for extracted EXIF metadata."""
    make: str | None = None
    model: str | None = None
    lens: str | None = None
    iso: int = 0
    aperture: float | None = None
    shutter_speed: str | None = None  # e.g. "1/250"
    focal_length: float | None = None
    gps: GPSInfo | None = None
    taken_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary, omitting empty fields."""
        data: dict[str, Any] = {}
        for key in ("make", "model", "lens", "shutter_speed"):
            value = getattr(self, key)
            if value:
                data[key] = value
        if self.iso > 0:
            data["iso"] = self.iso
        if self.aperture:
            data["aperture"] = self.aperture
        if self.focal_length:
            data["focal_length"] = self.focal_length
        if self.gps is not None:
            data["gps"] = {"latitude": self.gps.latitude, "longitude": self.gps.longitude}
        if self.taken_at is not None:
            data["taken_at"] = self.taken_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExifInfo | None":
        """Rebuild from the stored JSON form."""
        if data is None:
            return None
        gps = data.get("gps")
        taken_at = data.get("taken_at")
        return cls(
            make=data.get("make"),
            model=data.get("model"),
            lens=data.get("lens"),
            iso=int(data.get("iso") or 0),
            aperture=data.get("aperture"),
            shutter_speed=data.get("shutter_speed"),
            focal_length=data.get("focal_length"),
            gps=GPSInfo(gps["latitude"], gps["longitude"]) if gps else None,
            taken_at=datetime.fromisoformat(taken_at) if taken_at else None,
        )


class MetadataExtractor:
    """Extracts structured EXIF metadata from image files."""

    def extract(self, filepath: str | Path) -> ExifInfo | None:
        """
        Extract EXIF metadata from an image file.

        Args:
            filepath: Path to the image file.

        Returns:
            ExifInfo, or None when the image carries no readable EXIF.
        """
        filepath = Path(filepath)

        try:
            with Image.open(filepath) as img:
                exif_bytes = img.info.get("exif")
            if not exif_bytes:
                logger.debug(f"No EXIF in {filepath.name}")
                return None
            exif_dict = piexif.load(exif_bytes)
        except Exception as e:
            logger.debug(f"Could not read EXIF from {filepath.name}: {e}")
            return None

        ifd_0 = exif_dict.get("0th") or {}
        exif_ifd = exif_dict.get("Exif") or {}
        gps_ifd = exif_dict.get("GPS") or {}

        info = ExifInfo()
        info.make = self._field(lambda: self._decode_exif_string(ifd_0.get(piexif.ImageIFD.Make)))
        info.model = self._field(lambda: self._decode_exif_string(ifd_0.get(piexif.ImageIFD.Model)))
        info.lens = self._field(
            lambda: self._decode_exif_string(exif_ifd.get(piexif.ExifIFD.LensModel))
        )
        info.iso = self._field(lambda: self._parse_iso(exif_ifd.get(piexif.ExifIFD.ISOSpeedRatings))) or 0
        info.aperture = self._field(lambda: self._rational(exif_ifd.get(piexif.ExifIFD.FNumber)))
        info.shutter_speed = self._field(
            lambda: self._fraction(exif_ifd.get(piexif.ExifIFD.ExposureTime))
        )
        info.focal_length = self._field(
            lambda: self._rational(exif_ifd.get(piexif.ExifIFD.FocalLength))
        )
        info.gps = self._field(lambda: self._extract_gps(gps_ifd))
        info.taken_at = self._field(lambda: self._extract_taken_at(ifd_0, exif_ifd))

        return info

    def _field(self, read: Callable[[], Any]) -> Any:
        """Run one field reader, treating any failure as an absent value."""
        try:
            return read()
        except Exception as e:
            logger.debug(f"Skipping malformed EXIF field: {e}")
            return None

    def _decode_exif_string(self, value: bytes | str | None) -> str | None:
        """Decode EXIF string value."""
        if value is None:
            return None
        if isinstance(value, bytes):
            try:
                text = value.decode("utf-8")
            except UnicodeDecodeError:
                text = value.decode("latin-1")
        else:
            text = str(value)
        text = text.strip().rstrip("\x00").strip()
        return text or None

    def _parse_iso(self, value: Any) -> int | None:
        if value is None:
            return None
        if isinstance(value, (tuple, list)):
            value = value[0]
        return int(value)

    def _rational(self, value: tuple[int, int] | None) -> float | None:
        if not value:
            return None
        num, den = value
        if den == 0:
            return None
        return num / den

    def _fraction(self, value: tuple[int, int] | None) -> str | None:
        """Render an exposure time rational as "1/den" or "num/den"."""
        if not value:
            return None
        num, den = value
        if den == 0:
            return None
        if num == 1:
            return f"1/{den}"
        return f"{num}/{den}"

    def _parse_exif_date(self, date_str: str | None) -> datetime | None:
        """Parse EXIF date string to datetime."""
        if not date_str:
            return None
        # EXIF format: "YYYY:MM:DD HH:MM:SS"
        try:
            return datetime.strptime(date_str, "%Y:%m:%d %H:%M:%S")
        except ValueError:
            try:
                return datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                logger.debug(f"Could not parse date: {date_str}")
                return None

    def _extract_taken_at(self, ifd_0: dict, exif_ifd: dict) -> datetime | None:
        original = self._decode_exif_string(exif_ifd.get(piexif.ExifIFD.DateTimeOriginal))
        taken_at = self._parse_exif_date(original)
        if taken_at is None:
            fallback = self._decode_exif_string(ifd_0.get(piexif.ImageIFD.DateTime))
            taken_at = self._parse_exif_date(fallback)
        return taken_at

    def _extract_gps(self, gps_ifd: dict) -> GPSInfo | None:
        """Extract a GPS pair; both coordinates or nothing."""
        if not gps_ifd:
            return None

        lat = self._dms_to_decimal(
            gps_ifd.get(piexif.GPSIFD.GPSLatitude),
            gps_ifd.get(piexif.GPSIFD.GPSLatitudeRef, b"N"),
        )
        lon = self._dms_to_decimal(
            gps_ifd.get(piexif.GPSIFD.GPSLongitude),
            gps_ifd.get(piexif.GPSIFD.GPSLongitudeRef, b"E"),
        )
        if lat is None or lon is None:
            return None
        return GPSInfo(latitude=lat, longitude=lon)

    def _dms_to_decimal(self, dms: tuple | None, ref: bytes | str) -> float | None:
        """Convert DMS (degrees, minutes, seconds) to decimal degrees."""
        if not dms:
            return None

        try:
            degrees = dms[0][0] / dms[0][1]
            minutes = dms[1][0] / dms[1][1]
            seconds = dms[2][0] / dms[2][1]
        except (TypeError, ZeroDivisionError, IndexError):
            return None

        decimal = degrees + minutes / 60 + seconds / 3600
        if isinstance(ref, str):
            ref = ref.encode()
        if ref.strip(b"\x00 ") in (b"S", b"W"):
            decimal = -decimal

        return round(decimal, 7)
