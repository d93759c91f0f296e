"""Sanitized EXIF extraction.

Only eleven whitelisted tags are ever read from an image. Location (GPS
IFD), body/lens serial numbers and software/editor tags are never looked
up, so they cannot leak into a photo record.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from PIL import Image, ExifTags
from PIL.TiffImagePlugin import IFDRational

from .models import ExifData

logger = logging.getLogger(__name__)

# Tag 0x9207
METERING_MODE_MAP: Dict[int, str] = {
    0: "Unknown",
    1: "Average",
    2: "Center-weighted average",
    3: "Spot",
    4: "Multi-spot",
    5: "Pattern",
    6: "Partial",
}

# Tag 0xA403
WHITE_BALANCE_MAP: Dict[int, str] = {
    0: "Auto",
    1: "Manual",
}

# Tag 0x9209. Bit 0 fired, bits 1-2 return detection, bits 3-4 mode,
# bit 5 no flash function, bit 6 red-eye reduction.
FLASH_MAP: Dict[int, str] = {
    0x00: "Did not fire",
    0x01: "Fired",
    0x05: "Fired, return not detected",
    0x07: "Fired, return detected",
    0x08: "Did not fire, compulsory",
    0x09: "Fired, compulsory",
    0x0D: "Fired, compulsory, return not detected",
    0x0F: "Fired, compulsory, return detected",
    0x10: "Did not fire, compulsory suppression",
    0x18: "Did not fire, auto",
    0x19: "Fired, auto",
    0x1D: "Fired, auto, return not detected",
    0x1F: "Fired, auto, return detected",
    0x20: "No flash function",
    0x41: "Fired, red-eye reduction",
    0x45: "Fired, red-eye reduction, return not detected",
    0x47: "Fired, red-eye reduction, return detected",
    0x49: "Fired, compulsory, red-eye reduction",
    0x4D: "Fired, compulsory, red-eye, return not detected",
    0x4F: "Fired, compulsory, red-eye, return detected",
    0x59: "Fired, auto, red-eye reduction",
    0x5D: "Fired, auto, red-eye, return not detected",
    0x5F: "Fired, auto, red-eye, return detected",
}

_BASE_TAGS = (ExifTags.Base.Make, ExifTags.Base.Model)
_EXIF_IFD_TAGS = (
    ExifTags.Base.Make,
    ExifTags.Base.Model,
    ExifTags.Base.LensModel,
    ExifTags.Base.FocalLength,
    ExifTags.Base.FNumber,
    ExifTags.Base.ExposureTime,
    ExifTags.Base.ISOSpeedRatings,
    ExifTags.Base.DateTimeOriginal,
    ExifTags.Base.WhiteBalance,
    ExifTags.Base.MeteringMode,
    ExifTags.Base.Flash,
)

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def format_shutter_speed(exposure_time: Optional[float]) -> Optional[str]:
    """Exposure time in seconds as "1/250" or "2s"."""
    if exposure_time is None or not exposure_time > 0:
        return None
    if exposure_time >= 1:
        return f"{exposure_time:g}s"
    return f"1/{round(1 / exposure_time)}"


def map_white_balance(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return WHITE_BALANCE_MAP.get(value)


def map_metering_mode(value: Optional[int]) -> Optional[str]:
    if value is None:
        return None
    return METERING_MODE_MAP.get(value)


def map_flash(value: Optional[int]) -> Optional[str]:
    """Decode the flash bit field, falling back to bit 0 for unknown values."""
    if value is None:
        return None
    if value in FLASH_MAP:
        return FLASH_MAP[value]
    return "Fired" if value & 0x01 else "Did not fire"


def format_date_taken(value: Union[datetime, str, None]) -> Optional[str]:
    """datetime -> ISO-8601 in UTC; strings pass through unchanged."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        iso = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
        return iso.replace("+00:00", "Z")
    if isinstance(value, str):
        return value
    return None


def _clean(value: Any) -> Any:
    """Normalise Pillow tag values to plain Python types."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        return value.rstrip("\x00").strip() or None
    if isinstance(value, tuple):
        return _clean(value[0]) if value else None
    if isinstance(value, IFDRational):
        return float(value)
    return value


def _parse_datetime(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return datetime.strptime(value, EXIF_DATETIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return value


def _as_float(value: Any) -> Optional[float]:
    return float(value) if isinstance(value, (int, float)) else None


def _as_int(value: Any) -> Optional[int]:
    return int(value) if isinstance(value, (int, float)) else None


def _read_whitelisted_tags(image: "Image.Image") -> Optional[Dict[int, Any]]:
    """Raw values for the whitelisted tags, or None without an EXIF block."""
    exif = image.getexif()
    if not exif:
        return None

    tags: Dict[int, Any] = {}
    exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    for tag in _EXIF_IFD_TAGS:
        if tag in exif_ifd:
            tags[tag] = _clean(exif_ifd[tag])
    for tag in _BASE_TAGS:
        if tag in exif and exif[tag] is not None:
            tags[tag] = _clean(exif[tag])
    return tags


def extract_exif_data(source_path: str) -> Optional[ExifData]:
    """
    Extract the sanitized EXIF record from an image file.

    Missing files, images without an EXIF block and corrupt EXIF data all
    yield None; EXIF problems never fail an image job.
    """
    try:
        with Image.open(source_path) as image:
            tags = _read_whitelisted_tags(image)
        if tags is None:
            return None

        return ExifData(
            camera_make=tags.get(ExifTags.Base.Make),
            camera_model=tags.get(ExifTags.Base.Model),
            lens=tags.get(ExifTags.Base.LensModel),
            focal_length=_as_float(tags.get(ExifTags.Base.FocalLength)),
            aperture=_as_float(tags.get(ExifTags.Base.FNumber)),
            shutter_speed=format_shutter_speed(_as_float(tags.get(ExifTags.Base.ExposureTime))),
            iso=_as_int(tags.get(ExifTags.Base.ISOSpeedRatings)),
            date_taken=format_date_taken(_parse_datetime(tags.get(ExifTags.Base.DateTimeOriginal))),
            white_balance=map_white_balance(_as_int(tags.get(ExifTags.Base.WhiteBalance))),
            metering_mode=map_metering_mode(_as_int(tags.get(ExifTags.Base.MeteringMode))),
            flash=map_flash(_as_int(tags.get(ExifTags.Base.Flash))),
        )
    except Exception as e:  # noqa: BLE001
        logger.debug(f"No usable EXIF in {source_path}: {e}")
        return None
