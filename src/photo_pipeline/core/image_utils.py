"""Derivative and placeholder generation for uploaded originals."""

import base64
import io
import os
import re
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .exceptions import ImageProcessingError

# Widths are a contract with the image-serving endpoint and the client
# loader: output files are named "{width}w.{format}".
THUMBNAIL_SIZES: Tuple[int, ...] = (300, 600, 1200, 2400)
DERIVATIVE_FORMATS: Tuple[str, ...] = ("webp", "avif")

WEBP_QUALITY = 82
WEBP_METHOD = 4  # 0-6
AVIF_QUALITY = 80
AVIF_SPEED = 6  # 0-10, lower is slower and smaller

BLUR_SIZE = 10
BLUR_QUALITY = 20

CONTENT_TYPES: Dict[str, str] = {
    ".webp": "image/webp",
    ".avif": "image/avif",
}

_DERIVATIVE_NAME = re.compile(r"^(?P<width>\d+)w\.(?P<format>[a-z]+)$")

# Orientation values 5-8 swap the displayed axes.
_TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}
_ORIENTATION_TAG = 0x0112


class ImageMetadata(NamedTuple):
    width: int
    height: int
    format: Optional[str]
    orientation: int


def derivative_filename(width: int, fmt: str) -> str:
    return f"{width}w.{fmt}"


def derivative_key(photo_id: str, filename: str) -> str:
    """Storage key for a derivative file of ``photo_id``."""
    return f"processed/{photo_id}/{filename}"


def parse_derivative_filename(filename: str) -> Optional[Tuple[int, str]]:
    """(width, format) for a valid derivative name, otherwise None."""
    match = _DERIVATIVE_NAME.match(os.path.basename(filename))
    if not match:
        return None
    width, fmt = int(match["width"]), match["format"]
    if width not in THUMBNAIL_SIZES or fmt not in DERIVATIVE_FORMATS:
        return None
    return width, fmt


def content_type_for(filename: str) -> Optional[str]:
    return CONTENT_TYPES.get(os.path.splitext(filename)[1].lower())


def _decode_error(source_path: str, err: Exception) -> ImageProcessingError:
    return ImageProcessingError(f"Cannot decode image {source_path}: {err}")


def get_image_metadata(source_path: str) -> ImageMetadata:
    """Stored (pre-orientation) dimensions, format and EXIF orientation."""
    try:
        with Image.open(source_path) as img:
            orientation = img.getexif().get(_ORIENTATION_TAG, 1)
            return ImageMetadata(img.width, img.height, img.format, orientation)
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as err:
        raise _decode_error(source_path, err) from err


def oriented_size(metadata: ImageMetadata) -> Tuple[int, int]:
    if metadata.orientation in _TRANSPOSED_ORIENTATIONS:
        return metadata.height, metadata.width
    return metadata.width, metadata.height


def get_oriented_dimensions(source_path: str) -> Tuple[int, int]:
    """(width, height) as displayed, after EXIF orientation is applied."""
    return oriented_size(get_image_metadata(source_path))


def _load_oriented(source_path: str) -> Tuple["Image.Image", Optional[bytes]]:
    """Fully decoded, orientation-corrected image and its ICC profile."""
    try:
        with Image.open(source_path) as img:
            img.load()
            icc_profile = img.info.get("icc_profile")
            oriented = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as err:
        raise _decode_error(source_path, err) from err

    if oriented.mode == "CMYK":
        # A CMYK profile does not describe the converted RGB pixels
        icc_profile = None
    if oriented.mode not in ("RGB", "RGBA"):
        has_alpha = "A" in oriented.getbands() or "transparency" in oriented.info
        oriented = oriented.convert("RGBA" if has_alpha else "RGB")
    return oriented, icc_profile


def _resize_to_width(img: "Image.Image", width: int) -> "Image.Image":
    if img.width == width:
        return img.copy()
    height = max(1, round(img.height * width / img.width))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def _encoder_options(fmt: str, icc_profile: Optional[bytes]) -> Dict[str, Any]:
    if fmt == "webp":
        options: Dict[str, Any] = {"format": "WEBP", "quality": WEBP_QUALITY, "method": WEBP_METHOD}
    elif fmt == "avif":
        options = {"format": "AVIF", "quality": AVIF_QUALITY, "speed": AVIF_SPEED}
    else:
        raise ValueError(f"Unknown derivative format: {fmt}")
    if icc_profile:
        options["icc_profile"] = icc_profile
    return options


def generate_derivatives(source_path: str, output_dir: str) -> List[str]:
    """
    Write WebP and AVIF renditions of ``source_path`` into ``output_dir``.

    Every width in THUMBNAIL_SIZES not wider than the displayed image is
    rendered; larger ones are skipped rather than upscaled. Each rendition is
    orientation-corrected, resized to exactly the target width with the
    aspect ratio kept, and carries the source ICC profile.

    Args:
        source_path: Path to the original image
        output_dir: Directory for the output files; created if missing

    Returns:
        Written paths ordered by width, webp before avif. Empty when the
        original is narrower than every size.

    Raises:
        ImageProcessingError: If the original cannot be decoded or encoded
    """
    os.makedirs(output_dir, exist_ok=True)

    original_width, _ = get_oriented_dimensions(source_path)
    widths = [w for w in THUMBNAIL_SIZES if w <= original_width]
    if not widths:
        return []

    oriented, icc_profile = _load_oriented(source_path)
    generated: List[str] = []
    try:
        for width in widths:
            resized = _resize_to_width(oriented, width)
            for fmt in DERIVATIVE_FORMATS:
                path = os.path.join(output_dir, derivative_filename(width, fmt))
                try:
                    resized.save(path, **_encoder_options(fmt, icc_profile))
                except (OSError, KeyError, ValueError) as err:
                    raise ImageProcessingError(
                        f"Failed to encode {fmt} derivative at {width}w for {source_path}: {err}"
                    ) from err
                generated.append(path)
    finally:
        oriented.close()
    return generated


def _fit_within(img: "Image.Image", box: int) -> "Image.Image":
    """Scale so the longer side is ``box`` pixels; each side stays at least 1px."""
    scale = box / max(img.width, img.height)
    size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
    return img.resize(size, Image.Resampling.LANCZOS)


def generate_blur_placeholder(source_path: str) -> str:
    """
    Tiny WebP preview of the image as a ``data:`` URI.

    The preview fits inside a BLUR_SIZE square, so originals of any size or
    aspect ratio produce a placeholder of a few hundred bytes.
    """
    oriented, _ = _load_oriented(source_path)
    try:
        tiny = _fit_within(oriented, BLUR_SIZE)
        buffer = io.BytesIO()
        try:
            tiny.save(buffer, format="WEBP", quality=BLUR_QUALITY)
        except (OSError, ValueError) as err:
            raise ImageProcessingError(
                f"Failed to encode blur placeholder for {source_path}: {err}"
            ) from err
    finally:
        oriented.close()
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/webp;base64,{encoded}"
