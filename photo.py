"""
Portrait handling: compositing into the card's photo circle, plus the upload
helpers that validate a raw photo and store the original and the badge-sized
processed copy.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from PIL import Image, ImageDraw, ImageOps, UnidentifiedImageError

from config import (
    MEDIA_ROOT,
    ORIGINALS_SUBDIR,
    PHOTO_ASPECT_RATIO,
    PHOTO_ASPECT_TOLERANCE,
    PHOTO_FORMATS,
    PHOTO_MAX_BYTES,
    PHOTO_PLACEHOLDER_CAPTION,
    PHOTO_PLACEHOLDER_FILL,
    PHOTO_PLACEHOLDER_FONT_SIZE,
    PHOTO_PLACEHOLDER_TEXT,
    PHOTO_VERTICAL_BIAS,
    PHOTOS_SUBDIR,
    PROCESSED_PHOTO_QUALITY,
    PROCESSED_PHOTO_SIZE,
)
from errors import AssetMissing
from template_config import PhotoCircle
from text_layout import FontBook
from utils import atomic_write_bytes, safe_filename_part

logger = logging.getLogger(__name__)


def cover_rect(
    photo_size: Tuple[int, int],
    circle: PhotoCircle,
    vertical_bias: float = PHOTO_VERTICAL_BIAS,
) -> Tuple[float, float, float, float]:
    """
    Where to draw a photo so it covers the circle's bounding square.

    Returns ``(x, y, width, height)`` in canvas pixels. Horizontally the photo is
    centered on the circle; vertically the crop window starts ``vertical_bias``
    of the overflow from the top, like CSS ``object-position: center 15%``.
    """
    pw, ph = photo_size
    if pw <= 0 or ph <= 0:
        raise ValueError(f"invalid photo size: {photo_size!r}")
    diameter = circle.diameter
    scale = max(diameter / pw, diameter / ph)
    draw_w = pw * scale
    draw_h = ph * scale
    draw_x = circle.cx - draw_w / 2
    draw_y = (circle.cy - circle.radius) - vertical_bias * (draw_h - diameter)
    return draw_x, draw_y, draw_w, draw_h


def circle_mask(size: int) -> Image.Image:
    mask = Image.new("L", (size, size), 0)
    draw = ImageDraw.Draw(mask)
    draw.ellipse((0, 0, size - 1, size - 1), fill=255)
    return mask


def composite_photo(
    canvas: Image.Image,
    photo: Image.Image,
    circle: PhotoCircle,
    vertical_bias: float = PHOTO_VERTICAL_BIAS,
) -> None:
    """Paint ``photo`` into ``circle`` on ``canvas``. Pixels outside the circle are untouched."""
    draw_x, draw_y, draw_w, draw_h = cover_rect(photo.size, circle, vertical_bias)
    box_left = int(round(circle.cx - circle.radius))
    box_top = int(round(circle.cy - circle.radius))
    size = max(1, int(round(circle.diameter)))

    scaled = photo.convert("RGB").resize(
        (max(1, int(round(draw_w))), max(1, int(round(draw_h)))),
        Image.Resampling.LANCZOS,
    )
    window = Image.new("RGB", (size, size))
    window.paste(scaled, (int(round(draw_x)) - box_left, int(round(draw_y)) - box_top))
    canvas.paste(window, (box_left, box_top), circle_mask(size))


def draw_placeholder(canvas: Image.Image, circle: PhotoCircle, fonts: FontBook) -> None:
    """Neutral disc with a caption, used when no photo can be loaded."""
    draw = ImageDraw.Draw(canvas)
    draw.ellipse(circle.bbox, fill=PHOTO_PLACEHOLDER_FILL)
    draw.text(
        (circle.cx, circle.cy + 15),
        PHOTO_PLACEHOLDER_CAPTION,
        font=fonts.font(PHOTO_PLACEHOLDER_FONT_SIZE),
        fill=PHOTO_PLACEHOLDER_TEXT,
        anchor="ms",
    )


def resolve_media_path(ref: Optional[str], media_root: Union[str, Path] = MEDIA_ROOT) -> Optional[Path]:
    """Map a stored reference such as ``/uploads/photos/123.jpg`` to a file under ``media_root``."""
    if not ref:
        return None
    root = Path(media_root).resolve()
    candidate = (root / str(ref).lstrip("/\\")).resolve()
    if root != candidate and root not in candidate.parents:
        return None
    return candidate


def load_photo(ref: Optional[str], media_root: Union[str, Path] = MEDIA_ROOT) -> Image.Image:
    path = resolve_media_path(ref, media_root)
    if path is None:
        raise AssetMissing(f"Photo reference not usable: {ref!r}")
    try:
        with Image.open(path) as img:
            img.load()
            return ImageOps.exif_transpose(img).convert("RGB")
    except (OSError, UnidentifiedImageError) as e:
        raise AssetMissing(f"Cannot load photo {path}: {e}") from e


@dataclass
class PhotoValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    size: int = 0


def validate_photo(data: bytes) -> PhotoValidation:
    """Check an uploaded photo: minimum size, roughly 5:6, at most 2MB, JPEG or PNG."""
    errors = []
    width = height = fmt = None
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = img.format
    except (OSError, UnidentifiedImageError):
        errors.append("Could not read image dimensions")

    if width and height:
        min_w, min_h = PROCESSED_PHOTO_SIZE
        if width < min_w or height < min_h:
            errors.append(f"Minimum dimensions: {min_w}x{min_h}px")
        if abs(width / height - PHOTO_ASPECT_RATIO) > PHOTO_ASPECT_TOLERANCE:
            errors.append("Aspect ratio must be approximately 5:6")
    if len(data) > PHOTO_MAX_BYTES:
        errors.append("File must not exceed 2MB")
    if fmt not in PHOTO_FORMATS:
        errors.append("Only JPG or PNG formats are allowed")

    return PhotoValidation(
        valid=not errors,
        errors=errors,
        width=width,
        height=height,
        format=fmt,
        size=len(data),
    )


def process_photo(data: bytes) -> bytes:
    """Badge-sized JPEG: cover crop to 240x288 anchored at the top."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img).convert("RGB")
        fitted = ImageOps.fit(img, PROCESSED_PHOTO_SIZE, method=Image.Resampling.LANCZOS, centering=(0.5, 0.0))
    buf = io.BytesIO()
    fitted.save(buf, format="JPEG", quality=PROCESSED_PHOTO_QUALITY)
    return buf.getvalue()


def store_photo(dni: str, data: bytes, media_root: Union[str, Path] = MEDIA_ROOT) -> Tuple[str, str]:
    """
    Save the original upload and its processed copy.

    Returns ``(photo_url, photo_original)`` references relative to ``media_root``.
    """
    name = f"{safe_filename_part(dni)}.jpg"
    root = Path(media_root)
    processed = process_photo(data)
    atomic_write_bytes(root / ORIGINALS_SUBDIR / name, data)
    atomic_write_bytes(root / PHOTOS_SUBDIR / name, processed)
    logger.info("Stored photo for %s", dni)
    return f"/{PHOTOS_SUBDIR}/{name}", f"/{ORIGINALS_SUBDIR}/{name}"
