"""
Text layout for card faces.

Front fields flow top to bottom: a field never renders above its configured
``y``, and a long value that wraps onto several lines pushes every later field
down. Back fields stay where they are configured.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from PIL import ImageDraw, ImageFont

from config import FIELD_GAP_FACTOR, FONTS_DIR, LINE_HEIGHT_FACTOR, MIN_FONT_SIZE
from template_config import FieldSpec, TemplateConfig

logger = logging.getLogger(__name__)

# (text, font_size, bold) -> rendered width in pixels
Measure = Callable[[str, float, bool], float]

_REGULAR_FONTS = [
    str(FONTS_DIR / "Arial.ttf"),
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/Library/Fonts/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
]
_BOLD_FONTS = [
    str(FONTS_DIR / "Arial Bold.ttf"),
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]


class FontBook:
    """Loads TrueType fonts by size and weight. Fonts are cached per thread."""

    def __init__(self, regular_paths: Optional[Sequence[str]] = None, bold_paths: Optional[Sequence[str]] = None):
        self._regular_paths = list(regular_paths) if regular_paths is not None else _REGULAR_FONTS
        self._bold_paths = list(bold_paths) if bold_paths is not None else _BOLD_FONTS
        self._resolved: Dict[bool, Optional[str]] = {}
        self._lock = threading.Lock()
        self._local = threading.local()

    def _path_for(self, bold: bool) -> Optional[str]:
        with self._lock:
            if bold not in self._resolved:
                paths = self._bold_paths if bold else self._regular_paths
                self._resolved[bold] = next((p for p in paths if os.path.exists(p)), None)
                if self._resolved[bold] is None:
                    logger.debug("No %s TrueType font found; using Pillow default", "bold" if bold else "regular")
            return self._resolved[bold]

    def font(self, size: float, bold: bool = False) -> ImageFont.FreeTypeFont:
        px = max(1, int(round(size)))
        cache = getattr(self._local, "fonts", None)
        if cache is None:
            cache = self._local.fonts = {}
        key = (px, bold)
        if key not in cache:
            path = self._path_for(bold)
            if path is None and bold:
                path = self._path_for(False)
            cache[key] = ImageFont.truetype(path, px) if path else ImageFont.load_default(size=px)
        return cache[key]

    def measure(self, text: str, size: float, bold: bool = False) -> float:
        return self.font(size, bold).getlength(text)


@dataclass(frozen=True)
class PlacedField:
    """A field after layout. ``x`` is the center of every line, ``y`` the first baseline."""

    key: str
    lines: Tuple[str, ...]
    x: float
    y: float
    font_size: float
    bold: bool
    color: str
    line_height: float

    @property
    def height(self) -> float:
        return len(self.lines) * self.line_height

    @property
    def bottom(self) -> float:
        return self.y + self.height


def resolve_fields(fields: Mapping[str, FieldSpec], values: Mapping[str, str]) -> List[Tuple[str, FieldSpec, str]]:
    """Pair each field with its value in declared order; fields without a value are dropped."""
    resolved = []
    for key, spec in fields.items():
        value = spec.text or values.get(key) or ""
        value = str(value).strip()
        if value:
            resolved.append((key, spec, value))
    return resolved


def wrap_text(text: str, max_width: float, measure_line: Callable[[str], float]) -> List[str]:
    """Greedy word wrap. A single word wider than ``max_width`` gets its own line."""
    words = text.split()
    if not words:
        return []
    lines = []
    current = words[0]
    for word in words[1:]:
        candidate = f"{current} {word}"
        if measure_line(candidate) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    lines.append(current)
    return lines


def layout_cascade(
    items: Sequence[Tuple[str, FieldSpec, str]],
    config: TemplateConfig,
    measure: Measure,
) -> List[PlacedField]:
    placed = []
    floor = 0.0
    for key, spec, value in items:
        start_y = max(floor, spec.y)
        lines = wrap_text(
            value,
            config.field_max_width(spec),
            lambda s, spec=spec: measure(s, spec.font_size, spec.bold),
        )
        line_height = spec.font_size * LINE_HEIGHT_FACTOR
        placed.append(
            PlacedField(
                key=key,
                lines=tuple(lines),
                x=spec.x.resolve(config.card_width),
                y=start_y,
                font_size=spec.font_size,
                bold=spec.bold,
                color=spec.color,
                line_height=line_height,
            )
        )
        floor = start_y + len(lines) * line_height + spec.font_size * FIELD_GAP_FACTOR
    return placed


def layout_fixed(
    items: Sequence[Tuple[str, FieldSpec, str]],
    config: TemplateConfig,
    measure: Measure,
) -> List[PlacedField]:
    """One line per field at its configured spot, shrinking the font to respect ``maxWidth``."""
    placed = []
    for key, spec, value in items:
        size = spec.font_size
        if spec.max_width is not None:
            while size > MIN_FONT_SIZE and measure(value, size, spec.bold) > spec.max_width:
                size -= 1
        placed.append(
            PlacedField(
                key=key,
                lines=(value,),
                x=spec.x.resolve(config.card_width),
                y=spec.y,
                font_size=size,
                bold=spec.bold,
                color=spec.color,
                line_height=size * LINE_HEIGHT_FACTOR,
            )
        )
    return placed


def draw_fields(draw: ImageDraw.ImageDraw, placed: Sequence[PlacedField], fonts: FontBook) -> None:
    for field in placed:
        font = fonts.font(field.font_size, field.bold)
        for i, line in enumerate(field.lines):
            draw.text(
                (field.x, field.y + i * field.line_height),
                line,
                font=font,
                fill=field.color,
                anchor="ms",
            )
