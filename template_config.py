"""
Template configuration model for fotocheck cards.

The template is a JSON document curated by an administrator. It describes the
pixel canvas (``cardWidth`` x ``cardHeight``) and where the photo, text fields
and QR code go on each face. Every coordinate lives in that same pixel space.
A template without ``back.qr`` prints its back face with no QR code.

Loading never falls back to a default: a missing or broken file raises
``ConfigUnavailable`` so that a wrong layout is never printed silently.
"""

from __future__ import annotations

import copy
import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from PIL import ImageColor

from config import (
    CONFIG_FILENAME,
    DEFAULT_CARD_HEIGHT,
    DEFAULT_CARD_WIDTH,
    FIELD_MARGIN_PX,
    TEMPLATES_DIR,
)
from errors import ConfigUnavailable
from utils import atomic_write_bytes

logger = logging.getLogger(__name__)

CENTER = "center"
FONT_WEIGHTS = ("normal", "bold")


@dataclass(frozen=True)
class Coordinate:
    """Horizontal position: either a literal pixel offset or centered on the canvas."""

    px: float = 0.0
    centered: bool = False

    @classmethod
    def parse(cls, value: Any) -> "Coordinate":
        if isinstance(value, Coordinate):
            return value
        if isinstance(value, str) and value.strip().lower() == CENTER:
            return CENTERED
        if isinstance(value, bool):
            raise ValueError(f"invalid coordinate: {value!r}")
        try:
            px = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"invalid coordinate: {value!r}") from None
        if not math.isfinite(px):
            raise ValueError(f"invalid coordinate: {value!r}")
        return cls(px=px)

    def resolve(self, canvas_width: float, element_width: float = 0.0) -> float:
        """Left edge for an element of ``element_width`` (its center when width is 0)."""
        if self.centered:
            return (canvas_width - element_width) / 2
        return self.px

    def to_json(self) -> Union[str, int, float]:
        if self.centered:
            return CENTER
        return int(self.px) if float(self.px).is_integer() else self.px


CENTERED = Coordinate(centered=True)


def _number(data: Mapping[str, Any], key: str, where: str, *, positive: bool = False, required: bool = True):
    if key not in data or data[key] is None:
        if required:
            raise ConfigUnavailable(f"{where}.{key} is required")
        return None
    value = data[key]
    if isinstance(value, bool):
        raise ConfigUnavailable(f"{where}.{key} must be a number, got {value!r}")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ConfigUnavailable(f"{where}.{key} must be a number, got {value!r}") from None
    if not math.isfinite(num):
        raise ConfigUnavailable(f"{where}.{key} must be finite")
    if positive and num <= 0:
        raise ConfigUnavailable(f"{where}.{key} must be positive, got {value!r}")
    return int(num) if num.is_integer() else num


def _coordinate(data: Mapping[str, Any], key: str, where: str) -> Coordinate:
    try:
        return Coordinate.parse(data.get(key, 0))
    except ValueError as e:
        raise ConfigUnavailable(f"{where}.{key}: {e}") from e


def _mapping(data: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ConfigUnavailable(f"{where} must be an object")
    return data


@dataclass(frozen=True)
class FieldSpec:
    x: Coordinate
    y: float
    font_size: float
    color: str = "#000000"
    font_weight: str = "normal"
    max_width: Optional[float] = None
    text: Optional[str] = None

    @property
    def bold(self) -> bool:
        return self.font_weight == "bold"

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "FieldSpec":
        data = _mapping(data, where)
        weight = str(data.get("fontWeight") or "normal").lower()
        if weight not in FONT_WEIGHTS:
            raise ConfigUnavailable(f"{where}.fontWeight must be one of {FONT_WEIGHTS}, got {weight!r}")
        color = str(data.get("color") or "#000000")
        try:
            ImageColor.getrgb(color)
        except ValueError as e:
            raise ConfigUnavailable(f"{where}.color: {e}") from e
        text = data.get("text")
        return cls(
            x=_coordinate(data, "x", where),
            y=_number(data, "y", where),
            font_size=_number(data, "fontSize", where, positive=True),
            color=color,
            font_weight=weight,
            max_width=_number(data, "maxWidth", where, positive=True, required=False),
            text=str(text) if text else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "x": self.x.to_json(),
            "y": self.y,
            "fontSize": self.font_size,
            "color": self.color,
        }
        if self.font_weight != "normal":
            out["fontWeight"] = self.font_weight
        if self.max_width is not None:
            out["maxWidth"] = self.max_width
        if self.text:
            out["text"] = self.text
        return out


@dataclass(frozen=True)
class PhotoCircle:
    cx: float
    cy: float
    radius: float

    @property
    def diameter(self) -> float:
        return self.radius * 2

    @property
    def bbox(self) -> Tuple[float, float, float, float]:
        return (self.cx - self.radius, self.cy - self.radius, self.cx + self.radius, self.cy + self.radius)


@dataclass(frozen=True)
class QrSpec:
    x: Coordinate
    y: float
    size: int
    include_email: bool = False


@dataclass(frozen=True)
class TemplateConfig:
    card_width: int
    card_height: int
    photo_circle: PhotoCircle
    qr: Optional[QrSpec]
    front_fields: Dict[str, FieldSpec] = field(default_factory=dict)
    back_fields: Dict[str, FieldSpec] = field(default_factory=dict)
    front_template: Optional[str] = None
    back_template: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def field_max_width(self, spec: FieldSpec) -> float:
        if spec.max_width is not None:
            return spec.max_width
        return self.card_width - FIELD_MARGIN_PX

    @classmethod
    def from_dict(cls, data: Any) -> "TemplateConfig":
        """Parse and validate the JSON shape. Raises ``ConfigUnavailable``."""
        data = _mapping(data, "config")
        width = _number(data, "cardWidth", "config", positive=True)
        height = _number(data, "cardHeight", "config", positive=True)
        if not isinstance(width, int) or not isinstance(height, int):
            raise ConfigUnavailable("cardWidth and cardHeight must be whole pixels")

        front = _mapping(data.get("front"), "front")
        back = _mapping(data.get("back") or {}, "back")

        circle_raw = _mapping(front.get("photoCircle"), "front.photoCircle")
        circle = PhotoCircle(
            cx=_number(circle_raw, "cx", "front.photoCircle"),
            cy=_number(circle_raw, "cy", "front.photoCircle"),
            radius=_number(circle_raw, "radius", "front.photoCircle", positive=True),
        )

        if "fields" not in front:
            raise ConfigUnavailable("front.fields is required")
        front_fields = {
            str(k): FieldSpec.from_dict(v, f"front.fields.{k}")
            for k, v in _mapping(front["fields"], "front.fields").items()
        }
        back_fields = {
            str(k): FieldSpec.from_dict(v, f"back.fields.{k}")
            for k, v in _mapping(back.get("fields") or {}, "back.fields").items()
        }

        qr = None
        if back.get("qr") is not None:
            qr_raw = _mapping(back["qr"], "back.qr")
            size = _number(qr_raw, "size", "back.qr", positive=True)
            qr = QrSpec(
                x=_coordinate(qr_raw, "x", "back.qr"),
                y=_number(qr_raw, "y", "back.qr"),
                size=int(round(size)),
                include_email=bool(qr_raw.get("includeEmail", False)),
            )

        return cls(
            card_width=width,
            card_height=height,
            photo_circle=circle,
            qr=qr,
            front_fields=front_fields,
            back_fields=back_fields,
            front_template=(str(data["template"]) if data.get("template") else None),
            back_template=(str(data["templateBack"]) if data.get("templateBack") else None),
            raw=copy.deepcopy(dict(data)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON shape of this config. Keys this model does not know are kept from ``raw``."""
        out = copy.deepcopy(self.raw)
        out["template"] = self.front_template or ""
        out["templateBack"] = self.back_template or ""
        out["cardWidth"] = self.card_width
        out["cardHeight"] = self.card_height
        front = out.setdefault("front", {})
        front["photoCircle"] = {
            "cx": self.photo_circle.cx,
            "cy": self.photo_circle.cy,
            "radius": self.photo_circle.radius,
        }
        front["fields"] = {k: f.to_dict() for k, f in self.front_fields.items()}
        back = out.setdefault("back", {})
        back["fields"] = {k: f.to_dict() for k, f in self.back_fields.items()}
        if self.qr is None:
            back.pop("qr", None)
            return out
        qr: Dict[str, Any] = {"x": self.qr.x.to_json(), "y": self.qr.y, "size": self.qr.size}
        if self.qr.include_email:
            qr["includeEmail"] = True
        back["qr"] = qr
        return out


def default_template_config_dict() -> Dict[str, Any]:
    """Administrative default layout for a 1080x1720 canvas."""
    return {
        "template": "carnet-template.png",
        "templateBack": "traseratrabajadores.png",
        "cardWidth": DEFAULT_CARD_WIDTH,
        "cardHeight": DEFAULT_CARD_HEIGHT,
        "front": {
            "photoCircle": {"cx": 540, "cy": 700, "radius": 270},
            "fields": {
                "fullName": {"x": "center", "y": 1080, "fontSize": 64, "fontWeight": "bold",
                             "color": "#1e1b4b", "maxWidth": 900},
                "position": {"x": "center", "y": 1180, "fontSize": 44, "color": "#4338ca", "maxWidth": 900},
                "dni": {"x": "center", "y": 1290, "fontSize": 40, "color": "#374151"},
            },
        },
        "back": {
            "fields": {
                "institutionName": {"x": "center", "y": 380, "fontSize": 36, "fontWeight": "bold",
                                    "color": "#1e1b4b", "maxWidth": 980,
                                    "text": "UNIVERSIDAD NACIONAL AMAZÓNICA DE MADRE DE DIOS"},
                "email": {"x": "center", "y": 1420, "fontSize": 34, "color": "#374151", "maxWidth": 980},
                "validity": {"x": "center", "y": 1520, "fontSize": 36, "fontWeight": "bold",
                             "color": "#4338ca", "text": "VIGENCIA 2026"},
            },
            "qr": {"x": "center", "y": 560, "size": 640},
        },
    }


def preview_scale(config: TemplateConfig, preview_width: float) -> float:
    """Single factor that maps card pixels onto a preview of ``preview_width``."""
    return preview_width / config.card_width


def preview_size(config: TemplateConfig, preview_width: float) -> Tuple[int, int]:
    scale = preview_scale(config, preview_width)
    return max(1, round(config.card_width * scale)), max(1, round(config.card_height * scale))


class TemplateConfigStore:
    """
    File-backed template configuration.

    ``load`` re-reads the file on every call. ``save`` replaces it whole with an
    atomic rename; concurrent saves are last-write-wins.
    """

    def __init__(self, path: Union[str, Path, None] = None):
        self.path = Path(path) if path is not None else TEMPLATES_DIR / CONFIG_FILENAME

    @property
    def templates_dir(self) -> Path:
        return self.path.parent

    def read_raw(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigUnavailable(f"Cannot read template config at {self.path}: {e}") from e
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigUnavailable(f"Template config at {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigUnavailable(f"Template config at {self.path} must be a JSON object")
        return data

    def load(self) -> TemplateConfig:
        return TemplateConfig.from_dict(self.read_raw())

    def save(self, config: Union[TemplateConfig, Mapping[str, Any]]) -> TemplateConfig:
        """Validate and fully replace the stored config."""
        if isinstance(config, TemplateConfig):
            parsed = config
            data = config.to_dict()
        else:
            parsed = TemplateConfig.from_dict(config)
            data = dict(config)
        payload = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        atomic_write_bytes(self.path, payload)
        logger.info("Template config saved to %s", self.path)
        return parsed

    def ensure_default(self) -> bool:
        """Write the default layout if no config exists yet. Returns True when created."""
        if self.path.exists():
            return False
        self.save(default_template_config_dict())
        return True

    def resolve_asset(self, name: Optional[str]) -> Optional[Path]:
        if not name:
            return None
        return self.templates_dir / name
