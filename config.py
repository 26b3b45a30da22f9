"""
Central configuration for the fotocheck generator.

Keep runtime-safe (no secrets). Directory defaults can be overridden with
environment variables.
"""

import os
from pathlib import Path

_APP_DIR = Path(__file__).resolve().parent

# Paths
TEMPLATES_DIR = Path(os.environ.get("FOTOCHECK_TEMPLATES_DIR", _APP_DIR / "public" / "templates"))
MEDIA_ROOT = Path(os.environ.get("FOTOCHECK_MEDIA_ROOT", _APP_DIR / "public"))
CONFIG_FILENAME = "config.json"
CARNETS_SUBDIR = "uploads/carnets"
PHOTOS_SUBDIR = "uploads/photos"
ORIGINALS_SUBDIR = "uploads/originals"
FONTS_DIR = _APP_DIR / "fonts"

# External DNI lookup service
LOOKUP_BASE_URL = os.environ.get("FOTOCHECK_LOOKUP_URL", "https://apidatos.unamad.edu.pe")

# Physical card (portrait)
CARD_WIDTH_MM = 54
CARD_HEIGHT_MM = 86

# Default canvas (same 54:86 aspect as the physical card)
DEFAULT_CARD_WIDTH = 1080
DEFAULT_CARD_HEIGHT = 1720

# UI
PREVIEW_WIDTH = 340
CONFIG_PREVIEW_WIDTH = 280
MAX_PREVIEWS = 10

# Text layout
LINE_HEIGHT_FACTOR = 1.3
FIELD_GAP_FACTOR = 0.6
FIELD_MARGIN_PX = 100
MIN_FONT_SIZE = 8

# Photo
PHOTO_VERTICAL_BIAS = 0.15  # object-position: center 15%
PHOTO_PLACEHOLDER_FILL = "#E5E7EB"
PHOTO_PLACEHOLDER_TEXT = "#9CA3AF"
PHOTO_PLACEHOLDER_CAPTION = "SIN FOTO"
PHOTO_PLACEHOLDER_FONT_SIZE = 40

# Photo processing
PROCESSED_PHOTO_SIZE = (240, 288)
PROCESSED_PHOTO_QUALITY = 85
PHOTO_MAX_BYTES = 2 * 1024 * 1024
PHOTO_ASPECT_RATIO = 5 / 6
PHOTO_ASPECT_TOLERANCE = 0.1
PHOTO_FORMATS = ("JPEG", "PNG")

# QR
QR_DARK_COLOR = "#1e1b4b"
QR_LIGHT_COLOR = "#FFFFFF"
QR_BORDER_MODULES = 1

# Fallback backgrounds
FALLBACK_BANNER_HEIGHT = 280
FALLBACK_GRADIENT = ("#1e1b4b", "#4338ca")
FALLBACK_ACCENT_COLOR = "#6366f1"
FALLBACK_FRONT_CAPTION = ("UNIVERSIDAD NACIONAL AMAZÓNICA", "DE MADRE DE DIOS")
FALLBACK_BACK_TITLE = "UNAMAD"
FALLBACK_BACK_SUBTITLE = "REVERSO"
FALLBACK_BACK_SUBTITLE_COLOR = "#818cf8"
FALLBACK_BORDER_COLOR = "#4338ca"

# Batch
BATCH_TIMEOUT_S = 120

# Saved carnets: writes for one DNI share one of these locks
PERSIST_LOCK_STRIPES = 64
