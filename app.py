#!/usr/bin/env python3
"""
Fotocheck Generator
Renders two-sided staff ID cards (photo, text fields, QR code) from an
administrator-curated template and assembles them into card-sized PDFs.
"""

from __future__ import annotations

import logging
import sys
import threading
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from PIL import Image, ImageColor, ImageDraw, UnidentifiedImageError

from config import (
    BATCH_TIMEOUT_S,
    CARNETS_SUBDIR,
    FALLBACK_ACCENT_COLOR,
    FALLBACK_BACK_SUBTITLE,
    FALLBACK_BACK_SUBTITLE_COLOR,
    FALLBACK_BACK_TITLE,
    FALLBACK_BANNER_HEIGHT,
    FALLBACK_BORDER_COLOR,
    FALLBACK_FRONT_CAPTION,
    FALLBACK_GRADIENT,
    MEDIA_ROOT,
    PERSIST_LOCK_STRIPES,
)
from data_loaders import Employee, EmployeeDirectory
from document import build_batch_pdf
from errors import AssetMissing, EncodeFailure, FotocheckError, RenderFailed
from photo import composite_photo, draw_placeholder, load_photo
from qr import embed_qr
from template_config import TemplateConfig, TemplateConfigStore
from text_layout import FontBook, PlacedField, draw_fields, layout_cascade, layout_fixed, resolve_fields
from utils import atomic_write_bytes, face_filename

logger = logging.getLogger(__name__)

FRONT = "front"
BACK = "back"
SIDES = (FRONT, BACK)


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    try:
        image.save(buf, format="PNG")
    except (OSError, ValueError) as e:
        raise EncodeFailure(f"PNG encoding failed: {e}") from e
    return buf.getvalue()


def _lerp_color(a: Tuple[int, ...], b: Tuple[int, ...], t: float) -> Tuple[int, ...]:
    return tuple(int(round(x + (y - x) * t)) for x, y in zip(a, b))


class CardRenderer:
    """Renders one face of one employee's card. Holds no per-employee state."""

    def __init__(
        self,
        config: TemplateConfig,
        templates_dir: Union[str, Path],
        media_root: Union[str, Path] = MEDIA_ROOT,
        fonts: Optional[FontBook] = None,
    ):
        self.config = config
        self.templates_dir = Path(templates_dir)
        self.media_root = Path(media_root)
        self.fonts = fonts or FontBook()
        self._artwork: Dict[str, Optional[Image.Image]] = {}
        self._artwork_lock = threading.Lock()

    # === Background ===

    def _artwork_for(self, side: str) -> Image.Image:
        """Template artwork scaled to the canvas. Raises ``AssetMissing``."""
        name = self.config.front_template if side == FRONT else self.config.back_template
        with self._artwork_lock:
            if side not in self._artwork:
                self._artwork[side] = None
                if name:
                    path = self.templates_dir / name
                    try:
                        with Image.open(path) as img:
                            self._artwork[side] = img.convert("RGB").resize(
                                (self.config.card_width, self.config.card_height),
                                Image.Resampling.LANCZOS,
                            )
                    except (OSError, UnidentifiedImageError) as e:
                        logger.warning("Template artwork for %s unavailable (%s): %s", side, path, e)
            artwork = self._artwork[side]
        if artwork is None:
            raise AssetMissing(f"No usable template artwork for the {side} face")
        return artwork.copy()

    def _fallback_background(self, side: str) -> Image.Image:
        w, h = self.config.card_width, self.config.card_height
        card = Image.new("RGB", (w, h), (255, 255, 255))
        draw = ImageDraw.Draw(card)

        banner_h = min(FALLBACK_BANNER_HEIGHT, h)
        start = ImageColor.getrgb(FALLBACK_GRADIENT[0])
        end = ImageColor.getrgb(FALLBACK_GRADIENT[1])
        for x in range(w):
            draw.line([(x, 0), (x, banner_h - 1)], fill=_lerp_color(start, end, x / max(1, w - 1)))
        draw.rectangle([(0, banner_h), (w, banner_h + 10)], fill=FALLBACK_ACCENT_COLOR)

        if side == FRONT:
            font = self.fonts.font(60, bold=True)
            for i, line in enumerate(FALLBACK_FRONT_CAPTION):
                draw.text((w / 2, 120 + i * 70), line, font=font, fill="#FFFFFF", anchor="ms")
        else:
            draw.text((w / 2, 150), FALLBACK_BACK_TITLE, font=self.fonts.font(70, bold=True),
                      fill="#FFFFFF", anchor="ms")
            draw.text((w / 2, 210), FALLBACK_BACK_SUBTITLE, font=self.fonts.font(40),
                      fill=FALLBACK_BACK_SUBTITLE_COLOR, anchor="ms")
            draw.rectangle([(3, 3), (w - 4, h - 4)], outline=FALLBACK_BORDER_COLOR, width=6)
        return card

    def background(self, side: str) -> Image.Image:
        try:
            return self._artwork_for(side)
        except AssetMissing as e:
            logger.info("%s; drawing fallback background", e)
            return self._fallback_background(side)

    # === Photo ===

    def _draw_photo(self, card: Image.Image, employee: Employee) -> None:
        circle = self.config.photo_circle
        ref = employee.photo_original or employee.photo_url
        try:
            photo = load_photo(ref, self.media_root)
        except AssetMissing as e:
            if ref:
                logger.warning("Photo for %s unavailable: %s", employee.dni, e)
            draw_placeholder(card, circle, self.fonts)
            return
        composite_photo(card, photo, circle)

    # === Text ===

    def layout(self, employee: Employee, side: str) -> List[PlacedField]:
        if side == FRONT:
            items = resolve_fields(self.config.front_fields, employee.field_values())
            return layout_cascade(items, self.config, self.fonts.measure)
        items = resolve_fields(self.config.back_fields, employee.field_values())
        return layout_fixed(items, self.config, self.fonts.measure)

    # === Face ===

    def render(self, employee: Employee, side: str) -> Image.Image:
        """
        Render one face at exactly ``cardWidth x cardHeight``.

        Missing artwork or photos fall back to drawn placeholders. Anything else
        that goes wrong raises ``RenderFailed``; no partial image is returned.
        """
        if side not in SIDES:
            raise ValueError(f"side must be one of {SIDES}, got {side!r}")
        try:
            card = self.background(side)
            if side == FRONT:
                self._draw_photo(card, employee)
            draw_fields(ImageDraw.Draw(card), self.layout(employee, side), self.fonts)
            if side == BACK and self.config.qr is not None:
                embed_qr(card, employee, self.config.qr)
        except FotocheckError:
            raise
        except Exception as e:
            raise RenderFailed(f"Could not render {side} face for {employee.dni}: {e}") from e
        return card

    def render_png(self, employee: Employee, side: str) -> bytes:
        return encode_png(self.render(employee, side))


class FotocheckService:
    """
    Entry points used by the CLI and the UI.

    The template config is read fresh for each call. Status flags on the
    employee are only updated after the output exists.
    """

    def __init__(
        self,
        store: TemplateConfigStore,
        directory: EmployeeDirectory,
        media_root: Union[str, Path] = MEDIA_ROOT,
        fonts: Optional[FontBook] = None,
    ):
        self.store = store
        self.directory = directory
        self.media_root = Path(media_root)
        self.fonts = fonts or FontBook()
        self._locks = [threading.Lock() for _ in range(PERSIST_LOCK_STRIPES)]

    @property
    def carnets_dir(self) -> Path:
        return self.media_root / CARNETS_SUBDIR

    def renderer(self, config: Optional[TemplateConfig] = None) -> CardRenderer:
        return CardRenderer(
            config or self.store.load(),
            self.store.templates_dir,
            self.media_root,
            self.fonts,
        )

    def _lock_for(self, dni: str) -> threading.Lock:
        return self._locks[hash(dni) % len(self._locks)]

    def render_face_png(self, dni: str, side: str = FRONT) -> bytes:
        employee = self.directory.get(dni)
        png = self.renderer().render_png(employee, side)
        if side == FRONT:
            self.directory.mark_generated(dni)
        return png

    def persist_faces(self, dni: str) -> Tuple[str, str]:
        """Render and store both faces. Returns ``(front_ref, back_ref)``."""
        employee = self.directory.get(dni)
        renderer = self.renderer()
        front_png = renderer.render_png(employee, FRONT)
        back_png = renderer.render_png(employee, BACK)

        refs = []
        with self._lock_for(employee.dni):
            for side, data in ((FRONT, front_png), (BACK, back_png)):
                name = face_filename(employee.dni, side)
                atomic_write_bytes(self.carnets_dir / name, data)
                refs.append(f"/{CARNETS_SUBDIR}/{name}")
        front_ref, back_ref = refs
        self.directory.mark_generated(dni, front_url=front_ref, back_url=back_ref)
        logger.info("Saved carnet for %s", dni)
        return front_ref, back_ref

    def batch_pdf(self, dnis: Sequence[str], timeout: Optional[float] = BATCH_TIMEOUT_S) -> bytes:
        if not dnis:
            raise ValueError("No employees selected")
        employees = [self.directory.get(dni) for dni in dnis]
        pdf = build_batch_pdf(employees, self.renderer(), timeout=timeout)
        for employee in employees:
            self.directory.mark_generated(employee.dni)
        return pdf

    def read_config(self) -> dict:
        return self.store.read_raw()

    def write_config(self, data: dict) -> TemplateConfig:
        return self.store.save(data)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    import argparse
    import json

    from data_loaders import lookup_dni
    from utils import batch_pdf_filename

    parser = argparse.ArgumentParser(description="Generate staff fotochecks (ID cards)")
    parser.add_argument("--data", help="Employees CSV or Excel file")
    parser.add_argument("--config", help="Template config JSON (default: templates dir config.json)")
    parser.add_argument("--media-root", default=str(MEDIA_ROOT), help="Root for photos and saved carnets")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_render = sub.add_parser("render", help="Render one face as PNG")
    p_render.add_argument("dni")
    p_render.add_argument("--side", choices=SIDES, default=FRONT)
    p_render.add_argument("-o", "--output", help="Output PNG (default: <dni>-<side>.png)")

    p_save = sub.add_parser("save", help="Render and store both faces")
    p_save.add_argument("dni")

    p_batch = sub.add_parser("batch", help="Card-sized PDF, front and back per employee")
    p_batch.add_argument("dnis", nargs="+")
    p_batch.add_argument("-o", "--output", help="Output PDF")
    p_batch.add_argument("--timeout", type=float, default=BATCH_TIMEOUT_S)

    p_config = sub.add_parser("config", help="Show or initialize the template config")
    p_config.add_argument("action", choices=("show", "init"))

    p_lookup = sub.add_parser("lookup", help="Query the DNI service")
    p_lookup.add_argument("dni")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = TemplateConfigStore(args.config)
    try:
        if args.command == "config":
            if args.action == "init":
                created = store.ensure_default()
                print(f"{'Created' if created else 'Kept existing'} {store.path}")
            else:
                print(json.dumps(store.read_raw(), indent=2, ensure_ascii=False))
            return 0
        if args.command == "lookup":
            print(json.dumps(lookup_dni(args.dni), indent=2, ensure_ascii=False))
            return 0

        if not args.data:
            parser.error("--data is required for this command")
        directory = EmployeeDirectory.from_file(args.data)
        service = FotocheckService(store, directory, media_root=args.media_root)

        if args.command == "render":
            out = Path(args.output or face_filename(args.dni, args.side))
            out.write_bytes(service.render_face_png(args.dni, args.side))
            print(f"Wrote {out}")
        elif args.command == "save":
            front_ref, back_ref = service.persist_faces(args.dni)
            print(f"Saved {front_ref} and {back_ref}")
        elif args.command == "batch":
            out = Path(args.output or batch_pdf_filename(args.dnis))
            out.write_bytes(service.batch_pdf(args.dnis, timeout=args.timeout))
            print(f"Wrote {out} ({len(args.dnis) * 2} pages)")

        if args.command in ("render", "save", "batch") and str(args.data).lower().endswith(".csv"):
            directory.save(args.data)
    except (FotocheckError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
