"""
Batch document assembly.

Every employee contributes two consecutive card-sized pages (front, then
back). Faces are rendered in parallel, pages are always written in the order
the employees were given.

Failure policy is abort-all: if any employee fails to render, or the batch runs
past its timeout, no document is produced.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, wait
from io import BytesIO
from typing import Any, List, Optional, Sequence, Tuple

from PIL import Image
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from config import CARD_HEIGHT_MM, CARD_WIDTH_MM
from data_loaders import Employee
from errors import BatchPartialFailure, BatchTimeout

logger = logging.getLogger(__name__)

PAGE_SIZE = (CARD_WIDTH_MM * mm, CARD_HEIGHT_MM * mm)
SIDES = ("front", "back")


def _render_employee(renderer: Any, employee: Employee) -> Tuple[Image.Image, ...]:
    return tuple(renderer.render(employee, side) for side in SIDES)


def render_pages(
    employees: Sequence[Employee],
    renderer: Any,
    timeout: Optional[float] = None,
    max_workers: Optional[int] = None,
) -> List[Image.Image]:
    """
    Render ``[e1 front, e1 back, e2 front, ...]``.

    ``renderer`` is anything with ``render(employee, side) -> Image``.
    """
    if not employees:
        return []
    workers = max_workers or min(len(employees), os.cpu_count() or 1)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fotocheck")
    futures = {executor.submit(_render_employee, renderer, e): i for i, e in enumerate(employees)}
    try:
        _, not_done = wait(futures, timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if not_done:
        pending = sorted(futures[f] for f in not_done)
        raise BatchTimeout(
            [(employees[i].dni, TimeoutError("render did not finish")) for i in pending],
            message=f"Batch did not finish within {timeout}s ({len(pending)} employee(s) pending)",
        )

    results: List[Optional[Tuple[Image.Image, ...]]] = [None] * len(employees)
    failures = []
    for future, i in sorted(futures.items(), key=lambda item: item[1]):
        exc = future.exception()
        if exc is not None:
            logger.error("Render failed for %s: %s", employees[i].dni, exc)
            failures.append((employees[i].dni, exc))
        else:
            results[i] = future.result()
    if failures:
        raise BatchPartialFailure(failures)

    pages = []
    for faces in results:
        pages.extend(faces)
    return pages


def pages_to_pdf(pages: Sequence[Image.Image], title: str = "Fotochecks") -> bytes:
    """One 54x86mm page per image, each image stretched to fill its page."""
    width, height = PAGE_SIZE
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=PAGE_SIZE)
    c.setTitle(title)
    for page in pages:
        c.drawImage(ImageReader(page.convert("RGB")), 0, 0, width=width, height=height)
        c.showPage()
    c.save()
    return buf.getvalue()


def build_batch_pdf(
    employees: Sequence[Employee],
    renderer: Any,
    timeout: Optional[float] = None,
    max_workers: Optional[int] = None,
) -> bytes:
    pages = render_pages(employees, renderer, timeout=timeout, max_workers=max_workers)
    logger.info("Assembling %d page(s) for %d employee(s)", len(pages), len(employees))
    return pages_to_pdf(pages)
