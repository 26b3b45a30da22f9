"""QR code payload and rendering for the back face of a card."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import qrcode
from PIL import Image
from qrcode.exceptions import DataOverflowError

from config import QR_BORDER_MODULES, QR_DARK_COLOR, QR_LIGHT_COLOR
from data_loaders import Employee
from errors import EncodeFailure
from template_config import QrSpec

logger = logging.getLogger(__name__)


def qr_payload_dict(employee: Employee, include_email: bool = False) -> Dict[str, Any]:
    data = {
        "dni": employee.dni,
        "name": employee.full_name,
        "position": employee.position,
    }
    if include_email and employee.email:
        data["email"] = employee.email
    return data


def encode_qr_payload(employee: Employee, include_email: bool = False) -> str:
    """
    Compact JSON for the QR code.

    Same employee fields always give the same string: fixed key order, no
    timestamps.
    """
    return json.dumps(qr_payload_dict(employee, include_email), ensure_ascii=False, separators=(",", ":"))


def decode_qr_payload(text: str) -> Dict[str, Any]:
    return json.loads(text)


def make_qr_image(payload: str, size: int) -> Image.Image:
    """Square QR symbol of ``size`` pixels, dark indigo on white."""
    if size <= 0:
        raise EncodeFailure(f"QR size must be positive, got {size}")
    try:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=QR_BORDER_MODULES,
        )
        qr.add_data(payload.encode("utf-8"))
        qr.make(fit=True)
        img = qr.make_image(fill_color=QR_DARK_COLOR, back_color=QR_LIGHT_COLOR).get_image()
    except (DataOverflowError, ValueError) as e:
        raise EncodeFailure(f"QR encoding failed: {e}") from e
    return img.convert("RGB").resize((size, size), Image.Resampling.NEAREST)


def embed_qr(canvas: Image.Image, employee: Employee, spec: QrSpec) -> None:
    payload = encode_qr_payload(employee, include_email=spec.include_email)
    qr_img = make_qr_image(payload, spec.size)
    x = int(round(spec.x.resolve(canvas.width, spec.size)))
    canvas.paste(qr_img, (x, int(round(spec.y))))
    logger.debug("QR embedded for %s at (%s, %s)", employee.dni, x, spec.y)
