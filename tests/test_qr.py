import json

import pytest
from PIL import Image, ImageOps

from data_loaders import Employee
from errors import EncodeFailure
from qr import decode_qr_payload, embed_qr, encode_qr_payload, make_qr_image, qr_payload_dict
from template_config import CENTERED, QrSpec


def test_payload_is_deterministic(employee):
    first = encode_qr_payload(employee)
    assert encode_qr_payload(employee) == first
    assert json.loads(first) == {"dni": "12345678", "name": "JUAN PEREZ", "position": "DOCENTE"}


def test_payload_email_is_opt_in(employee):
    assert "email" not in qr_payload_dict(employee)
    assert qr_payload_dict(employee, include_email=True)["email"] == "juan.perez@unamad.edu.pe"
    no_email = Employee(dni="1", first_name="A", last_name="B", position="C")
    assert "email" not in qr_payload_dict(no_email, include_email=True)


def test_payload_keeps_accents(employee):
    e = Employee(dni="12345678", first_name="JOSÉ", last_name="NÚÑEZ", position="Técnico")
    payload = encode_qr_payload(e)
    assert "NÚÑEZ" in payload
    assert decode_qr_payload(payload)["position"] == "Técnico"


def test_make_qr_image_size():
    img = make_qr_image("hello", 256)
    assert img.size == (256, 256)
    assert img.mode == "RGB"


def test_make_qr_image_rejects_bad_input():
    with pytest.raises(EncodeFailure):
        make_qr_image("x" * 5000, 256)
    with pytest.raises(EncodeFailure):
        make_qr_image("hello", 0)


def test_embed_qr_centers_symbol(employee):
    canvas = Image.new("RGB", (400, 400), (10, 200, 10))
    embed_qr(canvas, employee, QrSpec(x=CENTERED, y=20, size=200))
    expected = make_qr_image(encode_qr_payload(employee), 200)
    assert canvas.crop((100, 20, 300, 220)).tobytes() == expected.tobytes()
    assert canvas.getpixel((99, 100)) == (10, 200, 10)
    assert canvas.getpixel((150, 221)) == (10, 200, 10)


def test_qr_decodes_to_payload(employee):
    zxingcpp = pytest.importorskip("zxingcpp")
    payload = encode_qr_payload(employee, include_email=True)
    img = ImageOps.expand(make_qr_image(payload, 400), border=40, fill="white")
    results = zxingcpp.read_barcodes(img)
    assert len(results) == 1
    assert decode_qr_payload(results[0].text) == qr_payload_dict(employee, include_email=True)
