import io
import math

import pytest
from PIL import Image

from errors import AssetMissing
from photo import (
    composite_photo,
    cover_rect,
    draw_placeholder,
    load_photo,
    process_photo,
    resolve_media_path,
    store_photo,
    validate_photo,
)
from template_config import PhotoCircle
from text_layout import FontBook

GREEN = (10, 200, 10)
RED = (255, 0, 0)


def _image_bytes(size, fmt="JPEG", color=(120, 90, 60)):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def test_cover_rect_portrait_photo_uses_vertical_bias():
    circle = PhotoCircle(cx=100, cy=120, radius=50)
    x, y, w, h = cover_rect((200, 400), circle)
    assert (x, w, h) == (50, 100, 200)
    assert y == pytest.approx(70 - 0.15 * 100)


def test_cover_rect_landscape_photo_is_centered():
    circle = PhotoCircle(cx=100, cy=120, radius=50)
    x, y, w, h = cover_rect((400, 200), circle)
    assert (w, h) == (200, 100)
    assert x == 0
    assert y == 70


def test_cover_rect_rejects_empty_photo():
    with pytest.raises(ValueError):
        cover_rect((0, 10), PhotoCircle(cx=10, cy=10, radius=5))


def test_composite_only_touches_the_circle():
    canvas = Image.new("RGB", (300, 300), GREEN)
    circle = PhotoCircle(cx=150, cy=150, radius=60)
    composite_photo(canvas, Image.new("RGB", (300, 500), RED), circle)
    for x in range(0, 300, 5):
        for y in range(0, 300, 5):
            d = math.hypot(x - 150, y - 150)
            if d > 62:
                assert canvas.getpixel((x, y)) == GREEN, (x, y)
            elif d < 55:
                r, g, _ = canvas.getpixel((x, y))
                assert r > 240 and g < 20, (x, y)


def test_placeholder_fills_circle():
    canvas = Image.new("RGB", (300, 300), GREEN)
    circle = PhotoCircle(cx=150, cy=150, radius=60)
    draw_placeholder(canvas, circle, FontBook())
    assert canvas.getpixel((150, 95)) == (229, 231, 235)
    assert canvas.getpixel((5, 5)) == GREEN


def test_resolve_media_path(tmp_path):
    assert resolve_media_path("/uploads/photos/a.jpg", tmp_path) == (tmp_path / "uploads/photos/a.jpg").resolve()
    assert resolve_media_path("../../etc/passwd", tmp_path) is None
    assert resolve_media_path(None, tmp_path) is None


def test_load_photo_missing_raises(tmp_path):
    with pytest.raises(AssetMissing):
        load_photo("/uploads/photos/none.jpg", tmp_path)
    with pytest.raises(AssetMissing):
        load_photo("", tmp_path)


def test_validate_photo_accepts_good_upload():
    result = validate_photo(_image_bytes((500, 600)))
    assert result.valid
    assert result.errors == []
    assert (result.width, result.height, result.format) == (500, 600, "JPEG")


def test_validate_photo_reports_problems():
    small = validate_photo(_image_bytes((100, 100), fmt="PNG"))
    assert not small.valid
    assert "Minimum dimensions: 240x288px" in small.errors
    assert "Aspect ratio must be approximately 5:6" in small.errors

    gif = validate_photo(_image_bytes((500, 600), fmt="GIF"))
    assert gif.errors == ["Only JPG or PNG formats are allowed"]

    junk = validate_photo(b"not an image")
    assert "Could not read image dimensions" in junk.errors


def test_process_photo_crops_to_badge_size():
    out = process_photo(_image_bytes((800, 600)))
    with Image.open(io.BytesIO(out)) as img:
        assert img.format == "JPEG"
        assert img.size == (240, 288)


def test_store_photo_writes_original_and_processed(tmp_path):
    raw = _image_bytes((500, 600))
    photo_url, original = store_photo("12345678", raw, tmp_path)
    assert photo_url == "/uploads/photos/12345678.jpg"
    assert original == "/uploads/originals/12345678.jpg"
    assert (tmp_path / "uploads/originals/12345678.jpg").read_bytes() == raw
    with Image.open(tmp_path / "uploads/photos/12345678.jpg") as img:
        assert img.size == (240, 288)
    assert load_photo(photo_url, tmp_path).size == (240, 288)
