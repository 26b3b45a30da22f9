from utils import atomic_write_bytes, batch_pdf_filename, face_filename, safe_filename_part


def test_safe_filename_part_basic():
    assert safe_filename_part("Juan Perez") == "Juan_Perez"


def test_safe_filename_part_strips_weird_chars():
    assert safe_filename_part("  A/B:C*D?  ") == "ABCD"


def test_safe_filename_part_empty_fallback():
    assert safe_filename_part("") == "fotocheck"
    assert safe_filename_part("   ", fallback="x") == "x"


def test_face_filename_is_keyed_by_dni_and_side():
    assert face_filename("12345678", "front") == "12345678-front.png"
    assert face_filename("12345678", "back") == "12345678-back.png"


def test_batch_pdf_filename():
    assert batch_pdf_filename(["12345678"]) == "fotocheck-12345678.pdf"
    assert batch_pdf_filename(["1", "2", "3"]) == "fotochecks-lote-3.pdf"


def test_atomic_write_bytes_replaces_existing(tmp_path):
    target = tmp_path / "out" / "a.bin"
    atomic_write_bytes(target, b"first")
    atomic_write_bytes(target, b"second")
    assert target.read_bytes() == b"second"
    assert [p.name for p in target.parent.iterdir()] == ["a.bin"]
