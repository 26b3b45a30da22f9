import io
import json

import pandas as pd
import pytest
from PIL import Image

import app
from app import BACK, FRONT, CardRenderer, FotocheckService
from config import PERSIST_LOCK_STRIPES
from data_loaders import Employee, EmployeeDirectory
from errors import ConfigUnavailable, EmployeeNotFound, EncodeFailure, RenderFailed
from qr import encode_qr_payload, make_qr_image
from template_config import TemplateConfig, TemplateConfigStore

PLACEHOLDER = (229, 231, 235)


def _small_config_dict(**overrides):
    data = {
        "template": "front.png",
        "templateBack": "back.png",
        "cardWidth": 216,
        "cardHeight": 344,
        "front": {
            "photoCircle": {"cx": 108, "cy": 120, "radius": 60},
            "fields": {
                "fullName": {"x": "center", "y": 220, "fontSize": 14, "fontWeight": "bold", "maxWidth": 180},
                "position": {"x": "center", "y": 245, "fontSize": 10},
                "dni": {"x": "center", "y": 265, "fontSize": 10},
            },
        },
        "back": {
            "fields": {"email": {"x": "center", "y": 320, "fontSize": 9, "maxWidth": 190}},
            "qr": {"x": "center", "y": 60, "size": 200},
        },
    }
    data.update(overrides)
    return data


@pytest.fixture
def small_store(tmp_path):
    store = TemplateConfigStore(tmp_path / "templates" / "config.json")
    store.save(_small_config_dict())
    return store


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "public"
    root.mkdir()
    return root


def _renderer(store, media_root):
    return CardRenderer(store.load(), store.templates_dir, media_root)


def _save_photo(media_root, name, color):
    path = media_root / "uploads" / "photos" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", (250, 300), color).save(path, format="PNG")
    return f"/uploads/photos/{name}"


def test_faces_match_configured_canvas(small_store, media_root, employee):
    renderer = _renderer(small_store, media_root)
    assert renderer.render(employee, FRONT).size == (216, 344)
    assert renderer.render(employee, BACK).size == (216, 344)


def test_missing_artwork_falls_back_to_drawn_background(small_store, media_root, employee):
    renderer = _renderer(small_store, media_root)
    card = renderer.render(employee, FRONT)
    assert card.getpixel((0, 0)) == (30, 27, 75)
    assert card.getpixel((108, 65)) == PLACEHOLDER


def test_template_artwork_is_used(small_store, media_root, employee):
    Image.new("RGB", (216, 344), (0, 0, 255)).save(small_store.templates_dir / "front.png")
    card = _renderer(small_store, media_root).render(employee, FRONT)
    assert card.getpixel((2, 2)) == (0, 0, 255)
    assert card.getpixel((2, 340)) == (0, 0, 255)


def test_photo_original_is_preferred(small_store, media_root):
    e = Employee(
        dni="12345678", first_name="JUAN", last_name="PEREZ", position="DOCENTE",
        photo_url=_save_photo(media_root, "blue.png", (0, 0, 255)),
        photo_original=_save_photo(media_root, "red.png", (255, 0, 0)),
    )
    card = _renderer(small_store, media_root).render(e, FRONT)
    r, _, b = card.getpixel((108, 120))
    assert r > 240 and b < 20


def test_unreadable_photo_draws_placeholder(small_store, media_root):
    e = Employee(dni="12345678", first_name="JUAN", last_name="PEREZ", position="DOCENTE",
                 photo_url="/uploads/photos/missing.jpg")
    card = _renderer(small_store, media_root).render(e, FRONT)
    assert card.getpixel((108, 65)) == PLACEHOLDER


def test_back_face_carries_qr(small_store, media_root, employee):
    card = _renderer(small_store, media_root).render(employee, BACK)
    expected = make_qr_image(encode_qr_payload(employee), 200)
    assert card.crop((8, 60, 208, 260)).tobytes() == expected.tobytes()


def test_qr_overflow_fails_back_face_only(small_store, media_root):
    e = Employee(dni="12345678", first_name="JUAN", last_name="PEREZ", position="X" * 5000)
    renderer = _renderer(small_store, media_root)
    assert renderer.render(e, FRONT).size == (216, 344)
    with pytest.raises(EncodeFailure):
        renderer.render(e, BACK)


def test_unexpected_errors_become_render_failed(small_store, media_root, employee, monkeypatch):
    renderer = _renderer(small_store, media_root)

    def boom(*_a, **_k):
        raise ZeroDivisionError("bad layout")

    monkeypatch.setattr(renderer, "layout", boom)
    with pytest.raises(RenderFailed):
        renderer.render(employee, FRONT)


def test_invalid_side(small_store, media_root, employee):
    with pytest.raises(ValueError):
        _renderer(small_store, media_root).render(employee, "inside")


def test_render_png(small_store, media_root, employee):
    png = _renderer(small_store, media_root).render_png(employee, FRONT)
    assert png.startswith(b"\x89PNG")
    with Image.open(io.BytesIO(png)) as img:
        assert img.size == (216, 344)


def test_service_marks_generated_on_front_only(small_store, media_root, employee):
    directory = EmployeeDirectory([employee])
    service = FotocheckService(small_store, directory, media_root=media_root)
    service.render_face_png(employee.dni, BACK)
    assert directory.get(employee.dni).card_generated is False
    service.render_face_png(employee.dni, FRONT)
    assert directory.get(employee.dni).card_generated is True


def test_service_unknown_employee(small_store, media_root, employee):
    directory = EmployeeDirectory([employee])
    service = FotocheckService(small_store, directory, media_root=media_root)
    with pytest.raises(EmployeeNotFound):
        service.render_face_png("00000000")
    with pytest.raises(EmployeeNotFound):
        service.persist_faces("00000000")


def test_service_missing_config_leaves_status_untouched(tmp_path, media_root, employee):
    directory = EmployeeDirectory([employee])
    store = TemplateConfigStore(tmp_path / "missing" / "config.json")
    service = FotocheckService(store, directory, media_root=media_root)
    with pytest.raises(ConfigUnavailable):
        service.render_face_png(employee.dni)
    assert directory.get(employee.dni).card_generated is False


def test_persist_faces_writes_both_images(small_store, media_root, employee):
    directory = EmployeeDirectory([employee])
    service = FotocheckService(small_store, directory, media_root=media_root)
    front_ref, back_ref = service.persist_faces(employee.dni)
    assert front_ref == "/uploads/carnets/12345678-front.png"
    assert back_ref == "/uploads/carnets/12345678-back.png"
    for ref in (front_ref, back_ref):
        with Image.open(media_root / ref.lstrip("/")) as img:
            assert img.size == (216, 344)
    stored = directory.get(employee.dni)
    assert stored.card_generated is True
    assert (stored.carnet_front_url, stored.carnet_back_url) == (front_ref, back_ref)

    # Regenerating overwrites in place
    assert service.persist_faces(employee.dni) == (front_ref, back_ref)
    assert sorted(p.name for p in service.carnets_dir.iterdir()) == [
        "12345678-back.png",
        "12345678-front.png",
    ]


def test_service_config_round_trip(small_store, media_root):
    service = FotocheckService(small_store, EmployeeDirectory(), media_root=media_root)
    data = service.read_config()
    data["cardWidth"] = 432
    data["cardHeight"] = 688
    assert isinstance(service.write_config(data), TemplateConfig)
    assert service.renderer().config.card_width == 432


def _write_employees_csv(path):
    pd.DataFrame(
        [
            {"DNI": "12345678", "First_Name": "Juan", "Last_Name": "Perez", "Position": "Docente",
             "Email": "juan@unamad.edu.pe"},
            {"DNI": "87654321", "First_Name": "Rosa", "Last_Name": "Quispe", "Position": "Contadora",
             "Email": "rosa@unamad.edu.pe"},
        ]
    ).to_csv(path, index=False)


def test_cli_render_updates_data_file(tmp_path, small_store, media_root):
    data = tmp_path / "employees.csv"
    _write_employees_csv(data)
    out = tmp_path / "front.png"
    code = app.main([
        "--data", str(data), "--config", str(small_store.path), "--media-root", str(media_root),
        "render", "12345678", "-o", str(out),
    ])
    assert code == 0
    assert out.read_bytes().startswith(b"\x89PNG")
    reloaded = EmployeeDirectory.from_file(str(data))
    assert reloaded.get("12345678").card_generated is True
    assert reloaded.get("87654321").card_generated is False


def test_cli_reports_unknown_employee(tmp_path, small_store, media_root, capsys):
    data = tmp_path / "employees.csv"
    _write_employees_csv(data)
    code = app.main([
        "--data", str(data), "--config", str(small_store.path), "--media-root", str(media_root),
        "save", "00000000",
    ])
    assert code == 1
    assert "Employee not found: 00000000" in capsys.readouterr().err


def test_cli_config_init(tmp_path, capsys):
    path = tmp_path / "templates" / "config.json"
    assert app.main(["--config", str(path), "config", "init"]) == 0
    assert path.exists()
    assert app.main(["--config", str(path), "config", "show"]) == 0
    assert '"cardWidth": 1080' in capsys.readouterr().out


def test_cli_keeps_every_row_and_column_of_data_file(tmp_path, small_store, media_root):
    data = tmp_path / "empleados.csv"
    data.write_text(
        "DNI,Nombres,Apellidos,Cargo,Correo,Oficina\n"
        "12345678,Juan,Perez,Docente,juan@unamad.edu.pe,Rectorado\n"
        "87654321,Rosa,Quispe,Contadora,,Tesoreria\n",
        encoding="utf-8",
    )
    code = app.main([
        "--data", str(data), "--config", str(small_store.path), "--media-root", str(media_root),
        "render", "12345678", "-o", str(tmp_path / "front.png"),
    ])
    assert code == 0
    saved = pd.read_csv(data, dtype=str, keep_default_na=False)
    assert len(saved) == 2
    assert {"DNI", "Nombres", "Apellidos", "Cargo", "Correo", "Oficina"} <= set(saved.columns)
    assert list(saved["Oficina"]) == ["Rectorado", "Tesoreria"]
    assert list(saved["Card_Generated"]) == ["True", ""]


def test_back_face_qr_decodes_to_employee(store, media_root):
    zxingcpp = pytest.importorskip("zxingcpp")
    e = Employee(dni="01234567", first_name="JOSÉ", last_name="NÚÑEZ", position="Técnico")
    card = CardRenderer(store.load(), store.templates_dir, media_root).render(e, BACK)
    results = zxingcpp.read_barcodes(card)
    assert len(results) == 1
    assert json.loads(results[0].text) == {"dni": "01234567", "name": "JOSÉ NÚÑEZ", "position": "Técnico"}


def test_template_without_qr_renders_back_face(tmp_path, media_root, employee):
    data = _small_config_dict()
    del data["back"]
    store = TemplateConfigStore(tmp_path / "plain" / "config.json")
    store.save(data)
    config = store.load()
    assert config.qr is None
    assert "qr" not in config.to_dict()["back"]
    renderer = CardRenderer(config, store.templates_dir, media_root)
    assert renderer.render(employee, FRONT).size == (216, 344)
    back = renderer.render(employee, BACK)
    assert back.size == (216, 344)
    assert back.crop((8, 60, 208, 260)).tobytes() != make_qr_image(encode_qr_payload(employee), 200).tobytes()


def test_persist_locks_are_bounded(small_store, media_root):
    service = FotocheckService(small_store, EmployeeDirectory(), media_root=media_root)
    assert service._lock_for("12345678") is service._lock_for("12345678")
    locks = {id(service._lock_for(f"{i:08d}")) for i in range(1000)}
    assert len(locks) <= PERSIST_LOCK_STRIPES
