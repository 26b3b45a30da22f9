#!/usr/bin/env python3
"""
Streamlit UI for the Fotocheck Generator
"""

import io
import json
import tempfile
import time
import traceback
from pathlib import Path

import streamlit as st

from config import CONFIG_PREVIEW_WIDTH, MAX_PREVIEWS, MEDIA_ROOT, PREVIEW_WIDTH
from data_loaders import (
    Employee,
    EmployeeDirectory,
    employees_from_dataframe,
    load_employees_dataframe,
    lookup_dni,
    validate_employee,
)
from errors import EmployeeNotFound, FotocheckError
from template_config import TemplateConfig, TemplateConfigStore, preview_size
from utils import batch_pdf_filename, face_filename

_UI_DIR = Path(__file__).resolve().parent
_DEFAULT_DATA = _UI_DIR / "input" / "employees.csv"
_SAMPLE = Employee(dni="00000000", first_name="NOMBRES", last_name="APELLIDOS",
                   position="CARGO", email="correo@unamad.edu.pe")

# Startup timing (logged to stdout for Streamlit Cloud logs)
_UI_T0 = time.perf_counter()
def _ui_log(msg: str) -> None:
    print(f"[ui] +{time.perf_counter() - _UI_T0:.3f}s {msg}", flush=True)

_ui_log("ui.py start")

st.set_page_config(page_title="Fotocheck Generator", page_icon="🪪", layout="centered")

st.markdown(
    """
<div style="margin-top: 0.25rem; margin-bottom: 0.25rem;">
  <div style="font-size: 1.8rem; font-weight: 750; line-height: 1.15;">Fotocheck Generator</div>
  <div style="font-size: 1.05rem; opacity: 0.8; margin-top: 0.2rem;">
    Staff ID cards with photo and QR code, ready to print at 54 x 86 mm
  </div>
</div>
""",
    unsafe_allow_html=True,
)

# Session state
if "directory" not in st.session_state:
    st.session_state.directory = None
if "data_path" not in st.session_state:
    st.session_state.data_path = None
if "selected_dnis" not in st.session_state:
    st.session_state.selected_dnis = []
if "_last_error" not in st.session_state:
    st.session_state._last_error = None

store = TemplateConfigStore()
if store.ensure_default():
    _ui_log(f"created default template config at {store.path}")


def _service():
    # Import heavy rendering code only when needed (improves Streamlit Cloud startup)
    from app import FotocheckService

    return FotocheckService(store, st.session_state.directory, media_root=MEDIA_ROOT)


def _load_directory(path: str, label: str) -> None:
    df = load_employees_dataframe(path)
    st.session_state.directory = EmployeeDirectory(employees_from_dataframe(df))
    st.session_state.data_path = path
    st.session_state.selected_dnis = []
    stats = getattr(df, "attrs", {}).get("load_stats") or {}
    st.success(
        f"Loaded **{stats.get('loaded_rows', len(df))}** employees from **{label}** "
        f"(source rows: {stats.get('source_rows')}, "
        f"skipped invalid: {stats.get('skipped_invalid', 0)}, "
        f"dropped duplicate DNI: {stats.get('dropped_duplicate_dni', 0)})."
    )


def _persist_directory() -> None:
    path = st.session_state.data_path
    if path and str(path).lower().endswith(".csv"):
        st.session_state.directory.save(path)


def _scaled_png(png: bytes, config: TemplateConfig, width: int) -> bytes:
    from PIL import Image

    with Image.open(io.BytesIO(png)) as img:
        small = img.resize(preview_size(config, width), Image.Resampling.LANCZOS)
    buf = io.BytesIO()
    small.save(buf, format="PNG")
    return buf.getvalue()


# === Data source ===
st.subheader("Employees")
with st.form("load_form", clear_on_submit=False):
    data_file = st.file_uploader("Upload employees (Excel or CSV)", type=["csv", "xlsx"])
    load_uploaded = st.form_submit_button("📥 Load uploaded file")
if load_uploaded:
    if data_file is None:
        st.warning("Please upload a file first.")
    else:
        try:
            suffix = ".xlsx" if str(data_file.name).lower().endswith(".xlsx") else ".csv"
            with tempfile.NamedTemporaryFile(prefix="employees_", suffix=suffix, delete=False) as tmp:
                tmp.write(data_file.getbuffer())
            _load_directory(tmp.name, data_file.name)
        except (ValueError, ImportError, OSError) as e:
            st.error(f"Error reading {data_file.name}: {e}")
if _DEFAULT_DATA.exists() and st.button(f"📥 Load default ({_DEFAULT_DATA.name})"):
    try:
        _load_directory(str(_DEFAULT_DATA), _DEFAULT_DATA.name)
    except (ValueError, OSError) as e:
        st.error(f"Error loading default: {e}")

tab_cards, tab_new, tab_template = st.tabs(["🪪 Fotochecks", "➕ New employee", "🧩 Template"])

# === Cards ===
with tab_cards:
    directory = st.session_state.directory
    if directory is None:
        st.info("Load an employees file above to start.")
    else:
        s1, s2 = st.columns([3, 1])
        with s1:
            search = st.text_input("Search", placeholder="DNI, name or position…")
        with s2:
            status = st.selectbox("Card", options=["All", "Pending", "Generated"])
        matches = directory.search(search, generated={"All": None, "Pending": False, "Generated": True}[status])
        by_dni = {e.dni: e for e in directory.all()}
        st.session_state.selected_dnis = st.multiselect(
            "Selected employees",
            options=[e.dni for e in matches] + [d for d in st.session_state.selected_dnis if d not in {m.dni for m in matches}],
            default=st.session_state.selected_dnis,
            format_func=lambda d: f"{by_dni[d].full_name} ({d}){' ✓' if by_dni[d].card_generated else ''}" if d in by_dni else d,
        )
        selected = st.session_state.selected_dnis
        st.info(f"**{len(selected)}** employee(s) selected")

        if selected and st.checkbox("Show previews", value=True):
            try:
                service = _service()
                renderer = service.renderer()
                for dni in selected[:MAX_PREVIEWS]:
                    emp = directory.get(dni)
                    c1, c2 = st.columns(2)
                    with c1:
                        st.image(_scaled_png(renderer.render_png(emp, "front"), renderer.config, PREVIEW_WIDTH))
                    with c2:
                        st.image(_scaled_png(renderer.render_png(emp, "back"), renderer.config, PREVIEW_WIDTH))
                    st.caption(f"{emp.full_name} · {emp.position}")
            except FotocheckError as e:
                st.error(f"Preview failed: {e}")

        b1, b2 = st.columns(2)
        with b1:
            if st.button("🖨️ Generate PDF", type="primary", use_container_width=True, disabled=not selected):
                try:
                    with st.spinner(f"Rendering {len(selected)} card(s)…"):
                        pdf = _service().batch_pdf(selected)
                    _persist_directory()
                    st.download_button("⬇️ Download PDF", data=pdf, file_name=batch_pdf_filename(selected),
                                       mime="application/pdf")
                except (FotocheckError, ValueError) as e:
                    st.session_state._last_error = traceback.format_exc()
                    st.error(f"Error generating PDF: {e}")
        with b2:
            if st.button("💾 Save card images", use_container_width=True, disabled=not selected):
                try:
                    service = _service()
                    for dni in selected:
                        front_ref, back_ref = service.persist_faces(dni)
                        st.caption(f"{dni}: `{front_ref}`, `{back_ref}`")
                    _persist_directory()
                    st.success(f"Saved {len(selected)} card(s)")
                except FotocheckError as e:
                    st.session_state._last_error = traceback.format_exc()
                    st.error(f"Error saving cards: {e}")

        if selected:
            p1, p2, p3 = st.columns([2, 1, 1])
            with p1:
                png_dni = st.selectbox("Single face", options=selected,
                                       format_func=lambda d: by_dni[d].full_name if d in by_dni else d)
            with p2:
                png_side = st.radio("Side", options=["front", "back"], horizontal=True)
            with p3:
                if st.button("🖼️ Render PNG", use_container_width=True):
                    try:
                        png = _service().render_face_png(png_dni, png_side)
                        _persist_directory()
                        st.download_button("⬇️ Download PNG", data=png, file_name=face_filename(png_dni, png_side),
                                           mime="image/png")
                    except FotocheckError as e:
                        st.session_state._last_error = traceback.format_exc()
                        st.error(f"Error rendering PNG: {e}")

        if st.session_state._last_error:
            with st.expander("Show error details", expanded=False):
                st.code(st.session_state._last_error)

# === New employee ===
with tab_new:
    if st.session_state.directory is None:
        st.info("Load an employees file above to add employees.")
    else:
        lookup_col, _ = st.columns([2, 1])
        with lookup_col:
            lookup_value = st.text_input("DNI lookup", max_chars=8)
            if st.button("🔎 Look up DNI"):
                try:
                    st.json(lookup_dni(lookup_value))
                except EmployeeNotFound:
                    st.warning("DNI not found")
                except (ValueError, RuntimeError) as e:
                    st.error(f"Lookup failed: {e}")

        with st.form("new_employee", clear_on_submit=False):
            dni = st.text_input("DNI", max_chars=8)
            first_name = st.text_input("First name(s)")
            last_name = st.text_input("Last name(s)")
            position = st.text_input("Position")
            email = st.text_input("Email")
            photo_file = st.file_uploader("Photo (JPG/PNG, 5:6, ≥240x288, ≤2MB)", type=["jpg", "jpeg", "png"])
            submitted = st.form_submit_button("Save employee")
        if submitted:
            from photo import store_photo, validate_photo

            try:
                fields = validate_employee(
                    {"dni": dni, "first_name": first_name, "last_name": last_name,
                     "position": position, "email": email}
                )
                photo_refs = None
                if photo_file is not None:
                    raw = photo_file.getvalue()
                    check = validate_photo(raw)
                    if not check.valid:
                        raise ValueError("; ".join(check.errors))
                    photo_refs = store_photo(fields["dni"], raw, MEDIA_ROOT)
                existed = fields["dni"] in st.session_state.directory
                saved = st.session_state.directory.register(fields, photo_refs)
                _persist_directory()
                st.success(f"{'Updated' if existed else 'Added'} {saved.full_name}")
            except (ValueError, OSError) as e:
                st.error(str(e))

# === Template ===
with tab_template:
    try:
        raw = store.read_raw()
    except FotocheckError as e:
        st.error(str(e))
        raw = None
    if raw is not None:
        edited = st.text_area("Template config (JSON)", value=json.dumps(raw, indent=2, ensure_ascii=False), height=420)
        try:
            candidate = TemplateConfig.from_dict(json.loads(edited))
        except (json.JSONDecodeError, FotocheckError) as e:
            candidate = None
            st.error(f"Invalid config: {e}")
        if candidate is not None:
            from app import CardRenderer

            renderer = CardRenderer(candidate, store.templates_dir, MEDIA_ROOT)
            c1, c2 = st.columns(2)
            try:
                with c1:
                    st.image(_scaled_png(renderer.render_png(_SAMPLE, "front"), candidate, CONFIG_PREVIEW_WIDTH))
                with c2:
                    st.image(_scaled_png(renderer.render_png(_SAMPLE, "back"), candidate, CONFIG_PREVIEW_WIDTH))
            except FotocheckError as e:
                st.error(f"Preview failed: {e}")
            if st.button("💾 Save template", type="primary"):
                try:
                    store.save(json.loads(edited))
                    st.success("Template saved")
                except (OSError, FotocheckError) as e:
                    st.error(f"Error saving: {e}")

st.markdown("---")
_ui_log("rendered page")
