"""
Streamlit entrypoint for the fotocheck operator UI.

Hosted Streamlit runs ``streamlit_app.py`` by default. The page itself lives in
``ui.py``; this wrapper loads it by path and shows startup errors on the page
instead of a blank screen.
"""

import time

_T0 = time.perf_counter()


def _log(msg: str) -> None:
    # stdout ends up in the hosting logs
    print(f"[fotocheck] +{time.perf_counter() - _T0:.3f}s {msg}", flush=True)


_log("entrypoint start")

import importlib.util
import sys
from pathlib import Path

import streamlit as st

_APP_DIR = Path(__file__).resolve().parent


def _load_ui() -> None:
    # Loaded by path so an installed package called "ui" cannot shadow it
    if str(_APP_DIR) not in sys.path:
        sys.path.insert(0, str(_APP_DIR))
    ui_path = _APP_DIR / "ui.py"
    spec = importlib.util.spec_from_file_location("fotocheck_ui", ui_path)
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Cannot load the UI from {ui_path}")
    spec.loader.exec_module(importlib.util.module_from_spec(spec))


try:
    _load_ui()
    _log("ui loaded")
except Exception as e:
    st.error("Fotocheck Generator failed to start.")
    st.exception(e)
    _log(f"startup failed: {type(e).__name__}: {e}")
