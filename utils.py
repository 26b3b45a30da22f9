import os
import re
import tempfile
from pathlib import Path
from typing import Sequence, Union


def safe_filename_part(value: str, fallback: str = "fotocheck") -> str:
    """
    Convert an arbitrary value into a safe filename component.
    - Uses only letters/numbers/_/-
    - Collapses whitespace to underscores
    - Falls back to ``fallback``
    """
    raw = "" if value is None else str(value)
    safe = re.sub(r"[^A-Za-z0-9 _-]+", "", raw).strip()
    safe = re.sub(r"\s+", "_", safe)
    return safe or fallback


def face_filename(dni: str, side: str) -> str:
    """Deterministic name of a persisted face image, e.g. ``12345678-front.png``."""
    return f"{safe_filename_part(dni)}-{side}.png"


def batch_pdf_filename(dnis: Sequence[str]) -> str:
    if len(dnis) == 1:
        return f"fotocheck-{safe_filename_part(dnis[0])}.pdf"
    return f"fotochecks-lote-{len(dnis)}.pdf"


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> Path:
    """Write ``data`` to a temp file next to ``path`` and move it into place."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
    return target
