"""
Employee records and the helpers that load them.

Important: Keep imports light at module import time (Streamlit Cloud startup).
We import pandas/requests only inside functions.
"""

from __future__ import annotations

import dataclasses
import logging
import random
import re
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import LOOKUP_BASE_URL
from errors import EmployeeNotFound
from utils import atomic_write_bytes

logger = logging.getLogger(__name__)

DNI_RE = re.compile(r"^\d{8}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

COLUMNS = [
    "DNI",
    "First_Name",
    "Last_Name",
    "Position",
    "Email",
    "Photo_URL",
    "Photo_Original",
    "Card_Generated",
    "Carnet_Front_URL",
    "Carnet_Back_URL",
]


@dataclass(frozen=True)
class Employee:
    dni: str
    first_name: str
    last_name: str
    position: str
    email: str = ""
    photo_url: Optional[str] = None
    photo_original: Optional[str] = None
    card_generated: bool = False
    carnet_front_url: Optional[str] = None
    carnet_back_url: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def field_values(self) -> Dict[str, str]:
        """Values available to template fields, keyed by field name."""
        return {
            "fullName": self.full_name,
            "position": self.position,
            "dni": f"DNI: {self.dni}",
            "email": self.email,
        }


def validate_employee(data: Dict[str, Any]) -> Dict[str, str]:
    """
    Validate and normalize employee form data.

    Names are upper-cased. Raises ``ValueError`` listing every problem found.
    """
    email = str(data.get("email") or "").strip()
    dni = str(data.get("dni") or "").strip()
    first = str(data.get("first_name") or "").strip().upper()
    last = str(data.get("last_name") or "").strip().upper()
    position = str(data.get("position") or "").strip()

    errors = []
    if not EMAIL_RE.match(email):
        errors.append("Invalid email address")
    if len(dni) != 8:
        errors.append("DNI must have 8 digits")
    elif not DNI_RE.match(dni):
        errors.append("DNI must contain only numbers")
    if len(first) < 2:
        errors.append("First name is required")
    if len(last) < 2:
        errors.append("Last name is required")
    if not position:
        errors.append("Position is required")
    if errors:
        raise ValueError("; ".join(errors))
    return {"email": email, "dni": dni, "first_name": first, "last_name": last, "position": position}


def _find_column(df: Any, exact: Optional[str], *subs) -> Optional[str]:
    """Find column by exact name or by substrings (all must match, case-insensitive)."""
    df_cols = [str(c).strip() for c in df.columns]
    if exact and exact in df_cols:
        return exact
    low = exact.lower() if exact else ""
    for c in df.columns:
        cs = str(c).strip()
        if exact and cs.lower() == low:
            return c
        if subs and all(s.lower() in cs.lower() for s in subs):
            return c
    return None


def _first_column(df: Any, *candidates: str) -> Optional[str]:
    for name in candidates:
        col = _find_column(df, name)
        if col:
            return col
    return None


def _clean(v: Any) -> str:
    if v is None or (isinstance(v, float) and str(v) == "nan"):
        return ""
    s = str(v).strip()
    return "" if s.lower() == "nan" else s


def _clean_dni(v: Any) -> str:
    s = _clean(v)
    # Spreadsheets turn DNIs into numbers and drop leading zeros
    if re.fullmatch(r"\d+(\.0+)?", s):
        s = s.split(".")[0].zfill(8)
    return s


def _to_bool(v: Any) -> bool:
    return _clean(v).lower() in ("1", "true", "yes", "si", "sí", "x")


def _read_table(path: str, sheet: Any = 0, **kwargs) -> Any:
    import pandas as pd

    suf = Path(path).suffix.lower()
    if suf in (".xlsx", ".xls"):
        try:
            df = pd.read_excel(path, sheet_name=sheet, dtype=str, **kwargs)
        except ImportError as e:
            if "openpyxl" in str(e).lower():
                raise ImportError(
                    "Reading Excel requires openpyxl. Install it with:\n  pip install openpyxl"
                ) from e
            raise
    else:
        df = pd.read_csv(path, dtype=str, **kwargs)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def _source_columns(df: Any) -> Dict[str, Optional[str]]:
    """Map each ``COLUMNS`` name to the matching column of ``df`` (or None)."""
    dni_col = _first_column(df, "DNI", "Documento") or _find_column(df, None, "dni")
    if not dni_col:
        raise ValueError(f"Could not find a DNI column. Columns: {list(df.columns)}")
    return {
        "DNI": dni_col,
        "First_Name": _first_column(df, "First_Name", "First Name", "Nombres", "firstName")
        or _find_column(df, None, "nombre"),
        "Last_Name": _first_column(df, "Last_Name", "Last Name", "Apellidos", "lastName")
        or _find_column(df, None, "apellido"),
        "Position": _first_column(df, "Position", "Cargo"),
        "Email": _first_column(df, "Email", "Correo", "E-mail") or _find_column(df, None, "mail"),
        "Photo_URL": _first_column(df, "Photo_URL", "photoUrl", "Foto"),
        "Photo_Original": _first_column(df, "Photo_Original", "photoOriginal") or _find_column(df, None, "original"),
        "Card_Generated": _first_column(df, "Card_Generated", "cardGenerated"),
        "Carnet_Front_URL": _first_column(df, "Carnet_Front_URL", "carnetFrontUrl"),
        "Carnet_Back_URL": _first_column(df, "Carnet_Back_URL", "carnetBackUrl"),
    }


def load_employees_dataframe(path: str, sheet: Any = 0) -> Any:
    """
    Load employees from Excel or CSV into a DataFrame with the ``COLUMNS`` schema.

    Column names are matched loosely (English or Spanish headers). Rows that fail
    validation are skipped; duplicate DNIs keep the first row. Counts are stored
    in ``df.attrs["load_stats"]``.
    """
    import pandas as pd

    df = _read_table(path, sheet)
    cols = _source_columns(df)

    def _get(r, key):
        col = cols[key]
        return _clean(r.get(col, "")) if col else ""

    total_rows = len(df)
    invalid = 0
    rows = []
    for idx, r in df.iterrows():
        try:
            fields = validate_employee(
                {
                    "dni": _clean_dni(r.get(cols["DNI"], "")),
                    "first_name": _get(r, "First_Name"),
                    "last_name": _get(r, "Last_Name"),
                    "position": _get(r, "Position"),
                    "email": _get(r, "Email"),
                }
            )
        except ValueError as e:
            invalid += 1
            logger.debug("Skipping row %s: %s", idx, e)
            continue
        rows.append(
            {
                "DNI": fields["dni"],
                "First_Name": fields["first_name"],
                "Last_Name": fields["last_name"],
                "Position": fields["position"],
                "Email": fields["email"],
                "Photo_URL": _get(r, "Photo_URL"),
                "Photo_Original": _get(r, "Photo_Original"),
                "Card_Generated": _to_bool(_get(r, "Card_Generated")),
                "Carnet_Front_URL": _get(r, "Carnet_Front_URL"),
                "Carnet_Back_URL": _get(r, "Carnet_Back_URL"),
            }
        )

    out = pd.DataFrame(rows, columns=COLUMNS)
    before_dedup = len(out)
    out = out.drop_duplicates(subset=["DNI"]).reset_index(drop=True)
    out.attrs["load_stats"] = {
        "source_rows": total_rows,
        "kept_rows_before_dedup": before_dedup,
        "loaded_rows": len(out),
        "skipped_invalid": invalid,
        "dropped_duplicate_dni": before_dedup - len(out),
    }
    return out


def _record(e: Employee) -> Dict[str, str]:
    return {
        "DNI": e.dni,
        "First_Name": e.first_name,
        "Last_Name": e.last_name,
        "Position": e.position,
        "Email": e.email,
        "Photo_URL": e.photo_url or "",
        "Photo_Original": e.photo_original or "",
        "Card_Generated": str(e.card_generated),
        "Carnet_Front_URL": e.carnet_front_url or "",
        "Carnet_Back_URL": e.carnet_back_url or "",
    }


def _same_value(key: str, current: str, value: str) -> bool:
    if key in ("First_Name", "Last_Name"):
        return current.upper() == value.upper()
    if key == "Card_Generated":
        return _to_bool(current) == _to_bool(value)
    if key == "DNI":
        return _clean_dni(current) == value
    return current == value


def merge_employees_into(df: Any, employees: Iterable[Employee]) -> Any:
    """
    Write employee records back into a source table without losing anything.

    Every original row and column is kept. The first row of each known DNI gets
    the cells that changed; missing schema columns are appended; employees not
    in the table are added as new rows.
    """
    import pandas as pd

    out = df.copy()
    cols = _source_columns(out)
    for key in COLUMNS:
        if cols[key] is None:
            out[key] = ""
            cols[key] = key

    by_dni = {e.dni: e for e in employees}
    seen = set()
    for idx in out.index:
        dni = _clean_dni(out.at[idx, cols["DNI"]])
        employee = by_dni.get(dni)
        if employee is None or dni in seen:
            continue
        seen.add(dni)
        for key, value in _record(employee).items():
            if not _same_value(key, _clean(out.at[idx, cols[key]]), value):
                out.at[idx, cols[key]] = value

    added = [
        {cols[key]: value for key, value in _record(e).items()}
        for dni, e in by_dni.items()
        if dni not in seen
    ]
    if added:
        out = pd.concat([out, pd.DataFrame(added, columns=list(out.columns))], ignore_index=True)
    return out.fillna("")


def employees_from_dataframe(df: Any) -> List[Employee]:
    employees = []
    for r in df.to_dict(orient="records"):
        employees.append(
            Employee(
                dni=_clean_dni(r.get("DNI")),
                first_name=_clean(r.get("First_Name")),
                last_name=_clean(r.get("Last_Name")),
                position=_clean(r.get("Position")),
                email=_clean(r.get("Email")),
                photo_url=_clean(r.get("Photo_URL")) or None,
                photo_original=_clean(r.get("Photo_Original")) or None,
                card_generated=_to_bool(r.get("Card_Generated")),
                carnet_front_url=_clean(r.get("Carnet_Front_URL")) or None,
                carnet_back_url=_clean(r.get("Carnet_Back_URL")) or None,
            )
        )
    return employees


class EmployeeDirectory:
    """
    In-memory employee store keyed by DNI.

    Records are immutable; updates replace the stored record.
    """

    def __init__(self, employees: Iterable[Employee] = ()):
        self._lock = threading.Lock()
        self._by_dni: Dict[str, Employee] = {}
        for e in employees:
            self._by_dni[e.dni] = e

    @classmethod
    def from_file(cls, path: str) -> "EmployeeDirectory":
        return cls(employees_from_dataframe(load_employees_dataframe(path)))

    def __len__(self) -> int:
        return len(self._by_dni)

    def __contains__(self, dni: str) -> bool:
        return dni in self._by_dni

    def all(self) -> List[Employee]:
        with self._lock:
            return list(self._by_dni.values())

    def get(self, dni: str) -> Employee:
        with self._lock:
            try:
                return self._by_dni[dni]
            except KeyError:
                raise EmployeeNotFound(dni) from None

    def search(self, term: str = "", generated: Optional[bool] = None) -> List[Employee]:
        """Match DNI, name or position; ``generated`` keeps only issued (True) or pending (False) cards."""
        term = (term or "").strip().lower()
        return [
            e for e in self.all()
            if (generated is None or e.card_generated == generated)
            and (not term or term in e.dni or term in e.full_name.lower() or term in e.position.lower())
        ]

    def upsert(self, employee: Employee) -> Employee:
        with self._lock:
            self._by_dni[employee.dni] = employee
        return employee

    def register(self, fields: Dict[str, str], photo_refs: Optional[Tuple[str, str]] = None) -> Employee:
        """
        Add an employee from validated form fields, or update the one with that DNI.

        An existing record keeps its photos unless ``photo_refs``
        (``(photo_url, photo_original)``) is given, and its card goes back to
        pending since the printed data may have changed.
        """
        changes: Dict[str, Any] = dict(fields)
        if photo_refs is not None:
            changes["photo_url"], changes["photo_original"] = photo_refs
        with self._lock:
            current = self._by_dni.get(fields["dni"])
            if current is None:
                employee = Employee(**changes)
            else:
                changes["card_generated"] = False
                employee = dataclasses.replace(current, **changes)
            self._by_dni[employee.dni] = employee
        logger.info("%s employee %s", "Updated" if current else "Added", employee.dni)
        return employee

    def mark_generated(
        self,
        dni: str,
        front_url: Optional[str] = None,
        back_url: Optional[str] = None,
    ) -> Employee:
        """Set the badge-generated flag, and the stored face references when given."""
        with self._lock:
            try:
                current = self._by_dni[dni]
            except KeyError:
                raise EmployeeNotFound(dni) from None
            changes: Dict[str, Any] = {"card_generated": True}
            if front_url is not None:
                changes["carnet_front_url"] = front_url
            if back_url is not None:
                changes["carnet_back_url"] = back_url
            updated = dataclasses.replace(current, **changes)
            self._by_dni[dni] = updated
            return updated

    def to_dataframe(self) -> Any:
        import pandas as pd

        return pd.DataFrame([_record(e) for e in self.all()], columns=COLUMNS)

    def save(self, path: str) -> None:
        """
        Write the directory as CSV.

        An existing file is merged, never replaced: rows this directory skipped
        and columns it does not know stay as they were.
        """
        p = Path(path)
        if p.suffix.lower() != ".csv":
            raise ValueError(f"Employees can only be saved as CSV, got {p.name}")
        if p.exists():
            out = merge_employees_into(_read_table(str(p), keep_default_na=False), self.all())
        else:
            out = self.to_dataframe()
        atomic_write_bytes(p, out.to_csv(index=False).encode("utf-8"))


def lookup_dni(
    dni: str,
    *,
    base_url: str = LOOKUP_BASE_URL,
    timeout_s: int = 15,
    max_attempts: int = 2,
) -> Dict[str, Any]:
    """
    Query the institutional DNI service for a person's public record.

    Raises ``ValueError`` for a malformed DNI, ``EmployeeNotFound`` when the
    service has no record, ``RuntimeError`` for any other failure.
    """
    import requests

    dni = (dni or "").strip()
    if not DNI_RE.match(dni):
        raise ValueError(f"Invalid DNI: {dni!r}")
    endpoint = f"{base_url.rstrip('/')}/api/consulta/{dni}"
    headers = {"Accept": "application/json", "User-Agent": "fotocheck-generator/1.0"}

    last_exc: Optional[Exception] = None
    resp = None
    for attempt in range(max(1, int(max_attempts))):
        try:
            resp = requests.get(endpoint, headers=headers, timeout=(10, max(10, int(timeout_s))))
        except Exception as e:
            last_exc = e
            logger.warning("DNI lookup attempt %d failed: %s", attempt + 1, e)
            time.sleep(min(6.0, 0.6 * (2**attempt) + random.random() * 0.25))
            continue
        if resp.status_code in (429, 500, 502, 503):
            time.sleep(min(6.0, 0.6 * (2**attempt) + random.random() * 0.25))
            continue
        break
    if resp is None:
        raise RuntimeError(f"DNI lookup failed after retries: {last_exc}") from last_exc

    def _raise_with_response(prefix: str):
        ct = (resp.headers.get("Content-Type") or "").split(";")[0].strip() or "unknown"
        snippet = (resp.text or "")[:500]
        raise RuntimeError(
            f"{prefix} (status: {resp.status_code}, content-type: {ct}). "
            f"Endpoint: {endpoint}. Body (first 500 chars): {snippet}"
        )

    if resp.status_code == 404:
        raise EmployeeNotFound(dni)
    if resp.status_code != 200:
        _raise_with_response("DNI lookup error")
    try:
        data = resp.json()
    except ValueError as e:
        try:
            _raise_with_response("DNI lookup response was not valid JSON")
        except RuntimeError as raised:
            raise raised from e
    if not isinstance(data, dict):
        raise RuntimeError(f"Unexpected DNI lookup response type: {type(data).__name__}")
    return data
