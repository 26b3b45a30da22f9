"""Errors raised by the fotocheck rendering core."""

from __future__ import annotations

from typing import List, Tuple


class FotocheckError(Exception):
    """Base class for all fotocheck errors."""


class ConfigUnavailable(FotocheckError):
    """The template configuration is missing, unreadable or invalid."""


class AssetMissing(FotocheckError):
    """Template artwork or a photo could not be loaded. Recovered with a fallback."""


class RenderFailed(FotocheckError):
    """A single face could not be rendered."""


class EncodeFailure(RenderFailed):
    """QR payload or final raster encoding failed."""


class EmployeeNotFound(FotocheckError, LookupError):
    """No employee with the requested identity number."""

    def __init__(self, dni: str):
        super().__init__(f"Employee not found: {dni}")
        self.dni = dni


class BatchPartialFailure(FotocheckError):
    """One or more employees in a batch could not be rendered."""

    def __init__(self, failures: List[Tuple[str, BaseException]], message: str = ""):
        self.failures = list(failures)
        if not message:
            ids = ", ".join(dni for dni, _ in self.failures)
            message = f"{len(self.failures)} employee(s) failed to render: {ids}"
        super().__init__(message)


class BatchTimeout(BatchPartialFailure):
    """The batch did not finish within its overall timeout."""
