"""
workbook.py — Settings sheet reader for settings-import

Turns an uploaded workbook into the rectangular grid of trimmed string cells
that the layout detector works on.

Public API:
    settings = load_settings_grid("path/to/budget.xlsx")
    grid     = settings.grid

Only modern OOXML workbooks (.xlsx / .xlsm) are read. Legacy .xls files are
rejected with a message asking the user to re-save the file.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Sequence, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from settings_import.errors import (
    LegacyWorkbookError,
    SettingsSheetNotFoundError,
    UnreadableWorkbookError,
)

Grid = Sequence[Sequence[str]]
WorkbookSource = Union[str, Path, bytes]

SETTINGS_VARIANTS = {"settings", "setting", "config", "configuration"}
MODERN_WORKBOOK_FORMATS = {".xlsx", ".xlsm"}
LEGACY_WORKBOOK_FORMATS = {".xls"}
OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

LEGACY_MESSAGE = (
    "Legacy .xls workbooks are not supported. "
    "Open the file in Excel, save it as .xlsx and try again."
)


@dataclass(frozen=True)
class SettingsGrid:
    file_name: str
    sheet_name: str
    available_sheets: tuple[str, ...]
    grid: tuple[tuple[str, ...], ...]


# ══════════════════════════════════════════════════════════════════════════════
# CELL CONVERSION
# ══════════════════════════════════════════════════════════════════════════════

def cell_text(value: Any) -> str:
    """Render one cell value as trimmed text; empty cells become ""."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value).replace("\x00", "").strip()


# ══════════════════════════════════════════════════════════════════════════════
# WORKBOOK READING
# ══════════════════════════════════════════════════════════════════════════════

def _read_bytes(source: WorkbookSource) -> tuple[bytes, str]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), ""
    path = Path(source)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return path.read_bytes(), path.name


def read_workbook(source: WorkbookSource, file_name: str | None = None):
    """
    Open a workbook from a path or raw bytes.

    Raises:
        LegacyWorkbookError      for .xls files (by extension or OLE2 signature).
        UnreadableWorkbookError  for corrupt or non-workbook content.
    """
    raw, detected_name = _read_bytes(source)
    name = file_name or detected_name
    suffix = Path(name).suffix.lower() if name else ""

    if suffix in LEGACY_WORKBOOK_FORMATS or raw.startswith(OLE2_SIGNATURE):
        raise LegacyWorkbookError(LEGACY_MESSAGE)
    if suffix and suffix not in MODERN_WORKBOOK_FORMATS:
        supported = ", ".join(sorted(MODERN_WORKBOOK_FORMATS))
        raise UnreadableWorkbookError(
            f"Unsupported file type '{suffix}'. Supported: {supported}"
        )

    try:
        return openpyxl.load_workbook(io.BytesIO(raw), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise UnreadableWorkbookError(
            "Failed to parse file. Please check it's a valid Excel file."
        ) from exc


def find_settings_sheet(workbook) -> tuple[str | None, list[str]]:
    """Return (matching sheet name or None, all sheet names in workbook order)."""
    available = list(workbook.sheetnames)
    for name in available:
        if name.strip().lower() in SETTINGS_VARIANTS:
            return name, available
    return None, available


def sheet_to_grid(sheet) -> tuple[tuple[str, ...], ...]:
    width = sheet.max_column or 0
    grid: list[tuple[str, ...]] = []
    for values in sheet.iter_rows(min_row=1, max_col=width, values_only=True):
        cells = [cell_text(value) for value in values]
        if len(cells) < width:
            cells.extend([""] * (width - len(cells)))
        grid.append(tuple(cells))
    return tuple(grid)


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def load_settings_grid(source: WorkbookSource, file_name: str | None = None) -> SettingsGrid:
    """
    Read the Settings sheet of a workbook into a grid.

    Args:
        source:    Path to the workbook or its raw bytes (uploads).
        file_name: Original upload name; used for the legacy-format check and
                   the audit record when ``source`` is bytes.

    Raises:
        FileNotFoundError           if a path does not exist.
        UnreadableWorkbookError     if the file cannot be opened as .xlsx.
        SettingsSheetNotFoundError  if no Settings-like sheet exists.
    """
    workbook = read_workbook(source, file_name)
    resolved_name = file_name or (Path(source).name if isinstance(source, (str, Path)) else "")
    try:
        sheet_name, available = find_settings_sheet(workbook)
        if sheet_name is None:
            raise SettingsSheetNotFoundError(available)
        grid = sheet_to_grid(workbook[sheet_name])
    finally:
        workbook.close()

    return SettingsGrid(
        file_name=resolved_name,
        sheet_name=sheet_name,
        available_sheets=tuple(available),
        grid=grid,
    )
