"""
layout.py — layout detection, table extraction and section assignment

A Settings sheet arrives in one of two shapes:

    CATEGORY_TABLE   one table with a Category/Type/Section column whose
                     value says which record kind each row belongs to
    SECTION_TABLES   several tables, each introduced by a heading row such
                     as "Bills" or "Debts"

Everything here is a pure function of the grid.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, Sequence

from settings_import.workbook import Grid

CATEGORY_TABLE = "CATEGORY_TABLE"
SECTION_TABLES = "SECTION_TABLES"
UNKNOWN = "UNKNOWN"

SECTION_KEYWORDS = {"bills", "bill", "subscriptions", "subscription", "debts", "debt"}
CATEGORY_KEYWORDS = {"category", "type", "section"}

LAYOUT_SCAN_ROWS = 5
HEADER_SCAN_ROWS = 10
DEFAULT_CATEGORY = "Other"

SECTION_BILLS = "bills"
SECTION_SUBSCRIPTIONS = "subscriptions"
SECTION_DEBTS = "debts"
SECTION_ORDER = (SECTION_BILLS, SECTION_SUBSCRIPTIONS, SECTION_DEBTS)


@dataclass(frozen=True)
class RawRow:
    """Header/value pairs for one data row, in sheet column order."""

    cells: tuple[tuple[str, str], ...] = ()

    def get(self, header: str, default: str = "") -> str:
        for cell_header, value in self.cells:
            if cell_header == header and value:
                return value
        return default

    def headers(self) -> list[str]:
        return [cell_header for cell_header, _ in self.cells]

    def as_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        for cell_header, value in self.cells:
            result.setdefault(cell_header, value)
        return result

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.cells)

    def __len__(self) -> int:
        return len(self.cells)

    def __bool__(self) -> bool:
        return bool(self.cells)


@dataclass(frozen=True)
class ExtractedTable:
    section_name: str
    headers: tuple[str, ...]
    rows: tuple[RawRow, ...]
    row_numbers: tuple[int, ...] = ()


@dataclass(frozen=True)
class AssignedSections:
    bills: ExtractedTable | None = None
    subscriptions: ExtractedTable | None = None
    debts: ExtractedTable | None = None

    def get(self, section: str) -> ExtractedTable | None:
        return getattr(self, section)

    def present(self) -> list[str]:
        return [name for name in SECTION_ORDER if self.get(name) is not None]

    def is_empty(self) -> bool:
        return not self.present()


def normalise_header(value: str) -> str:
    return " ".join(value.split()).lower()


def _non_empty(row: Sequence[str]) -> list[str]:
    return [cell for cell in row if cell]


def _is_blank_row(row: Sequence[str]) -> bool:
    return not any(row)


# ══════════════════════════════════════════════════════════════════════════════
# LAYOUT DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def section_heading(row: Sequence[str]) -> str | None:
    """Return the heading text when ``row`` starts a new section."""
    filled = _non_empty(row)
    if not filled or len(filled) > 2:
        return None
    if filled[0].lower() in SECTION_KEYWORDS:
        return filled[0]
    return None


def detect_layout(grid: Grid) -> str:
    for row in grid[:LAYOUT_SCAN_ROWS]:
        has_category = any(cell.lower() in CATEGORY_KEYWORDS for cell in row)
        if has_category and len(_non_empty(row)) >= 3:
            return CATEGORY_TABLE

    for row in grid:
        if section_heading(row) is not None:
            return SECTION_TABLES

    return UNKNOWN


# ══════════════════════════════════════════════════════════════════════════════
# TABLE EXTRACTION
# ══════════════════════════════════════════════════════════════════════════════

def _build_row(headers: Sequence[str], row: Sequence[str], skip_index: int | None = None) -> RawRow:
    cells = []
    for index, header in enumerate(headers):
        if index == skip_index or not header:
            continue
        value = row[index] if index < len(row) else ""
        if value:
            cells.append((header, value))
    return RawRow(tuple(cells))


def _extract_category_table(grid: Grid) -> list[ExtractedTable]:
    header_idx = None
    for index, row in enumerate(grid[:HEADER_SCAN_ROWS]):
        if any(cell.lower() in CATEGORY_KEYWORDS for cell in row):
            header_idx = index
            break
    if header_idx is None:
        return []

    headers = [normalise_header(cell) for cell in grid[header_idx]]
    category_idx = next(i for i, header in enumerate(headers) if header in CATEGORY_KEYWORDS)

    grouped: dict[str, list[tuple[int, RawRow]]] = {}
    for index in range(header_idx + 1, len(grid)):
        row = grid[index]
        if _is_blank_row(row):
            continue
        # A row holding only its category still surfaces, as an invalid row.
        record = _build_row(headers, row, skip_index=category_idx)
        category = row[category_idx].strip() if category_idx < len(row) else ""
        grouped.setdefault(category or DEFAULT_CATEGORY, []).append((index + 1, record))

    table_headers = tuple(
        header for i, header in enumerate(headers) if header and i != category_idx
    )
    return [
        ExtractedTable(
            section_name=name,
            headers=table_headers,
            rows=tuple(record for _, record in entries),
            row_numbers=tuple(number for number, _ in entries),
        )
        for name, entries in grouped.items()
    ]


@dataclass
class _SectionCollector:
    """Running state while walking a SECTION_TABLES grid."""

    tables: list[ExtractedTable] = field(default_factory=list)
    section: str | None = None
    headers: list[str] = field(default_factory=list)
    rows: list[RawRow] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)

    @property
    def state(self) -> str:
        if self.section is None:
            return "no_section"
        if not self.headers:
            return "awaiting_header"
        return "collecting"

    def start(self, heading: str) -> None:
        self.flush()
        self.section = heading

    def flush(self) -> None:
        # Headings with no header row or no data rows are dropped silently.
        if self.section and self.headers and self.rows:
            self.tables.append(
                ExtractedTable(
                    section_name=self.section,
                    headers=tuple(self.headers),
                    rows=tuple(self.rows),
                    row_numbers=tuple(self.row_numbers),
                )
            )
        self.headers = []
        self.rows = []
        self.row_numbers = []


def _extract_section_tables(grid: Grid) -> list[ExtractedTable]:
    collector = _SectionCollector()

    for index, row in enumerate(grid):
        if _is_blank_row(row):
            continue

        heading = section_heading(row)
        if heading is not None:
            collector.start(heading)
            continue

        state = collector.state
        if state == "awaiting_header":
            if len(_non_empty(row)) >= 2:
                collector.headers = [normalise_header(cell) for cell in row]
        elif state == "collecting":
            record = _build_row(collector.headers, row)
            if record:
                collector.rows.append(record)
                collector.row_numbers.append(index + 1)

    collector.flush()
    return collector.tables


def extract_tables(grid: Grid, layout: str | None = None) -> list[ExtractedTable]:
    layout = layout or detect_layout(grid)
    if layout == CATEGORY_TABLE:
        return _extract_category_table(grid)
    return _extract_section_tables(grid)


# ══════════════════════════════════════════════════════════════════════════════
# SECTION ASSIGNMENT
# ══════════════════════════════════════════════════════════════════════════════

_DEBT_NAME_RE = re.compile(r"debt|loan|credit")


def classify_section(section_name: str) -> str | None:
    name = section_name.strip().lower()
    if "subscription" in name:
        return SECTION_SUBSCRIPTIONS
    if "bill" in name:
        return SECTION_BILLS
    if _DEBT_NAME_RE.search(name):
        return SECTION_DEBTS
    return None


def assign_sections(tables: Sequence[ExtractedTable]) -> AssignedSections:
    slots: dict[str, ExtractedTable] = {}
    for table in tables:
        section = classify_section(table.section_name)
        if section is not None:
            slots[section] = table
    return AssignedSections(**slots)
