from __future__ import annotations

from io import BytesIO
from pathlib import Path

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

TEMPLATE_FILE_NAME = "settings-import-template.xlsx"
TEMPLATE_SHEET_NAME = "Settings"

SAMPLE_BILLS = [
    ["Name", "Amount", "Frequency", "Due Day", "Provider", "Bill Type", "Notes"],
    ["Council Tax", 180, "Monthly", 1, "Local Council", "Tax", "Band C"],
    ["Electricity", 95, "Monthly", 15, "Octopus Energy", "Utility", ""],
    ["Water", 42, "Monthly", 20, "Thames Water", "Utility", ""],
]

SAMPLE_SUBSCRIPTIONS = [
    ["Name", "Amount", "Frequency", "Due Day", "Provider", "Notes"],
    ["Netflix", 15.99, "Monthly", 5, "Netflix", "Standard plan"],
    ["Spotify", 10.99, "Monthly", 12, "Spotify", "Premium"],
    ["Amazon Prime", 95, "Yearly", 1, "Amazon", "Annual"],
]

SAMPLE_DEBTS = [
    ["Creditor Name", "Debt Type", "Starting Balance", "Current Balance", "APR", "Min Payment", "Due Day", "Notes"],
    ["Barclaycard", "Credit Card", 3500, 2800, 22.9, 85, 25, ""],
    ["Klarna", "BNPL", 450, 300, 0, 75, 1, "3 instalments"],
    ["Personal Loan", "Loan", 10000, 7500, 5.9, 200, 15, "Halifax"],
]

TEMPLATE_SECTIONS = [
    ("Bills", SAMPLE_BILLS, "1F4E78"),          # dark blue
    ("Subscriptions", SAMPLE_SUBSCRIPTIONS, "375623"),  # dark green
    ("Debts", SAMPLE_DEBTS, "843C0C"),          # dark red
]

COLUMN_WIDTHS = [20, 15, 15, 10, 18, 12, 15, 20]


def _header_font() -> Font:
    return Font(bold=True, color="FFFFFF")


def _header_fill(hex_color: str) -> PatternFill:
    return PatternFill("solid", fgColor=hex_color)


def build_template_workbook() -> openpyxl.Workbook:
    """A Settings sheet with Bills, Subscriptions and Debts sections, blank row between each."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = TEMPLATE_SHEET_NAME

    row_index = 1
    for position, (title, rows, color) in enumerate(TEMPLATE_SECTIONS):
        if position:
            row_index += 1
        heading = ws.cell(row=row_index, column=1, value=title)
        heading.font = Font(bold=True, size=13)
        row_index += 1

        header, *body = rows
        fill = _header_fill(color)
        for column, value in enumerate(header, start=1):
            cell = ws.cell(row=row_index, column=column, value=value)
            cell.font = _header_font()
            cell.fill = fill
            cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
        row_index += 1

        for record in body:
            for column, value in enumerate(record, start=1):
                ws.cell(row=row_index, column=column, value=value if value != "" else None)
            row_index += 1

    for i, width in enumerate(COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width
    return wb


def write_template(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = build_template_workbook()
    try:
        wb.save(path)
    finally:
        wb.close()
    return path


def template_bytes() -> bytes:
    buffer = BytesIO()
    wb = build_template_workbook()
    try:
        wb.save(buffer)
    finally:
        wb.close()
    return buffer.getvalue()
