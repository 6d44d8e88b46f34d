"""
preview.py — tabular views of a wizard state for the CLI and web shells

Everything returns a ``pandas.DataFrame`` (or text rendered from one), one
row per spreadsheet row, in sheet order.
"""

from __future__ import annotations

from typing import Any

import pandas as pd

from settings_import.fields import IGNORE, field_label
from settings_import.layout import SECTION_ORDER
from settings_import.wizard import ImportResults, SectionState, WizardState

STATUS_VALID = "ok"
STATUS_INVALID = "invalid"
STATUS_DUPLICATE = "duplicate"


def _display(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def mapping_frame(section_state: SectionState) -> pd.DataFrame:
    """Header → target field, as shown on the Mapping step."""
    rows = [
        {
            "Header": header or "[blank]",
            "Field": "Ignore" if target == IGNORE else field_label(section_state.fields, target),
        }
        for header, target in section_state.mapping.items()
    ]
    return pd.DataFrame(rows, columns=["Header", "Field"])


def section_frame(section_state: SectionState) -> pd.DataFrame:
    labels = [target.label for target in section_state.fields]
    columns = ["Row", "Status", *labels, "Existing", "Action", "Issues"]
    records = []
    for row in section_state.rows:
        values = row.normalised if row.normalised is not None else row.data
        if not row.valid:
            status = STATUS_INVALID
        elif row.duplicate is not None:
            status = STATUS_DUPLICATE
        else:
            status = STATUS_VALID
        record: dict[str, Any] = {"Row": row.row_number, "Status": status}
        for target in section_state.fields:
            record[target.label] = _display(values.get(target.key))
        record["Existing"] = row.duplicate.existing_name if row.duplicate else ""
        record["Action"] = row.duplicate_action if row.duplicate else ("insert" if row.valid else "")
        record["Issues"] = "; ".join([*row.errors, *row.warnings])
        records.append(record)
    return pd.DataFrame(records, columns=columns)


def summary_frame(state: WizardState) -> pd.DataFrame:
    rows = [
        {
            "Section": section_state.name,
            "Rows": len(section_state.rows),
            "Valid": len(section_state.valid_rows()),
            "Invalid": len(section_state.invalid_rows()),
            "Duplicates": len(section_state.duplicate_rows()),
            "Mapping": section_state.mapping_source,
        }
        for section_state in state.active_sections()
    ]
    return pd.DataFrame(rows, columns=["Section", "Rows", "Valid", "Invalid", "Duplicates", "Mapping"])


def results_frame(results: ImportResults) -> pd.DataFrame:
    frame = pd.DataFrame.from_dict(results.as_dict(), orient="index", columns=["added", "updated", "skipped"])
    return frame.reindex(list(SECTION_ORDER))


def render_preview_text(state: WizardState) -> str:
    lines = [
        "settings-import preview",
        f"File: {state.file_name or '[unknown]'}",
        f"Sheet: {state.sheet_name or '[none]'}",
        f"Layout: {state.layout}",
        "",
        summary_frame(state).to_string(index=False),
    ]
    for section_state in state.active_sections():
        lines.extend(["", f"[{section_state.name}]", section_frame(section_state).to_string(index=False)])
    return "\n".join(lines) + "\n"


def render_results_text(results: ImportResults) -> str:
    lines = ["settings-import import", results_frame(results).to_string()]
    if results.failures:
        lines.append("Failures:")
        lines.extend(
            f"- {failure.section} row {failure.row_number} ({failure.operation}): {failure.reason}"
            for failure in results.failures
        )
    return "\n".join(lines) + "\n"
