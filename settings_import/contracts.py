"""Shared versioned contracts for settings-import outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from settings_import import __version__ as TOOL_VERSION

if TYPE_CHECKING:
    from settings_import.wizard import ImportResults, WizardState

CONTRACT_VERSIONS = {
    "settings_import.preview": "1.0.0",
    "settings_import.import_log": "1.0.0",
    "settings_import.import_summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_file: str,
    status: str = "ok",
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "settings-import",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": input_file,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }


def _section_payload(section_state) -> dict[str, Any]:
    return {
        "headers": list(section_state.table.headers),
        "mapping": dict(section_state.mapping),
        "mapping_source": section_state.mapping_source,
        "rows_total": len(section_state.rows),
        "rows_valid": len(section_state.valid_rows()),
        "rows_invalid": len(section_state.invalid_rows()),
        "duplicates": len(section_state.duplicate_rows()),
        "rows": [
            {
                "row_number": row.row_number,
                "valid": row.valid,
                "errors": list(row.errors),
                "warnings": list(row.warnings),
                "data": row.normalised if row.normalised is not None else dict(row.data),
                "import_key": row.import_key,
                "duplicate": (
                    {
                        "existing_id": row.duplicate.existing_id,
                        "existing_name": row.duplicate.existing_name,
                        "match_type": row.duplicate.match_type,
                    }
                    if row.duplicate
                    else None
                ),
                "duplicate_action": row.duplicate_action if row.duplicate else None,
            }
            for row in section_state.rows
        ],
    }


def build_preview_report(state: WizardState) -> dict[str, Any]:
    contract = build_contract("settings_import.preview")
    sections = {section_state.name: _section_payload(section_state) for section_state in state.active_sections()}
    invalid = sum(payload["rows_invalid"] for payload in sections.values())
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "file": state.file_name,
        "sheet_name": state.sheet_name,
        "layout": state.layout,
        "sections": sections,
        "run_summary": build_run_summary(
            command="preview",
            input_file=state.file_name,
            status="ok" if invalid == 0 else "invalid_rows",
            metrics={
                "sections_detected": len(sections),
                "rows_total": sum(payload["rows_total"] for payload in sections.values()),
                "rows_invalid": invalid,
                "duplicates": sum(payload["duplicates"] for payload in sections.values()),
            },
        ),
    }


def build_import_log(
    *,
    user_id: str,
    file_name: str,
    sheet_name: str | None,
    layout: str,
    mapping_signature: str,
    results: ImportResults,
) -> dict[str, Any]:
    """The audit record written once per completed import; keys are `import_logs` columns."""
    return {
        "user_id": user_id,
        "file_name": file_name,
        "settings_sheet_name": sheet_name,
        "layout_detected": layout,
        "mapping_signature": mapping_signature,
        "bills_added": results.bills.added,
        "bills_updated": results.bills.updated,
        "bills_skipped": results.bills.skipped,
        "subs_added": results.subscriptions.added,
        "subs_updated": results.subscriptions.updated,
        "subs_skipped": results.subscriptions.skipped,
        "debts_added": results.debts.added,
        "debts_updated": results.debts.updated,
        "debts_skipped": results.debts.skipped,
        "imported_at": utc_now_iso(),
        "details": {
            "contract": build_contract("settings_import.import_log"),
            "failures": failure_entries(results),
        },
    }


def failure_entries(results: ImportResults) -> list[dict[str, Any]]:
    return [
        {
            "section": failure.section,
            "row_number": failure.row_number,
            "operation": failure.operation,
            "reason": failure.reason,
        }
        for failure in results.failures
    ]


def build_import_summary(state: WizardState, *, audit_logged: bool) -> dict[str, Any]:
    contract = build_contract("settings_import.import_summary")
    results = state.results
    counts = results.as_dict() if results else {}
    failures = len(results.failures) if results else 0
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "file": state.file_name,
        "sheet_name": state.sheet_name,
        "layout": state.layout,
        "results": counts,
        "failures": failure_entries(results) if results else [],
        "audit_logged": audit_logged,
        "run_summary": build_run_summary(
            command="import",
            input_file=state.file_name,
            status="ok" if failures == 0 else "partial",
            metrics={
                "rows_processed": state.processed,
                "rows_total": state.total,
                "write_failures": failures,
            },
        ),
    }
