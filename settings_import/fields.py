"""
fields.py — target field catalogs, header auto-mapping and row validation

A mapping is a plain dict from spreadsheet header to target field key, with
``IGNORE`` meaning the column is dropped. ``auto_detect_mapping`` only
suggests; callers may override entries before ``validate_row`` runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from settings_import.layout import RawRow

IGNORE = "IGNORE"


@dataclass(frozen=True)
class TargetField:
    key: str
    label: str
    required: bool = False
    recommended: bool = False


BILL_FIELDS = (
    TargetField("name", "Name", required=True),
    TargetField("amount", "Amount", recommended=True),
    TargetField("frequency", "Frequency", required=True),
    TargetField("due_day", "Due Day", recommended=True),
    TargetField("provider", "Provider"),
    TargetField("bill_type", "Bill Type"),
    TargetField("notes", "Notes"),
    TargetField("is_active", "Active"),
)

DEBT_FIELDS = (
    TargetField("creditor_name", "Creditor Name", required=True),
    TargetField("debt_type", "Debt Type", required=True),
    TargetField("starting_balance", "Starting Balance", recommended=True),
    TargetField("current_balance", "Current Balance", recommended=True),
    TargetField("apr", "APR (%)"),
    TargetField("interest_type", "Interest Type"),
    TargetField("min_payment", "Min Payment"),
    TargetField("due_day", "Due Day"),
    TargetField("notes", "Notes"),
)

# Dict order is the match priority when several keys share a synonym.
HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "name": ("name", "bill name", "bill", "payee", "description", "title", "service"),
    "amount": ("amount", "cost", "price", "monthly cost", "monthly amount", "payment", "value", "charge"),
    "frequency": ("frequency", "billing cycle", "cycle", "period", "recurrence", "how often", "schedule"),
    "due_day": ("due day", "due date", "payment day", "payment date", "day", "date due", "dd"),
    "provider": ("provider", "company", "supplier", "vendor", "from"),
    "bill_type": ("bill type", "type", "category"),
    "notes": ("notes", "note", "comments", "memo", "details"),
    "is_active": ("active", "status", "enabled", "is active"),
    "creditor_name": ("creditor", "creditor name", "lender", "bank", "company", "provider", "name"),
    "debt_type": ("debt type", "type", "account type", "kind"),
    "starting_balance": ("starting balance", "original balance", "initial balance", "original amount", "borrowed"),
    "current_balance": ("current balance", "balance", "outstanding", "remaining", "owed"),
    "apr": ("apr", "interest rate", "rate", "interest %", "annual rate"),
    "interest_type": ("interest type", "rate type"),
    "min_payment": ("min payment", "minimum payment", "min", "minimum"),
}


def field_keys(target_fields: Sequence[TargetField]) -> list[str]:
    return [target.key for target in target_fields]


def field_label(target_fields: Sequence[TargetField], key: str) -> str:
    for target in target_fields:
        if target.key == key:
            return target.label
    return key


# ══════════════════════════════════════════════════════════════════════════════
# AUTO-DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _match_header(normalised: str, candidates: list[str], partial: bool) -> str | None:
    for key in candidates:
        synonyms = HEADER_SYNONYMS[key]
        if partial:
            if any(normalised in synonym or synonym in normalised for synonym in synonyms):
                return key
        elif normalised in synonyms:
            return key
    return None


def auto_detect_mapping(
    headers: Sequence[str],
    target_fields: Sequence[TargetField],
) -> dict[str, str]:
    """
    Suggest a target field for every header.

    Exact synonym matches are tried first, then substring containment in
    either direction. A target key is consumed by the first header that
    claims it. Blank or unmatched headers map to IGNORE. Repeated headers
    keep the mapping of their first occurrence.
    """
    valid_keys = set(field_keys(target_fields))
    mapping: dict[str, str] = {}
    used: set[str] = set()

    for header in headers:
        if header in mapping:
            continue
        normalised = header.strip().lower()
        if not normalised:
            mapping[header] = IGNORE
            continue

        candidates = [key for key in HEADER_SYNONYMS if key in valid_keys and key not in used]
        best = _match_header(normalised, candidates, partial=False)
        if best is None:
            best = _match_header(normalised, candidates, partial=True)

        if best is None:
            mapping[header] = IGNORE
        else:
            mapping[header] = best
            used.add(best)

    return mapping


def override_mapping(
    mapping: Mapping[str, str],
    header: str,
    target_key: str,
    target_fields: Sequence[TargetField],
) -> dict[str, str]:
    """Return a copy of ``mapping`` with one header re-pointed by the user."""
    if header not in mapping:
        raise KeyError(f"Unknown header: {header!r}")
    if target_key != IGNORE and target_key not in field_keys(target_fields):
        raise ValueError(f"Unknown target field: {target_key!r}")
    updated = dict(mapping)
    updated[header] = target_key
    return updated


def sanitise_mapping(
    saved: Mapping[str, Any],
    headers: Sequence[str],
    target_fields: Sequence[TargetField],
) -> dict[str, str]:
    """Fit a previously saved mapping to the current headers and catalog."""
    valid_keys = set(field_keys(target_fields))
    suggested = auto_detect_mapping(headers, target_fields)
    mapping: dict[str, str] = {}
    for header in headers:
        if header in mapping:
            continue
        value = saved.get(header)
        if value is None:
            mapping[header] = suggested[header]
        elif isinstance(value, str) and (value == IGNORE or value in valid_keys):
            mapping[header] = value
        else:
            mapping[header] = IGNORE
    return mapping


def header_signature(headers: Sequence[str]) -> str:
    return ",".join(headers)


def build_mapping_signature(headers: Sequence[str], mapping: Mapping[str, str]) -> str:
    return ",".join(f"{header}:{mapping.get(header) or IGNORE}" for header in headers)


# ══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    data: dict[str, str] = field(default_factory=dict)


def _row_value(row: RawRow | Mapping[str, str], header: str) -> str:
    value = row.get(header)
    return value if value else ""


def validate_row(
    row: RawRow | Mapping[str, str],
    mapping: Mapping[str, str],
    target_fields: Sequence[TargetField],
) -> ValidationResult:
    data: dict[str, str] = {}
    for header, target_key in mapping.items():
        if target_key == IGNORE:
            continue
        value = _row_value(row, header)
        if value:
            data[target_key] = value

    errors: list[str] = []
    warnings: list[str] = []
    for target in target_fields:
        present = bool(data.get(target.key))
        if target.required and not present:
            errors.append(f"Missing required field: {target.label}")
        if target.recommended and not present:
            warnings.append(f"Recommended field missing: {target.label}")

    return ValidationResult(
        valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        data=data,
    )
