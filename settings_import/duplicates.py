from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

MATCH_IMPORT_KEY = "import_key"
MATCH_FUZZY = "fuzzy"


@dataclass(frozen=True)
class DuplicateCandidate:
    """A valid, normalised incoming row as seen by the matcher."""

    import_key: str
    data: Mapping[str, Any]


@dataclass(frozen=True)
class DuplicateMatch:
    row_index: int
    existing_id: str
    existing_name: str
    match_type: str


def _folded(value: Any) -> str:
    return str(value or "").strip().lower()


def _find_duplicates(
    rows: Sequence[DuplicateCandidate],
    existing: Sequence[Mapping[str, Any]],
    name_field: str,
    fuzzy_equal: Callable[[Mapping[str, Any], Mapping[str, Any]], bool],
) -> list[DuplicateMatch]:
    matches: list[DuplicateMatch] = []
    for index, row in enumerate(rows):
        found = next(
            (record for record in existing if record.get("import_key") and record["import_key"] == row.import_key),
            None,
        )
        match_type = MATCH_IMPORT_KEY
        if found is None:
            found = next((record for record in existing if fuzzy_equal(record, row.data)), None)
            match_type = MATCH_FUZZY
        if found is None:
            continue
        matches.append(
            DuplicateMatch(
                row_index=index,
                existing_id=str(found["id"]),
                existing_name=str(found.get(name_field) or ""),
                match_type=match_type,
            )
        )
    return matches


def _same_bill(record: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    return (
        _folded(record.get("name")) == _folded(data.get("name"))
        and record.get("due_day") == data.get("due_day")
        and record.get("frequency") == data.get("frequency")
    )


def _same_debt(record: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    return (
        _folded(record.get("creditor_name")) == _folded(data.get("creditor_name"))
        and record.get("debt_type") == data.get("debt_type")
    )


def find_bill_duplicates(
    rows: Sequence[DuplicateCandidate],
    existing_bills: Sequence[Mapping[str, Any]],
) -> list[DuplicateMatch]:
    """Match each row to at most one existing bill: import key first, then name/day/frequency."""
    return _find_duplicates(rows, existing_bills, "name", _same_bill)


def find_debt_duplicates(
    rows: Sequence[DuplicateCandidate],
    existing_debts: Sequence[Mapping[str, Any]],
) -> list[DuplicateMatch]:
    """Match each row to at most one existing debt: import key first, then creditor/type."""
    return _find_duplicates(rows, existing_debts, "creditor_name", _same_debt)
