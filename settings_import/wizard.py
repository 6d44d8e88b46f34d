"""
wizard.py — the import wizard as an explicit state machine

    upload → detect → mapping → preview → importing → done

Each step is a frozen ``WizardState`` snapshot and ``transition(state, event)``
returns the next one. Nothing here performs I/O: the shell in ``importer.py``
reads the workbook, fetches existing records, talks to the mapping cache and
performs the writes, then feeds the results back in as events.

Back transitions: detect → upload, mapping → detect, preview → mapping.
Importing only moves forward, to done.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping, Sequence

from settings_import.duplicates import (
    DuplicateCandidate,
    DuplicateMatch,
    find_bill_duplicates,
    find_debt_duplicates,
)
from settings_import.errors import InvalidTransitionError, NoSectionsError
from settings_import.fields import (
    BILL_FIELDS,
    DEBT_FIELDS,
    TargetField,
    override_mapping,
    validate_row,
)
from settings_import.layout import (
    SECTION_BILLS,
    SECTION_DEBTS,
    SECTION_ORDER,
    SECTION_SUBSCRIPTIONS,
    UNKNOWN,
    AssignedSections,
    ExtractedTable,
    RawRow,
    assign_sections,
    detect_layout,
    extract_tables,
)
from settings_import.mapping_store import resolve_mapping
from settings_import.normalization import (
    build_bill_import_key,
    build_debt_import_key,
    normalise_bill_row,
    normalise_debt_row,
    normalise_subscription_row,
)
from settings_import.workbook import Grid

STEP_UPLOAD = "upload"
STEP_DETECT = "detect"
STEP_MAPPING = "mapping"
STEP_PREVIEW = "preview"
STEP_IMPORTING = "importing"
STEP_DONE = "done"

ACTION_SKIP = "skip"
ACTION_UPDATE = "update"
ACTION_IMPORT_NEW = "import_new"
DUPLICATE_ACTIONS = (ACTION_SKIP, ACTION_UPDATE, ACTION_IMPORT_NEW)

OUTCOME_ADDED = "added"
OUTCOME_UPDATED = "updated"
OUTCOME_SKIPPED = "skipped"

OPERATION_SKIP = "skip"
OPERATION_UPDATE = "update"
OPERATION_INSERT = "insert"

COLLECTION_BILLS = "bills"
COLLECTION_DEBTS = "debts"

MAPPING_SOURCE_MANUAL = "manual"


@dataclass(frozen=True)
class SectionKind:
    name: str
    fields: tuple[TargetField, ...]
    collection: str
    normalise: Callable[[Mapping[str, Any]], dict[str, Any]]
    build_key: Callable[[Mapping[str, Any]], str]
    find_duplicates: Callable[..., list[DuplicateMatch]]
    matches_existing: Callable[[Mapping[str, Any]], bool] = lambda record: True


SECTION_KINDS = {
    SECTION_BILLS: SectionKind(
        name=SECTION_BILLS,
        fields=BILL_FIELDS,
        collection=COLLECTION_BILLS,
        normalise=normalise_bill_row,
        build_key=build_bill_import_key,
        find_duplicates=find_bill_duplicates,
    ),
    SECTION_SUBSCRIPTIONS: SectionKind(
        name=SECTION_SUBSCRIPTIONS,
        fields=BILL_FIELDS,
        collection=COLLECTION_BILLS,
        normalise=normalise_subscription_row,
        build_key=build_bill_import_key,
        find_duplicates=find_bill_duplicates,
        matches_existing=lambda record: bool(record.get("is_subscription")),
    ),
    SECTION_DEBTS: SectionKind(
        name=SECTION_DEBTS,
        fields=DEBT_FIELDS,
        collection=COLLECTION_DEBTS,
        normalise=normalise_debt_row,
        build_key=build_debt_import_key,
        find_duplicates=find_debt_duplicates,
    ),
}


# ══════════════════════════════════════════════════════════════════════════════
# SNAPSHOTS
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ProcessedRow:
    raw: RawRow
    row_number: int
    data: dict[str, str]
    normalised: dict[str, Any] | None
    import_key: str
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    duplicate: DuplicateMatch | None = None
    duplicate_action: str = ACTION_IMPORT_NEW


@dataclass(frozen=True)
class SectionState:
    name: str
    table: ExtractedTable
    mapping: dict[str, str]
    mapping_source: str
    rows: tuple[ProcessedRow, ...] = ()

    @property
    def kind(self) -> SectionKind:
        return SECTION_KINDS[self.name]

    @property
    def fields(self) -> tuple[TargetField, ...]:
        return self.kind.fields

    def valid_rows(self) -> list[ProcessedRow]:
        return [row for row in self.rows if row.valid]

    def invalid_rows(self) -> list[ProcessedRow]:
        return [row for row in self.rows if not row.valid]

    def duplicate_rows(self) -> list[ProcessedRow]:
        return [row for row in self.rows if row.duplicate is not None]


@dataclass(frozen=True)
class SectionCounts:
    added: int = 0
    updated: int = 0
    skipped: int = 0

    def bump(self, outcome: str) -> SectionCounts:
        if outcome not in (OUTCOME_ADDED, OUTCOME_UPDATED, OUTCOME_SKIPPED):
            raise ValueError(f"Unknown commit outcome: {outcome!r}")
        return replace(self, **{outcome: getattr(self, outcome) + 1})

    @property
    def total(self) -> int:
        return self.added + self.updated + self.skipped


@dataclass(frozen=True)
class CommitFailure:
    section: str
    row_number: int
    operation: str
    reason: str


@dataclass(frozen=True)
class ImportResults:
    bills: SectionCounts = SectionCounts()
    subscriptions: SectionCounts = SectionCounts()
    debts: SectionCounts = SectionCounts()
    failures: tuple[CommitFailure, ...] = ()

    def get(self, section: str) -> SectionCounts:
        return getattr(self, section)

    def record(self, section: str, outcome: str, failure: CommitFailure | None = None) -> ImportResults:
        failures = self.failures + (failure,) if failure is not None else self.failures
        return replace(self, **{section: self.get(section).bump(outcome)}, failures=failures)

    def as_dict(self) -> dict[str, dict[str, int]]:
        return {
            name: {
                "added": self.get(name).added,
                "updated": self.get(name).updated,
                "skipped": self.get(name).skipped,
            }
            for name in SECTION_ORDER
        }


@dataclass(frozen=True)
class WizardState:
    step: str = STEP_UPLOAD
    file_name: str = ""
    sheet_name: str | None = None
    available_sheets: tuple[str, ...] = ()
    layout: str = UNKNOWN
    sections: AssignedSections = AssignedSections()
    existing: Mapping[str, tuple[dict[str, Any], ...]] = field(default_factory=dict)
    bills: SectionState | None = None
    subscriptions: SectionState | None = None
    debts: SectionState | None = None
    processed: int = 0
    total: int = 0
    results: ImportResults | None = None

    def section(self, name: str) -> SectionState | None:
        if name not in SECTION_ORDER:
            raise KeyError(f"Unknown section: {name!r}")
        return getattr(self, name)

    def active_sections(self) -> list[SectionState]:
        return [state for state in (self.section(name) for name in SECTION_ORDER) if state is not None]

    def can_proceed_to_mapping(self) -> bool:
        return self.step == STEP_DETECT and not self.sections.is_empty()


# ══════════════════════════════════════════════════════════════════════════════
# EVENTS
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class WorkbookLoaded:
    file_name: str
    sheet_name: str
    available_sheets: tuple[str, ...]
    grid: Grid


@dataclass(frozen=True)
class MappingStarted:
    """Detect → Mapping, carrying the existing-records snapshot and saved mappings."""

    existing: Mapping[str, Sequence[Mapping[str, Any]]] = field(default_factory=dict)
    saved_mappings: Mapping[str, dict[str, str] | None] = field(default_factory=dict)


@dataclass(frozen=True)
class MappingChanged:
    section: str
    header: str
    target_key: str


@dataclass(frozen=True)
class PreviewRequested:
    pass


@dataclass(frozen=True)
class DuplicateActionChosen:
    section: str
    row_index: int
    action: str


@dataclass(frozen=True)
class ImportStarted:
    pass


@dataclass(frozen=True)
class RowCommitted:
    section: str
    outcome: str
    failure: CommitFailure | None = None


@dataclass(frozen=True)
class ImportFinished:
    pass


@dataclass(frozen=True)
class Back:
    pass


# ══════════════════════════════════════════════════════════════════════════════
# ROW PROCESSING
# ══════════════════════════════════════════════════════════════════════════════

def process_rows(
    section: str,
    table: ExtractedTable,
    mapping: Mapping[str, str],
    existing: Sequence[Mapping[str, Any]] = (),
) -> tuple[ProcessedRow, ...]:
    """Validate, normalise and duplicate-check every row of a table, in order."""
    kind = SECTION_KINDS[section]
    row_numbers = table.row_numbers or tuple(range(1, len(table.rows) + 1))

    rows: list[ProcessedRow] = []
    for raw, row_number in zip(table.rows, row_numbers):
        result = validate_row(raw, mapping, kind.fields)
        normalised = kind.normalise(result.data) if result.valid else None
        rows.append(
            ProcessedRow(
                raw=raw,
                row_number=row_number,
                data=result.data,
                normalised=normalised,
                import_key=kind.build_key(normalised) if normalised is not None else "",
                valid=result.valid,
                errors=result.errors,
                warnings=result.warnings,
            )
        )

    # DuplicateMatch.row_index points into the valid-only sublist.
    valid_positions = [position for position, row in enumerate(rows) if row.valid]
    candidates = [
        DuplicateCandidate(rows[position].import_key, rows[position].normalised or {})
        for position in valid_positions
    ]
    relevant = [record for record in existing if kind.matches_existing(record)]
    for match in kind.find_duplicates(candidates, relevant):
        position = valid_positions[match.row_index]
        rows[position] = replace(rows[position], duplicate=match, duplicate_action=ACTION_UPDATE)

    return tuple(rows)


def _existing_for(state: WizardState, section: str) -> tuple[dict[str, Any], ...]:
    return tuple(state.existing.get(SECTION_KINDS[section].collection, ()))


def _rebuild_section(state: WizardState, section_state: SectionState, **changes: Any) -> SectionState:
    updated = replace(section_state, **changes)
    rows = process_rows(updated.name, updated.table, updated.mapping, _existing_for(state, updated.name))
    return replace(updated, rows=rows)


# ══════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ══════════════════════════════════════════════════════════════════════════════

def _require_step(state: WizardState, event: object, *steps: str) -> None:
    if state.step not in steps:
        raise InvalidTransitionError(
            f"{type(event).__name__} is not allowed in the '{state.step}' step"
        )


def _on_workbook_loaded(state: WizardState, event: WorkbookLoaded) -> WizardState:
    layout = detect_layout(event.grid)
    tables = extract_tables(event.grid, layout)
    return WizardState(
        step=STEP_DETECT,
        file_name=event.file_name,
        sheet_name=event.sheet_name,
        available_sheets=tuple(event.available_sheets),
        layout=layout,
        sections=assign_sections(tables),
    )


def _on_mapping_started(state: WizardState, event: MappingStarted) -> WizardState:
    if state.sections.is_empty():
        raise NoSectionsError(
            "No bills, subscriptions or debts sections were found in the Settings sheet."
        )
    existing = {collection: tuple(records) for collection, records in event.existing.items()}
    snapshot = replace(state, existing=existing)

    section_states: dict[str, SectionState | None] = {}
    for name in SECTION_ORDER:
        table = state.sections.get(name)
        if table is None or not table.rows:
            section_states[name] = None
            continue
        mapping, source = resolve_mapping(
            table.headers, SECTION_KINDS[name].fields, event.saved_mappings.get(name)
        )
        section_states[name] = SectionState(
            name=name,
            table=table,
            mapping=mapping,
            mapping_source=source,
            rows=process_rows(name, table, mapping, _existing_for(snapshot, name)),
        )
    return replace(snapshot, step=STEP_MAPPING, **section_states)


def _on_mapping_changed(state: WizardState, event: MappingChanged) -> WizardState:
    section_state = state.section(event.section)
    if section_state is None:
        raise InvalidTransitionError(f"Section '{event.section}' is not part of this import")
    mapping = override_mapping(
        section_state.mapping, event.header, event.target_key, section_state.fields
    )
    # Rows are recreated rather than edited whenever the mapping changes.
    rebuilt = _rebuild_section(state, section_state, mapping=mapping, mapping_source=MAPPING_SOURCE_MANUAL)
    return replace(state, **{event.section: rebuilt})


def _on_preview_requested(state: WizardState, event: PreviewRequested) -> WizardState:
    if not state.active_sections():
        raise NoSectionsError("There are no rows to preview.")
    rebuilt = {
        section_state.name: _rebuild_section(state, section_state)
        for section_state in state.active_sections()
    }
    return replace(state, step=STEP_PREVIEW, **rebuilt)


def _on_duplicate_action(state: WizardState, event: DuplicateActionChosen) -> WizardState:
    if event.action not in DUPLICATE_ACTIONS:
        raise ValueError(f"Unknown duplicate action: {event.action!r}")
    section_state = state.section(event.section)
    if section_state is None:
        raise InvalidTransitionError(f"Section '{event.section}' is not part of this import")
    if not 0 <= event.row_index < len(section_state.rows):
        raise IndexError(f"Row {event.row_index} is out of range for {event.section}")
    row = section_state.rows[event.row_index]
    if row.duplicate is None:
        raise InvalidTransitionError("Only rows matching an existing record take a duplicate action")

    rows = list(section_state.rows)
    rows[event.row_index] = replace(row, duplicate_action=event.action)
    return replace(state, **{event.section: replace(section_state, rows=tuple(rows))})


def _on_import_started(state: WizardState, event: ImportStarted) -> WizardState:
    total = sum(len(section_state.valid_rows()) for section_state in state.active_sections())
    return replace(state, step=STEP_IMPORTING, processed=0, total=total, results=ImportResults())


def _on_row_committed(state: WizardState, event: RowCommitted) -> WizardState:
    if state.processed >= state.total:
        raise InvalidTransitionError("More rows were committed than were planned")
    results = (state.results or ImportResults()).record(event.section, event.outcome, event.failure)
    return replace(state, processed=state.processed + 1, results=results)


def _on_import_finished(state: WizardState, event: ImportFinished) -> WizardState:
    if state.processed != state.total:
        raise InvalidTransitionError(
            f"Import finished after {state.processed} of {state.total} rows"
        )
    return replace(state, step=STEP_DONE, results=state.results or ImportResults())


def _on_back(state: WizardState, event: Back) -> WizardState:
    if state.step == STEP_DETECT:
        return WizardState()
    if state.step == STEP_MAPPING:
        return replace(
            state,
            step=STEP_DETECT,
            existing={},
            bills=None,
            subscriptions=None,
            debts=None,
        )
    if state.step == STEP_PREVIEW:
        return replace(state, step=STEP_MAPPING)
    raise InvalidTransitionError(f"Cannot go back from the '{state.step}' step")


_HANDLERS: dict[type, tuple[tuple[str, ...], Callable[[WizardState, Any], WizardState]]] = {
    WorkbookLoaded: ((STEP_UPLOAD,), _on_workbook_loaded),
    MappingStarted: ((STEP_DETECT,), _on_mapping_started),
    MappingChanged: ((STEP_MAPPING,), _on_mapping_changed),
    PreviewRequested: ((STEP_MAPPING,), _on_preview_requested),
    DuplicateActionChosen: ((STEP_PREVIEW,), _on_duplicate_action),
    ImportStarted: ((STEP_PREVIEW,), _on_import_started),
    RowCommitted: ((STEP_IMPORTING,), _on_row_committed),
    ImportFinished: ((STEP_IMPORTING,), _on_import_finished),
    Back: ((STEP_DETECT, STEP_MAPPING, STEP_PREVIEW), _on_back),
}


def transition(state: WizardState, event: object) -> WizardState:
    try:
        steps, handler = _HANDLERS[type(event)]
    except KeyError:
        raise InvalidTransitionError(f"Unknown wizard event: {type(event).__name__}") from None
    _require_step(state, event, *steps)
    return handler(state, event)


# ══════════════════════════════════════════════════════════════════════════════
# COMMIT PLAN
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CommitTask:
    section: str
    collection: str
    operation: str
    row_number: int
    payload: dict[str, Any]
    record_id: str | None = None


def plan_commit(state: WizardState) -> list[CommitTask]:
    """Writes to perform, in commit order: bills, subscriptions, then debts."""
    tasks: list[CommitTask] = []
    for section_state in state.active_sections():
        collection = section_state.kind.collection
        for row in section_state.valid_rows():
            payload = dict(row.normalised or {})
            payload["import_key"] = row.import_key
            if row.duplicate is not None and row.duplicate_action == ACTION_SKIP:
                operation, record_id = OPERATION_SKIP, row.duplicate.existing_id
            elif row.duplicate is not None and row.duplicate_action == ACTION_UPDATE:
                operation, record_id = OPERATION_UPDATE, row.duplicate.existing_id
            else:
                operation, record_id = OPERATION_INSERT, None
            tasks.append(
                CommitTask(
                    section=section_state.name,
                    collection=collection,
                    operation=operation,
                    row_number=row.row_number,
                    payload=payload,
                    record_id=record_id,
                )
            )
    return tasks
