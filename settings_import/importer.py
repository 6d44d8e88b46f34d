"""
importer.py — ImportSession, the I/O shell around the wizard state machine

The session owns the side effects the pure ``wizard.transition`` refuses to
perform:

  upload              read the workbook and its Settings sheet
  proceed_to_mapping  snapshot existing records, read saved mappings
  proceed_to_preview  persist confirmed mappings
  run_import          perform writes one row at a time, then the audit log

Typical use:

    session = ImportSession(store, user_id="u-1")
    session.upload("budget.xlsx")
    session.proceed_to_mapping()
    session.proceed_to_preview()
    results = session.run_import()
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from settings_import.contracts import build_import_log
from settings_import.fields import build_mapping_signature
from settings_import.layout import SECTION_BILLS
from settings_import.mapping_store import MappingCache, MappingStore, MemoryMappingStore
from settings_import.record_store import RecordStore, RecordStoreError
from settings_import.workbook import WorkbookSource, load_settings_grid
from settings_import.wizard import (
    OPERATION_SKIP,
    OPERATION_UPDATE,
    OUTCOME_ADDED,
    OUTCOME_SKIPPED,
    OUTCOME_UPDATED,
    SECTION_KINDS,
    STEP_DONE,
    Back,
    CommitFailure,
    CommitTask,
    DuplicateActionChosen,
    ImportFinished,
    ImportResults,
    ImportStarted,
    MappingChanged,
    MappingStarted,
    PreviewRequested,
    RowCommitted,
    WizardState,
    WorkbookLoaded,
    plan_commit,
    transition,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ImportSession:
    def __init__(
        self,
        store: RecordStore,
        user_id: str,
        *,
        mapping_store: MappingStore | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if not user_id:
            raise ValueError("ImportSession needs a user id.")
        self.store = store
        self.user_id = user_id
        self.mappings = MappingCache(mapping_store or MemoryMappingStore(), user_id)
        self.on_progress = on_progress
        self.state = WizardState()
        self.audit_log: dict[str, Any] | None = None

    def dispatch(self, event: object) -> WizardState:
        self.state = transition(self.state, event)
        return self.state

    # ── steps ────────────────────────────────────────────────────────────────

    def upload(self, source: WorkbookSource, file_name: str | None = None) -> WizardState:
        settings = load_settings_grid(source, file_name)
        logger.info("Loaded sheet %r from %s", settings.sheet_name, settings.file_name)
        return self.dispatch(
            WorkbookLoaded(
                file_name=settings.file_name,
                sheet_name=settings.sheet_name,
                available_sheets=settings.available_sheets,
                grid=settings.grid,
            )
        )

    def proceed_to_mapping(self) -> WizardState:
        present = self.state.sections.present()
        existing: dict[str, list[dict[str, Any]]] = {}
        saved: dict[str, dict[str, str] | None] = {}
        for name in present:
            collection = SECTION_KINDS[name].collection
            if collection not in existing:
                existing[collection] = self.store.list_records(collection, self.user_id)
            table = self.state.sections.get(name)
            saved[name] = self._load_saved_mapping(name, table.headers) if table is not None else None
        return self.dispatch(MappingStarted(existing=existing, saved_mappings=saved))

    def _load_saved_mapping(self, section: str, headers) -> dict[str, str] | None:
        try:
            return self.mappings.load(headers)
        except (OSError, ValueError) as exc:
            # An unreadable cache falls back to auto-detection.
            logger.warning("Could not read saved %s mapping: %s", section, exc)
            return None

    def update_mapping(self, section: str, header: str, target_key: str) -> WizardState:
        return self.dispatch(MappingChanged(section, header, target_key))

    def proceed_to_preview(self) -> WizardState:
        state = self.dispatch(PreviewRequested())
        for section_state in state.active_sections():
            try:
                self.mappings.save(section_state.table.headers, section_state.mapping)
            except (OSError, ValueError) as exc:
                logger.warning("Could not save %s mapping: %s", section_state.name, exc)
        return state

    def set_duplicate_action(self, section: str, row_index: int, action: str) -> WizardState:
        return self.dispatch(DuplicateActionChosen(section, row_index, action))

    def set_all_duplicate_actions(self, action: str) -> WizardState:
        for section_state in self.state.active_sections():
            for index, row in enumerate(section_state.rows):
                if row.duplicate is not None:
                    self.set_duplicate_action(section_state.name, index, action)
        return self.state

    def back(self) -> WizardState:
        return self.dispatch(Back())

    # ── commit ───────────────────────────────────────────────────────────────

    def _commit(self, task: CommitTask) -> tuple[str, CommitFailure | None]:
        if task.operation == OPERATION_SKIP:
            return OUTCOME_SKIPPED, None
        payload = dict(task.payload)
        payload["user_id"] = self.user_id
        try:
            if task.operation == OPERATION_UPDATE:
                self.store.update(task.collection, task.record_id, payload)
                return OUTCOME_UPDATED, None
            self.store.insert(task.collection, payload)
            return OUTCOME_ADDED, None
        except RecordStoreError as exc:
            logger.warning(
                "Row %s in %s failed to %s: %s", task.row_number, task.section, task.operation, exc
            )
            return OUTCOME_SKIPPED, CommitFailure(
                section=task.section,
                row_number=task.row_number,
                operation=task.operation,
                reason=str(exc),
            )

    def run_import(self) -> ImportResults:
        tasks = plan_commit(self.state)
        self.dispatch(ImportStarted())
        self._report_progress()
        for task in tasks:
            outcome, failure = self._commit(task)
            self.dispatch(RowCommitted(task.section, outcome, failure))
            self._report_progress()
        state = self.dispatch(ImportFinished())
        self._write_audit_log()
        results = state.results or ImportResults()
        logger.info("Import of %s finished: %s", state.file_name, results.as_dict())
        return results

    def _report_progress(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.state.processed, self.state.total)

    def _write_audit_log(self) -> None:
        state = self.state
        if state.step != STEP_DONE or state.results is None:
            return
        bills = state.section(SECTION_BILLS)
        signature = build_mapping_signature(bills.table.headers, bills.mapping) if bills else ""
        payload = build_import_log(
            user_id=self.user_id,
            file_name=state.file_name,
            sheet_name=state.sheet_name,
            layout=state.layout,
            mapping_signature=signature,
            results=state.results,
        )
        try:
            self.audit_log = self.store.insert_import_log(payload)
        except RecordStoreError as exc:
            # A missing audit entry never fails the import.
            logger.warning("Could not write import log for %s: %s", state.file_name, exc)
            self.audit_log = None
