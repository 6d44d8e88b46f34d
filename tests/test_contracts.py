from __future__ import annotations

import unittest

from settings_import import __version__
from settings_import.contracts import (
    CONTRACT_VERSIONS,
    build_contract,
    build_import_log,
    build_import_summary,
    build_preview_report,
)
from settings_import.wizard import (
    OUTCOME_ADDED,
    OUTCOME_SKIPPED,
    CommitFailure,
    ImportFinished,
    ImportResults,
    ImportStarted,
    MappingStarted,
    PreviewRequested,
    RowCommitted,
    WizardState,
    WorkbookLoaded,
    transition,
)

GRID = (
    ("Bills", "", ""),
    ("Name", "Amount", "Frequency"),
    ("Rent", "900", "Monthly"),
    ("", "10", "Weekly"),
)


def preview_state() -> WizardState:
    state = transition(WizardState(), WorkbookLoaded("budget.xlsx", "Settings", ("Settings",), GRID))
    state = transition(state, MappingStarted(existing={"bills": [{"id": "b1", "name": "Rent", "due_day": 1, "frequency": "monthly"}]}))
    return transition(state, PreviewRequested())


class ContractTests(unittest.TestCase):
    def test_contract_versions(self):
        for name in CONTRACT_VERSIONS:
            with self.subTest(name=name):
                contract = build_contract(name)
                self.assertEqual(contract["name"], name)
                self.assertEqual(contract["version"], CONTRACT_VERSIONS[name])

    def test_preview_report(self):
        report = build_preview_report(preview_state())
        self.assertEqual(report["contract"]["name"], "settings_import.preview")
        self.assertEqual(report["schema_version"], report["contract"]["version"])
        self.assertEqual(report["tool_version"], __version__)
        self.assertEqual(report["layout"], "SECTION_TABLES")
        bills = report["sections"]["bills"]
        self.assertEqual((bills["rows_total"], bills["rows_valid"], bills["rows_invalid"]), (2, 1, 1))
        self.assertEqual(bills["duplicates"], 1)
        self.assertEqual(bills["rows"][0]["duplicate"]["existing_id"], "b1")
        self.assertEqual(bills["rows"][0]["duplicate_action"], "update")
        self.assertEqual(bills["rows"][1]["errors"], ["Missing required field: Name"])
        self.assertIsNone(bills["rows"][1]["duplicate"])
        self.assertEqual(report["run_summary"]["status"], "invalid_rows")
        self.assertEqual(report["run_summary"]["metrics"]["rows_invalid"], 1)

    def test_import_log_counters(self):
        results = (
            ImportResults()
            .record("bills", OUTCOME_ADDED)
            .record("subscriptions", OUTCOME_ADDED)
            .record("debts", OUTCOME_SKIPPED, CommitFailure("debts", 9, "insert", "boom"))
        )
        log = build_import_log(
            user_id="u1",
            file_name="budget.xlsx",
            sheet_name="Settings",
            layout="SECTION_TABLES",
            mapping_signature="name:name",
            results=results,
        )
        self.assertEqual(log["bills_added"], 1)
        self.assertEqual(log["subs_added"], 1)
        self.assertEqual(log["debts_skipped"], 1)
        self.assertEqual(log["settings_sheet_name"], "Settings")
        self.assertEqual(log["layout_detected"], "SECTION_TABLES")
        self.assertIn("imported_at", log)
        for column in ("contract", "sheet_name", "layout", "created_at"):
            self.assertNotIn(column, log)
        self.assertEqual(log["details"]["contract"]["name"], "settings_import.import_log")
        self.assertEqual(
            log["details"]["failures"],
            [{"section": "debts", "row_number": 9, "operation": "insert", "reason": "boom"}],
        )

    def test_import_summary(self):
        state = transition(preview_state(), ImportStarted())
        state = transition(state, RowCommitted("bills", "updated"))
        state = transition(state, ImportFinished())
        summary = build_import_summary(state, audit_logged=True)
        self.assertEqual(summary["results"]["bills"], {"added": 0, "updated": 1, "skipped": 0})
        self.assertEqual(summary["run_summary"]["status"], "ok")
        self.assertTrue(summary["audit_logged"])


if __name__ == "__main__":
    unittest.main()
