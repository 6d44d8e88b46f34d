from __future__ import annotations

import json
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from openpyxl import Workbook

from settings_import.workbook import OLE2_SIGNATURE

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "settings_import.cli"]

COUNCIL_TAX_ROWS = [
    ["Bills"],
    ["Name", "Amount", "Frequency", "Due Day"],
    ["Council Tax", 180, "Monthly", 1],
]


def write_workbook(path: Path, rows: list[list], sheet: str = "Settings") -> Path:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


def run_cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
    )


class SettingsImportCliTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmpdir.name)
        self.store_args = [
            "--store",
            str(self.tmp / "records.json"),
            "--mapping-cache",
            str(self.tmp / "mappings.json"),
            "--user",
            "tester",
        ]

    def tearDown(self):
        self._tmpdir.cleanup()

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertRegex(proc.stdout.strip(), r"^\d+\.\d+\.\d+$")

    def test_template_refuses_overwrite_without_force(self):
        output = self.tmp / "template.xlsx"
        first = run_cli("template", "--output", str(output))
        self.assertEqual(first.returncode, 0, first.stderr)
        self.assertIn("Template written:", first.stderr)
        self.assertTrue(output.exists())

        second = run_cli("template", "--output", str(output))
        self.assertEqual(second.returncode, 1)
        self.assertIn("Refusing to overwrite", second.stderr)

        forced = run_cli("template", "--output", str(output), "--force")
        self.assertEqual(forced.returncode, 0, forced.stderr)

    def test_import_then_reimport_updates(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS)

        first = run_cli("import", str(workbook), *self.store_args, "--json")
        self.assertEqual(first.returncode, 0, first.stderr)
        summary = json.loads(first.stdout)
        self.assertEqual(summary["contract"]["name"], "settings_import.import_summary")
        self.assertEqual(summary["results"]["bills"], {"added": 1, "updated": 0, "skipped": 0})
        self.assertTrue(summary["audit_logged"])
        self.assertEqual(summary["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")

        second = run_cli("import", str(workbook), *self.store_args, "--json")
        self.assertEqual(second.returncode, 0, second.stderr)
        self.assertEqual(json.loads(second.stdout)["results"]["bills"]["updated"], 1)

        records = json.loads((self.tmp / "records.json").read_text(encoding="utf-8"))
        self.assertEqual(len(records["bills"]), 1)
        self.assertEqual(records["bills"][0]["user_id"], "tester")

        logs = run_cli("logs", "--store", str(self.tmp / "records.json"), "--user", "tester", "--json")
        self.assertEqual(logs.returncode, 0, logs.stderr)
        entries = json.loads(logs.stdout)
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[0]["file_name"], "budget.xlsx")

    def test_import_skip_leaves_existing_records(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS)
        run_cli("import", str(workbook), *self.store_args, "--json")
        proc = run_cli("import", str(workbook), *self.store_args, "--on-duplicate", "skip", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["results"]["bills"]["skipped"], 1)

    def test_preview_json_does_not_write(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS)
        proc = run_cli("preview", str(workbook), *self.store_args, "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        report = json.loads(proc.stdout)
        self.assertEqual(report["layout"], "SECTION_TABLES")
        self.assertEqual(report["sections"]["bills"]["rows_valid"], 1)
        self.assertFalse((self.tmp / "records.json").exists())
        self.assertFalse((self.tmp / "mappings.json").exists())

    def test_mapping_override(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS)
        proc = run_cli("preview", str(workbook), *self.store_args, "--map", "bills:Due Day=IGNORE", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        section = json.loads(proc.stdout)["sections"]["bills"]
        self.assertEqual(section["mapping"]["due day"], "IGNORE")
        self.assertEqual(section["mapping_source"], "manual")

    def test_malformed_mapping_override_returns_exit_1(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS)
        proc = run_cli("preview", str(workbook), *self.store_args, "--map", "bills-due-day")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("section:header=field", proc.stderr)

    def test_invalid_rows_return_exit_4(self):
        rows = COUNCIL_TAX_ROWS + [["", 20, "Monthly", 3]]
        workbook = write_workbook(self.tmp / "budget.xlsx", rows)
        proc = run_cli("import", str(workbook), *self.store_args, "--json")
        self.assertEqual(proc.returncode, 4, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["results"]["bills"]["added"], 1)

    def test_missing_settings_sheet_returns_exit_2(self):
        workbook = write_workbook(self.tmp / "budget.xlsx", COUNCIL_TAX_ROWS, sheet="Budget")
        proc = run_cli("preview", str(workbook), *self.store_args)
        self.assertEqual(proc.returncode, 2)
        self.assertIn("Available sheets: Budget", proc.stderr)

    def test_legacy_workbook_returns_exit_2(self):
        legacy = self.tmp / "old.xls"
        legacy.write_bytes(OLE2_SIGNATURE + b"\x00" * 64)
        proc = run_cli("preview", str(legacy), *self.store_args)
        self.assertEqual(proc.returncode, 2)
        self.assertIn(".xlsx", proc.stderr)

    def test_no_sections_returns_exit_3(self):
        workbook = write_workbook(self.tmp / "notes.xlsx", [["Shopping list"], ["Milk"], ["Eggs"]])
        proc = run_cli("preview", str(workbook), *self.store_args)
        self.assertEqual(proc.returncode, 3, proc.stderr)

    def test_missing_file_and_bad_arguments_return_exit_1(self):
        missing = run_cli("preview", str(self.tmp / "nope.xlsx"), *self.store_args)
        self.assertEqual(missing.returncode, 1)
        self.assertIn("File not found", missing.stderr)

        bad = run_cli("import")
        self.assertEqual(bad.returncode, 1)

    def test_logs_limit_must_be_positive(self):
        for limit in ("0", "-1"):
            with self.subTest(limit=limit):
                proc = run_cli("logs", "--store", str(self.tmp / "records.json"), "--limit", limit)
                self.assertEqual(proc.returncode, 1)
                self.assertIn("must be at least 1", proc.stderr)

    def test_logs_empty(self):
        proc = run_cli("logs", "--store", str(self.tmp / "records.json"), "--user", "tester")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("No imports yet.", proc.stdout)


if __name__ == "__main__":
    unittest.main()
