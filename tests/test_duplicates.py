from __future__ import annotations

import unittest

from settings_import.duplicates import (
    MATCH_FUZZY,
    MATCH_IMPORT_KEY,
    DuplicateCandidate,
    find_bill_duplicates,
    find_debt_duplicates,
)


def bill(name: str, *, due_day: int = 1, frequency: str = "monthly", key: str = "") -> DuplicateCandidate:
    return DuplicateCandidate(key, {"name": name, "due_day": due_day, "frequency": frequency})


class BillDuplicateTests(unittest.TestCase):
    def test_import_key_takes_precedence_over_fuzzy(self):
        existing = [
            {"id": "fuzzy", "name": "Council Tax", "due_day": 1, "frequency": "monthly", "import_key": "x"},
            {"id": "keyed", "name": "Renamed", "due_day": 9, "frequency": "yearly", "import_key": "council tax||monthly|1"},
        ]
        matches = find_bill_duplicates([bill("Council Tax", key="council tax||monthly|1")], existing)
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0].existing_id, "keyed")
        self.assertEqual(matches[0].existing_name, "Renamed")
        self.assertEqual(matches[0].match_type, MATCH_IMPORT_KEY)

    def test_fuzzy_match_ignores_case_and_spacing(self):
        existing = [{"id": 7, "name": " council TAX ", "due_day": 1, "frequency": "monthly"}]
        matches = find_bill_duplicates([bill("Council Tax", key="council tax||monthly|1")], existing)
        self.assertEqual(matches[0].existing_id, "7")
        self.assertEqual(matches[0].match_type, MATCH_FUZZY)

    def test_fuzzy_requires_same_day_and_frequency(self):
        existing = [{"id": "a", "name": "Water", "due_day": 20, "frequency": "monthly"}]
        self.assertEqual(find_bill_duplicates([bill("Water", due_day=21)], existing), [])
        self.assertEqual(find_bill_duplicates([bill("Water", due_day=20, frequency="yearly")], existing), [])

    def test_empty_existing_import_key_never_matches(self):
        existing = [{"id": "a", "name": "Other", "due_day": 3, "frequency": "weekly", "import_key": ""}]
        self.assertEqual(find_bill_duplicates([bill("Gym", key="")], existing), [])

    def test_row_index_points_into_candidates(self):
        existing = [{"id": "a", "name": "Water", "due_day": 1, "frequency": "monthly"}]
        matches = find_bill_duplicates([bill("Rent"), bill("Gym"), bill("Water")], existing)
        self.assertEqual([match.row_index for match in matches], [2])


class DebtDuplicateTests(unittest.TestCase):
    def test_fuzzy_on_creditor_and_type(self):
        existing = [{"id": "d1", "creditor_name": "VISA", "debt_type": "credit_card"}]
        rows = [
            DuplicateCandidate("visa|credit_card", {"creditor_name": "Visa", "debt_type": "credit_card"}),
            DuplicateCandidate("visa|loan", {"creditor_name": "Visa", "debt_type": "loan"}),
        ]
        matches = find_debt_duplicates(rows, existing)
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0].row_index, 0)
        self.assertEqual(matches[0].existing_name, "VISA")


if __name__ == "__main__":
    unittest.main()
