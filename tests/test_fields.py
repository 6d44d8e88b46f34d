from __future__ import annotations

import unittest

from settings_import.fields import (
    BILL_FIELDS,
    DEBT_FIELDS,
    IGNORE,
    auto_detect_mapping,
    build_mapping_signature,
    header_signature,
    override_mapping,
    sanitise_mapping,
    validate_row,
)
from settings_import.layout import RawRow


class AutoDetectMappingTests(unittest.TestCase):
    def test_template_bill_headers(self):
        headers = ["name", "amount", "frequency", "due day", "provider", "bill type", "notes"]
        mapping = auto_detect_mapping(headers, BILL_FIELDS)
        self.assertEqual(
            mapping,
            {
                "name": "name",
                "amount": "amount",
                "frequency": "frequency",
                "due day": "due_day",
                "provider": "provider",
                "bill type": "bill_type",
                "notes": "notes",
            },
        )

    def test_debt_headers_use_debt_catalog(self):
        mapping = auto_detect_mapping(["lender", "type", "balance", "apr"], DEBT_FIELDS)
        self.assertEqual(
            mapping,
            {
                "lender": "creditor_name",
                "type": "debt_type",
                "balance": "current_balance",
                "apr": "apr",
            },
        )

    def test_partial_match_fallback(self):
        mapping = auto_detect_mapping(["monthly cost (gbp)"], BILL_FIELDS)
        self.assertEqual(mapping["monthly cost (gbp)"], "amount")

    def test_mapping_is_total_and_targets_are_unique(self):
        headers = ["name", "bill name", "", "colour", "cost", "price"]
        mapping = auto_detect_mapping(headers, BILL_FIELDS)
        self.assertEqual(set(mapping), set(headers))
        self.assertEqual(mapping["name"], "name")
        self.assertEqual(mapping["bill name"], IGNORE)
        self.assertEqual(mapping[""], IGNORE)
        self.assertEqual(mapping["colour"], IGNORE)
        self.assertEqual(mapping["cost"], "amount")
        self.assertEqual(mapping["price"], IGNORE)
        used = [value for value in mapping.values() if value != IGNORE]
        self.assertEqual(len(used), len(set(used)))

    def test_repeated_header_keeps_first_mapping(self):
        mapping = auto_detect_mapping(["amount", "amount"], BILL_FIELDS)
        self.assertEqual(mapping, {"amount": "amount"})


class MappingOverrideTests(unittest.TestCase):
    def test_override_returns_new_mapping(self):
        original = {"cost": "amount", "who": IGNORE}
        updated = override_mapping(original, "who", "provider", BILL_FIELDS)
        self.assertEqual(updated["who"], "provider")
        self.assertEqual(original["who"], IGNORE)

    def test_override_can_ignore_and_reuse_keys(self):
        mapping = {"a": "name", "b": IGNORE}
        mapping = override_mapping(mapping, "b", "name", BILL_FIELDS)
        self.assertEqual(mapping, {"a": "name", "b": "name"})
        mapping = override_mapping(mapping, "a", IGNORE, BILL_FIELDS)
        self.assertEqual(mapping["a"], IGNORE)

    def test_override_rejects_unknown_header_and_target(self):
        with self.assertRaises(KeyError):
            override_mapping({"a": "name"}, "z", "name", BILL_FIELDS)
        with self.assertRaises(ValueError):
            override_mapping({"a": "name"}, "a", "creditor_name", BILL_FIELDS)

    def test_sanitise_saved_mapping(self):
        saved = {"cost": "amount", "who": "not_a_field", "gone": "notes"}
        mapping = sanitise_mapping(saved, ["cost", "who", "name"], BILL_FIELDS)
        self.assertEqual(mapping, {"cost": "amount", "who": IGNORE, "name": "name"})


class SignatureTests(unittest.TestCase):
    def test_header_signature(self):
        self.assertEqual(header_signature(["name", "amount"]), "name,amount")

    def test_mapping_signature(self):
        signature = build_mapping_signature(["name", "cost", "x"], {"name": "name", "cost": "amount"})
        self.assertEqual(signature, "name:name,cost:amount,x:IGNORE")


class ValidateRowTests(unittest.TestCase):
    MAPPING = {"name": "name", "amount": "amount", "frequency": "frequency", "memo": IGNORE}

    def test_valid_row_collects_mapped_values(self):
        row = RawRow((("name", "Rent"), ("amount", "900"), ("frequency", "Monthly"), ("memo", "x")))
        result = validate_row(row, self.MAPPING, BILL_FIELDS)
        self.assertTrue(result.valid)
        self.assertEqual(result.errors, ())
        self.assertEqual(result.warnings, ("Recommended field missing: Due Day",))
        self.assertEqual(result.data, {"name": "Rent", "amount": "900", "frequency": "Monthly"})

    def test_missing_required_fields_are_errors(self):
        result = validate_row(RawRow((("amount", "900"),)), self.MAPPING, BILL_FIELDS)
        self.assertFalse(result.valid)
        self.assertEqual(
            result.errors,
            ("Missing required field: Name", "Missing required field: Frequency"),
        )

    def test_values_are_not_normalised(self):
        row = RawRow((("name", "Rent"), ("amount", "£900.00"), ("frequency", "every month")))
        result = validate_row(row, self.MAPPING, BILL_FIELDS)
        self.assertEqual(result.data["amount"], "£900.00")
        self.assertEqual(result.data["frequency"], "every month")

    def test_debt_requirements(self):
        mapping = {"creditor": "creditor_name", "kind": "debt_type"}
        result = validate_row(RawRow((("creditor", "Visa"),)), mapping, DEBT_FIELDS)
        self.assertEqual(result.errors, ("Missing required field: Debt Type",))
        self.assertIn("Recommended field missing: Starting Balance", result.warnings)
        self.assertIn("Recommended field missing: Current Balance", result.warnings)


if __name__ == "__main__":
    unittest.main()
