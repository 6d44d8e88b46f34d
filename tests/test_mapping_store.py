from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from settings_import.fields import BILL_FIELDS, IGNORE
from settings_import.mapping_store import (
    MAPPING_SOURCE_AUTO,
    MAPPING_SOURCE_SAVED,
    JsonFileMappingStore,
    MappingCache,
    MemoryMappingStore,
    mapping_cache_key,
    resolve_mapping,
)

HEADERS = ("name", "cost", "when")


class MappingCacheKeyTests(unittest.TestCase):
    def test_key_includes_namespace_user_and_headers(self):
        self.assertEqual(
            mapping_cache_key("user-1", HEADERS),
            "excel-import-mapping-v2:user-1:name,cost,when",
        )

    def test_user_is_required(self):
        with self.assertRaises(ValueError):
            mapping_cache_key("", HEADERS)


class MappingCacheTests(unittest.TestCase):
    def test_saved_mappings_are_scoped_per_user(self):
        store = MemoryMappingStore()
        MappingCache(store, "alice").save(HEADERS, {"name": "name", "cost": "amount", "when": "due_day"})
        self.assertIsNotNone(MappingCache(store, "alice").load(HEADERS))
        self.assertIsNone(MappingCache(store, "bob").load(HEADERS))
        self.assertIsNone(MappingCache(store, "alice").load(("name", "cost")))

    def test_json_store_survives_reopen(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "mappings.json"
            JsonFileMappingStore(path).put("k", {"cost": "amount"})
            self.assertEqual(JsonFileMappingStore(path).get("k"), {"cost": "amount"})
            self.assertIsNone(JsonFileMappingStore(path).get("missing"))
            self.assertEqual([p.name for p in path.parent.iterdir()], ["mappings.json"])

    def test_json_store_rejects_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "mappings.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(ValueError):
                JsonFileMappingStore(path).get("k")

    def test_returned_mapping_is_a_copy(self):
        store = MemoryMappingStore()
        store.put("k", {"cost": "amount"})
        store.get("k")["cost"] = IGNORE
        self.assertEqual(store.get("k"), {"cost": "amount"})


class ResolveMappingTests(unittest.TestCase):
    def test_auto_when_nothing_saved(self):
        mapping, source = resolve_mapping(HEADERS, BILL_FIELDS, None)
        self.assertEqual(source, MAPPING_SOURCE_AUTO)
        self.assertEqual(mapping["cost"], "amount")

    def test_saved_mapping_is_sanitised(self):
        mapping, source = resolve_mapping(HEADERS, BILL_FIELDS, {"cost": "amount", "when": "bogus"})
        self.assertEqual(source, MAPPING_SOURCE_SAVED)
        self.assertEqual(mapping, {"name": "name", "cost": "amount", "when": IGNORE})


if __name__ == "__main__":
    unittest.main()
