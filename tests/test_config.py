from __future__ import annotations

import unittest

from settings_import.config import (
    DEFAULT_STORE,
    ConfigError,
    ImportSettings,
)


class ImportSettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = ImportSettings.from_env({})
        self.assertEqual(settings.user_id, "local")
        self.assertEqual(settings.store, DEFAULT_STORE)
        self.assertIsNone(settings.api_key)
        self.assertEqual(settings.timeout_seconds, 30.0)

    def test_reads_environment(self):
        settings = ImportSettings.from_env(
            {
                "SETTINGS_IMPORT_USER": " alice ",
                "SETTINGS_IMPORT_STORE": "https://db.example",
                "SETTINGS_IMPORT_API_KEY": "k",
                "SETTINGS_IMPORT_MAPPING_CACHE": "/tmp/m.json",
                "SETTINGS_IMPORT_TIMEOUT": "2.5",
            }
        )
        self.assertEqual(settings.user_id, "alice")
        self.assertEqual(settings.store, "https://db.example")
        self.assertEqual(settings.api_key, "k")
        self.assertEqual(settings.mapping_cache, "/tmp/m.json")
        self.assertEqual(settings.timeout_seconds, 2.5)

    def test_blank_values_fall_back_to_defaults(self):
        settings = ImportSettings.from_env({"SETTINGS_IMPORT_USER": "  ", "SETTINGS_IMPORT_TIMEOUT": ""})
        self.assertEqual(settings.user_id, "local")
        self.assertEqual(settings.timeout_seconds, 30.0)

    def test_invalid_timeout(self):
        with self.assertRaises(ConfigError):
            ImportSettings.from_env({"SETTINGS_IMPORT_TIMEOUT": "soon"})
        with self.assertRaises(ConfigError):
            ImportSettings.from_env({"SETTINGS_IMPORT_TIMEOUT": "0"})

    def test_overrides_skip_empty_values(self):
        settings = ImportSettings.from_env({"SETTINGS_IMPORT_USER": "alice"})
        updated = settings.with_overrides(user_id=None, store="memory")
        self.assertEqual(updated.user_id, "alice")
        self.assertEqual(updated.store, "memory")
        with self.assertRaises(ConfigError):
            settings.with_overrides(colour="blue")


if __name__ == "__main__":
    unittest.main()
