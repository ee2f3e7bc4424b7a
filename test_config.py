from __future__ import annotations

import os
import unittest
from unittest import mock

from lookatni import config
from lookatni.constants import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_MAX_FILE_SIZE


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(config.marker_preset(), "default")
            self.assertEqual(config.max_file_size(), DEFAULT_MAX_FILE_SIZE)
            self.assertEqual(config.exclude_patterns(), list(DEFAULT_EXCLUDE_PATTERNS))
            self.assertEqual(config.conflict_resolution(), "skip")
            self.assertEqual(config.encoding(), "utf-8")
            self.assertEqual(config.log_level(), "WARNING")

    def test_overrides(self):
        env = {
            "LOOKATNI_MARKER_PRESET": "html",
            "LOOKATNI_MAX_FILE_SIZE": "-1",
            "LOOKATNI_EXCLUDE": "*.log, tmp/* ,",
            "LOOKATNI_CONFLICT": "Rename",
            "LOOKATNI_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(config.marker_preset(), "html")
            self.assertEqual(config.max_file_size(), -1)
            self.assertEqual(config.exclude_patterns(), ["*.log", "tmp/*"])
            self.assertEqual(config.conflict_resolution(), "rename")
            self.assertEqual(config.log_level(), "DEBUG")

    def test_bad_values(self):
        with mock.patch.dict(os.environ, {"LOOKATNI_MAX_FILE_SIZE": "lots"}, clear=True):
            with self.assertRaises(ValueError):
                config.max_file_size()
        with mock.patch.dict(os.environ, {"LOOKATNI_CONFLICT": "maybe"}, clear=True):
            with self.assertRaises(ValueError):
                config.conflict_resolution()


if __name__ == "__main__":
    unittest.main()
