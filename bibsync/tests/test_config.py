"""
Unit tests for configuration system.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from bibsync.config.settings import Settings, get_settings, reset_settings


class TestSettings(unittest.TestCase):
    """Test application settings."""

    def setUp(self):
        """Reset settings before each test."""
        reset_settings()

    def tearDown(self):
        """Reset settings after each test."""
        reset_settings()

    def test_default_settings(self):
        """Test default settings values."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        self.assertEqual(settings.api_host, "localhost")
        self.assertEqual(settings.api_port, 8120)
        self.assertEqual(settings.user_id, "local-user")
        self.assertEqual(settings.retry_max_attempts, 5)
        self.assertEqual(settings.retry_base_delay_seconds, 1.0)
        self.assertEqual(settings.queue_max_retries, 5)
        self.assertFalse(settings.auto_sync)
        self.assertEqual(settings.log_level, "INFO")
        self.assertEqual(settings.version, "0.1.0")

    def test_derived_paths(self):
        """Database and cache default to locations under the data directory."""
        with patch.dict(os.environ, {"DATA_DIR": "/srv/bibsync"}):
            settings = Settings(_env_file=None)

        self.assertEqual(settings.resolved_database_path, Path("/srv/bibsync/library.db"))
        self.assertEqual(settings.resolved_cache_dir, Path("/srv/bibsync/cache"))

    def test_explicit_paths_win(self):
        with patch.dict(os.environ, {
            "DATA_DIR": "/srv/bibsync",
            "DATABASE_PATH": "/var/db/lib.db",
            "CACHE_DIR": "/var/cache/pdfs",
        }):
            settings = Settings(_env_file=None)

        self.assertEqual(settings.resolved_database_path, Path("/var/db/lib.db"))
        self.assertEqual(settings.resolved_cache_dir, Path("/var/cache/pdfs"))

    def test_path_expansion(self):
        """Test that paths are expanded correctly."""
        with patch.dict(os.environ, {
            "DATA_DIR": "~/custom/bibsync",
            "CACHE_DIR": "~/custom/cache",
        }):
            settings = Settings(_env_file=None)

            self.assertFalse(str(settings.data_dir).startswith("~"))
            self.assertFalse(str(settings.cache_dir).startswith("~"))
            self.assertTrue("custom" in str(settings.data_dir))
            self.assertTrue("cache" in str(settings.cache_dir))

    def test_env_override(self):
        """Test that environment variables override defaults."""
        with patch.dict(os.environ, {
            "API_PORT": "9000",
            "USER_ID": "alice",
            "QUEUE_MAX_RETRIES": "3",
            "AUTO_SYNC": "true",
            "LOG_LEVEL": "debug",
        }):
            settings = Settings(_env_file=None)

            self.assertEqual(settings.api_port, 9000)
            self.assertEqual(settings.user_id, "alice")
            self.assertEqual(settings.queue_max_retries, 3)
            self.assertTrue(settings.auto_sync)
            self.assertEqual(settings.log_level, "DEBUG")

    def test_invalid_log_level(self):
        """Test that invalid log level raises error."""
        with self.assertRaises(ValueError):
            with patch.dict(os.environ, {"LOG_LEVEL": "INVALID"}):
                Settings(_env_file=None)

    def test_invalid_retry_settings(self):
        with self.assertRaises(ValueError):
            with patch.dict(os.environ, {"QUEUE_MAX_RETRIES": "0"}):
                Settings(_env_file=None)

    def test_get_settings_singleton(self):
        """Test that get_settings returns the same instance."""
        settings1 = get_settings()
        settings2 = get_settings()

        self.assertIs(settings1, settings2)

    def test_reset_settings(self):
        """Test that reset_settings clears the singleton."""
        settings1 = get_settings()
        reset_settings()
        settings2 = get_settings()

        self.assertIsNot(settings1, settings2)

    def test_ensure_directories(self):
        """Test that ensure_directories creates the storage layout."""
        with tempfile.TemporaryDirectory() as temp_dir:
            with patch.dict(os.environ, {
                "DATA_DIR": f"{temp_dir}/data",
                "DATABASE_PATH": f"{temp_dir}/db/library.db",
                "LOG_FILE": f"{temp_dir}/logs/bibsync.log",
            }):
                settings = Settings(_env_file=None)
                settings.ensure_directories()

            self.assertTrue(Path(temp_dir, "data").is_dir())
            self.assertTrue(Path(temp_dir, "db").is_dir())
            self.assertTrue(Path(temp_dir, "data", "cache").is_dir())
            self.assertTrue(Path(temp_dir, "logs").is_dir())


if __name__ == "__main__":
    unittest.main()
