import logging
import os
import tempfile
import unittest

from config_loader import load_config
from runtime.defaults import DEFAULT_COLLECTIONS


def _write_config(directory, text):
    path = os.path.join(directory, "config.yaml")
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(text)
    return path


class ConfigLoaderTests(unittest.TestCase):
    def test_repo_config_loads(self):
        config = load_config("config.yaml")

        self.assertEqual(config["LOG_LEVEL"], logging.INFO)
        self.assertEqual(config["TIMEZONE_NAME"], "Asia/Makassar")
        self.assertEqual(config["STORE_TRANSPORT"], "memory")
        self.assertEqual(config["STORE_BASE_URL"], "http://127.0.0.1:8090")
        self.assertIsNone(config["STORE_AUTH_TOKEN"])
        self.assertEqual(config["STORE_RETRIES"], 2)
        self.assertEqual(config["COLLECTIONS"], DEFAULT_COLLECTIONS)
        self.assertEqual(config["AGGREGATE_DEBOUNCE_S"], 2.0)
        self.assertEqual(config["BULK_BATCH_SIZE"], 5)
        self.assertTrue(config["SUBSCRIBE_TO_CHANGES"])
        self.assertEqual(config["SINGLE_DOT_POLICY"], "thousands")
        self.assertEqual(config["CAPACITY_MATERIALITY"], 0.01)
        self.assertEqual(config["SESSION_PLANT_UNIT"], "Cement Mill 220")
        self.assertIsNone(config["SESSION_DATE"])

    def test_missing_file_raises(self):
        with self.assertRaises(FileNotFoundError):
            load_config("does-not-exist.yaml")

    def test_invalid_values_fall_back_to_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(
                tmpdir,
                "time:\n"
                "  timezone: Mars/Olympus\n"
                "record_store:\n"
                "  transport: carrier-pigeon\n"
                "  retries: -1\n"
                "  retry_delay_s: soon\n"
                "collections:\n"
                "  parameter_data: ccr_parameter_data_v2\n"
                "  unknown: x\n"
                "  footer_data: ''\n"
                "sync:\n"
                "  bulk_batch_size: 0\n"
                "  subscribe_to_changes: 'no'\n"
                "input:\n"
                "  single_dot_policy: guess\n",
            )
            config = load_config(path)

        self.assertEqual(config["TIMEZONE_NAME"], "Asia/Makassar")
        self.assertEqual(config["STORE_TRANSPORT"], "remote")
        self.assertEqual(config["STORE_RETRIES"], 2)
        self.assertEqual(config["STORE_RETRY_DELAY_S"], 1.0)
        self.assertEqual(config["COLLECTIONS"]["parameter_data"], "ccr_parameter_data_v2")
        self.assertEqual(config["COLLECTIONS"]["footer_data"], "ccr_footer_data")
        self.assertNotIn("unknown", config["COLLECTIONS"])
        self.assertEqual(config["BULK_BATCH_SIZE"], 5)
        self.assertFalse(config["SUBSCRIBE_TO_CHANGES"])
        self.assertEqual(config["SINGLE_DOT_POLICY"], "thousands")
        self.assertIsNone(config["SESSION_PLANT_UNIT"])

    def test_session_date_is_normalized(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, "session:\n  plant_unit: CM 220\n  date: 17/10/2026\n")
            config = load_config(path)
        self.assertEqual(config["SESSION_DATE"], "2026-10-17")

    def test_unusable_values_raise(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = _write_config(tmpdir, "record_store:\n  base_url: ftp://store.local\n")
            with self.assertRaises(ValueError):
                load_config(path)

            path = _write_config(tmpdir, "session:\n  date: 31/02/2026\n")
            with self.assertRaises(ValueError):
                load_config(path)


if __name__ == "__main__":
    unittest.main()
