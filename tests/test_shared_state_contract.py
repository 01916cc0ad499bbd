import threading
import unittest

from ccr_sync import build_initial_shared_data, build_record_store
from config_loader import load_config
from record_store.client import RecordStoreClient
from record_store.memory import InMemoryRecordStore


class SharedStateContractTests(unittest.TestCase):
    def test_build_initial_shared_data_contains_required_runtime_keys(self):
        config = load_config("config.yaml")
        shared_data = build_initial_shared_data(config)

        required_keys = {
            "session_logs",
            "log_lock",
            "store_transport",
            "sync_status",
            "lock",
            "shutdown_event",
            "log_file_path",
        }
        self.assertTrue(required_keys.issubset(shared_data.keys()))
        self.assertIsInstance(shared_data["shutdown_event"], threading.Event)
        self.assertFalse(shared_data["shutdown_event"].is_set())
        self.assertEqual(shared_data["session_logs"], [])
        self.assertEqual(shared_data["store_transport"], config["STORE_TRANSPORT"])
        self.assertEqual(shared_data["sync_status"]["reload_count"], 0)

    def test_record_store_follows_transport(self):
        self.assertIsInstance(build_record_store({"STORE_TRANSPORT": "memory"}), InMemoryRecordStore)

        client = build_record_store(
            {
                "STORE_TRANSPORT": "remote",
                "STORE_BASE_URL": "http://store.local/",
                "STORE_AUTH_TOKEN": None,
                "STORE_TIMEOUT_S": 12.0,
            }
        )
        self.assertIsInstance(client, RecordStoreClient)
        self.assertEqual(client.base_url, "http://store.local")
        self.assertEqual(client.timeout_s, 12.0)


if __name__ == "__main__":
    unittest.main()
