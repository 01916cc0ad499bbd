import unittest

from grid.edit_pipeline import acquire_guard
from grid.silo_entries import clear_silo_field, commit_silo_field, get_silo_entries, silo_guard_key
from record_store.memory import InMemoryRecordStore
from sync_session import build_sync_session, close_sync_session


DAY = "2026-10-17"
CONFIG = {"STORE_RETRIES": 0, "STORE_RETRY_DELAY_S": 0}


class _NoopExecutor:
    def submit(self, fn, *args, **kwargs):
        raise AssertionError("silo entries never run background work")

    def shutdown(self, wait=True):
        pass


class SiloEntriesTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecordStore()
        self.session = build_sync_session(
            CONFIG,
            self.store,
            date=DAY,
            plant_unit="CM 220",
            parameters={},
            executor=_NoopExecutor(),
            load=False,
        )

    def tearDown(self):
        close_sync_session(self.session)

    def silo_records(self):
        return self.store.query("ccr_silo_data", filters={"date": DAY, "silo_id": "silo-a"})

    def test_commit_upserts_one_record_per_silo_and_day(self):
        first = commit_silo_field(self.session, self.store, "silo-a", "shift1", "empty_space", "4,5")
        second = commit_silo_field(self.session, self.store, "silo-a", "shift2", "content", "1.250")

        self.assertTrue(first["ok"])
        self.assertEqual(second["record_id"], first["record_id"])
        records = self.silo_records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["shift1_empty_space"], 4.5)
        self.assertEqual(records[0]["shift2_content"], 1250.0)

        entries = get_silo_entries(self.session, self.store)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["silo_id"], "silo-a")
        self.assertIsNone(entries[0]["shift3_content"])

    def test_invalid_input_is_rejected(self):
        self.assertEqual(commit_silo_field(self.session, self.store, "silo-a", "shift4", "content", "1")["state"], "rejected")
        self.assertEqual(commit_silo_field(self.session, self.store, "silo-a", "shift1", "volume", "1")["state"], "rejected")
        self.assertEqual(commit_silo_field(self.session, self.store, "silo-a", "shift1", "content", "full")["state"], "rejected")
        self.assertEqual(self.silo_records(), [])

    def test_commit_while_field_is_saving_is_busy(self):
        acquire_guard(self.session, silo_guard_key("silo-a", "shift1", "content"))
        result = commit_silo_field(self.session, self.store, "silo-a", "shift1", "content", "3")
        self.assertEqual(result["state"], "busy")

    def test_clear_nulls_the_field_while_other_data_remains(self):
        commit_silo_field(self.session, self.store, "silo-a", "shift1", "empty_space", "4")
        commit_silo_field(self.session, self.store, "silo-a", "shift1", "content", "120")

        self.assertEqual(
            clear_silo_field(self.session, self.store, "silo-a", "shift1", "content"),
            {"deleted": True, "full_record": False},
        )
        record = self.silo_records()[0]
        self.assertIsNone(record["shift1_content"])
        self.assertEqual(record["shift1_empty_space"], 4.0)

    def test_clearing_the_last_value_deletes_the_record(self):
        commit_silo_field(self.session, self.store, "silo-a", "shift2", "content", "120")

        self.assertEqual(
            clear_silo_field(self.session, self.store, "silo-a", "shift2", "content"),
            {"deleted": True, "full_record": True},
        )
        self.assertEqual(self.silo_records(), [])
        self.assertEqual(
            clear_silo_field(self.session, self.store, "silo-a", "shift2", "content"),
            {"deleted": False, "full_record": False},
        )


if __name__ == "__main__":
    unittest.main()
