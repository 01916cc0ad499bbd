import unittest
from unittest.mock import patch

from capacity.deriver import (
    MONTHLY_COLUMNS,
    capacity_changed,
    compute_capacity,
    get_monthly_capacity,
    recalculate_capacity,
    sync_all_history,
    sync_capacity,
)
from capacity.moisture import average_moisture, hourly_moisture, is_moisture_relevant, moisture_parameter_ids
from record_store.memory import InMemoryRecordStore


DAY = "2026-10-17"
UNIT = "CM 220"
CONFIG = {"STORE_RETRIES": 0, "STORE_RETRY_DELAY_S": 0, "CAPACITY_MATERIALITY": 0.01}

SETTINGS = [
    {"id": "h_gyp", "parameter": "H2O Gypsum (%)", "unit": UNIT, "category": "Tonasa 2/3"},
    {"id": "s_gyp", "parameter": "Set. Feeder Gypsum (%)", "unit": UNIT, "category": "Tonasa 2/3"},
    {"id": "h_lst", "parameter": "H2O Limestone (%)", "unit": UNIT, "category": "Tonasa 2/3"},
    {"id": "s_lst", "parameter": "Set. Feeder Limestone (%)", "unit": UNIT, "category": "Tonasa 2/3"},
]


class MoistureTests(unittest.TestCase):
    def test_relevant_parameter_names(self):
        self.assertTrue(is_moisture_relevant("H2O Trass (%)"))
        self.assertTrue(is_moisture_relevant("Set. Feeder Gypsum (%)"))
        self.assertFalse(is_moisture_relevant("Feed Rate (t/h)"))
        self.assertFalse(is_moisture_relevant(None))

    def test_hours_without_a_complete_pair_are_left_out(self):
        pair_ids = moisture_parameter_ids({"H2O Gypsum (%)": "h", "Set. Feeder Gypsum (%)": "s"})
        self.assertEqual(pair_ids["gypsum"], ("h", "s"))
        self.assertEqual(pair_ids["trass"], (None, None))

        records = {
            "h": {"hour1": 8, "hour2": 10, "hour3": 0},
            "s": {"hour1": 5, "hour2": None, "hour3": 5},
        }
        totals = hourly_moisture(records, pair_ids)

        self.assertEqual(totals, {1: 0.4, 3: 0.0})
        self.assertAlmostEqual(average_moisture(totals), 0.2)
        self.assertEqual(average_moisture({}), 0.0)

    def test_pairs_add_up_within_an_hour(self):
        pair_ids = {"gypsum": ("h1", "s1"), "limestone": ("h2", "s2")}
        records = {"h1": {"hour5": 10}, "s1": {"hour5": 20}, "h2": {"hour5": 4}, "s2": {"hour5": 50}}
        self.assertEqual(hourly_moisture(records, pair_ids), {5: 4.0})


class CapacityComputationTests(unittest.TestCase):
    def test_dry_production(self):
        self.assertEqual(compute_capacity(1000, 2.5), {"wet": 1000.0, "moisture": 2.5, "dry": 975.0})
        self.assertEqual(compute_capacity(None, None), {"wet": 0.0, "moisture": 0.0, "dry": 0.0})

    def test_materiality_threshold(self):
        existing = {"wet": 1000.0, "moisture": 2.5, "dry": 975.0}
        self.assertFalse(capacity_changed(existing, {"wet": 1000.005, "moisture": 2.5, "dry": 975.0}, 0.01))
        self.assertTrue(capacity_changed(existing, {"wet": 1000.02, "moisture": 2.5, "dry": 975.0}, 0.01))
        self.assertTrue(capacity_changed({"wet": None}, existing, 0.01))


class SyncCapacityTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryRecordStore()
        self.payload = {"date": DAY, "plant_unit": UNIT, "plant_category": "Tonasa 2/3", "wet": 1000.004, "moisture": 2.5, "dry": 975.0}

    def test_create_then_skip_immaterial_change(self):
        created = sync_capacity(self.store, CONFIG, self.payload)
        self.assertEqual(created["action"], "created")
        self.assertEqual(created["record"]["wet"], 1000.0)

        with patch.object(self.store, "update") as update_mock:
            unchanged = sync_capacity(self.store, CONFIG, {**self.payload, "wet": 1000.001})
        self.assertEqual(unchanged["action"], "unchanged")
        update_mock.assert_not_called()

    def test_material_change_updates_the_record(self):
        sync_capacity(self.store, CONFIG, self.payload)
        updated = sync_capacity(self.store, CONFIG, {**self.payload, "wet": 1200.0, "dry": 1170.0})

        self.assertEqual(updated["action"], "updated")
        records = self.store.query("monitoring_production_capacity")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["wet"], 1200.0)


def _seeded_store():
    return InMemoryRecordStore(
        {
            "parameter_settings": SETTINGS,
            "ccr_material_usage": [
                {"date": DAY, "plant_unit": UNIT, "shift": "shift1", "plant_category": "Tonasa 2/3", "total_production": 600},
                {"date": DAY, "plant_unit": UNIT, "shift": "shift2", "plant_category": "Tonasa 2/3", "total_production": 400},
                {"date": "2026-10-16", "plant_unit": UNIT, "shift": "shift1", "plant_category": "Tonasa 2/3", "total_production": 500},
            ],
            "ccr_parameter_data": [
                {"date": DAY, "plant_unit": UNIT, "parameter_id": "h_gyp", "hour1": 10, "hour2": 10},
                {"date": DAY, "plant_unit": UNIT, "parameter_id": "s_gyp", "hour1": 25, "hour2": 25},
                {"date": DAY, "plant_unit": UNIT, "parameter_id": "h_lst", "hour1": 5},
            ],
        }
    )


class RecalculateCapacityTests(unittest.TestCase):
    def test_recalculation_syncs_wet_moisture_and_dry(self):
        store = _seeded_store()

        state = recalculate_capacity(store, CONFIG, "17/10/2026", UNIT)

        self.assertFalse(state["skipped"])
        self.assertEqual(state["action"], "created")
        self.assertEqual(state["plant_category"], "Tonasa 2/3")
        self.assertEqual(state["wet"], 1000.0)
        self.assertEqual(state["moisture"], 2.5)
        self.assertEqual(state["dry"], 975.0)

        records = store.query("monitoring_production_capacity", filters={"date": DAY, "plant_unit": UNIT})
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["dry"], 975.0)

        again = recalculate_capacity(store, CONFIG, DAY, UNIT)
        self.assertEqual(again["action"], "unchanged")

    def test_no_category_skips_the_sync(self):
        store = InMemoryRecordStore()

        state = recalculate_capacity(store, CONFIG, DAY, "CM 999")

        self.assertTrue(state["skipped"])
        self.assertIsNone(state["action"])
        self.assertEqual(store.query("monitoring_production_capacity"), [])

    def test_history_sync_recomputes_every_unique_key(self):
        store = _seeded_store()
        progress = []

        with patch("runtime.batching.time.sleep"):
            processed = sync_all_history(store, CONFIG, on_progress=lambda *args: progress.append(args))

        self.assertEqual(processed, 2)
        self.assertEqual(progress[-1], (3, 3, "Sync completed!"))
        records = store.query("monitoring_production_capacity", sort="date")
        self.assertEqual([record["date"] for record in records], ["2026-10-16", DAY])
        self.assertEqual(records[0]["wet"], 500.0)
        self.assertEqual(records[0]["moisture"], 0.0)

    def test_history_sync_without_usage_reports_no_data(self):
        progress = []
        self.assertEqual(sync_all_history(InMemoryRecordStore(), CONFIG, on_progress=lambda *args: progress.append(args)), 0)
        self.assertEqual(progress[-1], (0, 0, "No data found."))


class MonthlyCapacityTests(unittest.TestCase):
    def test_month_frame_is_sorted_and_numeric(self):
        store = InMemoryRecordStore(
            {
                "monitoring_production_capacity": [
                    {"date": "2026-10-20", "plant_unit": UNIT, "plant_category": "Tonasa 2/3", "wet": "900", "dry": 880, "moisture": 2.2},
                    {"date": "2026-10-01", "plant_unit": UNIT, "plant_category": "Tonasa 2/3", "wet": 1000, "dry": 975, "moisture": 2.5},
                    {"date": "2026-09-30", "plant_unit": UNIT, "plant_category": "Tonasa 2/3", "wet": 1, "dry": 1, "moisture": 0},
                    {"date": "2026-10-05", "plant_unit": "CM 320", "plant_category": "Tonasa 4", "wet": 1, "dry": 1, "moisture": 0},
                ]
            }
        )

        frame = get_monthly_capacity(store, CONFIG, "2026-10", UNIT)

        self.assertEqual(list(frame.columns), MONTHLY_COLUMNS)
        self.assertEqual(list(frame["date"]), ["2026-10-01", "2026-10-20"])
        self.assertEqual(frame.loc[1, "wet"], 900.0)

    def test_empty_month(self):
        frame = get_monthly_capacity(InMemoryRecordStore(), CONFIG, "2026-10", UNIT)
        self.assertTrue(frame.empty)
        self.assertEqual(list(frame.columns), MONTHLY_COLUMNS)


if __name__ == "__main__":
    unittest.main()
