import unittest

from grid.hour_grid import (
    build_day_grid,
    confirmed_cells_from_grid,
    get_cell,
    grid_snapshot,
    grid_to_frame,
    set_cell,
)


PARAMETERS = {
    "p1": {"id": "p1", "parameter": "Feed Rate (t/h)", "data_type": "number"},
    "p2": {"id": "p2", "parameter": "Remarks", "data_type": "text"},
}


class BuildDayGridTests(unittest.TestCase):
    def test_every_parameter_gets_a_row(self):
        records = [{"id": "r1", "parameter_id": "p1", "date": "2026-10-17", "hour3": 12.5, "hour3_user": "Andi"}]
        grid = build_day_grid(PARAMETERS, records, "2026-10-17", "CM 220")

        self.assertEqual(set(grid.keys()), {"p1", "p2"})
        self.assertEqual(grid["p1"]["id"], "r1")
        self.assertIsNone(grid["p2"]["id"])
        self.assertEqual(grid["p2"]["plant_unit"], "CM 220")
        self.assertEqual(get_cell(grid, "p1", 3), (12.5, "Andi"))
        self.assertEqual(get_cell(grid, "p2", 3), (None, None))
        self.assertEqual(get_cell(grid, "missing", 3), (None, None))

    def test_first_record_per_parameter_wins(self):
        records = [
            {"id": "newest", "parameter_id": "p1", "date": "2026-10-17", "hour1": 2},
            {"id": "older", "parameter_id": "p1", "date": "2026-10-17", "hour1": 1},
        ]
        grid = build_day_grid(PARAMETERS, records, "2026-10-17", "CM 220")
        self.assertEqual(grid["p1"]["id"], "newest")

    def test_records_of_unknown_parameters_are_ignored(self):
        records = [{"id": "r9", "parameter_id": "other", "date": "2026-10-17", "hour1": 2}]
        grid = build_day_grid(PARAMETERS, records, "2026-10-17", "CM 220")
        self.assertNotIn("other", grid)


class CellEditTests(unittest.TestCase):
    def test_set_cell_creates_row_and_stamps_editor(self):
        grid = {}
        set_cell(grid, "p1", 8, 40.0, "Budi", date="2026-10-17", plant_unit="CM 220")
        self.assertEqual(get_cell(grid, "p1", 8), (40.0, "Budi"))
        self.assertEqual(grid["p1"]["date"], "2026-10-17")

        with self.assertRaises(ValueError):
            set_cell(grid, "p1", 0, 1.0, "Budi")

    def test_snapshots_are_independent(self):
        grid = build_day_grid(PARAMETERS, [], "2026-10-17", "CM 220")
        confirmed = confirmed_cells_from_grid(grid)
        copy = grid_snapshot(grid)

        set_cell(grid, "p1", 1, 5.0, "Andi")

        self.assertEqual(confirmed["p1"][1], (None, None))
        self.assertIsNone(copy["p1"]["hour1"])


class GridFrameTests(unittest.TestCase):
    def test_frame_is_indexed_by_hour_with_display_columns(self):
        grid = build_day_grid(PARAMETERS, [], "2026-10-17", "CM 220")
        set_cell(grid, "p1", 3, 12.5, "Andi")
        set_cell(grid, "p2", 3, "Mill stop", "Andi")

        frame = grid_to_frame(grid, PARAMETERS)

        self.assertEqual(list(frame.columns), ["Feed Rate (t/h)", "Remarks"])
        self.assertEqual(list(frame.index), list(range(1, 25)))
        self.assertEqual(frame.loc[3, "Feed Rate (t/h)"], 12.5)
        self.assertEqual(frame.loc[3, "Remarks"], "Mill stop")
        self.assertIsNone(frame.loc[4, "Feed Rate (t/h)"])


if __name__ == "__main__":
    unittest.main()
