"""In-memory hour grid for one (date, plant unit): 24 hours x N parameters."""

from copy import deepcopy

import pandas as pd

from record_store.records import (
    HOURS,
    empty_hourly_record,
    hour_field,
    normalize_hourly_record,
    user_field,
    validate_hour,
)


def build_day_grid(parameters, records, date, plant_unit):
    """
    Build the grid for every parameter of the unit.

    Parameters without a stored record get an empty row (id None) so every cell
    exists before the first edit.
    """
    by_parameter = {}
    for raw in records or []:
        record = normalize_hourly_record(raw)
        parameter_id = record.get("parameter_id")
        # Store sorts newest first; keep the first row per parameter.
        if parameter_id and parameter_id not in by_parameter:
            by_parameter[parameter_id] = record

    grid = {}
    for parameter_id in parameters:
        row = by_parameter.get(parameter_id)
        grid[parameter_id] = row if row is not None else empty_hourly_record(parameter_id, date, plant_unit)
    return grid


def get_cell(grid, parameter_id, hour):
    row = grid.get(parameter_id)
    if row is None:
        return None, None
    hour = validate_hour(hour)
    return row.get(hour_field(hour)), row.get(user_field(hour))


def set_cell(grid, parameter_id, hour, value, editor_name, *, date=None, plant_unit=None):
    hour = validate_hour(hour)
    row = grid.get(parameter_id)
    if row is None:
        row = empty_hourly_record(parameter_id, date, plant_unit)
        grid[parameter_id] = row
    row[hour_field(hour)] = value
    row[user_field(hour)] = editor_name
    return row


def confirmed_cells_from_grid(grid):
    """Snapshot of cell values/editors treated as confirmed by the store."""
    return {
        parameter_id: {hour: (row.get(hour_field(hour)), row.get(user_field(hour))) for hour in HOURS}
        for parameter_id, row in grid.items()
    }


def grid_snapshot(grid):
    return deepcopy(grid)


def grid_to_frame(grid, parameters):
    """
    Render the grid as a DataFrame indexed by hour (1..24).

    Columns are parameter display names in the order of `parameters`; missing
    cells are None.
    """
    columns = {}
    for parameter_id, definition in parameters.items():
        row = grid.get(parameter_id) or {}
        label = definition.get("parameter") or parameter_id
        columns[label] = [row.get(hour_field(hour)) for hour in HOURS]
    frame = pd.DataFrame(columns, index=pd.Index(list(HOURS), name="hour"))
    return frame.astype(object).where(pd.notna(frame), None)
