"""Pure shift and daily aggregation over the hour grid."""

from grid.shifts import SHIFT_KEYS, SHIFT_WINDOWS
from record_store.records import HOURS, PARAMETER_TYPE_NUMBER, hour_field
from runtime.parsing import finite_float


def _present_values(row, hours):
    values = []
    for hour in hours:
        number = finite_float(row.get(hour_field(hour)))
        if number is not None:
            values.append(number)
    return values


def summarize_values(values):
    """Return total/average/min/max/count for a list of numbers; min/max are None when empty."""
    values = [number for number in (finite_float(value) for value in values) if number is not None]
    count = len(values)
    total = sum(values)
    return {
        "total": total,
        "average": total / count if count else 0,
        "min": min(values) if values else None,
        "max": max(values) if values else None,
        "count": count,
    }


def counter_delta(values):
    """Last present value minus first present value; 0 with fewer than two values."""
    present = [number for number in (finite_float(value) for value in values) if number is not None]
    if len(present) < 2:
        return 0
    return present[-1] - present[0]


def aggregate_parameter(row, definition=None):
    """
    Aggregate one grid row.

    Returns {"daily": summary, "shifts": {shift_key: summary + counter}}, or
    None for text parameters.
    """
    if definition is not None and definition.get("data_type", PARAMETER_TYPE_NUMBER) != PARAMETER_TYPE_NUMBER:
        return None

    shifts = {}
    for shift_key in SHIFT_KEYS:
        values = _present_values(row, SHIFT_WINDOWS[shift_key])
        summary = summarize_values(values)
        summary["counter"] = counter_delta(values)
        shifts[shift_key] = summary
    return {"daily": summarize_values(_present_values(row, HOURS)), "shifts": shifts}


def compute_shift_aggregates(grid, parameters):
    """Aggregate every numeric parameter of `parameters` present in the grid."""
    aggregates = {}
    for parameter_id, definition in parameters.items():
        row = grid.get(parameter_id)
        if row is None:
            continue
        aggregate = aggregate_parameter(row, definition)
        if aggregate is not None:
            aggregates[parameter_id] = aggregate
    return aggregates
