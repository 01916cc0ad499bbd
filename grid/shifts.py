"""Fixed hour-to-shift partition shared by the grid, aggregation and material usage."""

from record_store.records import validate_hour


SHIFT_WINDOWS = {
    "shift3_cont": tuple(range(1, 8)),
    "shift1": tuple(range(8, 16)),
    "shift2": tuple(range(16, 23)),
    "shift3": (23, 24),
}
SHIFT_KEYS = tuple(SHIFT_WINDOWS.keys())

_SHIFT_BY_HOUR = {hour: key for key, hours in SHIFT_WINDOWS.items() for hour in hours}


def shift_for_hour(hour):
    return _SHIFT_BY_HOUR[validate_hour(hour)]


def hours_for_shift(shift_key):
    try:
        return SHIFT_WINDOWS[shift_key]
    except KeyError as exc:
        raise ValueError(f"Unknown shift '{shift_key}'. Allowed values: {', '.join(SHIFT_KEYS)}.") from exc
