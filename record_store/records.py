"""
Storage-boundary adapters for hourly parameter, silo and parameter-setting records.

Records come back from the store in two shapes:
- flat: `hour1`..`hour24` with `hour1_user`..`hour24_user`
- nested: `hourly_values: {"1": value | {"value": v, "user_name": u}}`

Everything past this module only ever sees the flat shape.
"""

from time_utils import normalize_record_date
from runtime.parsing import finite_float, is_blank


HOURS = tuple(range(1, 25))
RECORD_SHAPE_FLAT = "flat"
RECORD_SHAPE_NESTED = "nested"

SILO_SHIFTS = ("shift1", "shift2", "shift3")
SILO_FIELDS = ("empty_space", "content")
_SILO_NESTED_KEYS = {"emptySpace": "empty_space", "content": "content"}

PARAMETER_TYPE_NUMBER = "number"
PARAMETER_TYPE_TEXT = "text"


def hour_field(hour):
    return f"hour{int(hour)}"


def user_field(hour):
    return f"hour{int(hour)}_user"


def validate_hour(hour):
    try:
        hour_no = int(hour)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid hour '{hour}'. Expected 1..24.") from exc
    if hour_no < 1 or hour_no > 24:
        raise ValueError(f"Invalid hour '{hour}'. Expected 1..24.")
    return hour_no


def detect_record_shape(raw):
    if isinstance(raw.get("hourly_values"), dict):
        return RECORD_SHAPE_NESTED
    return RECORD_SHAPE_FLAT


def _nested_cell(value):
    if isinstance(value, dict):
        return value.get("value"), value.get("user_name")
    return value, None


def normalize_hourly_record(raw):
    """Return the flat shape of an hourly parameter record."""
    flat = {
        "id": raw.get("id"),
        "parameter_id": raw.get("parameter_id"),
        "date": normalize_record_date(raw["date"]) if raw.get("date") else None,
        "plant_unit": raw.get("plant_unit"),
        "name": raw.get("name"),
    }
    for hour in HOURS:
        flat[hour_field(hour)] = None
        flat[user_field(hour)] = None

    if detect_record_shape(raw) == RECORD_SHAPE_NESTED:
        for hour_key, cell in raw["hourly_values"].items():
            try:
                hour = validate_hour(hour_key)
            except ValueError:
                continue
            value, user_name = _nested_cell(cell)
            flat[hour_field(hour)] = None if is_blank(value) else value
            flat[user_field(hour)] = user_name or None
        return flat

    for hour in HOURS:
        value = raw.get(hour_field(hour))
        flat[hour_field(hour)] = None if is_blank(value) else value
        flat[user_field(hour)] = raw.get(user_field(hour)) or None
    return flat


def empty_hourly_record(parameter_id, date, plant_unit):
    return normalize_hourly_record(
        {"id": None, "parameter_id": parameter_id, "date": date, "plant_unit": plant_unit}
    )


def record_has_values(record, hours=HOURS):
    return any(not is_blank(record.get(hour_field(hour))) for hour in hours)


def normalize_parameter_definition(raw):
    """Normalize a parameter-settings record into the definition dict used by the core."""
    data_type = str(raw.get("data_type") or PARAMETER_TYPE_NUMBER).strip().lower()
    if data_type not in {PARAMETER_TYPE_NUMBER, PARAMETER_TYPE_TEXT}:
        data_type = PARAMETER_TYPE_TEXT
    variant_bounds = {}
    for variant in ("opc", "pcc"):
        low = finite_float(raw.get(f"{variant}_min_value"))
        high = finite_float(raw.get(f"{variant}_max_value"))
        if low is not None or high is not None:
            variant_bounds[variant.upper()] = (low, high)
    return {
        "id": raw.get("id"),
        "parameter": str(raw.get("parameter") or ""),
        "unit": raw.get("unit") or None,
        "category": raw.get("category") or None,
        "data_type": data_type,
        "min_value": finite_float(raw.get("min_value")),
        "max_value": finite_float(raw.get("max_value")),
        "variant_bounds": variant_bounds,
    }


def silo_field(shift, field):
    if shift not in SILO_SHIFTS:
        raise ValueError(f"Invalid silo shift '{shift}'. Allowed values: {', '.join(SILO_SHIFTS)}.")
    if field not in SILO_FIELDS:
        raise ValueError(f"Invalid silo field '{field}'. Allowed values: {', '.join(SILO_FIELDS)}.")
    return f"{shift}_{field}"


def normalize_silo_record(raw):
    """Return the flat `shiftN_<field>` shape of a silo record."""
    flat = {
        "id": raw.get("id"),
        "silo_id": raw.get("silo_id") or raw.get("silo"),
        "date": normalize_record_date(raw["date"]) if raw.get("date") else None,
    }
    for shift in SILO_SHIFTS:
        nested = raw.get(shift) if isinstance(raw.get(shift), dict) else {}
        for field in SILO_FIELDS:
            name = silo_field(shift, field)
            value = raw.get(name)
            if value is None:
                for nested_key, target in _SILO_NESTED_KEYS.items():
                    if target == field and nested.get(nested_key) is not None:
                        value = nested.get(nested_key)
            flat[name] = finite_float(value)
    return flat
