"""Hourly moisture from (H2O %, feeder setpoint %) pairs of the wet additives."""

from record_store.records import HOURS, hour_field
from runtime.parsing import finite_float


MOISTURE_PAIRS = {
    "gypsum": ("H2O Gypsum (%)", "Set. Feeder Gypsum (%)"),
    "trass": ("H2O Trass (%)", "Set. Feeder Trass (%)"),
    "limestone": ("H2O Limestone (%)", "Set. Feeder Limestone (%)"),
}
_MOISTURE_MARKERS = ("H2O", "Set. Feeder")


def is_moisture_relevant(parameter_name):
    name = str(parameter_name or "")
    return any(marker in name for marker in _MOISTURE_MARKERS)


def moisture_parameter_ids(parameter_ids_by_name):
    """Map each material to its (h2o_id, setpoint_id) pair; unknown names map to None."""
    return {
        material: (parameter_ids_by_name.get(h2o_name), parameter_ids_by_name.get(set_name))
        for material, (h2o_name, set_name) in MOISTURE_PAIRS.items()
    }


def hourly_moisture(records_by_parameter, pair_ids):
    """
    Return {hour: total moisture} for hours with at least one complete pair.

    A pair contributes `setpoint * h2o / 100` when both hour values are present;
    hours where no pair is complete are left out.
    """
    totals = {}
    for hour in HOURS:
        field = hour_field(hour)
        contributions = []
        for h2o_id, set_id in pair_ids.values():
            if h2o_id is None or set_id is None:
                continue
            h2o = finite_float((records_by_parameter.get(h2o_id) or {}).get(field))
            setpoint = finite_float((records_by_parameter.get(set_id) or {}).get(field))
            if h2o is None or setpoint is None:
                continue
            contributions.append(setpoint * h2o / 100)
        if contributions:
            totals[hour] = sum(contributions)
    return totals


def average_moisture(hourly_totals):
    if not hourly_totals:
        return 0.0
    return sum(hourly_totals.values()) / len(hourly_totals)
