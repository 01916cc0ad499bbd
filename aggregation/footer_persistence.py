"""
Persistence of derived aggregates: footer rows and material usage per shift.

Both are written together by one debounced batch run per session. A run in
flight blocks further runs; triggers arriving meanwhile coalesce into exactly
one follow-up run (see runtime.debounce.DebouncedTask).
"""

import logging

from aggregation.shift_aggregator import compute_shift_aggregates
from grid.hour_grid import grid_snapshot
from grid.shifts import SHIFT_KEYS
from record_store.retry import call_with_retries, retry_settings
from runtime.batching import batch_settings, run_in_batches
from runtime.debounce import get_session_debouncer
from runtime.defaults import DEFAULT_AGGREGATE_DEBOUNCE_S, collection_name
from shared_state import claim_flag_locked, snapshot_locked, update_locked


MATERIAL_COUNTER_PARAMETERS = {
    "Counter Feeder Clinker (ton)": "clinker",
    "Counter Feeder Gypsum (ton)": "gypsum",
    "Counter Feeder Limestone (ton)": "limestone",
    "Counter Feeder Trass (ton)": "trass",
    "Counter Feeder Flyash (ton)": "fly_ash",
    "Counter Feeder Fine Trass (ton)": "fine_trass",
    "Counter Feeder CKD (ton)": "ckd",
}
MATERIAL_FIELDS = tuple(MATERIAL_COUNTER_PARAMETERS.values())


def build_footer_record(date, parameter_id, plant_unit, aggregate):
    daily = aggregate["daily"]
    record = {
        "date": date,
        "parameter_id": parameter_id,
        "plant_unit": plant_unit,
        "total": daily["total"],
        "average": daily["average"],
        "minimum": daily["min"],
        "maximum": daily["max"],
    }
    for shift_key in SHIFT_KEYS:
        summary = aggregate["shifts"][shift_key]
        record[f"{shift_key}_total"] = summary["total"]
        record[f"{shift_key}_average"] = summary["average"]
        record[f"{shift_key}_counter"] = summary["counter"]
    return record


def _upsert(store, collection, key_filters, fields, retry_kwargs):
    existing = call_with_retries(
        lambda: store.query(collection, filters=key_filters),
        description=f"lookup {collection}",
        **retry_kwargs,
    )
    if existing:
        return call_with_retries(
            lambda: store.update(collection, existing[0]["id"], fields),
            description=f"update {collection}",
            **retry_kwargs,
        )
    return call_with_retries(
        lambda: store.create(collection, fields),
        description=f"create {collection}",
        **retry_kwargs,
    )


def batch_save_footer_records(store, config, footer_records):
    """Upsert footer rows keyed by (date, parameter_id, plant_unit). Returns per-row outcomes."""
    collection = collection_name(config, "footer_data")
    retry_kwargs = retry_settings(config)

    def _save(record):
        key_filters = {
            "date": record["date"],
            "parameter_id": record["parameter_id"],
            "plant_unit": record["plant_unit"],
        }
        return _upsert(store, collection, key_filters, record, retry_kwargs)

    return run_in_batches(footer_records, _save, description="Footer persistence", **batch_settings(config))


def build_material_usage_rows(aggregates, parameters, date, plant_unit, plant_category=None):
    """Return one material usage row per shift from the counter feeder aggregates."""
    field_by_parameter = {}
    for parameter_id, definition in parameters.items():
        field = MATERIAL_COUNTER_PARAMETERS.get(str(definition.get("parameter") or "").strip())
        if field is not None:
            field_by_parameter[parameter_id] = field

    rows = []
    for shift_key in SHIFT_KEYS:
        row = {"date": date, "plant_unit": plant_unit, "shift": shift_key}
        if plant_category:
            row["plant_category"] = plant_category
        for field in MATERIAL_FIELDS:
            row[field] = 0
        for parameter_id, field in field_by_parameter.items():
            aggregate = aggregates.get(parameter_id)
            if aggregate is not None:
                row[field] = aggregate["shifts"][shift_key]["counter"]
        row["total_production"] = sum(row[field] for field in MATERIAL_FIELDS)
        rows.append(row)
    return rows


def save_material_usage(store, config, rows):
    """Upsert rows keyed by (date, plant_unit, shift); rows without production are skipped."""
    collection = collection_name(config, "material_usage")
    retry_kwargs = retry_settings(config)
    to_write = [row for row in rows if row["total_production"] > 0]

    def _save(row):
        key_filters = {"date": row["date"], "plant_unit": row["plant_unit"], "shift": row["shift"]}
        return _upsert(store, collection, key_filters, row, retry_kwargs)

    return run_in_batches(to_write, _save, description="Material usage persistence", **batch_settings(config))


def persist_aggregates(session, store):
    """
    Compute and persist every aggregate of the session's grid.

    Returns a summary dict, or None when another run is already in flight.
    """
    if not claim_flag_locked(session, "aggregate_persist_in_flight"):
        logging.info("Aggregate persistence: run already in flight, skipping.")
        return None

    config = session["config"]
    try:
        claimed = snapshot_locked(
            session,
            lambda state: {
                "grid": grid_snapshot(state["grid"]),
                "parameters": dict(state["parameters"]),
                "date": state["date"],
                "plant_unit": state["plant_unit"],
                "plant_category": state.get("plant_category"),
            },
        )
        aggregates = compute_shift_aggregates(claimed["grid"], claimed["parameters"])
        footer_records = [
            build_footer_record(claimed["date"], parameter_id, claimed["plant_unit"], aggregate)
            for parameter_id, aggregate in aggregates.items()
        ]
        footer_outcomes = batch_save_footer_records(store, config, footer_records)
        usage_rows = build_material_usage_rows(
            aggregates,
            claimed["parameters"],
            claimed["date"],
            claimed["plant_unit"],
            claimed["plant_category"],
        )
        usage_outcomes = save_material_usage(store, config, usage_rows)
    finally:
        update_locked(session, aggregate_persist_in_flight=False)

    summary = {
        "footer_saved": sum(1 for outcome in footer_outcomes if outcome["ok"]),
        "footer_failed": sum(1 for outcome in footer_outcomes if not outcome["ok"]),
        "material_usage_saved": sum(1 for outcome in usage_outcomes if outcome["ok"]),
        "material_usage_failed": sum(1 for outcome in usage_outcomes if not outcome["ok"]),
    }
    logging.info(
        "Aggregate persistence: date=%s unit=%s footer=%s/%s material_usage=%s",
        claimed["date"],
        claimed["plant_unit"],
        summary["footer_saved"],
        len(footer_records),
        summary["material_usage_saved"],
    )
    return summary


def schedule_aggregate_persist(session, store):
    """Schedule a debounced persistence run for the session; returns the debouncer."""
    delay_s = snapshot_locked(
        session,
        lambda state: state["config"].get("AGGREGATE_DEBOUNCE_S", DEFAULT_AGGREGATE_DEBOUNCE_S),
    )
    task = get_session_debouncer(session, "aggregate", delay_s, lambda: persist_aggregates(session, store))
    task.schedule()
    return task
