"""
Production capacity derivation: wet, moisture and dry production per (date, plant unit).

Wet production is the sum of the day's material usage `total_production`,
moisture is the average hourly moisture of the wet additives and
dry = wet - moisture * wet / 100.
"""

import logging

import pandas as pd

from capacity.moisture import average_moisture, hourly_moisture, moisture_parameter_ids
from record_store.client import RecordStoreError
from record_store.records import normalize_hourly_record
from record_store.retry import call_with_retries, retry_settings
from runtime.batching import run_in_batches
from runtime.defaults import DEFAULT_BULK_BATCH_SIZE, DEFAULT_CAPACITY_MATERIALITY, collection_name
from runtime.parsing import finite_float
from time_utils import month_bounds, normalize_record_date


CAPACITY_FIELDS = ("wet", "dry", "moisture")
HISTORY_PAGE_SIZE = 50
HISTORY_BATCH_DELAY_S = 0.02
MONTHLY_COLUMNS = ["date", "plant_unit", "plant_category", "wet", "dry", "moisture"]


def compute_capacity(wet, moisture):
    wet = finite_float(wet) or 0.0
    moisture = finite_float(moisture) or 0.0
    return {"wet": wet, "moisture": moisture, "dry": wet - moisture * wet / 100}


def capacity_changed(existing, payload, threshold=DEFAULT_CAPACITY_MATERIALITY):
    """True when any capacity field moved by more than `threshold`."""
    for field in CAPACITY_FIELDS:
        old_value = finite_float(existing.get(field))
        if old_value is None:
            return True
        if abs(old_value - payload[field]) > threshold:
            return True
    return False


def sync_capacity(store, config, payload):
    """
    Create the capacity record if absent, update it only on a material change.

    Values are rounded to 2 decimals before comparing and writing. Returns
    {"action": "created" | "updated" | "unchanged", "record": ...}.
    """
    collection = collection_name(config, "production_capacity")
    retry_kwargs = retry_settings(config)
    threshold = float(config.get("CAPACITY_MATERIALITY", DEFAULT_CAPACITY_MATERIALITY))

    record = dict(payload)
    record["date"] = normalize_record_date(payload["date"])
    for field in CAPACITY_FIELDS:
        record[field] = round(float(payload[field]), 2)

    key_filters = {"date": record["date"], "plant_unit": record["plant_unit"]}
    existing = call_with_retries(
        lambda: store.query(collection, filters=key_filters),
        description="capacity lookup",
        **retry_kwargs,
    )
    if not existing:
        created = call_with_retries(lambda: store.create(collection, record), description="capacity create", **retry_kwargs)
        return {"action": "created", "record": created}

    current = existing[0]
    if not capacity_changed(current, record, threshold):
        return {"action": "unchanged", "record": current}
    updated = call_with_retries(
        lambda: store.update(collection, current["id"], record),
        description="capacity update",
        **retry_kwargs,
    )
    return {"action": "updated", "record": updated}


def _parameter_ids_by_name(store, config, plant_unit):
    settings = store.query(collection_name(config, "parameter_settings"), filters={"unit": plant_unit})
    return {str(setting.get("parameter") or ""): setting.get("id") for setting in settings}


def _category_from_settings(store, config, plant_unit):
    settings = store.query(collection_name(config, "parameter_settings"), filters={"unit": plant_unit})
    for setting in settings:
        if setting.get("category"):
            return setting["category"]
    return None


def _day_moisture(store, config, date, parameter_ids_by_name):
    pair_ids = moisture_parameter_ids(parameter_ids_by_name)
    wanted = sorted({pid for pair in pair_ids.values() for pid in pair if pid})
    if not wanted:
        return 0.0
    records = store.query(
        collection_name(config, "parameter_data"),
        filters={"date": date, "parameter_id": wanted},
        sort="-created",
    )
    by_parameter = {}
    for raw in records:
        record = normalize_hourly_record(raw)
        by_parameter.setdefault(record["parameter_id"], record)
    return average_moisture(hourly_moisture(by_parameter, pair_ids))


def recalculate_capacity(store, config, date, plant_unit, *, plant_category=None, parameter_ids_by_name=None):
    """
    Recompute and sync the capacity record of one (date, plant unit).

    Returns {"skipped": bool, "wet", "dry", "moisture", "plant_category", "action"}.
    The run is skipped silently when no plant category can be found.
    """
    date = normalize_record_date(date)
    retry_kwargs = retry_settings(config)
    category = plant_category or None

    usage_rows = call_with_retries(
        lambda: store.query(
            collection_name(config, "material_usage"),
            filters={"date": date, "plant_unit": plant_unit},
        ),
        description="material usage lookup",
        **retry_kwargs,
    )
    wet = sum(finite_float(row.get("total_production")) or 0.0 for row in usage_rows)
    if not category:
        category = next((row["plant_category"] for row in usage_rows if row.get("plant_category")), None)

    moisture = 0.0
    try:
        if parameter_ids_by_name is None:
            parameter_ids_by_name = call_with_retries(
                lambda: _parameter_ids_by_name(store, config, plant_unit),
                description="parameter settings lookup",
                **retry_kwargs,
            )
        moisture = call_with_retries(
            lambda: _day_moisture(store, config, date, parameter_ids_by_name),
            description="moisture lookup",
            **retry_kwargs,
        )
    except RecordStoreError as exc:
        logging.warning("Capacity: moisture unavailable for %s %s, using 0: %s", date, plant_unit, exc)

    if not category:
        category = call_with_retries(
            lambda: _category_from_settings(store, config, plant_unit),
            description="category lookup",
            **retry_kwargs,
        )

    values = compute_capacity(wet, moisture)
    state = {"skipped": not category, "plant_category": category, "action": None}
    state.update(values)
    if not category:
        logging.info("Capacity: no plant category for %s %s, skipping sync.", date, plant_unit)
        return state

    result = sync_capacity(
        store,
        config,
        {"date": date, "plant_unit": plant_unit, "plant_category": category, **values},
    )
    state["action"] = result["action"]
    logging.info(
        "Capacity: %s %s wet=%.2f moisture=%.2f dry=%.2f action=%s",
        date,
        plant_unit,
        values["wet"],
        values["moisture"],
        values["dry"],
        result["action"],
    )
    return state


def sync_all_history(store, config, on_progress=None):
    """
    Recompute capacity for every (date, plant unit) that has material usage.

    Material usage is paged 50 rows at a time; the unique keys of a page are
    recomputed 5 at a time with a short pause between batches. `on_progress`
    receives (processed, total, message). Returns the number of recomputed keys.
    """
    def _progress(current, total, message):
        if on_progress is not None:
            on_progress(current, total, message)

    retry_kwargs = retry_settings(config)
    retry_kwargs["retries"] = max(retry_kwargs["retries"], 3)
    usage_collection = collection_name(config, "material_usage")

    _progress(0, 0, "Loading parameter settings...")
    settings = call_with_retries(
        lambda: store.query(collection_name(config, "parameter_settings"), sort="unit"),
        description="parameter settings lookup",
        **retry_kwargs,
    )
    ids_by_unit = {}
    for setting in settings:
        if setting.get("unit"):
            ids_by_unit.setdefault(setting["unit"], {})[str(setting.get("parameter") or "")] = setting.get("id")

    first_page = call_with_retries(
        lambda: store.list_page(usage_collection, 1, 1, fields="id"),
        description="material usage count",
        **retry_kwargs,
    )
    total_records = first_page["total_items"]
    if total_records == 0:
        _progress(0, 0, "No data found.")
        return 0

    _progress(0, total_records, f"Found {total_records} records. Starting batch sync...")
    total_pages = (total_records + HISTORY_PAGE_SIZE - 1) // HISTORY_PAGE_SIZE
    processed_keys = set()
    processed_count = 0

    for page in range(1, total_pages + 1):
        result = call_with_retries(
            lambda: store.list_page(
                usage_collection,
                page,
                HISTORY_PAGE_SIZE,
                sort="-date",
                fields="date,plant_unit,plant_category,total_production",
            ),
            description="material usage page",
            **retry_kwargs,
        )
        if not result["items"]:
            break

        targets = []
        for row in result["items"]:
            if not row.get("date") or not row.get("plant_unit"):
                continue
            key = (normalize_record_date(row["date"]), row["plant_unit"])
            if key in processed_keys:
                continue
            processed_keys.add(key)
            targets.append({"date": key[0], "plant_unit": key[1], "plant_category": row.get("plant_category")})

        run_in_batches(
            targets,
            lambda target: recalculate_capacity(
                store,
                config,
                target["date"],
                target["plant_unit"],
                plant_category=target["plant_category"],
                parameter_ids_by_name=ids_by_unit.get(target["plant_unit"], {}),
            ),
            batch_size=DEFAULT_BULK_BATCH_SIZE,
            delay_s=HISTORY_BATCH_DELAY_S,
            description="Capacity history sync",
        )
        processed_count += len(result["items"])
        _progress(processed_count, total_records, f"Syncing... processed {processed_count}/{total_records} records")

    _progress(total_records, total_records, "Sync completed!")
    return len(processed_keys)


def get_monthly_capacity(store, config, month, plant_unit, plant_category=None):
    """Return the month's capacity records for a plant unit as a DataFrame sorted by date."""
    first_day, last_day = month_bounds(month)
    filters = {"date": ("between", first_day, last_day), "plant_unit": plant_unit}
    if plant_category:
        filters["plant_category"] = plant_category
    records = call_with_retries(
        lambda: store.query(collection_name(config, "production_capacity"), filters=filters, sort="date"),
        description="monthly capacity lookup",
        **retry_settings(config),
    )
    frame = pd.DataFrame(records, columns=MONTHLY_COLUMNS)
    if frame.empty:
        return frame
    frame["date"] = frame["date"].map(normalize_record_date)
    for field in CAPACITY_FIELDS:
        frame[field] = pd.to_numeric(frame[field], errors="coerce")
    return frame.sort_values("date").reset_index(drop=True)
