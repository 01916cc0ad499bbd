"""
Cell edit pipeline: optimistic local edits and their persistence.

Every commit follows the same path: validate the raw input, update the grid
optimistically, write only the touched hour (plus its editor attribution) to
the store, then fan out the side effects (version bump, debounced aggregate
persistence, background capacity recomputation for moisture inputs).

Commit results are plain dicts:
    {"ok": bool, "state": "saved" | "rejected" | "busy" | "failed",
     "error": str | None, "record_id": str | None, "value": ...}
"""

import logging
import threading

from aggregation.footer_persistence import schedule_aggregate_persist
from capacity.moisture import is_moisture_relevant
from grid.hour_grid import confirmed_cells_from_grid, set_cell
from grid.input_parsing import InputValidationError, coerce_cell_value
from record_store.client import RecordStoreError
from record_store.records import (
    HOURS,
    empty_hourly_record,
    hour_field,
    normalize_hourly_record,
    record_has_values,
    user_field,
    validate_hour,
)
from record_store.retry import call_with_retries, retry_settings
from runtime.batching import batch_settings, run_in_batches
from runtime.defaults import UNKNOWN_EDITOR_NAME, UNKNOWN_PLANT_UNIT, collection_name
from runtime.version_state import bump_version
from shared_state import (
    claim_key_locked,
    get_or_create_locked,
    mutate_locked,
    release_key_locked,
    snapshot_locked,
)
from sync_session import submit_capacity_recalculation
from time_utils import normalize_record_date


STATE_SAVED = "saved"
STATE_REJECTED = "rejected"
STATE_BUSY = "busy"
STATE_FAILED = "failed"


def commit_result(state, *, error=None, record_id=None, value=None):
    return {"ok": state == STATE_SAVED, "state": state, "error": error, "record_id": record_id, "value": value}


def _editor(editor_name):
    return str(editor_name or "").strip() or UNKNOWN_EDITOR_NAME


def cell_guard_key(parameter_id, hour):
    return ("param", parameter_id, int(hour))


def acquire_guard(session, key):
    """Mark `key` in flight. Returns False when it already is."""
    return claim_key_locked(session, "inflight", key)


def release_guard(session, key):
    release_key_locked(session, "inflight", key)


def _definition(session, parameter_id):
    return snapshot_locked(session, lambda state: dict(state["parameters"].get(parameter_id) or {}))


def apply_local_edit(session, parameter_id, hour, raw_value, editor_name):
    """
    Put operator input into the grid without touching the store.

    Valid input is stored parsed; input that would be rejected on commit is
    kept as typed so the operator still sees it. Returns the value placed.
    """
    hour = validate_hour(hour)
    definition = _definition(session, parameter_id)
    try:
        value = coerce_cell_value(raw_value, definition, single_dot_policy=session["single_dot_policy"])
    except InputValidationError:
        value = raw_value

    def _apply(state):
        set_cell(
            state["grid"],
            parameter_id,
            hour,
            value,
            _editor(editor_name),
            date=state["date"],
            plant_unit=state["plant_unit"],
        )

    mutate_locked(session, _apply)
    return value


def _revert_cell(session, parameter_id, hour):
    def _revert(state):
        confirmed_value, confirmed_user = (state["confirmed"].get(parameter_id) or {}).get(hour, (None, None))
        set_cell(
            state["grid"],
            parameter_id,
            hour,
            confirmed_value,
            confirmed_user,
            date=state["date"],
            plant_unit=state["plant_unit"],
        )
        return confirmed_value

    return mutate_locked(session, _revert)


def _resolve_plant_unit(session, store, parameter_id, explicit_unit):
    if explicit_unit:
        return explicit_unit
    session_unit = snapshot_locked(session, lambda state: state.get("plant_unit"))
    if session_unit:
        return session_unit
    try:
        setting = store.get_one(collection_name(session["config"], "parameter_settings"), parameter_id)
    except RecordStoreError as exc:
        logging.warning("Edit pipeline: plant unit lookup for parameter %s failed: %s", parameter_id, exc)
        setting = None
    if setting and setting.get("unit"):
        return setting["unit"]
    return UNKNOWN_PLANT_UNIT


def record_lock(session, parameter_id, date):
    """Lock that serializes lookup-then-write of the (parameter, date) record."""
    return get_or_create_locked(session, "record_locks", (parameter_id, date), threading.Lock)


def _find_record(store, config, parameter_id, date):
    """Newest record for (parameter, date), the same one the day grid shows."""
    collection = collection_name(config, "parameter_data")
    existing = call_with_retries(
        lambda: store.query(collection, filters={"date": date, "parameter_id": parameter_id}, sort="-created"),
        description="parameter record lookup",
        **retry_settings(config),
    )
    return existing[0] if existing else None


def _persist_cell(session, store, parameter_id, date, hour, value, editor, plant_unit):
    with record_lock(session, parameter_id, date):
        return _write_cell(session, store, parameter_id, date, hour, value, editor, plant_unit)


def _write_cell(session, store, parameter_id, date, hour, value, editor, plant_unit):
    config = session["config"]
    collection = collection_name(config, "parameter_data")
    retry_kwargs = retry_settings(config)
    existing = _find_record(store, config, parameter_id, date)

    if existing is not None:
        fields = {hour_field(hour): value, user_field(hour): editor}
        if value is not None:
            fields["name"] = editor
        return call_with_retries(
            lambda: store.update(collection, existing["id"], fields),
            description="parameter record update",
            **retry_kwargs,
        )

    fields = {
        "date": date,
        "parameter_id": parameter_id,
        "name": editor,
        "plant_unit": _resolve_plant_unit(session, store, parameter_id, plant_unit),
        hour_field(hour): value,
        user_field(hour): editor,
    }
    return call_with_retries(
        lambda: store.create(collection, fields),
        description="parameter record create",
        **retry_kwargs,
    )


def commit_edit(
    session,
    store,
    parameter_id,
    date,
    hour,
    raw_value,
    editor_name,
    *,
    plant_unit=None,
    skip_trigger=False,
    skip_sync=False,
):
    """
    Validate and persist one cell.

    Rejected input reverts the cell to its last confirmed value and never
    reaches the store. A store failure after retries keeps the optimistic value
    and returns a `failed` result. A second commit of the same cell while one is
    in flight returns `busy`.
    """
    try:
        hour = validate_hour(hour)
        date = normalize_record_date(date)
    except ValueError as exc:
        return commit_result(STATE_REJECTED, error=str(exc))

    editor = _editor(editor_name)
    key = cell_guard_key(parameter_id, hour)
    if not acquire_guard(session, key):
        logging.info("Edit pipeline: %s hour %s already saving, ignoring commit.", parameter_id, hour)
        return commit_result(STATE_BUSY, error="A save for this cell is already in progress.")

    try:
        definition = _definition(session, parameter_id)
        try:
            value = coerce_cell_value(raw_value, definition, single_dot_policy=session["single_dot_policy"])
        except InputValidationError as exc:
            _revert_cell(session, parameter_id, hour)
            logging.info("Edit pipeline: rejected %s hour %s value=%r: %s", parameter_id, hour, raw_value, exc)
            return commit_result(STATE_REJECTED, error=str(exc))

        in_session_day = snapshot_locked(session, lambda state: state["date"] == date)
        if in_session_day:
            mutate_locked(
                session,
                lambda state: set_cell(
                    state["grid"],
                    parameter_id,
                    hour,
                    value,
                    editor,
                    date=state["date"],
                    plant_unit=state["plant_unit"],
                ),
            )

        try:
            saved = _persist_cell(session, store, parameter_id, date, hour, value, editor, plant_unit)
        except RecordStoreError as exc:
            logging.error("Edit pipeline: save failed for %s hour %s: %s", parameter_id, hour, exc)
            return commit_result(STATE_FAILED, error=str(exc), value=value)

        record_id = (saved or {}).get("id")
        if in_session_day:
            def _confirm(state):
                row = state["grid"].get(parameter_id)
                if row is not None and record_id:
                    row["id"] = record_id
                state["confirmed"].setdefault(parameter_id, {})[hour] = (value, editor)

            mutate_locked(session, _confirm)
    finally:
        release_guard(session, key)

    if not skip_sync and is_moisture_relevant(definition.get("parameter")):
        submit_capacity_recalculation(session, store)
    if not skip_trigger:
        bump_version(session["version"], reason="commit")
        schedule_aggregate_persist(session, store)
    return commit_result(STATE_SAVED, record_id=record_id, value=value)


def submit_commit_edit(session, store, parameter_id, date, hour, raw_value, editor_name, **options):
    """Run commit_edit on the session executor; returns a Future of its result."""
    return session["executor"].submit(
        commit_edit,
        session,
        store,
        parameter_id,
        date,
        hour,
        raw_value,
        editor_name,
        **options,
    )


def commit_edits_batch(session, store, edits):
    """
    Commit many cells as one operation (bulk import, paste).

    `edits` holds dicts with parameter_id, hour, value, editor_name and an
    optional date (defaults to the session day). Cells are committed in order so
    the first edit of a parameter creates its record and the rest update it.
    The version is bumped once and capacity is recomputed once when any
    moisture input was saved.
    """
    session_date = snapshot_locked(session, lambda state: state["date"])
    results = []
    moisture_touched = False
    for edit in edits:
        result = commit_edit(
            session,
            store,
            edit["parameter_id"],
            edit.get("date") or session_date,
            edit["hour"],
            edit.get("value"),
            edit.get("editor_name"),
            plant_unit=edit.get("plant_unit"),
            skip_trigger=True,
            skip_sync=True,
        )
        results.append(result)
        if result["ok"] and is_moisture_relevant(_definition(session, edit["parameter_id"]).get("parameter")):
            moisture_touched = True

    successful = sum(1 for result in results if result["ok"])
    if successful:
        bump_version(session["version"], reason="batch_commit")
        schedule_aggregate_persist(session, store)
    if moisture_touched:
        submit_capacity_recalculation(session, store)
    logging.info("Edit pipeline: batch commit successful=%s failed=%s", successful, len(results) - successful)
    return {"successful": successful, "failed": len(results) - successful, "total": len(results), "results": results}


def clear_parameter_hours(session, store, parameter_id, hours, editor_name):
    """
    Null the given hours of one parameter on the session day.

    The record is deleted once no hour holds data. Returns
    {"state": "cleared" | "deleted" | "noop", "record_id"}.
    """
    hours = [validate_hour(hour) for hour in hours]
    editor = _editor(editor_name)
    config = session["config"]
    collection = collection_name(config, "parameter_data")
    retry_kwargs = retry_settings(config)
    date, plant_unit = snapshot_locked(session, lambda state: (state["date"], state["plant_unit"]))

    fields = {}
    for hour in hours:
        fields[hour_field(hour)] = None
        fields[user_field(hour)] = editor

    with record_lock(session, parameter_id, date):
        existing = _find_record(store, config, parameter_id, date)
        if existing is None:
            return {"state": "noop", "record_id": None}

        updated = call_with_retries(
            lambda: store.update(collection, existing["id"], fields),
            description="parameter record clear",
            **retry_kwargs,
        )
        row = normalize_hourly_record(updated or {**existing, **fields})

        state = "cleared"
        if not record_has_values(row):
            call_with_retries(
                lambda: store.delete(collection, existing["id"]),
                description="parameter record delete",
                **retry_kwargs,
            )
            row = empty_hourly_record(parameter_id, date, plant_unit)
            state = "deleted"

    def _apply(session_state):
        if parameter_id in session_state["grid"]:
            session_state["grid"][parameter_id] = row
            session_state["confirmed"][parameter_id] = confirmed_cells_from_grid({parameter_id: row})[parameter_id]

    mutate_locked(session, _apply)
    bump_version(session["version"], reason="clear")
    schedule_aggregate_persist(session, store)
    logging.info("Edit pipeline: %s %s hours=%s for %s", state, parameter_id, hours, date)
    return {"state": state, "record_id": existing["id"]}


def clear_day(session, store):
    """Delete every hourly record of the session's (date, unit), a few at a time."""
    config = session["config"]
    collection = collection_name(config, "parameter_data")
    retry_kwargs = retry_settings(config)
    date, plant_unit = snapshot_locked(session, lambda state: (state["date"], state["plant_unit"]))
    records = call_with_retries(
        lambda: store.query(collection, filters={"date": date, "plant_unit": plant_unit}),
        description="day records lookup",
        **retry_kwargs,
    )
    outcomes = run_in_batches(
        [record["id"] for record in records],
        lambda record_id: call_with_retries(
            lambda: store.delete(collection, record_id),
            description="parameter record delete",
            **retry_kwargs,
        ),
        description="Clear day",
        **batch_settings(config),
    )

    def _reset(state):
        for parameter_id in list(state["grid"].keys()):
            state["grid"][parameter_id] = empty_hourly_record(parameter_id, date, plant_unit)
            state["confirmed"][parameter_id] = {hour: (None, None) for hour in HOURS}

    mutate_locked(session, _reset)
    bump_version(session["version"], reason="clear_day")
    deleted = sum(1 for outcome in outcomes if outcome["ok"])
    return {"deleted": deleted, "failed": len(outcomes) - deleted, "total": len(outcomes)}


def rename_plant_unit(store, config, old_unit, new_unit):
    """Move every hourly record of `old_unit` to `new_unit`, a few at a time."""
    collection = collection_name(config, "parameter_data")
    retry_kwargs = retry_settings(config)
    records = call_with_retries(
        lambda: store.query(collection, filters={"plant_unit": old_unit}),
        description="plant unit records lookup",
        **retry_kwargs,
    )
    outcomes = run_in_batches(
        [record["id"] for record in records],
        lambda record_id: call_with_retries(
            lambda: store.update(collection, record_id, {"plant_unit": new_unit}),
            description="plant unit rename",
            **retry_kwargs,
        ),
        description="Rename plant unit",
        **batch_settings(config),
    )
    updated = sum(1 for outcome in outcomes if outcome["ok"])
    logging.info("Edit pipeline: renamed plant unit '%s' -> '%s' on %s records", old_unit, new_unit, updated)
    return {"updated": updated, "failed": len(outcomes) - updated, "total": len(outcomes)}
