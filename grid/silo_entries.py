"""Per-shift silo readings (empty space and content) for the session day."""

import logging

from grid.edit_pipeline import (
    STATE_BUSY,
    STATE_FAILED,
    STATE_REJECTED,
    STATE_SAVED,
    acquire_guard,
    commit_result,
    release_guard,
)
from grid.input_parsing import parse_numeric_input
from record_store.client import RecordStoreError
from record_store.records import SILO_FIELDS, SILO_SHIFTS, normalize_silo_record, silo_field
from record_store.retry import call_with_retries, retry_settings
from runtime.defaults import collection_name
from runtime.parsing import is_blank
from shared_state import snapshot_locked


def silo_guard_key(silo_id, shift, field):
    return ("silo", silo_id, shift, field)


def _find_silo_record(store, config, date, silo_id):
    collection = collection_name(config, "silo_data")
    records = call_with_retries(
        lambda: store.query(collection, filters={"date": date, "silo_id": silo_id}, sort="-created"),
        description="silo record lookup",
        **retry_settings(config),
    )
    return records[0] if records else None


def get_silo_entries(session, store):
    """Return the session day's silo records in the flat shape, one per silo."""
    config = session["config"]
    date = snapshot_locked(session, lambda state: state["date"])
    records = call_with_retries(
        lambda: store.query(collection_name(config, "silo_data"), filters={"date": date}, sort="-created"),
        description="silo records lookup",
        **retry_settings(config),
    )
    entries = {}
    for raw in records:
        entry = normalize_silo_record(raw)
        entries.setdefault(entry["silo_id"], entry)
    return list(entries.values())


def commit_silo_field(session, store, silo_id, shift, field, raw_value):
    """Upsert one silo reading keyed by (date, silo id). Returns a commit result dict."""
    try:
        name = silo_field(shift, field)
    except ValueError as exc:
        return commit_result(STATE_REJECTED, error=str(exc))

    value = None
    if not is_blank(raw_value):
        value = parse_numeric_input(raw_value, session["single_dot_policy"])
        if value is None:
            return commit_result(STATE_REJECTED, error=f"'{raw_value}' is not a number.")

    key = silo_guard_key(silo_id, shift, field)
    if not acquire_guard(session, key):
        return commit_result(STATE_BUSY, error="A save for this silo field is already in progress.")

    config = session["config"]
    collection = collection_name(config, "silo_data")
    retry_kwargs = retry_settings(config)
    date = snapshot_locked(session, lambda state: state["date"])
    try:
        existing = _find_silo_record(store, config, date, silo_id)
        if existing is None:
            saved = call_with_retries(
                lambda: store.create(collection, {"date": date, "silo_id": silo_id, name: value}),
                description="silo record create",
                **retry_kwargs,
            )
        else:
            saved = call_with_retries(
                lambda: store.update(collection, existing["id"], {name: value}),
                description="silo record update",
                **retry_kwargs,
            )
    except RecordStoreError as exc:
        logging.error("Silo entries: save failed for %s %s: %s", silo_id, name, exc)
        return commit_result(STATE_FAILED, error=str(exc), value=value)
    finally:
        release_guard(session, key)

    return commit_result(STATE_SAVED, record_id=(saved or {}).get("id"), value=value)


def clear_silo_field(session, store, silo_id, shift, field):
    """
    Clear one silo reading.

    The whole record is deleted when neither the sibling field of the same
    shift nor any field of the other shifts holds data; otherwise only the field
    is nulled. Returns {"deleted": bool, "full_record": bool}.
    """
    name = silo_field(shift, field)
    config = session["config"]
    collection = collection_name(config, "silo_data")
    retry_kwargs = retry_settings(config)
    date = snapshot_locked(session, lambda state: state["date"])

    existing = _find_silo_record(store, config, date, silo_id)
    if existing is None:
        return {"deleted": False, "full_record": False}

    record = normalize_silo_record(existing)
    sibling = silo_field(shift, next(other for other in SILO_FIELDS if other != field))
    other_shift_has_data = any(
        record[silo_field(other_shift, other_field)] is not None
        for other_shift in SILO_SHIFTS
        if other_shift != shift
        for other_field in SILO_FIELDS
    )

    if record[sibling] is None and not other_shift_has_data:
        call_with_retries(lambda: store.delete(collection, existing["id"]), description="silo record delete", **retry_kwargs)
        logging.info("Silo entries: deleted record for silo %s on %s", silo_id, date)
        return {"deleted": True, "full_record": True}

    call_with_retries(lambda: store.update(collection, existing["id"], {name: None}), description="silo field clear", **retry_kwargs)
    return {"deleted": True, "full_record": False}
