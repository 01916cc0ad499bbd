"""
Sync session: the working context of one (date, plant unit).

A session is a plain dict guarded by its own lock. It owns the hour grid, the
last confirmed value of every cell, the per-cell in-flight guards, the
per-record write locks, a query cache, the version state, the debouncers and a
background executor. Sessions
share nothing, so several (date, unit) views can be live at once.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

from aggregation.shift_aggregator import compute_shift_aggregates
from capacity.deriver import recalculate_capacity
from grid.hour_grid import build_day_grid, confirmed_cells_from_grid, grid_snapshot, grid_to_frame
from record_store.query_cache import cached_query, default_query_cache, invalidate_cache
from record_store.records import hour_field, normalize_parameter_definition, user_field
from record_store.retry import call_with_retries, retry_settings
from runtime.debounce import get_session_debouncer
from runtime.defaults import (
    DEFAULT_BACKGROUND_WORKERS,
    DEFAULT_REFRESH_DEBOUNCE_S,
    DEFAULT_SINGLE_DOT_POLICY,
    collection_name,
)
from runtime.version_state import (
    bump_version,
    claim_reload,
    complete_reload,
    default_version_state,
    mark_remote_change,
)
from shared_state import mutate_locked, snapshot_locked
from time_utils import normalize_record_date, today_iso


def load_parameter_definitions(store, config, plant_unit):
    """Return {parameter_id: definition} for every parameter of the unit, ordered by name."""
    settings = call_with_retries(
        lambda: store.query(
            collection_name(config, "parameter_settings"),
            filters={"unit": plant_unit},
            sort="parameter",
        ),
        description="parameter settings lookup",
        **retry_settings(config),
    )
    definitions = {}
    for raw in settings:
        definition = normalize_parameter_definition(raw)
        if definition["id"]:
            definitions[definition["id"]] = definition
    return definitions


def build_sync_session(config, store, *, date=None, plant_unit, parameters=None, plant_category=None, executor=None, load=True):
    """
    Open a session for (date, plant_unit) and load its grid.

    `executor` runs background work (capacity recomputation, queued commits);
    when omitted the session owns a thread pool and shuts it down on close.
    """
    date = normalize_record_date(date) if date else today_iso(config)
    if parameters is None:
        parameters = load_parameter_definitions(store, config, plant_unit)
    owns_executor = executor is None
    if executor is None:
        executor = ThreadPoolExecutor(
            max_workers=int(config.get("BACKGROUND_WORKERS", DEFAULT_BACKGROUND_WORKERS)),
            thread_name_prefix=f"ccr-sync-{plant_unit}",
        )

    session = {
        "lock": threading.Lock(),
        "config": config,
        "date": date,
        "plant_unit": plant_unit,
        "plant_category": plant_category,
        "single_dot_policy": config.get("SINGLE_DOT_POLICY", DEFAULT_SINGLE_DOT_POLICY),
        "parameters": dict(parameters),
        "grid": build_day_grid(parameters, [], date, plant_unit),
        "confirmed": {},
        "inflight": set(),
        "record_locks": {},
        "query_cache": default_query_cache(),
        "version": default_version_state(),
        "executor": executor,
        "owns_executor": owns_executor,
        "debouncers": {},
        "unsubscribers": [],
        "aggregate_persist_in_flight": False,
        "closed": False,
    }
    session["confirmed"] = confirmed_cells_from_grid(session["grid"])
    logging.info(
        "Sync session: opened date=%s unit=%s parameters=%s",
        date,
        plant_unit,
        len(session["parameters"]),
    )
    if load:
        reload_day_grid(session, store)
    return session


def reload_day_grid(session, store):
    """
    Re-fetch the session's grid from the store.

    Cells with a commit in flight keep their optimistic value. Transient
    failures fall back to the last known good query result.
    """
    config, filters, parameters, date, plant_unit = snapshot_locked(
        session,
        lambda state: (
            state["config"],
            {"date": state["date"], "plant_unit": state["plant_unit"]},
            dict(state["parameters"]),
            state["date"],
            state["plant_unit"],
        ),
    )
    collection = collection_name(config, "parameter_data")
    sort = "-created"
    records = cached_query(
        session["query_cache"],
        store,
        collection,
        filters,
        sort,
        fetch=lambda: call_with_retries(
            lambda: store.query(collection, filters=filters, sort=sort),
            description="day grid lookup",
            **retry_settings(config),
        ),
    )
    fresh_grid = build_day_grid(parameters, records, date, plant_unit)

    def _apply(state):
        confirmed = confirmed_cells_from_grid(fresh_grid)
        for key in state["inflight"]:
            if key[0] != "param":
                continue
            _, parameter_id, hour = key
            old_row = state["grid"].get(parameter_id)
            new_row = fresh_grid.get(parameter_id)
            if old_row is None or new_row is None:
                continue
            new_row[hour_field(hour)] = old_row.get(hour_field(hour))
            new_row[user_field(hour)] = old_row.get(user_field(hour))
            if new_row.get("id") is None:
                new_row["id"] = old_row.get("id")
        state["grid"] = fresh_grid
        state["confirmed"] = confirmed

    mutate_locked(session, _apply)
    logging.info("Sync session: reloaded date=%s unit=%s records=%s", date, plant_unit, len(records))
    return get_day_grid(session)


def get_day_grid(session):
    return snapshot_locked(session, lambda state: grid_snapshot(state["grid"]))


def get_day_frame(session):
    """Grid as a pandas DataFrame (hours x parameter names)."""
    return snapshot_locked(session, lambda state: grid_to_frame(state["grid"], state["parameters"]))


def get_shift_aggregates(session):
    grid, parameters = snapshot_locked(
        session,
        lambda state: (grid_snapshot(state["grid"]), dict(state["parameters"])),
    )
    return compute_shift_aggregates(grid, parameters)


def parameter_ids_by_name(session):
    return snapshot_locked(
        session,
        lambda state: {definition["parameter"]: parameter_id for parameter_id, definition in state["parameters"].items()},
    )


def recalculate_session_capacity(session, store):
    date, plant_unit, plant_category = snapshot_locked(
        session,
        lambda state: (state["date"], state["plant_unit"], state.get("plant_category")),
    )
    return recalculate_capacity(
        store,
        session["config"],
        date,
        plant_unit,
        plant_category=plant_category,
        parameter_ids_by_name=parameter_ids_by_name(session),
    )


def submit_capacity_recalculation(session, store):
    """Run recalculate_session_capacity on the session executor; returns its Future."""
    def _run():
        try:
            return recalculate_session_capacity(session, store)
        except Exception as exc:
            logging.error("Sync session: capacity recalculation failed: %s", exc)
            raise

    return session["executor"].submit(_run)


def perform_claimed_reload(session, store):
    """Reload the grid if a newer version can be claimed. Returns True when a reload ran."""
    claimed = claim_reload(session["version"])
    if claimed is None:
        return False
    ok = False
    try:
        reload_day_grid(session, store)
        ok = True
    except Exception as exc:
        logging.error("Sync session: reload for version %s failed: %s", claimed, exc)
    finally:
        complete_reload(session["version"], claimed, ok=ok)
    return ok


def refresh_session(session, store, reason="manual"):
    """Bump the version and reload the grid."""
    bump_version(session["version"], reason=reason)
    return perform_claimed_reload(session, store)


def reload_after_remote_change(session, store):
    """Reload for a change notification without bumping the version counter."""
    mark_remote_change(session["version"])
    return perform_claimed_reload(session, store)


def handle_change_event(session, store, event):
    """
    React to a change notification from the store.

    The cached query for the affected key is dropped; a change touching the
    session's (date, unit) schedules a debounced reload. The reload leaves the
    version counter alone, so echoes of this session's own writes do not count
    as extra refreshes. Returns True when a reload was scheduled.
    """
    record = (event or {}).get("record") or {}
    try:
        record_date = normalize_record_date(record.get("date"))
    except ValueError:
        record_date = None

    config = session["config"]
    match = {"date": record_date, "plant_unit": record.get("plant_unit")}
    match = {field: value for field, value in match.items() if value is not None}
    invalidate_cache(session["query_cache"], collection_name(config, "parameter_data"), match)

    date, plant_unit, closed = snapshot_locked(
        session,
        lambda state: (state["date"], state["plant_unit"], state["closed"]),
    )
    if closed or record_date != date:
        return False
    if record.get("plant_unit") and record.get("plant_unit") != plant_unit:
        return False

    delay_s = config.get("REFRESH_DEBOUNCE_S", DEFAULT_REFRESH_DEBOUNCE_S)
    task = get_session_debouncer(
        session,
        "refresh",
        delay_s,
        lambda: reload_after_remote_change(session, store),
    )
    task.schedule()
    return True


def start_change_subscription(session, store):
    collection = collection_name(session["config"], "parameter_data")
    unsubscribe = store.subscribe_to_changes(collection, lambda event: handle_change_event(session, store, event))
    with session["lock"]:
        session["unsubscribers"].append(unsubscribe)
    logging.info("Sync session: subscribed to changes on '%s'.", collection)
    return unsubscribe


def close_sync_session(session):
    def _close(state):
        state["closed"] = True
        unsubscribers = list(state["unsubscribers"])
        state["unsubscribers"] = []
        return unsubscribers, list(state["debouncers"].values())

    unsubscribers, debouncers = mutate_locked(session, _close)
    for unsubscribe in unsubscribers:
        try:
            unsubscribe()
        except Exception as exc:
            logging.warning("Sync session: unsubscribe failed: %s", exc)
    for task in debouncers:
        task.close()
    if session["owns_executor"]:
        session["executor"].shutdown(wait=False)
    logging.info("Sync session: closed date=%s unit=%s", session["date"], session["plant_unit"])

