import logging
import time

from runtime.defaults import DEFAULT_PERIODIC_REFRESH_S
from runtime.version_state import bump_version, version_snapshot
from shared_state import mutate_locked
from sync_session import perform_claimed_reload


def default_sync_status():
    return {
        "date": None,
        "plant_unit": None,
        "version": 0,
        "reload_count": 0,
        "last_reload": None,
        "last_attempt": None,
        "error": None,
    }


def _update_status(shared_data, **kwargs):
    def _mutate(data):
        if "sync_status" not in data:
            data["sync_status"] = default_sync_status()
        data["sync_status"].update(kwargs)

    mutate_locked(shared_data, _mutate)


def sync_agent(config, shared_data, session, store):
    """Raise periodic refresh triggers and perform claimed grid reloads for one session."""
    logging.info("Sync agent started.")

    periodic_refresh_s = float(config.get("PERIODIC_REFRESH_S", DEFAULT_PERIODIC_REFRESH_S))
    poll_interval_s = float(config.get("SYNC_POLL_INTERVAL_S", 1.0))
    error_backoff_s = 30
    last_periodic = time.monotonic()
    reload_count = 0

    _update_status(shared_data, date=session["date"], plant_unit=session["plant_unit"])
    logging.info(
        "Sync agent config: periodic_refresh=%ss poll_interval=%ss date=%s unit=%s",
        periodic_refresh_s,
        poll_interval_s,
        session["date"],
        session["plant_unit"],
    )

    while not shared_data["shutdown_event"].is_set():
        try:
            now = time.monotonic()
            if periodic_refresh_s > 0 and (now - last_periodic) >= periodic_refresh_s:
                bump_version(session["version"], reason="periodic")
                last_periodic = now

            if perform_claimed_reload(session, store):
                reload_count += 1
                _update_status(
                    shared_data,
                    version=version_snapshot(session["version"])["counter"],
                    reload_count=reload_count,
                    last_reload=time.time(),
                    error=None,
                )
            _update_status(shared_data, last_attempt=time.time())
            time.sleep(poll_interval_s)
        except Exception as exc:
            logging.error("Sync agent: loop error: %s", exc)
            _update_status(shared_data, error=str(exc))
            time.sleep(error_backoff_s)

    logging.info("Sync agent stopped.")
