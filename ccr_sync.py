import logging
import threading
import time

from config_loader import load_config
from logger_config import setup_logging
from record_store.client import RecordStoreClient
from record_store.memory import InMemoryRecordStore
from runtime.paths import get_config_path
from sync_agent import default_sync_status, sync_agent
from sync_session import build_sync_session, close_sync_session, start_change_subscription


def build_initial_shared_data(config):
    """Create the authoritative runtime shared_data contract."""
    return {
        "session_logs": [],
        "log_lock": threading.Lock(),
        "store_transport": config.get("STORE_TRANSPORT", "remote"),
        "sync_status": default_sync_status(),
        "lock": threading.Lock(),
        "shutdown_event": threading.Event(),
        "log_file_path": None,
    }


def build_record_store(config):
    """Return the record store for the configured transport."""
    transport = config.get("STORE_TRANSPORT", "remote")
    if transport == "memory":
        logging.info("Record store: using in-memory transport.")
        return InMemoryRecordStore()
    logging.info("Record store: using remote transport at %s", config.get("STORE_BASE_URL"))
    return RecordStoreClient(
        base_url=config.get("STORE_BASE_URL"),
        auth_token=config.get("STORE_AUTH_TOKEN"),
        timeout_s=config.get("STORE_TIMEOUT_S"),
    )


def main():
    """Director: load config, open the sync session and run the sync agent."""
    config = load_config(get_config_path(__file__))
    shared_data = build_initial_shared_data(config)

    setup_logging(config, shared_data)
    logging.info("Director starting CCR sync.")

    plant_unit = config.get("SESSION_PLANT_UNIT")
    if not plant_unit:
        logging.error("Director: session.plant_unit is not configured, nothing to sync.")
        return

    store = build_record_store(config)
    session = None
    threads = []
    try:
        session = build_sync_session(
            config,
            store,
            date=config.get("SESSION_DATE"),
            plant_unit=plant_unit,
            plant_category=config.get("SESSION_PLANT_CATEGORY"),
        )
        if config.get("SUBSCRIBE_TO_CHANGES", True):
            start_change_subscription(session, store)

        threads = [
            threading.Thread(target=sync_agent, args=(config, shared_data, session, store), daemon=True),
        ]
        for thread in threads:
            thread.start()

        logging.info("All agents started.")

        while not shared_data["shutdown_event"].is_set():
            time.sleep(1)

    except KeyboardInterrupt:
        logging.info("Keyboard interrupt received. Shutting down...")
    except Exception as exc:
        logging.error("An unexpected error occurred in the director: %s", exc)
    finally:
        logging.info("Director initiating shutdown...")
        shared_data["shutdown_event"].set()

        for thread in threads:
            thread.join(timeout=10)
        if session is not None:
            close_sync_session(session)

        logging.info("Application shutdown complete.")


if __name__ == "__main__":
    main()
