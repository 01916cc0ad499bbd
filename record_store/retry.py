"""Fixed-backoff retry helper for record store calls."""

import logging
import time

from record_store.client import TransientStoreError
from runtime.defaults import DEFAULT_STORE_RETRIES, DEFAULT_STORE_RETRY_DELAY_S


def call_with_retries(operation, *, retries=DEFAULT_STORE_RETRIES, delay_s=DEFAULT_STORE_RETRY_DELAY_S, description="store call"):
    """
    Run `operation()` and retry transient failures.

    Only TransientStoreError is retried; every other exception propagates on the
    first attempt. After `retries` extra attempts the last transient error is
    re-raised.
    """
    attempts = max(0, int(retries)) + 1
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStoreError as exc:
            if attempt >= attempts:
                logging.warning("Record store: %s failed after %s attempts: %s", description, attempt, exc)
                raise
            logging.warning(
                "Record store: %s attempt=%s failed, retry_in=%.1fs error=%s",
                description,
                attempt,
                delay_s,
                exc,
            )
            time.sleep(delay_s)


def retry_settings(config):
    """Return retry kwargs for call_with_retries from the loaded config."""
    return {
        "retries": int(config.get("STORE_RETRIES", DEFAULT_STORE_RETRIES)),
        "delay_s": float(config.get("STORE_RETRY_DELAY_S", DEFAULT_STORE_RETRY_DELAY_S)),
    }
