"""Throttled bulk processing for store-heavy operations."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

from runtime.defaults import DEFAULT_BULK_BATCH_DELAY_S, DEFAULT_BULK_BATCH_SIZE


def batch_settings(config):
    return {
        "batch_size": int(config.get("BULK_BATCH_SIZE", DEFAULT_BULK_BATCH_SIZE)),
        "delay_s": float(config.get("BULK_BATCH_DELAY_S", DEFAULT_BULK_BATCH_DELAY_S)),
    }


def run_in_batches(items, operation, *, batch_size=DEFAULT_BULK_BATCH_SIZE, delay_s=DEFAULT_BULK_BATCH_DELAY_S, description="bulk operation"):
    """
    Apply `operation(item)` to every item, `batch_size` items at a time.

    Items of one batch run concurrently; batches are separated by `delay_s` to
    stay under the store's rate limits. Returns one outcome dict per item in
    input order: {"item", "ok", "result", "error"}.
    """
    items = list(items)
    batch_size = max(1, int(batch_size))
    outcomes = []

    def _run_one(item):
        try:
            return {"item": item, "ok": True, "result": operation(item), "error": None}
        except Exception as exc:
            logging.warning("%s: item failed: %s", description, exc)
            return {"item": item, "ok": False, "result": None, "error": str(exc)}

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            outcomes.extend(executor.map(_run_one, batch))
        if start + batch_size < len(items) and delay_s > 0:
            time.sleep(delay_s)

    failed = sum(1 for outcome in outcomes if not outcome["ok"])
    if items:
        logging.info("%s: processed=%s failed=%s", description, len(items), failed)
    return outcomes
