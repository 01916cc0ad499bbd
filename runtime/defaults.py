"""Shared runtime defaults used across modules.

Keep this module lightweight (no pandas/heavy imports) so low-level modules can
import shared constants without creating avoidable import dependencies.
"""

DEFAULT_TIMEZONE_NAME = "Asia/Makassar"

DEFAULT_RECORD_STORE_BASE_URL = "http://127.0.0.1:8090"
DEFAULT_REQUEST_TIMEOUT_S = 30.0
DEFAULT_STORE_RETRIES = 2
DEFAULT_STORE_RETRY_DELAY_S = 1.0

DEFAULT_AGGREGATE_DEBOUNCE_S = 2.0
DEFAULT_REFRESH_DEBOUNCE_S = 1.0
DEFAULT_PERIODIC_REFRESH_S = 300.0
DEFAULT_BULK_BATCH_SIZE = 5
DEFAULT_BULK_BATCH_DELAY_S = 0.05
DEFAULT_BACKGROUND_WORKERS = 4

DEFAULT_CAPACITY_MATERIALITY = 0.01
DEFAULT_SINGLE_DOT_POLICY = "thousands"

UNKNOWN_PLANT_UNIT = "Unknown"
UNKNOWN_EDITOR_NAME = "Unknown User"

DEFAULT_COLLECTIONS = {
    "parameter_settings": "parameter_settings",
    "parameter_data": "ccr_parameter_data",
    "footer_data": "ccr_footer_data",
    "material_usage": "ccr_material_usage",
    "production_capacity": "monitoring_production_capacity",
    "silo_data": "ccr_silo_data",
}


def collection_name(config, key):
    """Return the configured store collection for a logical collection key."""
    collections = config.get("COLLECTIONS") or {}
    return collections.get(key, DEFAULT_COLLECTIONS[key])
